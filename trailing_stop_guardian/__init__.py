"""Trailing Stop Guardian - Ratcheting Stop Loss Service

Keeps a protective stop on every open position for one symbol and moves it
toward the market each time a bar closes. A stop is never loosened.
"""

__version__ = "0.1.0"
