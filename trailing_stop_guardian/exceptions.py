"""Exceptions raised by Trailing Stop Guardian."""


class GuardianError(Exception):
    """Base exception for the service."""


class ConfigurationError(GuardianError):
    """Configuration is incomplete; the engine refuses to start."""


class GatewayError(GuardianError):
    """Order gateway request could not be completed (timeout, bad reply)."""
