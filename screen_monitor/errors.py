"""Exceptions raised by the screen monitor."""


class MonitorError(Exception):
    """Base error for the screen monitor."""


class FrameError(MonitorError):
    """Raised when a raw frame buffer does not match its declared size."""


class ConfigError(MonitorError):
    """Raised when a configuration document cannot be parsed."""
