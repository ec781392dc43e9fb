"""Engine error taxonomy."""


class EngineError(Exception):
    """Base strategy engine error."""


class InvalidObservationError(EngineError):
    """Raised when a market observation cannot describe a real market state."""


class ConfigurationError(EngineError):
    """Raised when a strategy configuration is rejected at construction."""
