"""
Exception types raised by the audience data layer and analytics.
"""


class AudienceEngineError(Exception):
    """Base class for audience engine errors."""


class DataUnavailable(AudienceEngineError):
    """Raised when a geo or audience source is empty or cannot be read."""


class MissingRecord(AudienceEngineError):
    """Raised when a directly requested market, segment or code does not exist."""


class InsufficientSample(AudienceEngineError):
    """
    Too few usable records to compute a meaningful result.

    Analytics never raise this; they return best-effort results instead.
    Callers that want a hard failure can raise it themselves.
    """
