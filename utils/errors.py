class EngineError(Exception):
    pass


class ValidationError(EngineError, ValueError):
    """Rejected input: bad experiment config, malformed split, empty prompt."""


class NotFoundError(EngineError, LookupError):
    """Unknown test, model, tool or alert."""


class DegradedDataError(EngineError):
    """Not enough history to answer with confidence.

    Public operations never raise this; they answer with neutral defaults and
    a lowered confidence instead. It is used internally to short-circuit into
    those defaults.
    """


class ComputationFailure(EngineError):
    """A local computation (such as artifact decoding) failed or timed out."""
