"""
Exception types raised by the progression pipeline and persistence layer.
"""


class LiftcoachError(Exception):
    """Base class for liftcoach errors."""


class AnalysisError(LiftcoachError):
    """The model analysis could not produce usable recommendations."""


class NoValidJson(AnalysisError):
    """Model response had no locatable or parseable JSON object."""

    def __init__(self, message, response_text=None):
        super().__init__(message)
        self.response_text = response_text


class ExternalCallFailure(AnalysisError):
    """Calling the model failed (timeout, transport or API error)."""


class SessionNotFoundError(LiftcoachError):
    """Referenced workout session does not exist."""


class ActiveSessionError(LiftcoachError):
    """A workout session is already in progress."""

    def __init__(self, session_id):
        super().__init__(f"Active session #{session_id} exists")
        self.session_id = session_id


class InvalidSetLogError(LiftcoachError, ValueError):
    """Set log payload violates the set log constraints."""
