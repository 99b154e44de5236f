"""
Error taxonomy for the review pipeline.

Everything raised on purpose by the pipeline derives from ReviewError so the
orchestrator can record it on the session. Anything else is logged with its
traceback and recorded as an unexpected error.
"""

from typing import Optional


class ReviewError(Exception):
    """Base class for errors that are recorded on a research session."""


class ConfigurationError(ReviewError):
    """A credential or provider setting is missing or invalid."""


class ProviderError(ReviewError):
    """A source or judge endpoint returned a non-success response or was unreachable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(ProviderError):
    """The judge provider rejected our credentials."""


class MalformedResponseError(ReviewError):
    """Structured judge output could not be parsed into the expected fields."""

    MESSAGE = "Could not parse model output."

    def __init__(self, detail: str = ""):
        super().__init__(self.MESSAGE)
        self.detail = detail


class PreconditionError(ReviewError):
    """The session is not in a state where the requested operation makes sense."""


class InvalidTransitionError(PreconditionError):
    pass


class NoLiteratureResultsError(ReviewError):
    """The literature source produced nothing to select for full-text gathering."""


class ScrapeError(ReviewError):
    """Page text could not be extracted for the current item."""


class ScrapeTimeoutError(ScrapeError):
    pass


class SessionNotFoundError(LookupError):
    """No stored session has the requested id."""
