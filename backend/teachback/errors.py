from __future__ import annotations


class TeachBackError(Exception):
    """Base class for learn-flow errors; none of them is fatal to the process."""


class ValidationFailed(TeachBackError):
    """Input rejected at the boundary (empty answer, no topic, hints disabled)."""


class InvalidTransition(TeachBackError):
    """The requested move is not allowed from the current phase."""


class SessionBusy(TeachBackError):
    """A submission arrived while another call for this learner is outstanding."""


class ContentGenerationError(TeachBackError):
    """A content, dialogue, Q&A or feedback provider failed."""


class StaleResult(TeachBackError):
    """A late result for work the learner has since navigated away from."""


class RecordNotFound(TeachBackError):
    pass


class PersistenceFailed(TeachBackError):
    """A completed record could not be written."""
