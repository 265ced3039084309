"""
Domain exceptions for LangQuest.

Routers translate these into HTTP errors. Guarded business outcomes
(practice attempts, running out of hearts) are returned as data and never
raised.
"""


class LangQuestError(Exception):
    """Base class for all domain errors."""


class NotFoundError(LangQuestError):
    """A referenced course, lesson, challenge or progress record does not exist."""

    def __init__(self, resource: str, identifier=None):
        self.resource = resource
        self.identifier = identifier
        if identifier is None:
            message = f"{resource} not found"
        else:
            message = f"{resource} {identifier} not found"
        super().__init__(message)


class RefillRejectedError(LangQuestError):
    """Hearts cannot be refilled right now."""

    HEARTS_FULL = "hearts_full"
    INSUFFICIENT_POINTS = "insufficient_points"
    CONFLICT = "conflict"

    def __init__(self, reason: str, message: str):
        self.reason = reason
        super().__init__(message)
