"""
Error taxonomy for the revision scheduler.

Validation and not-found errors are caller-visible. `ConflictDegradation` is
raised by the store adapter on a would-be duplicate key and is always resolved
by the engines (return or merge into the existing record). `ExternalFeedUnavailable`
is swallowed by reconciliation. `PersistenceError` is fatal for the request.
"""


class RevisionSchedulerError(Exception):
    """Base class for all scheduler errors."""


class RevisionValidationError(RevisionSchedulerError):
    """Bad bucket name, missing required field or an illegal transition."""


class RevisionNotFoundError(RevisionSchedulerError):
    """The user has no such record."""


class ConflictDegradation(RevisionSchedulerError):
    """A write would violate the `(user_id, question_key, bucket)` uniqueness."""

    def __init__(self, message: str, question_key: str = "", bucket: str = ""):
        super().__init__(message)
        self.question_key = question_key
        self.bucket = bucket


class ExternalFeedUnavailable(RevisionSchedulerError):
    """The submission feed timed out, errored or returned garbage."""


class PersistenceError(RevisionSchedulerError):
    """The document store is unreachable or rejected a write."""


class InvalidTime(RevisionSchedulerError, ValueError):
    """A non-finite or unparseable instant was given to the boundary calculator."""
