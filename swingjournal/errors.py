"""
Error taxonomy for the journal.

ValidationError and NotFoundError block the local operation and surface to the
caller. RemoteUnavailable is raised by every remote collaborator (LLM, Sheets,
broker). PartialRowError marks one bad row inside a bulk import.
"""


class JournalError(Exception):
    """Base class for all journal errors."""


class ValidationError(JournalError, ValueError):
    """A record is missing a required field or breaks a model invariant."""


class NotFoundError(JournalError, LookupError):
    """An operation referenced an id that does not exist."""


class RemoteUnavailable(JournalError):
    """A remote call failed or returned content that could not be parsed."""


class PartialRowError(JournalError):
    """A single row of a bulk import could not be turned into a trade."""

    def __init__(self, row_number: int, reason: str):
        super().__init__(f"Row {row_number}: {reason}")
        self.row_number = row_number
        self.reason = reason
