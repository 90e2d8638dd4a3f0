"""
Error taxonomy shared by services and API routes
"""


class DocLedgerError(Exception):
    """Base class for all application errors"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UploadValidationError(DocLedgerError, ValueError):
    """Rejected upload (type, size, empty file); nothing was stored"""
    status_code = 400


class EntryValidationError(DocLedgerError, ValueError):
    """Malformed journal entry or request payload"""
    status_code = 400


class UnbalancedEntryError(DocLedgerError, ValueError):
    """Total debits and credits differ by more than the tolerance"""
    status_code = 400


class NotFoundError(DocLedgerError, LookupError):
    status_code = 404


class DataMissingError(DocLedgerError, ValueError):
    """A posting operation lacks the data it needs"""
    status_code = 422


class InvalidStateError(DocLedgerError, ValueError):
    """Operation not allowed in the record's current state"""
    status_code = 409


class InferenceError(DocLedgerError):
    """The inference API failed or is not configured"""
    status_code = 502


class StageError(DocLedgerError):
    """A pipeline stage failed; ``retryable`` controls re-queueing"""
    status_code = 500

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
