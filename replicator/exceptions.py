"""Custom exception classes for the replicator."""


class ReplicatorError(Exception):
    """
    Base exception class for all replicator errors.
    """
    status = 500
    name = "replicator_error"


class AlreadyActiveError(ReplicatorError):
    """
    Raised when the replicator is started on a database it already runs on.
    """
    name = "already_active"

    def __init__(self, message: str = "Replicator already active on this database."):
        super().__init__(message)


class AlreadyInactiveError(ReplicatorError):
    """
    Raised when the replicator is stopped on a database it does not run on.
    """
    name = "already_inactive"

    def __init__(self, message: str = "Replicator already inactive on this database."):
        super().__init__(message)


class DatabaseNotActiveError(ReplicatorError):
    """
    Raised when a background routine touches a database that has been stopped.
    """
    name = "not_active"


class RevisionConflictError(ReplicatorError):
    """
    Raised by a document store when a write targets a stale revision.
    """
    status = 409
    name = "conflict"


class DocumentNotFoundError(ReplicatorError):
    """
    Raised by a document store when a document does not exist.
    """
    status = 404
    name = "not_found"


class ForbiddenError(ReplicatorError):
    """
    Raised when a write violates the control-document validation rules.
    """
    status = 403
    name = "forbidden"


class ValidationAlreadyInstalledError(ReplicatorError):
    """
    Raised when strict validation is installed twice on the same database.
    """
    name = "already_installed"
