"""Error taxonomy shared by the storage layer, the service and the routes."""


class SynaptideError(Exception):
    """Base class for all Synaptide errors."""


class ValidationError(SynaptideError):
    """A required field is missing or blank.

    Raised before anything reaches storage.
    """


class StorageError(SynaptideError):
    """A storage backend call failed."""


class StorageUnavailable(StorageError):
    """The backend cannot be reached or failed to initialize."""


class PartialFailure(StorageError):
    """A bulk operation completed only in part.

    Attributes:
        deleted: Records removed before the failure.
        failed: Records that could not be removed.
    """

    def __init__(self, message: str, deleted: int, failed: int) -> None:
        super().__init__(message)
        self.deleted = deleted
        self.failed = failed


class ConcurrentUpdateError(StorageError):
    """A profile kept changing underneath a read-merge-write cycle."""
