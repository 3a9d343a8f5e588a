class LogSyncError(Exception):
    """Base class for all log synchronization failures."""


class ValidationError(LogSyncError):
    """A draft or patch is missing required fields or holds invalid values."""

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = list(fields or [])


class NotYetPersistedError(LogSyncError):
    """Update or delete targeted an entry that only has a provisional id."""


class EntryNotFoundError(LogSyncError):
    """No entry with the given id is present in the in-memory log."""


class StaleIdError(LogSyncError):
    """A row position no longer points at the row the caller meant."""


class RowFormatError(LogSyncError):
    """A stored row could not be decoded into an entry."""


class RemoteError(LogSyncError):
    """A call to the backing store failed.

    ``transient`` tells the caller whether retrying the same call may succeed.
    """

    transient = False

    def __init__(self, message: str, transient: bool | None = None) -> None:
        super().__init__(message)
        if transient is not None:
            self.transient = transient


class RemoteUnavailableError(RemoteError):
    """Transport failure, timeout or temporary backend error."""

    transient = True


class RemoteRejectedError(RemoteError):
    """The store refused the call, e.g. the addressed row does not exist."""

    transient = False
