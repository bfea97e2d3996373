from __future__ import annotations


class CleaningSyncError(Exception):
    """Base for failures the sync engine reports instead of raising past its boundary."""

    code = "sync_failed"

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        if code:
            self.code = code
        super().__init__(message or self.code)


class OrderMissingDates(CleaningSyncError):
    code = "order_missing_dates"


class WriteConflict(CleaningSyncError):
    code = "write_conflict"


class InvalidSyncMode(CleaningSyncError):
    code = "invalid_mode"


class StorageError(CleaningSyncError):
    code = "storage_error"


def error_code(exc: BaseException) -> str:
    if isinstance(exc, CleaningSyncError):
        return exc.code
    return f"sync_failed:{type(exc).__name__}"
