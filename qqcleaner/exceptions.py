"""
Custom exception hierarchy for the QQ media cleaner.

Fatal errors (bad key, corrupt or truncated data, schema drift) abort the
pipeline before any file action can run. Per-entry filesystem problems are
captured in the action report instead of being raised.
"""
from enum import Enum


class ErrorKind(str, Enum):
    """Classification of a per-entry failure, surfaced in reports."""
    ALREADY_GONE = "already_gone"
    PERMISSION_DENIED = "permission_denied"
    IS_DIRECTORY = "is_directory"
    SIZE_MISMATCH = "size_mismatch"
    NOT_WRITABLE = "not_writable"
    DESTINATION_CONFLICT = "destination_conflict"
    INTERRUPTED = "interrupted"
    OS_ERROR = "os_error"


class QQCleanerError(Exception):
    """Base exception for all cleaner errors."""
    pass


class ConfigError(QQCleanerError):
    """Raised when the settings file has the wrong shape."""
    pass


class DecryptionError(QQCleanerError):
    """Raised when the decryption primitive cannot produce plaintext."""
    pass


class BadKeyError(DecryptionError):
    """Raised when the key is rejected. No partial index is usable."""
    pass


class CorruptDatabaseError(QQCleanerError):
    """Raised when database bytes cannot be decrypted or parsed."""
    pass


class TruncatedDataError(CorruptDatabaseError):
    """Raised when a plaintext database image is short or malformed."""
    pass


class SchemaMismatchError(QQCleanerError):
    """Raised when an expected table or column is absent."""
    pass


class InvalidTransitionError(QQCleanerError):
    """Raised when a catalog entry status would move backwards."""
    pass


class FileOperationError(QQCleanerError):
    """Raised when a copy/move cannot be verified."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.OS_ERROR):
        super().__init__(message)
        self.kind = kind


def classify_os_error(exc: BaseException) -> ErrorKind:
    """Maps a filesystem exception onto an ErrorKind."""
    if isinstance(exc, FileOperationError):
        return exc.kind
    if isinstance(exc, FileNotFoundError):
        return ErrorKind.ALREADY_GONE
    if isinstance(exc, IsADirectoryError):
        return ErrorKind.IS_DIRECTORY
    if isinstance(exc, PermissionError):
        return ErrorKind.PERMISSION_DENIED
    return ErrorKind.OS_ERROR
