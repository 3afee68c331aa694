"""
Driver-level errors.

Driver adapters translate the native client exceptions into this small
taxonomy so the persistence layer can recognize soft conditions (missing
keys, existing buckets) without importing the native client.
"""

from typing import Any

from ..constants import KEY_EXISTS_CODE, KEY_NOT_FOUND_CODE


class DriverError(Exception):
    """
    Error reported by the document store driver.

    Attributes:
        message: Error message
        code: Numeric status code reported by the store (if any)
        key: Document key involved in the failed operation (if any)
    """

    default_code: int | None = None

    def __init__(self, message: str, code: int | None = None, key: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code if code is not None else self.default_code
        self.key = key


class DocumentNotFoundError(DriverError):
    """The requested document key does not exist."""

    default_code = KEY_NOT_FOUND_CODE


class DocumentExistsError(DriverError):
    """An insert targeted a key that already exists."""

    default_code = KEY_EXISTS_CODE


class CasMismatchError(DriverError):
    """A replace carried a CAS token that no longer matches the stored one."""

    default_code = KEY_EXISTS_CODE


class BucketExistsError(DriverError):
    """A bucket with the requested name already exists."""


def is_key_not_found(error: BaseException | None) -> bool:
    """
    Check whether an error is the store's "key does not exist" condition.

    Args:
        error: Error to inspect (None is allowed)

    Returns:
        True if the error reports a missing key
    """
    if error is None:
        return False
    if isinstance(error, DocumentNotFoundError):
        return True
    return getattr(error, "code", None) == KEY_NOT_FOUND_CODE
