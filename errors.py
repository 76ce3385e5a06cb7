"""
Error kinds and the Result value returned by every public engine operation.

Engine internals raise LibraryError subclasses. The public functions are
wrapped with returns_result so callers (Flask routes, scripts) always get a
Result back and can map the error kind to a message or status code.
"""

import decimal
import functools
import sqlite3
import sys
from dataclasses import dataclass
from typing import Any, Optional


class LibraryError(Exception):
    kind = 'LibraryError'
    default_message = 'Library operation failed'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class RecordNotFound(LibraryError):
    kind = 'RecordNotFound'
    default_message = 'Borrow record not found'


class ItemNotFound(LibraryError):
    kind = 'ItemNotFound'
    default_message = 'Book not found'


class ItemUnavailable(LibraryError):
    kind = 'ItemUnavailable'
    default_message = 'Book is no longer available'


class InvalidTransition(LibraryError):
    kind = 'InvalidTransition'
    default_message = 'Borrow record is not in a state that allows this action'


class ConcurrencyConflict(LibraryError):
    kind = 'ConcurrencyConflict'
    default_message = 'Another request updated this record first, please retry'


class ValidationError(LibraryError):
    kind = 'ValidationError'
    default_message = 'Invalid value'


class OverCapacity(LibraryError):
    kind = 'OverCapacity'
    default_message = 'Available copies would exceed total copies'


class StorageError(LibraryError):
    kind = 'StorageError'
    default_message = 'Database operation failed'


@dataclass
class Result:
    success: bool
    data: Any = None
    error: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, data=None, message=None):
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, exc):
        return cls(success=False, error=exc.kind, message=exc.message)

    def to_dict(self):
        if self.success:
            payload = {'success': True}
            if self.message:
                payload['message'] = self.message
            return payload
        return {'success': False, 'error': self.error, 'message': self.message}


def storage_error(exc):
    """Translate a sqlite3 exception into the matching LibraryError"""
    text = str(exc).lower()
    if isinstance(exc, sqlite3.OperationalError) and ('locked' in text or 'busy' in text):
        return ConcurrencyConflict()
    return StorageError(f'Database operation failed: {exc}')


def returns_result(func):
    """Run an engine operation and fold its outcome into a Result.

    A returned value becomes Result.ok(value). LibraryError and sqlite3
    errors become Result.fail with the error kind preserved.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            value = func(*args, **kwargs)
        except LibraryError as e:
            print(f"[{func.__name__}] {e.kind}: {e.message}", file=sys.stderr, flush=True)
            return Result.fail(e)
        except sqlite3.Error as e:
            err = storage_error(e)
            print(f"[{func.__name__}] {err.kind}: {e}", file=sys.stderr, flush=True)
            return Result.fail(err)
        except decimal.DecimalException as e:
            err = ValidationError(f'Amount out of range: {e!r}')
            print(f"[{func.__name__}] {err.kind}: {err.message}", file=sys.stderr, flush=True)
            return Result.fail(err)
        if isinstance(value, Result):
            return value
        return Result.ok(value)
    return wrapper
