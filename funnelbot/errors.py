from contextlib import contextmanager
from typing import Any, Optional

from sqlalchemy.exc import DBAPIError, OperationalError


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(AppError):
    """Malformed input. Raised before any mutation."""

    status_code = 400


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    """Terminal-status overwrite or duplicate unique key."""

    status_code = 409


class TransientStoreError(AppError):
    """Store unavailable. The whole operation may be retried."""

    status_code = 503


@contextmanager
def store_errors(operation: str):
    """Translate driver-level failures into TransientStoreError."""
    try:
        yield
    except OperationalError as e:
        raise TransientStoreError(f"Store unavailable during {operation}", details=str(e.orig)) from e
    except DBAPIError as e:
        if e.connection_invalidated:
            raise TransientStoreError(f"Store connection lost during {operation}", details=str(e.orig)) from e
        raise
