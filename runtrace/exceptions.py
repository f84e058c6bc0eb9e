"""
Exceptions raised by the runtrace client.

Local precondition errors are raised before any I/O happens; remote failures
carry the HTTP status and path of the request that failed.
"""
from __future__ import annotations

from typing import Any, Optional

from runtrace.utils.logger import get_logger

logger = get_logger(__name__)


class RunTraceError(Exception):
    """Base exception for everything raised by this library."""


class RunTreeStateError(RunTraceError):
    """A run tree operation was called in a state that does not allow it."""

    def __init__(self, message: str, *, run_id: Any = None):
        self.run_id = run_id
        super().__init__(message)


class RunTraceAPIError(RunTraceError):
    """The remote service rejected a request."""

    log_level = "warning"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        method: Optional[str] = None,
        path: Optional[str] = None,
        detail: Any = None,
    ):
        self.status_code = status_code
        self.method = method
        self.path = path
        self.detail = detail
        super().__init__(message)
        getattr(logger, self.log_level)(
            "api_error",
            error_type=self.__class__.__name__,
            status_code=status_code,
            method=method,
            path=path,
        )


class RunTraceNotFoundError(RunTraceAPIError):
    """The requested resource does not exist (HTTP 404)."""


class RunTraceConflictError(RunTraceAPIError):
    """The resource already exists (HTTP 409)."""

    # create_run treats a 409 as an upsert
    log_level = "debug"


class RunTraceUserError(RunTraceAPIError):
    """The request was malformed or not permitted (other HTTP 4xx)."""


class RunTraceConnectionError(RunTraceError):
    """The service could not be reached, or the request timed out."""


class EvaluatorError(RunTraceError):
    """An evaluator raised while grading a single run."""

    def __init__(self, message: str, *, run_id: Any, evaluator_name: Optional[str] = None):
        self.run_id = run_id
        self.evaluator_name = evaluator_name
        super().__init__(f"Evaluator '{evaluator_name or 'unnamed'}' failed on run {run_id}: {message}")


__all__ = [
    "RunTraceError",
    "RunTreeStateError",
    "RunTraceAPIError",
    "RunTraceNotFoundError",
    "RunTraceConflictError",
    "RunTraceUserError",
    "RunTraceConnectionError",
    "EvaluatorError",
]
