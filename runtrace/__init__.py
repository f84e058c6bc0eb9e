"""Client library for recording run trees and grading them with feedback."""

from runtrace.client import Client
from runtrace.config import ClientSettings
from runtrace.exceptions import (
    EvaluatorError,
    RunTraceAPIError,
    RunTraceConnectionError,
    RunTraceError,
    RunTraceNotFoundError,
    RunTreeStateError,
)
from runtrace.pagination import PageCursor
from runtrace.run_helpers import get_current_run_tree, traceable
from runtrace.run_trees import RunTree

__all__ = [
    "Client",
    "ClientSettings",
    "RunTree",
    "PageCursor",
    "traceable",
    "get_current_run_tree",
    "RunTraceError",
    "RunTraceAPIError",
    "RunTraceNotFoundError",
    "RunTraceConnectionError",
    "RunTreeStateError",
    "EvaluatorError",
]
