"""
In-memory run trees and their synchronisation with the tracing service.

A :class:`RunTree` is one traced execution plus the children it started.
Building the tree is purely local: identifiers are generated client-side, so
a child can point at its parent before either has reached the service.
Persisting is two explicit steps, ``post`` (create) and ``patch`` (update).

Both steps take a snapshot of the run at call time and schedule the request
on the running event loop. Requests for the same run are sent one after the
other in call order, so a patch can never overtake the post it follows.
Requests for different runs (a parent and its child, two siblings) are
independent and may interleave freely.
"""
from __future__ import annotations

import asyncio
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from runtrace.client import Client, ID_TYPE
from runtrace.config import default_project_name
from runtrace.exceptions import RunTreeStateError
from runtrace.schemas import utc_now
from runtrace.utils.env import get_runtime_environment
from runtrace.utils.logger import get_logger, trace_method

logger = get_logger(__name__)

_default_client: Optional[Client] = None


def _get_default_client() -> Client:
    global _default_client
    if _default_client is None:
        _default_client = Client()
    return _default_client


class RunTree:
    """A run and its ordered children.

    Children are kept in creation order. The tree owns them: ``child_runs`` is
    only appended to, never reassigned, so concurrent ``create_child`` calls
    on the same parent all keep their child.
    """

    def __init__(
        self,
        name: str,
        run_type: Union[str, Enum],
        *,
        inputs: Optional[Dict[str, Any]] = None,
        id: Optional[ID_TYPE] = None,
        project_name: Optional[str] = None,
        parent_run: Optional["RunTree"] = None,
        start_time: Optional[datetime] = None,
        extra: Optional[Dict[str, Any]] = None,
        serialized: Optional[Dict[str, Any]] = None,
        reference_example_id: Optional[ID_TYPE] = None,
        execution_order: int = 1,
        child_execution_order: Optional[int] = None,
        client: Optional[Client] = None,
    ) -> None:
        if not name:
            raise ValueError("name is required")
        if not run_type:
            raise ValueError("run_type is required")
        self._id = uuid.UUID(str(id)) if id is not None else uuid.uuid4()
        self.name = name
        self.run_type = run_type.value if isinstance(run_type, Enum) else str(run_type)
        self.inputs: Dict[str, Any] = inputs if inputs is not None else {}
        self.parent_run = parent_run
        if project_name is None:
            project_name = parent_run.project_name if parent_run is not None else default_project_name()
        self.project_name = project_name
        self.start_time = start_time or utc_now()
        self._end_time: Optional[datetime] = None
        self.outputs: Optional[Dict[str, Any]] = None
        self.error: Optional[str] = None
        self.extra: Dict[str, Any] = dict(extra or {})
        self.serialized = serialized
        self.reference_example_id = (
            uuid.UUID(str(reference_example_id)) if reference_example_id is not None else None
        )
        self.events: List[Dict[str, Any]] = []
        self.child_runs: List[RunTree] = []
        self.execution_order = execution_order
        self.child_execution_order = child_execution_order if child_execution_order is not None else execution_order
        self.abandoned = False

        self._client = client if client is not None else (parent_run._client if parent_run is not None else None)
        self._post_requested = False
        self._last_sync: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"RunTree(id={self.id}, name={self.name!r}, run_type={self.run_type!r})"

    # ── Identity & state ────────────────────────────────────────────────────

    @property
    def id(self) -> uuid.UUID:
        return self._id

    @property
    def end_time(self) -> Optional[datetime]:
        return self._end_time

    @property
    def parent_run_id(self) -> Optional[uuid.UUID]:
        return self.parent_run.id if self.parent_run is not None else None

    @property
    def is_root(self) -> bool:
        return self.parent_run is None

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = _get_default_client()
        return self._client

    @property
    def is_complete(self) -> bool:
        """Ended, and every known child is complete or abandoned."""
        if self._end_time is None:
            return False
        return all(child.abandoned or child.is_complete for child in self.child_runs)

    # ── Local lifecycle ─────────────────────────────────────────────────────

    @trace_method
    def create_child(
        self,
        name: str,
        run_type: Union[str, Enum],
        *,
        inputs: Optional[Dict[str, Any]] = None,
        id: Optional[ID_TYPE] = None,
        start_time: Optional[datetime] = None,
        extra: Optional[Dict[str, Any]] = None,
        serialized: Optional[Dict[str, Any]] = None,
        reference_example_id: Optional[ID_TYPE] = None,
    ) -> "RunTree":
        """Begin a child run. Local only; nothing is sent."""
        if self._end_time is not None:
            raise RunTreeStateError(f"Cannot begin a child of run {self.id}: it has already ended", run_id=self.id)
        order = self.child_execution_order + 1
        child = RunTree(
            name,
            run_type,
            inputs=inputs,
            id=id,
            project_name=self.project_name,
            parent_run=self,
            start_time=start_time,
            extra=extra,
            serialized=serialized,
            reference_example_id=reference_example_id,
            execution_order=order,
            child_execution_order=order,
            client=self._client,
        )
        self.child_execution_order = order
        self.child_runs.append(child)
        return child

    @trace_method
    def end(
        self,
        outputs: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        end_time: Optional[datetime] = None,
    ) -> None:
        """Record the result of the run and stamp its end time. Local only."""
        if self._end_time is not None:
            raise RunTreeStateError(f"Run {self.id} has already ended", run_id=self.id)
        self.outputs = outputs
        self.error = error
        self._end_time = end_time or utc_now()
        if self.parent_run is not None:
            self.parent_run.child_execution_order = max(
                self.parent_run.child_execution_order, self.child_execution_order
            )

    def abandon(self) -> None:
        """Mark an unfinished run as no longer holding its parent open."""
        self.abandoned = True

    def add_event(self, name: str, **kwargs: Any) -> None:
        self.events.append({"name": name, "time": utc_now(), **kwargs})

    # ── Snapshots ───────────────────────────────────────────────────────────

    def to_create(self) -> Dict[str, Any]:
        extra = dict(self.extra)
        extra.setdefault("runtime", get_runtime_environment())
        return {
            "id": self.id,
            "name": self.name,
            "run_type": self.run_type,
            "inputs": dict(self.inputs),
            "start_time": self.start_time,
            "end_time": self._end_time,
            "outputs": dict(self.outputs) if self.outputs is not None else None,
            "error": self.error,
            "extra": extra,
            "serialized": self.serialized,
            "events": list(self.events) or None,
            "parent_run_id": self.parent_run_id,
            "reference_example_id": self.reference_example_id,
            "execution_order": self.execution_order,
            "session_name": self.project_name,
        }

    def to_update(self) -> Dict[str, Any]:
        return {
            "end_time": self._end_time,
            "outputs": dict(self.outputs) if self.outputs is not None else None,
            "error": self.error,
            "events": list(self.events) or None,
            "extra": dict(self.extra) or None,
            "parent_run_id": self.parent_run_id,
            "reference_example_id": self.reference_example_id,
        }

    # ── Remote synchronisation ──────────────────────────────────────────────

    def _schedule(self, op: str, send: Callable[[], Awaitable[None]]) -> "asyncio.Task[None]":
        loop = asyncio.get_running_loop()
        previous = self._last_sync

        async def _run() -> None:
            if previous is not None and not previous.done():
                # Wait for the earlier request whatever its outcome; its caller observes the error
                await asyncio.wait([previous])
            await send()

        task = loop.create_task(_run(), name=f"runtrace-{op}-{self.id}")
        self._last_sync = task
        return task

    def post(self, exclude_child_runs: bool = True) -> "asyncio.Task[None]":
        """Create this run on the service.

        Returns a task; await it to observe success or failure. Posting again
        re-sends the same identifier, which the service treats as an upsert.
        With ``exclude_child_runs=False`` every descendant is posted too. Each
        descendant gets its own task, sent after its parent's post has
        finished, so a failure surfaces on that run only (see
        :attr:`last_request`) and its siblings are still sent.
        """
        task = self._post(after=None)
        if not exclude_child_runs:
            self._post_descendants(task)
        return task

    def _post(self, after: Optional[asyncio.Task]) -> "asyncio.Task[None]":
        payload = self.to_create()
        client = self.client

        async def send() -> None:
            if after is not None and not after.done():
                await asyncio.wait([after])
            await client.create_run(**payload)
            logger.info("run_posted", run_id=str(self.id), name=self.name, parent_run_id=str(self.parent_run_id))

        task = self._schedule("post", send)
        self._post_requested = True
        return task

    def _post_descendants(self, parent_task: asyncio.Task) -> None:
        for child in list(self.child_runs):
            child_task = child._post(after=parent_task)
            child._post_descendants(child_task)

    def patch(self) -> "asyncio.Task[None]":
        """Send outputs, error and end time for this run.

        Raises:
            RunTreeStateError: if ``post`` was never called for this run.
        """
        if not self._post_requested:
            raise RunTreeStateError(f"Run {self.id} must be posted before it is patched", run_id=self.id)
        payload = self.to_update()
        client = self.client

        async def send() -> None:
            await client.update_run(self.id, **payload)
            logger.info("run_patched", run_id=str(self.id), name=self.name, has_error=self.error is not None)

        return self._schedule("patch", send)

    @property
    def last_request(self) -> Optional["asyncio.Task[None]"]:
        """The most recently scheduled post or patch task for this run."""
        return self._last_sync

    async def wait(self) -> None:
        """Wait until every request scheduled so far for this run has finished."""
        if self._last_sync is not None:
            await asyncio.wait([self._last_sync])


__all__ = ["RunTree"]
