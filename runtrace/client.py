"""
Async client for the tracing service.

Thin request/response wrapper over ``httpx.AsyncClient``: runs, projects,
datasets, examples and feedback. List endpoints return a
:class:`~runtrace.pagination.PageCursor` so callers can ``async for`` over
result sets of any size. Nothing here retries; failed requests raise the
:mod:`runtrace.exceptions` family.
"""
from __future__ import annotations

import dataclasses
import json
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, TypeVar, Union

import httpx
from pydantic import BaseModel

from runtrace.config import ClientSettings
from runtrace.exceptions import (
    RunTraceAPIError,
    RunTraceConflictError,
    RunTraceConnectionError,
    RunTraceNotFoundError,
    RunTraceUserError,
)
from runtrace.pagination import PageCursor, offset_cursor
from runtrace.schemas import (
    DataType,
    Dataset,
    Example,
    Feedback,
    FeedbackSourceType,
    Run,
    TracerSession,
    utc_now,
)
from runtrace.utils.logger import get_logger

logger = get_logger(__name__)

ID_TYPE = Union[uuid.UUID, str]
T = TypeVar("T")


def _serialize(obj: Any) -> Any:
    if isinstance(obj, uuid.UUID):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return repr(obj)


def _dumps_json(payload: Any) -> bytes:
    return json.dumps(payload, default=_serialize, ensure_ascii=False).encode("utf-8")


def _as_uuid(value: ID_TYPE, var: str = "id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise ValueError(f"{var} must be a valid UUID, got {value!r}") from e


def _params(**kwargs: Any) -> Dict[str, Any]:
    """Drop unset query params and stringify ids so httpx can encode them."""
    out: Dict[str, Any] = {}
    for key, value in kwargs.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set)):
            out[key] = [_serialize(v) if not isinstance(v, (str, int, float, bool)) else v for v in value]
        elif isinstance(value, (uuid.UUID, datetime, Enum)):
            out[key] = _serialize(value)
        else:
            out[key] = value
    return out


def _error_detail(response: httpx.Response) -> Any:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and "detail" in body:
        return body["detail"]
    return body


def _raise_for_status(response: httpx.Response, method: str, path: str) -> None:
    if not response.is_error:
        return
    status = response.status_code
    detail = _error_detail(response)
    message = f"{method} {path} failed with {status}: {detail}"
    kwargs = dict(status_code=status, method=method, path=path, detail=detail)
    if status == 404:
        raise RunTraceNotFoundError(message, **kwargs)
    if status == 409:
        raise RunTraceConflictError(message, **kwargs)
    if 400 <= status < 500:
        raise RunTraceUserError(message, **kwargs)
    raise RunTraceAPIError(message, **kwargs)


class Client:
    """Client for runs, projects, datasets, examples and feedback."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        *,
        api_key: Optional[str] = None,
        settings: Optional[ClientSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Args:
            api_url: Base URL of the service. Overrides ``settings.api_url``.
            api_key: Sent as ``x-api-key`` when given. Overrides ``settings.api_key``.
            settings: Connection settings. Read from RUNTRACE_* env vars when omitted.
            http_client: Pre-built ``httpx.AsyncClient`` (e.g. with a mock transport).
                The caller keeps ownership of it.
        """
        settings = settings or ClientSettings.from_env()
        overrides = {k: v for k, v in {"api_url": api_url, "api_key": api_key}.items() if v is not None}
        if overrides:
            settings = dataclasses.replace(settings, **overrides)
        self.settings = settings
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=settings.api_url,
            timeout=settings.timeout_s,
        )

    def __repr__(self) -> str:
        return f"Client(api_url={self.settings.api_url!r})"

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    @property
    def api_url(self) -> str:
        return self.settings.api_url

    @property
    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.settings.api_key:
            headers["x-api-key"] = self.settings.api_key
        return headers

    # ── Transport ───────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        body: Any = None,
    ) -> httpx.Response:
        try:
            response = await self._http.request(
                method,
                path,
                params=params,
                content=_dumps_json(body) if body is not None else None,
                headers=self._headers,
            )
        except httpx.TransportError as e:
            raise RunTraceConnectionError(f"{method} {path} could not reach {self.api_url}: {e}") from e
        _raise_for_status(response, method, path)
        return response

    def _paginate(
        self,
        path: str,
        parse: Callable[[Any], T],
        *,
        params: Optional[Dict[str, Any]] = None,
        max_items: Optional[int] = None,
        prepare: Optional[Callable[[], Awaitable[Dict[str, Any]]]] = None,
    ) -> PageCursor[T]:
        """Cursor over an offset/limit list endpoint.

        ``prepare`` lets a query resolve extra params (e.g. a project id from a
        name) lazily, on the first page fetch, so building the cursor stays free
        of I/O.
        """
        base_params = dict(params or {})
        prepared = prepare is None

        async def fetch(offset: int, limit: int) -> List[T]:
            nonlocal prepared
            if not prepared:
                base_params.update(await prepare())
                prepared = True
            query = {**base_params, "offset": offset, "limit": limit}
            response = await self._request("GET", path, params=query)
            return [parse(item) for item in response.json()]

        return offset_cursor(
            fetch,
            page_size=self.settings.page_size,
            max_items=max_items,
            description=path,
        )

    # ── Runs ────────────────────────────────────────────────────────────────

    async def create_run(
        self,
        name: str,
        inputs: Dict[str, Any],
        run_type: str,
        *,
        id: Optional[ID_TYPE] = None,
        project_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        """Persist a run.

        The identifier is chosen client-side. Creating a run whose id already
        exists is an upsert from the caller's point of view: a 409 from the
        service is accepted as success.
        """
        run_create = {
            **{k: v for k, v in kwargs.items() if v is not None},
            "id": _as_uuid(id) if id is not None else uuid.uuid4(),
            "name": name,
            "inputs": inputs,
            "run_type": run_type,
            "session_name": project_name or kwargs.get("session_name") or self.settings.project_name,
        }
        run_create.setdefault("start_time", utc_now())
        try:
            await self._request("POST", "/runs", body=run_create)
        except RunTraceConflictError:
            logger.debug("run_create_conflict_ignored", run_id=str(run_create["id"]))

    async def update_run(self, run_id: ID_TYPE, **kwargs: Any) -> None:
        """Apply a partial update to a run. Unset (None) fields are not sent."""
        run_update = {k: v for k, v in kwargs.items() if v is not None}
        await self._request("PATCH", f"/runs/{_as_uuid(run_id, 'run_id')}", body=run_update)

    async def read_run(self, run_id: ID_TYPE, *, load_child_runs: bool = False) -> Run:
        response = await self._request("GET", f"/runs/{_as_uuid(run_id, 'run_id')}")
        run = Run.model_validate(response.json())
        if load_child_runs and run.child_run_ids:
            run = await self._load_child_runs(run)
        return run

    async def _load_child_runs(self, run: Run) -> Run:
        """Fill ``child_runs`` on every node of the stored tree, one level per request."""
        seen = {run.id}
        frontier = [run]
        while frontier:
            ids = [cid for node in frontier for cid in node.child_run_ids or [] if cid not in seen]
            children = await self.list_runs(run_ids=ids).to_list() if ids else []
            by_id = {child.id: child for child in children}
            seen.update(by_id)
            for node in frontier:
                kids = [by_id[cid] for cid in node.child_run_ids or [] if cid in by_id]
                node.child_runs = sorted(kids, key=lambda r: (r.execution_order or 0, r.start_time))
            frontier = children
        return run

    def list_runs(
        self,
        *,
        project_id: Optional[ID_TYPE] = None,
        project_name: Optional[str] = None,
        run_type: Optional[str] = None,
        parent_run_id: Optional[ID_TYPE] = None,
        reference_example_id: Optional[ID_TYPE] = None,
        execution_order: Optional[int] = None,
        error: Optional[bool] = None,
        start_time: Optional[datetime] = None,
        run_ids: Optional[Sequence[ID_TYPE]] = None,
        query: Optional[str] = None,
        filter: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> PageCursor[Run]:
        """List runs matching the given filters.

        All filtering happens server-side. ``filter`` is passed through verbatim
        for predicates the named arguments do not cover.

        Example:
            async for run in client.list_runs(project_name="my-project", execution_order=1, error=False):
                ...
        """
        if project_id is not None and project_name is not None:
            raise ValueError("Only one of project_id or project_name may be given")
        params = _params(
            session=project_id,
            run_type=run_type,
            parent_run=parent_run_id,
            reference_example=reference_example_id,
            execution_order=execution_order,
            error=error,
            start_time=start_time,
            id=list(run_ids) if run_ids is not None else None,
            query=query,
            filter=filter,
        )

        prepare = None
        if project_name is not None:

            async def prepare() -> Dict[str, Any]:
                project = await self.read_project(project_name=project_name)
                return {"session": str(project.id)}

        return self._paginate("/runs", Run.model_validate, params=params, max_items=limit, prepare=prepare)

    async def delete_run(self, run_id: ID_TYPE) -> None:
        await self._request("DELETE", f"/runs/{_as_uuid(run_id, 'run_id')}")

    # ── Projects ────────────────────────────────────────────────────────────

    async def create_project(
        self,
        project_name: str,
        *,
        description: Optional[str] = None,
        upsert: bool = False,
    ) -> TracerSession:
        body = {"id": uuid.uuid4(), "name": project_name, "description": description}
        params = {"upsert": True} if upsert else None
        response = await self._request("POST", "/sessions", params=params, body=body)
        return TracerSession.model_validate(response.json())

    async def read_project(
        self,
        *,
        project_id: Optional[ID_TYPE] = None,
        project_name: Optional[str] = None,
    ) -> TracerSession:
        if project_id is not None:
            response = await self._request("GET", f"/sessions/{_as_uuid(project_id, 'project_id')}")
            return TracerSession.model_validate(response.json())
        if project_name is not None:
            response = await self._request("GET", "/sessions", params={"name": project_name, "limit": 1})
            found = response.json()
            if not found:
                raise RunTraceNotFoundError(
                    f"Project {project_name!r} not found", status_code=404, method="GET", path="/sessions"
                )
            return TracerSession.model_validate(found[0])
        raise ValueError("Must provide project_name or project_id")

    def list_projects(self) -> PageCursor[TracerSession]:
        return self._paginate("/sessions", TracerSession.model_validate)

    async def delete_project(
        self,
        *,
        project_id: Optional[ID_TYPE] = None,
        project_name: Optional[str] = None,
    ) -> None:
        if project_id is None:
            if project_name is None:
                raise ValueError("Must provide project_name or project_id")
            project_id = (await self.read_project(project_name=project_name)).id
        await self._request("DELETE", f"/sessions/{_as_uuid(project_id, 'project_id')}")

    # ── Datasets ────────────────────────────────────────────────────────────

    async def create_dataset(
        self,
        dataset_name: str,
        *,
        description: Optional[str] = None,
        data_type: DataType = DataType.KV,
    ) -> Dataset:
        body = {
            "id": uuid.uuid4(),
            "name": dataset_name,
            "description": description,
            "data_type": DataType(data_type),
        }
        response = await self._request("POST", "/datasets", body=body)
        return Dataset.model_validate(response.json())

    async def read_dataset(
        self,
        *,
        dataset_id: Optional[ID_TYPE] = None,
        dataset_name: Optional[str] = None,
    ) -> Dataset:
        if dataset_id is not None:
            response = await self._request("GET", f"/datasets/{_as_uuid(dataset_id, 'dataset_id')}")
            return Dataset.model_validate(response.json())
        if dataset_name is not None:
            response = await self._request("GET", "/datasets", params={"name": dataset_name, "limit": 1})
            found = response.json()
            if not found:
                raise RunTraceNotFoundError(
                    f"Dataset {dataset_name!r} not found", status_code=404, method="GET", path="/datasets"
                )
            return Dataset.model_validate(found[0])
        raise ValueError("Must provide dataset_name or dataset_id")

    def list_datasets(
        self,
        *,
        dataset_ids: Optional[Sequence[ID_TYPE]] = None,
        dataset_name: Optional[str] = None,
        data_type: Optional[DataType] = None,
    ) -> PageCursor[Dataset]:
        params = _params(
            id=list(dataset_ids) if dataset_ids is not None else None,
            name=dataset_name,
            data_type=data_type,
        )
        return self._paginate("/datasets", Dataset.model_validate, params=params)

    async def delete_dataset(
        self,
        *,
        dataset_id: Optional[ID_TYPE] = None,
        dataset_name: Optional[str] = None,
    ) -> None:
        if dataset_id is None:
            if dataset_name is None:
                raise ValueError("Must provide dataset_name or dataset_id")
            dataset_id = (await self.read_dataset(dataset_name=dataset_name)).id
        await self._request("DELETE", f"/datasets/{_as_uuid(dataset_id, 'dataset_id')}")

    # ── Examples ────────────────────────────────────────────────────────────

    async def _resolve_dataset_id(self, dataset_id: Optional[ID_TYPE], dataset_name: Optional[str]) -> uuid.UUID:
        if dataset_id is not None:
            return _as_uuid(dataset_id, "dataset_id")
        if dataset_name is not None:
            return (await self.read_dataset(dataset_name=dataset_name)).id
        raise ValueError("Must provide dataset_name or dataset_id")

    async def create_example(
        self,
        inputs: Dict[str, Any],
        outputs: Optional[Dict[str, Any]] = None,
        *,
        dataset_id: Optional[ID_TYPE] = None,
        dataset_name: Optional[str] = None,
        example_id: Optional[ID_TYPE] = None,
        created_at: Optional[datetime] = None,
    ) -> Example:
        body = {
            "id": _as_uuid(example_id, "example_id") if example_id is not None else uuid.uuid4(),
            "dataset_id": await self._resolve_dataset_id(dataset_id, dataset_name),
            "inputs": inputs,
            "outputs": outputs,
            "created_at": created_at or utc_now(),
        }
        response = await self._request("POST", "/examples", body=body)
        return Example.model_validate(response.json())

    async def read_example(self, example_id: ID_TYPE) -> Example:
        response = await self._request("GET", f"/examples/{_as_uuid(example_id, 'example_id')}")
        return Example.model_validate(response.json())

    def list_examples(
        self,
        *,
        dataset_id: Optional[ID_TYPE] = None,
        dataset_name: Optional[str] = None,
        example_ids: Optional[Sequence[ID_TYPE]] = None,
    ) -> PageCursor[Example]:
        params = _params(
            dataset=dataset_id,
            id=list(example_ids) if example_ids is not None else None,
        )
        prepare = None
        if dataset_id is None and dataset_name is not None:

            async def prepare() -> Dict[str, Any]:
                return {"dataset": str(await self._resolve_dataset_id(None, dataset_name))}

        return self._paginate("/examples", Example.model_validate, params=params, prepare=prepare)

    async def update_example(
        self,
        example_id: ID_TYPE,
        *,
        inputs: Optional[Dict[str, Any]] = None,
        outputs: Optional[Dict[str, Any]] = None,
        dataset_id: Optional[ID_TYPE] = None,
    ) -> Dict[str, Any]:
        body = {k: v for k, v in {"inputs": inputs, "outputs": outputs, "dataset_id": dataset_id}.items() if v is not None}
        response = await self._request("PATCH", f"/examples/{_as_uuid(example_id, 'example_id')}", body=body)
        return response.json()

    async def delete_example(self, example_id: ID_TYPE) -> None:
        await self._request("DELETE", f"/examples/{_as_uuid(example_id, 'example_id')}")

    # ── Feedback ────────────────────────────────────────────────────────────

    async def create_feedback(
        self,
        run_id: ID_TYPE,
        key: str,
        *,
        score: Optional[float] = None,
        value: Optional[Any] = None,
        comment: Optional[str] = None,
        correction: Optional[Any] = None,
        source_info: Optional[Dict[str, Any]] = None,
        feedback_source_type: FeedbackSourceType = FeedbackSourceType.API,
        feedback_id: Optional[ID_TYPE] = None,
    ) -> Feedback:
        """Attach a score and/or value to a run. Every call creates a new record."""
        body = {
            "id": _as_uuid(feedback_id, "feedback_id") if feedback_id is not None else uuid.uuid4(),
            "run_id": _as_uuid(run_id, "run_id"),
            "key": key,
            "score": score,
            "value": value,
            "comment": comment,
            "correction": correction,
            "feedback_source": {"type": FeedbackSourceType(feedback_source_type), "metadata": source_info or {}},
        }
        response = await self._request("POST", "/feedback", body=body)
        feedback = Feedback.model_validate(response.json())
        logger.info("feedback_created", feedback_id=str(feedback.id), run_id=str(feedback.run_id), key=key)
        return feedback

    async def read_feedback(self, feedback_id: ID_TYPE) -> Feedback:
        response = await self._request("GET", f"/feedback/{_as_uuid(feedback_id, 'feedback_id')}")
        return Feedback.model_validate(response.json())

    def list_feedback(self, *, run_ids: Optional[Sequence[ID_TYPE]] = None) -> PageCursor[Feedback]:
        params = _params(run=list(run_ids) if run_ids is not None else None)
        return self._paginate("/feedback", Feedback.model_validate, params=params)

    async def delete_feedback(self, feedback_id: ID_TYPE) -> None:
        await self._request("DELETE", f"/feedback/{_as_uuid(feedback_id, 'feedback_id')}")

    # ── Evaluation ──────────────────────────────────────────────────────────

    async def evaluate_run(
        self,
        run: Any,
        evaluator: Any,
        *,
        source_info: Optional[Dict[str, Any]] = None,
        reference_example: Optional[Union[Example, ID_TYPE]] = None,
    ) -> Feedback:
        """Grade one run and store the result as feedback. See
        :func:`runtrace.evaluation.orchestrator.evaluate_run`."""
        # Lazy import: evaluation depends on the client, not the other way round
        from runtrace.evaluation.orchestrator import evaluate_run

        return await evaluate_run(
            self, run, evaluator, source_info=source_info, reference_example=reference_example
        )

    async def evaluate_runs(
        self,
        runs: Union[Iterable[Any], PageCursor[Run]],
        evaluator: Any,
        *,
        source_info: Optional[Dict[str, Any]] = None,
    ) -> list:
        from runtrace.evaluation.orchestrator import evaluate_runs

        return await evaluate_runs(self, runs, evaluator, source_info=source_info)


__all__ = ["Client", "ID_TYPE"]
