"""Wire models for runs, examples, datasets, projects and feedback."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "RunTypeEnum",
    "DataType",
    "FeedbackSourceType",
    "RunBase",
    "Run",
    "Example",
    "Dataset",
    "TracerSession",
    "FeedbackSource",
    "Feedback",
    "utc_now",
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RunTypeEnum(str, Enum):
    """Common run types. The service accepts any string."""

    CHAIN = "chain"
    LLM = "llm"
    TOOL = "tool"
    RETRIEVER = "retriever"
    EMBEDDING = "embedding"
    PROMPT = "prompt"
    PARSER = "parser"


class DataType(str, Enum):
    """Shape of the examples stored in a dataset."""

    KV = "kv"
    LLM = "llm"
    CHAT = "chat"


class FeedbackSourceType(str, Enum):
    API = "api"
    MODEL = "model"


class _Model(BaseModel):
    # Server responses carry more fields than the client cares about
    model_config = ConfigDict(extra="ignore", use_enum_values=True)


class RunBase(_Model):
    """Fields shared by runs the client sends and runs it reads back."""

    id: UUID
    name: str
    run_type: str
    start_time: datetime = Field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    inputs: Dict[str, Any] = Field(default_factory=dict)
    outputs: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None
    serialized: Optional[Dict[str, Any]] = None
    events: Optional[List[Dict[str, Any]]] = None
    reference_example_id: Optional[UUID] = None
    parent_run_id: Optional[UUID] = None
    execution_order: Optional[int] = None


class Run(RunBase):
    """A run as stored by the service."""

    session_id: Optional[UUID] = None
    session_name: Optional[str] = None
    child_run_ids: Optional[List[UUID]] = None
    child_runs: Optional[List["Run"]] = None
    status: Optional[str] = None
    feedback_stats: Optional[Dict[str, Any]] = None


class Example(_Model):
    """A dataset record supplying inputs and, optionally, reference outputs."""

    id: UUID
    dataset_id: UUID
    inputs: Dict[str, Any] = Field(default_factory=dict)
    outputs: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None


class Dataset(_Model):
    id: UUID
    name: str
    description: Optional[str] = None
    data_type: Optional[DataType] = None
    created_at: Optional[datetime] = None


class TracerSession(_Model):
    """A project: the named container runs are recorded into."""

    id: UUID
    name: str
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    run_count: Optional[int] = None


class FeedbackSource(_Model):
    type: FeedbackSourceType = FeedbackSourceType.API
    metadata: Optional[Dict[str, Any]] = None


class Feedback(_Model):
    """A score and/or categorical value attached to one run."""

    id: UUID
    run_id: UUID
    key: str
    score: Optional[float] = None
    value: Optional[Any] = None
    comment: Optional[str] = None
    correction: Optional[Any] = None
    feedback_source: Optional[FeedbackSource] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
