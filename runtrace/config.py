from __future__ import annotations

import dataclasses
import os
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_API_URL = "http://localhost:1984"
DEFAULT_PROJECT = "default"


def _env_number(name: str, default: float, cast: type) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError as e:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from e


@dataclasses.dataclass
class ClientSettings:
    """Connection settings for the tracing service."""

    api_url: str = DEFAULT_API_URL
    api_key: str | None = None
    project_name: str = DEFAULT_PROJECT
    timeout_s: float = 30.0
    page_size: int = 100

    def __post_init__(self) -> None:
        self.api_url = self.api_url.rstrip("/")
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")

    @classmethod
    def from_env(cls, dotenv_path: str | Path | None = None) -> "ClientSettings":
        """Build settings from RUNTRACE_* environment variables.

        A ``.env`` file is loaded first when present; variables already set in
        the process environment win.
        """
        load_dotenv(dotenv_path)
        return cls(
            api_url=os.getenv("RUNTRACE_API_URL") or DEFAULT_API_URL,
            api_key=os.getenv("RUNTRACE_API_KEY") or None,
            project_name=os.getenv("RUNTRACE_PROJECT") or DEFAULT_PROJECT,
            timeout_s=_env_number("RUNTRACE_TIMEOUT_S", 30.0, float),
            page_size=int(_env_number("RUNTRACE_PAGE_SIZE", 100, int)),
        )


def default_project_name() -> str:
    """Project used by run trees created without an explicit project."""
    return os.getenv("RUNTRACE_PROJECT") or DEFAULT_PROJECT


__all__ = ["ClientSettings", "default_project_name", "DEFAULT_API_URL", "DEFAULT_PROJECT"]
