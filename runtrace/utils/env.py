from __future__ import annotations

import functools
import platform
import sys
from importlib import metadata as importlib_metadata
from typing import Any, Dict


@functools.lru_cache(maxsize=1)
def get_runtime_environment() -> Dict[str, Any]:
    """Describe the process that recorded a run. Attached to every posted run."""
    pkg_versions: Dict[str, str] = {}
    for pkg in ("runtrace", "httpx", "pydantic"):
        try:
            pkg_versions[pkg] = importlib_metadata.version(pkg)
        except importlib_metadata.PackageNotFoundError:
            continue
    return {
        "sdk": "runtrace-py",
        "sdk_version": pkg_versions.get("runtrace", "unknown"),
        "runtime": "python",
        "runtime_version": sys.version.split()[0],
        "platform": platform.platform(terse=True),
        "package_versions": pkg_versions or None,
    }


__all__ = ["get_runtime_environment"]
