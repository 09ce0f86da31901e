"""Orchestration entry points for sourcing projects.

The ``__getattr__`` shim resolves the workflow lazily so that importing a
model or service module never drags in every collaborator.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "AutopilotResult",
    "SourcingWorkflow",
    "build_workflow",
]


def __getattr__(name: str) -> Any:  # pragma: no cover - import shim
    if name in __all__:
        module = import_module("orchestration.sourcing_workflow")
        return getattr(module, name)

    raise AttributeError(f"module 'orchestration' has no attribute {name!r}")
