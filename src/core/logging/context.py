"""Log context propagated through contextvars (safe across asyncio tasks)."""

from contextvars import ContextVar
from typing import Dict, Optional

_run_id: ContextVar[Optional[str]] = ContextVar("run_id", default=None)
_stage: ContextVar[Optional[str]] = ContextVar("stage", default=None)
_group: ContextVar[Optional[str]] = ContextVar("group", default=None)


def set_log_context(
    run_id: Optional[str] = None,
    stage: Optional[str] = None,
    group: Optional[str] = None,
) -> None:
    """
    Set logging context variables. Only non-None values are applied.

    Tasks spawned after this call inherit a copy of the context, so a
    group name set by the run loop is visible inside batch workers.
    """
    if run_id is not None:
        _run_id.set(run_id)
    if stage is not None:
        _stage.set(stage)
    if group is not None:
        _group.set(group)


def get_log_context() -> Dict[str, Optional[str]]:
    """Get current logging context."""
    return {
        "run_id": _run_id.get(),
        "stage": _stage.get(),
        "group": _group.get(),
    }


def clear_log_context() -> None:
    """Reset all context variables."""
    _run_id.set(None)
    _stage.set(None)
    _group.set(None)
