"""Correlation ids and structured events for classification runs.

Every request, background job and batch item runs inside :func:`run_scope`.
Events emitted through :func:`log_event` carry the active run id and, for a
batch item, the run id of the batch that spawned it, so one job's log lines
can be grouped without losing the per-item trail.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

logger = logging.getLogger(__name__)

_run_id: ContextVar[Optional[str]] = ContextVar("tariffgate_run_id", default=None)
_parent_run_id: ContextVar[Optional[str]] = ContextVar("tariffgate_parent_run_id", default=None)


def new_run_id() -> str:
    return f"run_{uuid.uuid4().hex}"


def current_run_id() -> Optional[str]:
    return _run_id.get()


def parent_run_id() -> Optional[str]:
    return _parent_run_id.get()


@contextmanager
def run_scope(run_id: Optional[str] = None, *, fresh: bool = False) -> Iterator[str]:
    """Bind a run id for the duration of the block and yield it.

    With no ``run_id`` the enclosing id is reused, or a new one minted when
    nothing is bound.  ``fresh=True`` always mints a new id and records the
    enclosing one as the parent.
    """

    outer = _run_id.get()
    if run_id is None:
        run_id = new_run_id() if fresh or outer is None else outer
    run_token = _run_id.set(run_id)
    parent_token = _parent_run_id.set(outer) if outer is not None and outer != run_id else None
    try:
        yield run_id
    finally:
        if parent_token is not None:
            _parent_run_id.reset(parent_token)
        _run_id.reset(run_token)


def log_event(event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Log ``event`` with the run ids attached; ``None`` fields are dropped."""

    payload: Dict[str, Any] = {"event": event, "run_id": _run_id.get()}
    parent = _parent_run_id.get()
    if parent is not None:
        payload["parent_run_id"] = parent
    payload.update((name, value) for name, value in fields.items() if value is not None)
    logger.log(level, event, extra={"payload": payload})
