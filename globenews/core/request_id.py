# globenews/core/request_id.py
from __future__ import annotations

import uuid
from contextlib import contextmanager
from typing import Iterator, Optional
import contextvars

_run_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("run_id", default=None)
_source_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("source", default=None)

# -------- Run ID (one aggregation pass) --------------------------------------

def get_run_id() -> Optional[str]:
    return _run_id_ctx.get()

@contextmanager
def with_run_id(run_id: Optional[str] = None) -> Iterator[str]:
    """
    Tag every log line emitted inside the block with one run id:
        with with_run_id():
            await service.aggregate()
    """
    previous = _run_id_ctx.get()
    rid = run_id or uuid.uuid4().hex
    _run_id_ctx.set(rid)
    try:
        yield rid
    finally:
        _run_id_ctx.set(previous)

# -------- Source (per adapter task) ------------------------------------------

def get_source() -> Optional[str]:
    return _source_ctx.get()

@contextmanager
def with_source(name: str) -> Iterator[str]:
    # asyncio.gather copies the context per task, so this stays task-local
    token = _source_ctx.set(name)
    try:
        yield name
    finally:
        _source_ctx.reset(token)
