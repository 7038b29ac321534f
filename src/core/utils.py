"""
Small shared utilities.
"""
from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from typing import Generator


@contextmanager
def timer() -> Generator[dict, None, None]:
    """Context manager that records elapsed wall-clock milliseconds."""
    result: dict = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((time.perf_counter() - start) * 1000)


def new_id() -> str:
    """Opaque identifier for client sessions and chat messages."""
    return uuid.uuid4().hex


def join_url(base: str, *parts: str) -> str:
    """Join *parts* onto *base* with exactly one ``/`` between segments."""
    segments = [base.rstrip("/")]
    segments.extend(str(p).strip("/") for p in parts)
    return "/".join(segments)
