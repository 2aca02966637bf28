"""
Responder metrics as structured JSONL lines.

Usage:
    from autoreply import perf

    perf.incr("replies_sent", component="controller")
    perf.gauge("replied_count", len(store), component="store")
    perf.timing("request_ms", 3.2, component="server", endpoint="/status")

    with perf.timed("save_ms", component="store"):
        store.save()

    @perf.timed_fn("send_reply_ms", component="client")
    async def send_reply(sender_id, text):
        ...

Lines go to <logs>/perf-YYYY-MM-DD.jsonl. Nothing in here ever raises into the caller.
"""
from __future__ import annotations

import inspect
import json
import sys
import time
from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Any

from autoreply.common import LOGS_DIR

PERF_DIR = LOGS_DIR
SCHEMA_VERSION = 1
MAX_FILE_SIZE_MB = 50

_sample_counters: dict[str, int] = {}


def configure(log_dir: Path) -> None:
    """Point metrics at a different logs directory (the daemon calls this at startup)."""
    global PERF_DIR
    PERF_DIR = log_dir


def _log_metric(metric: str, value: float, **labels: Any) -> None:
    try:
        PERF_DIR.mkdir(parents=True, exist_ok=True)
        path = PERF_DIR / f"perf-{datetime.now():%Y-%m-%d}.jsonl"

        if path.exists() and path.stat().st_size > MAX_FILE_SIZE_MB * 1024 * 1024:
            print(f"[perf] WARNING: {path} exceeds {MAX_FILE_SIZE_MB}MB, skipping", file=sys.stderr)
            return

        entry = {
            "v": SCHEMA_VERSION,
            "ts": datetime.now().isoformat(),
            "metric": metric,
            "value": value,
            **labels,
        }
        with open(path, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")
    except Exception as e:
        print(f"[perf] WARNING: failed to log metric: {e}", file=sys.stderr)


def timing(metric: str, ms: float, *, sample_rate: int = 1, **labels: Any) -> None:
    """Record a duration in milliseconds. With sample_rate=N only every Nth call is written."""
    if sample_rate > 1:
        _sample_counters[metric] = _sample_counters.get(metric, 0) + 1
        if _sample_counters[metric] % sample_rate != 0:
            return
    _log_metric(metric, ms, **labels)


def incr(metric: str, count: int = 1, **labels: Any) -> None:
    _log_metric(metric, count, **labels)


def gauge(metric: str, value: float, **labels: Any) -> None:
    _log_metric(metric, value, **labels)


def error(error_type: str, **labels: Any) -> None:
    incr("error_count", error_type=error_type, **labels)


@contextmanager
def timed(metric: str, **labels: Any):
    start = time.perf_counter()
    try:
        yield
    finally:
        timing(metric, (time.perf_counter() - start) * 1000, **labels)


def timed_fn(metric: str, **labels: Any):
    """Decorator timing a sync or async function. Failed calls are timed too."""

    def decorator(fn):
        if inspect.iscoroutinefunction(fn):

            @wraps(fn)
            async def async_wrapper(*args, **kwargs):
                start = time.perf_counter()
                try:
                    return await fn(*args, **kwargs)
                finally:
                    timing(metric, (time.perf_counter() - start) * 1000, **labels)

            return async_wrapper

        @wraps(fn)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return fn(*args, **kwargs)
            finally:
                timing(metric, (time.perf_counter() - start) * 1000, **labels)

        return sync_wrapper

    return decorator
