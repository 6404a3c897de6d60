"""Job states, per-job results, and the batch summary file."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Literal, Mapping
import json
import os
import threading
import uuid

from pydantic import BaseModel

SUMMARY_FILENAME = "summary.json"


class JobState:
    pending = "pending"
    skipped = "skipped"
    uploading = "uploading"
    uploaded = "uploaded"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"


TERMINAL_STATES = frozenset({JobState.skipped, JobState.succeeded, JobState.failed})


class JobResult(BaseModel):
    """Outcome recorded for each dispatched job."""

    job_id: str
    input_path: str
    status: Literal["succeeded", "failed", "skipped"]
    duration_s: float | None = None
    exit_code: int | None = None
    stdout_path: Path | None = None
    stderr_path: Path | None = None
    error: str | None = None


class BatchTally:
    """Error counter shared by all workers."""

    def __init__(self, initial: int = 0) -> None:
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, amount: int = 1) -> int:
        with self._lock:
            self._value += amount
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def __int__(self) -> int:
        return self.value

    def __repr__(self) -> str:
        return f"BatchTally({self.value})"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _write_json_atomic(path: Path, payload: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(f"{path.suffix}.tmp-{uuid.uuid4().hex}")
    with open(tmp_path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
    os.replace(tmp_path, path)


def write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(text)


def write_summary(
    path: Path,
    *,
    output_path: str,
    results: Iterable[JobResult],
    rejected: Iterable[Mapping[str, str]],
    tally: int,
) -> None:
    payload = {
        "updated_at": _now(),
        "output_path": output_path,
        "errors": tally,
        "rejected": [dict(entry) for entry in rejected],
        "jobs": [result.model_dump(mode="json") for result in results],
    }
    _write_json_atomic(path, payload)


def load_summary(path: Path) -> Mapping[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Summary not found: {path}")
    with open(path, "r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, Mapping):
        raise ValueError(f"Summary file is not a mapping: {path}")
    return payload


__all__ = [
    "BatchTally",
    "JobResult",
    "JobState",
    "SUMMARY_FILENAME",
    "TERMINAL_STATES",
    "load_summary",
    "write_summary",
    "write_text",
]
