"""Per-job parameter documents and pre-flight input validation."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Iterable
import logging
import re

from genbank_batch.dispatch.config import BatchConfig

logger = logging.getLogger(__name__)

_EXTENSION = re.compile(r"\.[^.]+$")


@dataclass(frozen=True)
class JobInput:
    """One local GenBank file scheduled for annotation."""

    path: Path

    @property
    def job_id(self) -> str:
        return output_identifier(self.path)


@dataclass(frozen=True)
class RejectedInput:
    path: str
    reason: str


@dataclass(frozen=True)
class JobParams:
    """Parameter document handed unchanged to the annotation process."""

    output_path: str
    genbank_file: str
    output_file: str
    queue_nowait: bool = True
    workflow: str | None = None
    indexing_url: str | None = None
    skip_indexing: bool | None = None
    public: bool | None = None

    def to_document(self) -> dict[str, Any]:
        # Unset options are left out entirely rather than serialized as null/false.
        return {key: value for key, value in asdict(self).items() if value is not None}


def output_identifier(path: Path | str) -> str:
    """Input basename with its final extension stripped."""
    return _EXTENSION.sub("", Path(path).name)


def build_job_params(config: BatchConfig, job_input: JobInput) -> JobParams:
    basename = job_input.path.name
    return JobParams(
        output_path=config.output_path,
        genbank_file=f"{config.output_path}/{basename}",
        output_file=output_identifier(basename),
        workflow=config.workflow_text if config.workflow is not None else None,
        indexing_url=config.indexing_url or None,
        skip_indexing=True if config.no_index else None,
        public=True if config.public else None,
    )


def preflight_inputs(paths: Iterable[Path | str]) -> tuple[list[JobInput], list[RejectedInput]]:
    """Split candidate paths into schedulable inputs and rejected ones.

    Missing or zero-length files are rejected, as is any file whose output
    identifier repeats an earlier input (its logs and outputs would collide).
    """
    accepted: list[JobInput] = []
    rejected: list[RejectedInput] = []
    seen: dict[str, Path] = {}
    for raw in paths:
        path = Path(raw).expanduser()
        if not path.is_file() or path.stat().st_size == 0:
            rejected.append(RejectedInput(path=str(raw), reason="missing or zero length"))
            continue
        resolved = path.resolve()
        job_id = output_identifier(resolved)
        if not job_id:
            rejected.append(RejectedInput(path=str(raw), reason="cannot derive an output name"))
            continue
        if job_id in seen:
            rejected.append(
                RejectedInput(path=str(raw), reason=f"output name {job_id!r} already used by {seen[job_id]}")
            )
            continue
        seen[job_id] = resolved
        accepted.append(JobInput(path=resolved))
    for entry in rejected:
        logger.warning("GenBank file %s rejected: %s", entry.path, entry.reason)
    return accepted, rejected


__all__ = [
    "JobInput",
    "JobParams",
    "RejectedInput",
    "build_job_params",
    "output_identifier",
    "preflight_inputs",
]
