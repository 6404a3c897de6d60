"""Annotation process execution for a single job."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Mapping, Protocol, Sequence
import json
import logging
import os
import subprocess
import tempfile
import time

from genbank_batch.dispatch.config import BatchConfig
from genbank_batch.dispatch.params import JobParams
from genbank_batch.dispatch.state import JobResult, write_text

logger = logging.getLogger(__name__)

ALLOCATED_CPU_ENV_VAR = "P3_ALLOCATED_CPU"


class ProcessSpawner(Protocol):
    def __call__(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None,
        stdout_path: Path,
        stderr_path: Path,
    ) -> int: ...


class JobExecutionError(RuntimeError):
    """Raised when the annotation process cannot start or exits non-zero."""

    def __init__(
        self,
        job_id: str,
        message: str,
        *,
        exit_code: int | None = None,
        duration_s: float | None = None,
        stdout_path: Path | None = None,
        stderr_path: Path | None = None,
    ) -> None:
        self.job_id = job_id
        self.exit_code = exit_code
        self.duration_s = duration_s
        self.stdout_path = stdout_path
        self.stderr_path = stderr_path
        super().__init__(message)


def spawn_process(
    command: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str] | None,
    stdout_path: Path,
    stderr_path: Path,
) -> int:
    """Run ``command`` to completion with its streams redirected to files."""
    stdout_path.parent.mkdir(parents=True, exist_ok=True)
    stderr_path.parent.mkdir(parents=True, exist_ok=True)
    kwargs: dict[str, object] = {}
    if os.name == "posix":
        kwargs["start_new_session"] = True
    elif os.name == "nt":
        kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
    with open(stdout_path, "w", encoding="utf-8") as stdout_handle, open(
        stderr_path, "w", encoding="utf-8"
    ) as stderr_handle:
        process = subprocess.Popen(
            list(command),
            cwd=str(cwd),
            env=dict(env) if env is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=stdout_handle,
            stderr=stderr_handle,
            **kwargs,
        )
        return process.wait()


@contextmanager
def parameter_document(params: JobParams) -> Iterator[Path]:
    """Write ``params`` to a temporary JSON file that is removed on exit."""
    handle = tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", prefix=f"{params.output_file}-", suffix=".json", delete=False
    )
    path = Path(handle.name)
    try:
        with handle:
            json.dump(params.to_document(), handle, indent=2, sort_keys=True)
        yield path
    finally:
        path.unlink(missing_ok=True)


def log_paths(log_base: Path) -> tuple[Path, Path, Path]:
    """stdout, stderr and elapsed-time files for a job's log base."""
    return (
        Path(f"{log_base}.out"),
        Path(f"{log_base}.err"),
        Path(f"{log_base}.elapsed"),
    )


def run_job(
    params: JobParams,
    *,
    config: BatchConfig,
    input_path: Path,
    log_base: Path,
    spawner: ProcessSpawner = spawn_process,
    scratch_root: Path | None = None,
) -> JobResult:
    job_id = params.output_file
    stdout_path, stderr_path, elapsed_path = log_paths(log_base)
    env = {**os.environ, ALLOCATED_CPU_ENV_VAR: str(config.allocated_cpu)}
    with parameter_document(params) as document_path, tempfile.TemporaryDirectory(
        prefix=f"{job_id}-", dir=scratch_root, ignore_cleanup_errors=True
    ) as work_dir:
        command = [config.command_executable, "xx", str(config.app_spec), str(document_path)]
        logger.debug("Parameters for %s: %s", job_id, json.dumps(params.to_document(), sort_keys=True))
        logger.info("Running %s", " ".join(command))
        start = time.monotonic()
        try:
            exit_code = spawner(
                command,
                cwd=Path(work_dir),
                env=env,
                stdout_path=stdout_path,
                stderr_path=stderr_path,
            )
        except OSError as exc:
            raise JobExecutionError(
                job_id,
                f"Failed running {input_path}: cannot start {command[0]}: {exc}",
                duration_s=time.monotonic() - start,
                stdout_path=stdout_path,
                stderr_path=stderr_path,
            ) from exc
        elapsed = time.monotonic() - start
    if exit_code != 0:
        raise JobExecutionError(
            job_id,
            f"Failed running {input_path}: exit status {exit_code}",
            exit_code=exit_code,
            duration_s=elapsed,
            stdout_path=stdout_path,
            stderr_path=stderr_path,
        )
    write_text(elapsed_path, f"{elapsed}\n")
    return JobResult(
        job_id=job_id,
        input_path=str(input_path),
        status="succeeded",
        duration_s=elapsed,
        exit_code=exit_code,
        stdout_path=stdout_path,
        stderr_path=stderr_path,
    )


__all__ = [
    "ALLOCATED_CPU_ENV_VAR",
    "JobExecutionError",
    "ProcessSpawner",
    "log_paths",
    "parameter_document",
    "run_job",
    "spawn_process",
]
