"""Batch runtime wiring preflight, rerun checks, uploads, and job execution."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable
import logging
import threading

from genbank_batch.dispatch.config import BatchConfig, ConfigError
from genbank_batch.dispatch.dashboard import BatchConsole
from genbank_batch.dispatch.oracle import is_complete, output_artifact_path
from genbank_batch.dispatch.params import (
    JobInput,
    JobParams,
    RejectedInput,
    build_job_params,
    preflight_inputs,
)
from genbank_batch.dispatch.runner import JobExecutionError, ProcessSpawner, run_job, spawn_process
from genbank_batch.dispatch.scheduler import BatchScheduler
from genbank_batch.dispatch.state import (
    SUMMARY_FILENAME,
    TERMINAL_STATES,
    BatchTally,
    JobResult,
    JobState,
    write_summary,
)
from genbank_batch.dispatch.upload import UploadError, ensure_uploaded
from genbank_batch.workspace.client import ArtifactClient

logger = logging.getLogger(__name__)


class BatchDispatcher:
    def __init__(
        self,
        config: BatchConfig,
        client: ArtifactClient,
        *,
        spawner: ProcessSpawner = spawn_process,
        console: BatchConsole | None = None,
        scratch_root: Path | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._spawner = spawner
        self._console = console or BatchConsole()
        self._scratch_root = scratch_root
        self._tally = BatchTally()
        self._lock = threading.Lock()
        self._states: dict[str, str] = {}
        self._results: list[JobResult] = []
        self._rejected: list[RejectedInput] = []

    @property
    def tally(self) -> BatchTally:
        return self._tally

    @property
    def results(self) -> list[JobResult]:
        with self._lock:
            return list(self._results)

    @property
    def rejected(self) -> list[RejectedInput]:
        return list(self._rejected)

    @property
    def summary_path(self) -> Path:
        return self._config.log_dir / SUMMARY_FILENAME

    def state_of(self, job_id: str) -> str | None:
        with self._lock:
            return self._states.get(job_id)

    def check_output_path(self) -> None:
        """Fail the batch unless the output path is an existing workspace folder."""
        output_path = self._config.output_path
        stat = self._client.stat(output_path)
        if stat.failed:
            raise ConfigError(f"Cannot check output path {output_path}: {stat.error}")
        if not stat.found or not stat.is_dir:
            raise ConfigError(f"Output path {output_path} does not exist")

    def prepare(self, paths: Iterable[Path | str]) -> list[tuple[JobInput, JobParams]]:
        """Run preflight checks, counting rejected inputs, and build each job's parameters."""
        accepted, rejected = preflight_inputs(paths)
        self._rejected.extend(rejected)
        for entry in rejected:
            self._tally.increment()
            self._console.log(f"JOB rejected file={entry.path} reason={entry.reason!r}")
        jobs = [(job_input, build_job_params(self._config, job_input)) for job_input in accepted]
        with self._lock:
            for _, params in jobs:
                self._states[params.output_file] = JobState.pending
        return jobs

    def run_batch(self, paths: Iterable[Path | str]) -> BatchTally:
        self.check_output_path()
        try:
            self._config.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigError(f"Cannot create log directory {self._config.log_dir}: {exc}") from exc
        jobs = self.prepare(paths)
        self._console.log(
            f"RUN started jobs={len(jobs)} parallel={self._config.parallel} "
            f"rerun={self._config.rerun} output={self._config.output_path}"
        )
        scheduler: BatchScheduler[tuple[JobInput, JobParams], JobResult] = BatchScheduler(
            max_parallel=self._config.parallel
        )
        scheduler.run(jobs, self._dispatch, on_error=self._record_crash)
        write_summary(
            self.summary_path,
            output_path=self._config.output_path,
            results=self.results,
            rejected=[{"path": entry.path, "reason": entry.reason} for entry in self._rejected],
            tally=self._tally.value,
        )
        self._console.log(
            f"RUN finished jobs={len(jobs)} rejected={len(self._rejected)} errors={self._tally.value}"
        )
        return self._tally

    def _dispatch(self, job: tuple[JobInput, JobParams]) -> JobResult:
        job_input, params = job
        job_id = params.output_file
        try:
            if self._config.rerun and is_complete(self._client, params):
                self._console.log(f"JOB skipped job={job_id} output={output_artifact_path(params)} exists")
                result = JobResult(job_id=job_id, input_path=str(job_input.path), status="skipped")
                self._finish(job_id, JobState.skipped, result)
                return result
            self._set_state(job_id, JobState.uploading)
            self._console.log(f"JOB upload job={job_id} file={job_input.path} remote={params.genbank_file}")
            ensure_uploaded(self._client, job_input.path, params, overwrite=self._config.overwrite)
            self._set_state(job_id, JobState.uploaded)
            self._set_state(job_id, JobState.running)
            self._console.log(f"JOB running job={job_id} file={job_input.path}")
            result = run_job(
                params,
                config=self._config,
                input_path=job_input.path,
                log_base=self._config.log_dir / job_id,
                spawner=self._spawner,
                scratch_root=self._scratch_root,
            )
        except UploadError as exc:
            result = self._failure(job_input, job_id, str(exc))
        except JobExecutionError as exc:
            result = self._failure(
                job_input,
                job_id,
                str(exc),
                exit_code=exc.exit_code,
                duration_s=exc.duration_s,
                stdout_path=exc.stdout_path,
                stderr_path=exc.stderr_path,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error while processing %s", job_input.path)
            result = self._failure(job_input, job_id, f"Unexpected error for {job_input.path}: {exc!r}")
        else:
            self._console.log(
                f"JOB succeeded job={job_id} file={job_input.path} elapsed={result.duration_s:.1f}s"
            )
            self._finish(job_id, JobState.succeeded, result)
        return result

    def _failure(self, job_input: JobInput, job_id: str, message: str, **details: object) -> JobResult:
        self._tally.increment()
        self._console.log(f"JOB failed job={job_id} file={job_input.path} error={message!r}")
        result = JobResult(job_id=job_id, input_path=str(job_input.path), status="failed", error=message, **details)
        self._finish(job_id, JobState.failed, result)
        return result

    def _record_crash(self, job: tuple[JobInput, JobParams], exc: BaseException) -> None:
        # Only reached if _dispatch itself raised outside its job-scoped handlers.
        job_input, params = job
        self._failure(job_input, params.output_file, f"Unexpected error for {job_input.path}: {exc!r}")

    def _set_state(self, job_id: str, state: str) -> None:
        with self._lock:
            current = self._states.get(job_id)
            if current in TERMINAL_STATES:
                raise RuntimeError(f"Job {job_id} is already {current}; cannot move to {state}")
            self._states[job_id] = state

    def _finish(self, job_id: str, state: str, result: JobResult) -> None:
        with self._lock:
            self._states[job_id] = state
            self._results.append(result)


__all__ = ["BatchDispatcher"]
