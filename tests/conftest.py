import json
import threading
import time
from pathlib import Path

import pytest

from genbank_batch.dispatch.config import BatchConfig
from genbank_batch.workspace.client import StatResult, WorkspaceError


class FakeWorkspace:
    """In-memory stand-in for the workspace service."""

    def __init__(self) -> None:
        self.objects: dict[str, StatResult] = {}
        self.documents: dict[str, str] = {}
        self.failing: dict[str, str] = {}
        self.saves: list[dict] = []
        self.stat_calls: list[str] = []
        self.save_error: Exception | None = None
        self._lock = threading.Lock()

    def add_folder(self, path: str) -> None:
        self.objects[path] = StatResult.of(0, is_dir=True)

    def add_file(self, path: str, size: int) -> None:
        self.objects[path] = StatResult.of(size)

    def stat(self, path: str) -> StatResult:
        with self._lock:
            self.stat_calls.append(path)
            if path in self.failing:
                return StatResult.failure(self.failing[path])
            return self.objects.get(path, StatResult.missing())

    def save_file(self, local_path, metadata, remote_path, content_type, *, overwrite, use_upload_node=True):
        with self._lock:
            if self.save_error is not None:
                raise self.save_error
            self.saves.append(
                {
                    "local_path": str(local_path),
                    "metadata": dict(metadata),
                    "remote_path": remote_path,
                    "content_type": content_type,
                    "overwrite": overwrite,
                    "use_upload_node": use_upload_node,
                }
            )
            self.objects[remote_path] = StatResult.of(Path(local_path).stat().st_size)

    def download_to_string(self, path: str) -> str:
        if path not in self.documents:
            raise WorkspaceError(f"Object not found: {path}")
        return self.documents[path]

    def saved_paths(self) -> list[str]:
        return [entry["remote_path"] for entry in self.saves]


class RecordingSpawner:
    """Fake annotation process: records calls and tracks how many run at once."""

    def __init__(self, exit_codes: dict[str, int] | None = None, delay: float = 0.0) -> None:
        self.exit_codes = exit_codes or {}
        self.delay = delay
        self.calls: list[dict] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, command, *, cwd, env, stdout_path, stderr_path) -> int:
        document = json.loads(Path(command[3]).read_text(encoding="utf-8"))
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.calls.append(
                {
                    "command": list(command),
                    "cwd": Path(cwd),
                    "cwd_existed": Path(cwd).is_dir(),
                    "env": dict(env or {}),
                    "document": document,
                    "document_path": Path(command[3]),
                }
            )
        try:
            if self.delay:
                time.sleep(self.delay)
            stdout_path.parent.mkdir(parents=True, exist_ok=True)
            stdout_path.write_text(f"annotating {document['output_file']}\n", encoding="utf-8")
            stderr_path.write_text("", encoding="utf-8")
            return self.exit_codes.get(document["output_file"], 0)
        finally:
            with self._lock:
                self.active -= 1

    def job_ids(self) -> list[str]:
        return [call["document"]["output_file"] for call in self.calls]


@pytest.fixture
def workspace() -> FakeWorkspace:
    fake = FakeWorkspace()
    fake.add_folder("/user@patricbrc.org/home/batch")
    return fake


@pytest.fixture
def app_spec(tmp_path: Path) -> Path:
    spec = tmp_path / "GenomeAnnotationGenbank.json"
    spec.write_text('{"id": "GenomeAnnotationGenbank"}', encoding="utf-8")
    return spec


@pytest.fixture
def make_config(tmp_path: Path, app_spec: Path):
    def _make(**overrides) -> BatchConfig:
        values = {
            "output_path": "/user@patricbrc.org/home/batch",
            "log_dir": tmp_path / "logs",
            "app_spec": app_spec,
        }
        values.update(overrides)
        return BatchConfig(**values)

    return _make


@pytest.fixture
def genbank_file(tmp_path: Path):
    def _write(name: str, content: str = "LOCUS       contig1  100 bp    DNA\n//\n") -> Path:
        path = tmp_path / "inputs" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write
