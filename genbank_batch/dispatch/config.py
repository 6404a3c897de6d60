"""Batch configuration, plan-file loading, and workflow document handling."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping
import json

from omegaconf import OmegaConf
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from genbank_batch.workspace.client import ArtifactClient, WorkspaceError, expand_workspace_path

DEFAULT_APP = "GenomeAnnotationGenbank"
DEFAULT_ALLOCATED_CPU = 2
WORKSPACE_PREFIX = "ws:"


class ConfigError(ValueError):
    """Raised when the batch-wide configuration is unusable."""


class BatchPlan(BaseModel):
    """Schema for the optional plan file; every field mirrors a CLI flag."""

    parallel: int | None = Field(None, ge=1)
    rerun: bool = False
    gb_files: Path | None = None
    workflow_file: str | None = None
    log_dir: Path | None = None
    public: bool = False
    overwrite: bool = False
    indexing_url: str | None = None
    no_index: bool = False
    app: str | None = None
    app_spec: Path | None = None
    executable: str | None = None
    allocated_cpu: int | None = Field(None, ge=1)
    env_file: Path | None = None


class BatchConfig(BaseModel):
    """Immutable batch-wide settings shared by every worker."""

    model_config = ConfigDict(frozen=True)

    output_path: str
    parallel: int = Field(1, ge=1)
    rerun: bool = False
    overwrite: bool = False
    workflow_text: str | None = None
    workflow: dict[str, Any] | None = None
    indexing_url: str | None = None
    public: bool = False
    no_index: bool = False
    log_dir: Path = Path(".")
    app: str = DEFAULT_APP
    app_spec: Path
    executable: str | None = None
    allocated_cpu: int = Field(DEFAULT_ALLOCATED_CPU, ge=1)

    @field_validator("output_path")
    @classmethod
    def _strip_output_path(cls, value: str) -> str:
        stripped = value.rstrip("/") if value != "/" else value
        if not stripped:
            raise ValueError("output_path must not be empty")
        return stripped

    @field_validator("log_dir", mode="before")
    @classmethod
    def _absolute_log_dir(cls, value: Path | str) -> Path:
        return Path(value).expanduser().resolve()

    @model_validator(mode="after")
    def _check_workflow(self) -> "BatchConfig":
        if self.workflow_text is not None and self.workflow is None:
            raise ValueError("workflow must be parsed when workflow_text is supplied")
        if self.workflow is not None:
            validate_workflow(self.workflow)
        return self

    @property
    def command_executable(self) -> str:
        return self.executable or f"App-{self.app}"


def load_plan(path: Path) -> BatchPlan:
    """Load a YAML/JSON plan file, resolving relative paths against its directory."""
    resolved = path.expanduser().resolve()
    payload = _load_mapping(resolved)
    try:
        plan = BatchPlan(**payload)
    except ValidationError as exc:
        raise ConfigError(f"Invalid plan file: {resolved}: {exc}") from exc
    base_dir = resolved.parent
    updates: dict[str, Path] = {}
    for field_name in ("gb_files", "log_dir", "app_spec", "env_file"):
        value = getattr(plan, field_name)
        if value is None:
            continue
        candidate = Path(value).expanduser()
        if not candidate.is_absolute():
            candidate = base_dir / candidate
        updates[field_name] = candidate.resolve()
    if plan.workflow_file and not plan.workflow_file.startswith(WORKSPACE_PREFIX):
        workflow_path = Path(plan.workflow_file).expanduser()
        if not workflow_path.is_absolute():
            plan = plan.model_copy(update={"workflow_file": str((base_dir / workflow_path).resolve())})
    return plan.model_copy(update=updates)


def validate_workflow(workflow: Any) -> None:
    if not isinstance(workflow, Mapping) or not isinstance(workflow.get("stages"), list):
        raise ConfigError("Invalid workflow document (must be an object containing a list of stage definitions)")


def parse_workflow(text: str, *, source: str) -> dict[str, Any]:
    try:
        workflow = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Error parsing workflow file {source}: {exc}") from exc
    validate_workflow(workflow)
    return workflow


def load_workflow(
    source: str,
    *,
    client: ArtifactClient | None = None,
    user: str | None = None,
) -> tuple[str, dict[str, Any]]:
    """Read a workflow document from disk or, with a ``ws:`` prefix, from the workspace.

    Returns the raw text (passed through to jobs unchanged) and its parsed form.
    """
    if source.startswith(WORKSPACE_PREFIX):
        if client is None:
            raise ConfigError(f"A workspace client is required to load {source}")
        try:
            remote_path = expand_workspace_path(source[len(WORKSPACE_PREFIX) :], user)
            text = client.download_to_string(remote_path)
        except WorkspaceError as exc:
            raise ConfigError(f"Cannot load workflow file {source}: {exc}") from exc
    else:
        try:
            text = Path(source).expanduser().read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Cannot open workflow file {source}: {exc}") from exc
    return text, parse_workflow(text, source=source)


def read_input_list(path: Path) -> list[str]:
    """Read one input path per line, keeping the first whitespace-delimited token."""
    try:
        lines = Path(path).expanduser().read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        raise ConfigError(f"Cannot open input list {path}: {exc}") from exc
    entries: list[str] = []
    for line in lines:
        tokens = line.split()
        if tokens:
            entries.append(tokens[0])
    return entries


def _load_mapping(path: Path) -> Mapping[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config not found: {path}")
    if path.suffix not in {".yaml", ".yml", ".json"}:
        raise ConfigError(f"Unsupported config format: {path} (expected .yaml/.yml/.json)")
    try:
        data = OmegaConf.to_container(OmegaConf.load(path), resolve=True)
    except Exception as exc:  # pragma: no cover - OmegaConf error types vary
        raise ConfigError(f"Failed to load config: {path}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config must be a mapping at top level: {path}")
    return data


__all__ = [
    "BatchConfig",
    "BatchPlan",
    "ConfigError",
    "DEFAULT_APP",
    "load_plan",
    "load_workflow",
    "parse_workflow",
    "read_input_list",
    "validate_workflow",
]
