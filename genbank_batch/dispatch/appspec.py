"""Locate the annotation app's parameter-schema file under a KB_TOP deployment."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping
import os

from genbank_batch.dispatch.config import ConfigError

KB_TOP_ENV_VAR = "KB_TOP"


class AppSpecNotFoundError(ConfigError):
    """Raised when no usable app spec file can be found."""


def _non_empty(path: Path) -> bool:
    return path.is_file() and path.stat().st_size > 0


def find_app_spec(app: str, *, environ: Mapping[str, str] | None = None) -> Path:
    """Return ``<app>.json`` from the deployed app_service specs, else from a dev module checkout."""
    env = os.environ if environ is None else environ
    top = env.get(KB_TOP_ENV_VAR)
    if not top:
        raise AppSpecNotFoundError(f"{KB_TOP_ENV_VAR} is not set; cannot locate the spec for {app}")
    top_dir = Path(top)
    deployed_dir = top_dir / "services" / "app_service" / "app_specs"
    if deployed_dir.is_dir():
        spec = deployed_dir / f"{app}.json"
    else:
        dev_dirs = sorted(top_dir.glob("modules/*/app_specs"))
        candidates = [path / f"{app}.json" for path in dev_dirs]
        spec = next((candidate for candidate in candidates if _non_empty(candidate)), None)
        if spec is None:
            searched = " ".join(str(path) for path in [deployed_dir, *dev_dirs])
            raise AppSpecNotFoundError(f"Cannot find specs file for {app} in {searched}")
    if not _non_empty(spec):
        raise AppSpecNotFoundError(f"Spec file {spec} does not exist")
    return spec


__all__ = ["AppSpecNotFoundError", "KB_TOP_ENV_VAR", "find_app_spec"]
