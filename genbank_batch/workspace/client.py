"""JSON-RPC client for the workspace object store."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Mapping, Protocol
import itertools
import logging
import os
import random
import time

import httpx
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_WORKSPACE_URL = "https://p3.theseed.org/services/Workspace"
TOKEN_ENV_VAR = "KB_AUTH_TOKEN"
URL_ENV_VAR = "P3_WORKSPACE_URL"
TOKEN_FILE = Path("~/.patric_token")

FOLDER_TYPES = frozenset({"folder", "modelfolder"})

# Positions within the workspace object metadata tuple.
_META_NAME = 0
_META_TYPE = 1
_META_SIZE = 6
_META_NODE_URL = 11


class WorkspaceError(RuntimeError):
    """Raised when a workspace call fails."""


@dataclass(frozen=True)
class StatResult:
    """Outcome of a stat call: found, not found, or a failed lookup."""

    status: Literal["found", "not_found", "error"]
    size: int = 0
    is_dir: bool = False
    error: str | None = None

    @property
    def found(self) -> bool:
        return self.status == "found"

    @property
    def not_found(self) -> bool:
        return self.status == "not_found"

    @property
    def failed(self) -> bool:
        return self.status == "error"

    @classmethod
    def of(cls, size: int, *, is_dir: bool = False) -> "StatResult":
        return cls(status="found", size=size, is_dir=is_dir)

    @classmethod
    def missing(cls) -> "StatResult":
        return cls(status="not_found")

    @classmethod
    def failure(cls, message: str) -> "StatResult":
        return cls(status="error", error=message)


class ArtifactClient(Protocol):
    """Operations the dispatcher needs from the remote store."""

    def stat(self, path: str) -> StatResult: ...

    def save_file(
        self,
        local_path: Path | str,
        metadata: Mapping[str, Any],
        remote_path: str,
        content_type: str,
        *,
        overwrite: bool,
        use_upload_node: bool = True,
    ) -> None: ...

    def download_to_string(self, path: str) -> str: ...


class WorkspaceSettings(BaseModel):
    """Connection options for the workspace service."""

    url: str = DEFAULT_WORKSPACE_URL
    token: str | None = None
    attempts: int = Field(3, ge=1)
    backoff_s: float = Field(1.0, ge=0.0)
    timeout_s: float = Field(300.0, gt=0.0)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "WorkspaceSettings":
        env = os.environ if environ is None else environ
        token = env.get(TOKEN_ENV_VAR)
        if not token:
            token_path = TOKEN_FILE.expanduser()
            if token_path.is_file():
                token = token_path.read_text(encoding="utf-8").strip() or None
        return cls(url=env.get(URL_ENV_VAR) or DEFAULT_WORKSPACE_URL, token=token)

    @property
    def user(self) -> str | None:
        """User id embedded in the token's ``un=`` field."""
        if not self.token:
            return None
        for part in self.token.split("|"):
            key, _, value = part.partition("=")
            if key == "un" and value:
                return value
        return None


def expand_workspace_path(path: str, user: str | None) -> str:
    """Resolve a relative workspace path against the user's home folder."""
    if path.startswith("/"):
        return path
    if not user:
        raise WorkspaceError(f"Cannot expand relative workspace path {path!r} without a user token.")
    return f"/{user}/home/{path}"


def _is_not_found(message: str) -> bool:
    lowered = message.lower()
    return "not found" in lowered or "does not exist" in lowered


class WorkspaceClient:
    """Thread-safe JSON-RPC 1.1 client for the workspace service."""

    def __init__(self, settings: WorkspaceSettings, *, http_client: httpx.Client | None = None) -> None:
        self._settings = settings
        self._http = http_client or httpx.Client(timeout=settings.timeout_s)
        self._ids = itertools.count(1)

    @property
    def settings(self) -> WorkspaceSettings:
        return self._settings

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "WorkspaceClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def stat(self, path: str) -> StatResult:
        try:
            result = self._call("get", {"objects": [path], "metadata_only": 1})
        except WorkspaceError as exc:
            if _is_not_found(str(exc)):
                return StatResult.missing()
            logger.debug("Workspace stat failed for %s: %s", path, exc)
            return StatResult.failure(str(exc))
        try:
            meta = _first_meta(result)
            if meta is None or not meta[_META_NAME]:
                return StatResult.missing()
            return StatResult.of(int(meta[_META_SIZE] or 0), is_dir=meta[_META_TYPE] in FOLDER_TYPES)
        except (IndexError, KeyError, TypeError, ValueError) as exc:
            logger.debug("Malformed workspace metadata for %s: %r", path, exc)
            return StatResult.failure(f"Malformed metadata for {path}: {exc!r}")

    def save_file(
        self,
        local_path: Path | str,
        metadata: Mapping[str, Any],
        remote_path: str,
        content_type: str,
        *,
        overwrite: bool,
        use_upload_node: bool = True,
    ) -> None:
        local = Path(local_path)
        if not use_upload_node:
            content = local.read_text(encoding="utf-8")
            self._call(
                "create",
                {"objects": [[remote_path, content_type, dict(metadata), content]], "overwrite": int(overwrite)},
            )
            return
        result = self._call(
            "create",
            {
                "objects": [[remote_path, content_type, dict(metadata), ""]],
                "overwrite": int(overwrite),
                "createUploadNodes": 1,
            },
        )
        meta = _first_meta(result, nested=False)
        node_url = meta[_META_NODE_URL] if meta is not None and len(meta) > _META_NODE_URL else ""
        if not node_url:
            raise WorkspaceError(f"Workspace did not return an upload node for {remote_path}.")
        self._upload_to_node(node_url, local)

    def download_to_string(self, path: str) -> str:
        result = self._call("get", {"objects": [path]})
        entries = result[0] if result else []
        if not entries:
            raise WorkspaceError(f"Workspace object not found: {path}")
        meta, data = entries[0][0], entries[0][1]
        node_url = meta[_META_NODE_URL] if len(meta) > _META_NODE_URL else ""
        if not node_url:
            return data or ""
        try:
            response = self._http.get(f"{node_url}?download", headers=self._node_headers())
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise WorkspaceError(f"Failed to download {path} from {node_url}: {exc}") from exc
        return response.text

    def _upload_to_node(self, node_url: str, local_path: Path) -> None:
        try:
            with open(local_path, "rb") as handle:
                response = self._http.put(
                    node_url,
                    headers=self._node_headers(),
                    files={"upload": (local_path.name, handle)},
                )
            response.raise_for_status()
        except (OSError, httpx.HTTPError) as exc:
            raise WorkspaceError(f"Failed to upload {local_path} to {node_url}: {exc}") from exc

    def _node_headers(self) -> dict[str, str]:
        if not self._settings.token:
            return {}
        return {"Authorization": f"OAuth {self._settings.token}"}

    def _call(self, method: str, params: Mapping[str, Any]) -> list[Any]:
        payload = {
            "version": "1.1",
            "method": f"Workspace.{method}",
            "params": [dict(params)],
            "id": str(next(self._ids)),
        }
        headers = {"Authorization": self._settings.token} if self._settings.token else {}
        attempts = self._settings.attempts
        for attempt in range(1, attempts + 1):
            try:
                response = self._http.post(self._settings.url, json=payload, headers=headers)
            except httpx.TransportError as exc:
                if attempt < attempts:
                    self._sleep_before_retry(method, attempt, exc)
                    continue
                raise WorkspaceError(f"Workspace.{method} failed after {attempts} attempt(s): {exc}") from exc
            except httpx.HTTPError as exc:
                raise WorkspaceError(f"Workspace.{method} failed: {exc}") from exc
            body = _decode_body(response)
            if body is None:
                if response.status_code >= 500 and attempt < attempts:
                    self._sleep_before_retry(method, attempt, f"HTTP {response.status_code}")
                    continue
                raise WorkspaceError(f"Workspace.{method} returned HTTP {response.status_code}")
            error = body.get("error")
            if error:
                message = error.get("message") if isinstance(error, Mapping) else str(error)
                raise WorkspaceError(f"Workspace.{method} error: {message}")
            result = body.get("result")
            if not isinstance(result, list):
                raise WorkspaceError(f"Workspace.{method} returned a malformed response.")
            return result
        raise WorkspaceError(f"Workspace.{method} exhausted {attempts} attempt(s)")

    def _sleep_before_retry(self, method: str, attempt: int, reason: object) -> None:
        delay = self._settings.backoff_s * attempt + random.uniform(0, self._settings.backoff_s)
        logger.warning(
            "Retryable error on Workspace.%s (attempt %d/%d): %s (sleep %.2fs)",
            method,
            attempt,
            self._settings.attempts,
            reason,
            delay,
        )
        time.sleep(delay)


def _decode_body(response: httpx.Response) -> dict[str, Any] | None:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _first_meta(result: list[Any], *, nested: bool = True) -> list[Any] | None:
    """Pull the first metadata tuple out of a get/create result."""
    if not result or not result[0]:
        return None
    first = result[0][0]
    if nested:
        # get returns [meta, data] pairs; create returns bare metadata tuples.
        first = first[0] if first else None
    return first or None


__all__ = [
    "ArtifactClient",
    "FOLDER_TYPES",
    "StatResult",
    "WorkspaceClient",
    "WorkspaceError",
    "WorkspaceSettings",
    "expand_workspace_path",
]
