"""Upload-if-absent for job input files."""

from __future__ import annotations

from pathlib import Path
import logging
import time

from genbank_batch.dispatch.params import JobParams
from genbank_batch.workspace.client import ArtifactClient, WorkspaceError

logger = logging.getLogger(__name__)

CONTENT_TYPE = "contigs"
BATCH_METADATA_KEY = "genbank_batch"


class UploadError(RuntimeError):
    """Raised when a job's input cannot be placed in the workspace."""

    def __init__(self, local_path: Path | str, remote_path: str, cause: object) -> None:
        self.local_path = str(local_path)
        self.remote_path = remote_path
        self.cause = cause
        super().__init__(f"Failed to upload {self.local_path} to {remote_path}: {cause}")


def ensure_uploaded(
    client: ArtifactClient,
    local_path: Path | str,
    params: JobParams,
    *,
    overwrite: bool,
) -> bool:
    """Make sure ``params.genbank_file`` exists remotely; return True if an upload happened.

    A non-empty remote copy is reused as-is, which also covers an earlier run that
    uploaded the file and then failed. A failed stat is an error, not an absence.
    """
    remote_path = params.genbank_file
    stat = client.stat(remote_path)
    if stat.failed:
        raise UploadError(local_path, remote_path, stat.error)
    if stat.found and stat.size > 0:
        logger.info("Already have %s", remote_path)
        return False
    try:
        client.save_file(
            local_path,
            {BATCH_METADATA_KEY: int(time.time())},
            remote_path,
            CONTENT_TYPE,
            overwrite=overwrite,
            use_upload_node=True,
        )
    except (WorkspaceError, OSError) as exc:
        raise UploadError(local_path, remote_path, exc) from exc
    logger.info("Uploaded %s to %s", local_path, remote_path)
    return True


__all__ = ["BATCH_METADATA_KEY", "CONTENT_TYPE", "UploadError", "ensure_uploaded"]
