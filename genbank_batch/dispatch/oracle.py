"""Rerun support: detect jobs whose annotated genome already exists."""

from __future__ import annotations

import logging

from genbank_batch.dispatch.params import JobParams
from genbank_batch.workspace.client import ArtifactClient

logger = logging.getLogger(__name__)


def output_artifact_path(params: JobParams) -> str:
    return f"{params.output_path}/.{params.output_file}/{params.output_file}.genome"


def is_complete(client: ArtifactClient, params: JobParams) -> bool:
    """True iff the output genome exists with non-zero size.

    Lookup failures count as "not complete".
    A partially written but non-empty genome is indistinguishable from a finished one.
    """
    path = output_artifact_path(params)
    stat = client.stat(path)
    if stat.failed:
        logger.warning("Could not stat %s (%s); treating job %s as incomplete.", path, stat.error, params.output_file)
        return False
    return stat.found and stat.size > 0


__all__ = ["is_complete", "output_artifact_path"]
