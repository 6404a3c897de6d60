"""Parallel dispatch of genome-annotation jobs over a batch of GenBank files."""

from genbank_batch.dispatch.config import BatchConfig, ConfigError
from genbank_batch.dispatch.run import BatchDispatcher
from genbank_batch.dispatch.state import BatchTally, JobResult

__all__ = ["BatchConfig", "BatchDispatcher", "BatchTally", "ConfigError", "JobResult"]
