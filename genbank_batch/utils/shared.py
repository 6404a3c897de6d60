"""Logging and environment helpers shared by the command-line entry points."""

from __future__ import annotations

from pathlib import Path
import logging
import os

from dotenv import dotenv_values
from rich.console import Console
from rich.logging import RichHandler

_LOGGING_INITIALIZED = False
_QUIET_LOGGERS = ("httpx", "httpcore")


def ensure_root_logging(level: str) -> None:
    """Configure root logging once while allowing level updates."""
    global _LOGGING_INITIALIZED
    root_logger = logging.getLogger()
    if not _LOGGING_INITIALIZED:
        handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        root_logger.addHandler(handler)
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
        _LOGGING_INITIALIZED = True
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)


def load_env_file(path: Path | str) -> list[str]:
    """Seed ``os.environ`` from a dotenv file without overriding set variables.

    Returns the names of the variables that were applied.
    """
    env_path = Path(path).expanduser()
    if not env_path.is_file():
        raise FileNotFoundError(f"env file not found: {env_path}")
    applied: list[str] = []
    for key, value in dotenv_values(env_path).items():
        if value is None or key in os.environ:
            continue
        os.environ[key] = value
        applied.append(key)
    return applied


__all__ = ["ensure_root_logging", "load_env_file"]
