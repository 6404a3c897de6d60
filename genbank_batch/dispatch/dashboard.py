"""Rich console output for batch progress and the final job table."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from rich.console import Console
from rich.table import Table
from rich.text import Text

from genbank_batch.dispatch.params import RejectedInput
from genbank_batch.dispatch.state import JobResult


STATUS_STYLES: dict[str, str] = {
    "pending": "dim",
    "uploading": "cyan",
    "uploaded": "blue",
    "running": "yellow",
    "succeeded": "green",
    "skipped": "magenta",
    "failed": "bold red",
    "rejected": "red",
}

LOG_PREFIX_STYLES: dict[str, str] = {
    "RUN": "bold cyan",
    "JOB": "bold",
}

LOG_EVENT_STYLES: dict[str, str] = {
    "started": "cyan",
    "finished": "cyan",
    "upload": "blue",
    "running": "yellow",
    "succeeded": "bold green",
    "skipped": "magenta",
    "failed": "bold red",
    "rejected": "red",
}


def _format_duration(seconds: float | None) -> str:
    if seconds is None:
        return "-"
    total_seconds = int(seconds)
    minutes, secs = divmod(total_seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes:02d}m"
    if minutes:
        return f"{minutes}m{secs:02d}s"
    return f"{seconds:.1f}s"


def build_table(
    results: Iterable[JobResult],
    rejected: Iterable[RejectedInput] = (),
    *,
    caption: str | None = None,
) -> Table:
    table = Table(title=Text("GenBank batch", style="bold cyan"), caption=caption, expand=True)
    table.add_column("Job", no_wrap=True, style="bold")
    table.add_column("Status", no_wrap=True)
    table.add_column("Elapsed", no_wrap=True, style="dim")
    table.add_column("Exit", no_wrap=True, style="dim")
    table.add_column("Input")
    table.add_column("Note")
    for result in sorted(results, key=lambda item: item.job_id):
        exit_text = str(result.exit_code) if result.exit_code is not None else "-"
        note = result.error or ""
        table.add_row(
            Text(result.job_id),
            Text(result.status, style=STATUS_STYLES.get(result.status, "")),
            _format_duration(result.duration_s),
            exit_text,
            Text(result.input_path, style="dim"),
            Text(note, style="red" if note else "dim"),
        )
    for entry in rejected:
        table.add_row(
            Text("-", style="dim"),
            Text("rejected", style=STATUS_STYLES["rejected"]),
            "-",
            "-",
            Text(entry.path, style="dim"),
            Text(entry.reason, style="red"),
        )
    return table


def format_log_message(message: str) -> Text:
    text = Text(message)
    parts = message.split(" ", maxsplit=2)
    if not parts:
        return text
    prefix = parts[0]
    prefix_style = LOG_PREFIX_STYLES.get(prefix)
    if prefix_style:
        text.stylize(prefix_style, 0, len(prefix))
    if len(parts) >= 2:
        event = parts[1]
        event_style = LOG_EVENT_STYLES.get(event)
        if event_style:
            start = len(prefix) + 1
            text.stylize(event_style, start, start + len(event))
    return text


@dataclass
class BatchConsole:
    """Human-readable progress stream; safe to call from worker threads."""

    console: Console = field(default_factory=lambda: Console(stderr=True, log_path=False, highlight=False))

    def log(self, message: str) -> None:
        self.console.log(format_log_message(message))

    def show_summary(
        self,
        results: Iterable[JobResult],
        rejected: Iterable[RejectedInput] = (),
        *,
        caption: str | None = None,
    ) -> None:
        self.console.print(build_table(results, rejected, caption=caption))


__all__ = ["BatchConsole", "build_table", "format_log_message"]
