"""CLI entrypoint for batch GenBank annotation."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from genbank_batch.dispatch.appspec import find_app_spec
from genbank_batch.dispatch.config import (
    DEFAULT_APP,
    BatchConfig,
    BatchPlan,
    ConfigError,
    load_plan,
    load_workflow,
    read_input_list,
)
from genbank_batch.dispatch.dashboard import BatchConsole
from genbank_batch.dispatch.params import build_job_params, preflight_inputs
from genbank_batch.dispatch.run import BatchDispatcher
from genbank_batch.dispatch.runner import ProcessSpawner, spawn_process
from genbank_batch.dispatch.state import SUMMARY_FILENAME, load_summary
from genbank_batch.utils.shared import ensure_root_logging, load_env_file
from genbank_batch.workspace.client import ArtifactClient, WorkspaceClient, WorkspaceSettings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_BATCH_ERRORS = 1
EXIT_CONFIG_ERROR = 2

ClientFactory = Callable[[WorkspaceSettings], ArtifactClient]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="genbank-batch",
        description="Upload GenBank files to a workspace folder and run genome annotation on each of them.",
    )
    parser.add_argument("output_path", nargs="?", help="Workspace folder that receives inputs and annotated genomes.")
    parser.add_argument("inputs", nargs="*", help="GenBank files to annotate.")
    parser.add_argument("-j", "--parallel", type=int, default=None, help="Run this many jobs at once (default 1).")
    parser.add_argument(
        "--rerun",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Rerunning a batch: skip jobs whose annotated genome already exists.",
    )
    parser.add_argument("--gb-files", type=Path, help="File listing GenBank files to run, one per line.")
    parser.add_argument(
        "--workflow-file",
        help="Custom workflow definition (local path, or ws:PATH to read it from the workspace).",
    )
    parser.add_argument("--log-dir", type=Path, default=None, help="Directory for per-job logs (default: .).")
    parser.add_argument(
        "--public", action=argparse.BooleanOptionalAction, default=None, help="Mark genomes public."
    )
    parser.add_argument(
        "--overwrite",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Overwrite existing workspace files.",
    )
    parser.add_argument("--indexing-url", help="Indexing URL passed to each job.")
    parser.add_argument(
        "--no-index",
        dest="no_index",
        action="store_const",
        const=True,
        default=None,
        help="Do not index the genomes; they will not be visible on the website.",
    )
    parser.add_argument(
        "--index",
        dest="no_index",
        action="store_const",
        const=False,
        help="Index the genomes even if the plan file sets no_index.",
    )
    parser.add_argument("--config", type=Path, default=None, help="Plan file (YAML/JSON) providing defaults.")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Dotenv file with workspace URL, token, and KB_TOP (does not override set variables).",
    )
    parser.add_argument("--app", default=None, help=f"Annotation app name (default: {DEFAULT_APP}).")
    parser.add_argument("--app-spec", type=Path, default=None, help="App spec JSON; skips lookup under KB_TOP.")
    parser.add_argument("--dry-run", action="store_true", help="Print resolved jobs and exit without running.")
    parser.add_argument("--status", action="store_true", help="Print the last batch summary from the log dir and exit.")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    return parser


def main(
    argv: list[str] | None = None,
    *,
    client_factory: ClientFactory | None = None,
    spawner: ProcessSpawner = spawn_process,
    console: BatchConsole | None = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    ensure_root_logging(args.log_level)
    try:
        return _run(parser, args, client_factory=client_factory, spawner=spawner, console=console)
    except (ConfigError, ValidationError) as exc:
        logger.error("%s", exc)
        return EXIT_CONFIG_ERROR


def _run(
    parser: argparse.ArgumentParser,
    args: argparse.Namespace,
    *,
    client_factory: ClientFactory | None,
    spawner: ProcessSpawner,
    console: BatchConsole | None,
) -> int:
    plan = load_plan(args.config) if args.config else BatchPlan()
    env_file = args.env_file or plan.env_file
    if env_file is not None:
        try:
            load_env_file(env_file)
        except FileNotFoundError as exc:
            raise ConfigError(str(exc)) from exc
    log_dir = args.log_dir or plan.log_dir or Path(".")
    if args.status:
        return _print_status(log_dir / SUMMARY_FILENAME)
    if not args.output_path:
        parser.error("the output-path argument is required")

    app = args.app or plan.app or DEFAULT_APP
    app_spec = args.app_spec or plan.app_spec or find_app_spec(app)
    settings = WorkspaceSettings.from_env()
    client = client_factory(settings) if client_factory else WorkspaceClient(settings)
    try:
        workflow_text = workflow = None
        workflow_file = args.workflow_file or plan.workflow_file
        if workflow_file:
            workflow_text, workflow = load_workflow(workflow_file, client=client, user=settings.user)
        config_values = {
            "output_path": args.output_path,
            "parallel": _override(args.parallel, plan.parallel or 1),
            "rerun": _override(args.rerun, plan.rerun),
            "overwrite": _override(args.overwrite, plan.overwrite),
            "workflow_text": workflow_text,
            "workflow": workflow,
            "indexing_url": args.indexing_url or plan.indexing_url,
            "public": _override(args.public, plan.public),
            "no_index": _override(args.no_index, plan.no_index),
            "log_dir": log_dir,
            "app": app,
            "app_spec": app_spec,
            "executable": plan.executable,
        }
        if plan.allocated_cpu is not None:
            config_values["allocated_cpu"] = plan.allocated_cpu
        config = BatchConfig(**config_values)

        inputs: list[str] = list(args.inputs)
        gb_files = args.gb_files or plan.gb_files
        if gb_files:
            inputs.extend(read_input_list(gb_files))

        if args.dry_run:
            jobs, rejected = preflight_inputs(inputs)
            for job in jobs:
                params = build_job_params(config, job)
                print(f"{params.output_file}\t{job.path}\t{params.genbank_file}")
            for entry in rejected:
                print(f"-\t{entry.path}\trejected: {entry.reason}")
            return EXIT_OK

        batch_console = console or BatchConsole()
        dispatcher = BatchDispatcher(config, client, spawner=spawner, console=batch_console)
        tally = dispatcher.run_batch(inputs)
        batch_console.show_summary(
            dispatcher.results,
            dispatcher.rejected,
            caption=f"errors={tally.value} summary={dispatcher.summary_path}",
        )
        return EXIT_OK if tally.value == 0 else EXIT_BATCH_ERRORS
    finally:
        if isinstance(client, WorkspaceClient):
            client.close()


def _override(cli_value, plan_value):
    """CLI value when given on the command line, else the plan value."""
    return plan_value if cli_value is None else cli_value


def _print_status(summary_path: Path) -> int:
    try:
        summary = load_summary(summary_path)
    except (FileNotFoundError, ValueError) as exc:
        raise ConfigError(str(exc)) from exc
    for entry in summary.get("jobs", []):
        print(f"{entry.get('job_id')}\t{entry.get('status')}\t{entry.get('input_path')}")
    for entry in summary.get("rejected", []):
        print(f"-\trejected\t{entry.get('path')}")
    return EXIT_OK if not summary.get("errors") else EXIT_BATCH_ERRORS


__all__ = ["build_parser", "main"]


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
