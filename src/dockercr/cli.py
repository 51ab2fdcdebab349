# src/dockercr/cli.py
"""docker-cr Command Line Interface.

Entry point for the docker-cr CLI tool.
"""

from __future__ import annotations

from pathlib import Path

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from dockercr import __version__
from dockercr.contracts import (
    CheckpointExhaustedError,
    DockerCRError,
    EngineError,
    RestoreFailedError,
    RestoreUnverifiedError,
    Strategy,
)
from dockercr.core.config import DockerCRSettings, load_settings

__all__ = [
    "app",
]

app = typer.Typer(
    name="docker-cr",
    help="docker-cr: Checkpoint and restore running containers and processes.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"docker-cr version {__version__}")
        raise typer.Exit()


def _apply_env_file(env_file: Path | None, *, skip: bool) -> None:
    """Export DOCKERCR_* overrides from a .env file before settings load.

    Variables already set in the environment win over the file. An explicit
    --env-file that does not exist is an error; a missing implicit .env is not.
    """
    from dotenv import load_dotenv

    if skip:
        if env_file is not None:
            typer.secho(f"Warning: ignoring --env-file {env_file} (--no-dotenv given)", fg=typer.colors.YELLOW, err=True)
        return
    if env_file is None:
        load_dotenv(override=False)
        return
    if not env_file.is_file():
        typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    load_dotenv(env_file, override=False)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Print the docker-cr version and exit.",
    ),
    no_dotenv: bool = typer.Option(False, "--no-dotenv", help="Do not read a .env file."),
    env_file: Path | None = typer.Option(None, "--env-file", help="Read DOCKERCR_* overrides from this file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every state-machine phase (DEBUG)."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Write logs to stderr as JSON lines."),
) -> None:
    """docker-cr: Checkpoint and restore running containers and processes."""
    from dockercr.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO")
    _apply_env_file(env_file, skip=no_dotenv)


def _load_settings(settings: Path | None) -> DockerCRSettings:
    """Load settings or exit 1 with a readable message."""
    settings_path = settings.expanduser() if settings is not None else None
    try:
        return load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        typer.echo(f"YAML syntax error in {settings}: {e.problem}", err=True)
        raise typer.Exit(1) from None
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None


def _echo_engine_log(diagnostic: str | None, title: str = "engine log") -> None:
    from dockercr.cli_helpers import tail_lines

    if not diagnostic:
        return
    typer.echo(f"--- {title} ---", err=True)
    for line in tail_lines(diagnostic):
        typer.echo(line, err=True)


def _report_error(error: DockerCRError) -> None:
    """Print an orchestration failure with the engine's own diagnostics."""
    typer.echo(f"Error: {error}", err=True)
    if isinstance(error, CheckpointExhaustedError):
        for outcome in error.outcomes:
            typer.echo(f"  {outcome.strategy.value}: {outcome.error}", err=True)
        for outcome in error.outcomes:
            _echo_engine_log(outcome.diagnostic, title=f"engine log ({outcome.strategy.value})")
    elif isinstance(error, (EngineError, RestoreFailedError, RestoreUnverifiedError)):
        _echo_engine_log(error.diagnostic)


_SETTINGS_OPTION = typer.Option(
    None,
    "--settings",
    "-s",
    help="Path to settings YAML file (environment and defaults only if omitted).",
)


@app.command("checkpoint")
def checkpoint(
    target: str = typer.Argument(..., help="Container name or id, or the pid of a bare process."),
    destination: Path = typer.Argument(..., help="Checkpoint root; each checkpoint gets its own subdirectory."),
    relocate: bool = typer.Option(
        False,
        "--relocate",
        help="Stop the source after the checkpoint instead of leaving it running.",
    ),
    strategy: list[Strategy] | None = typer.Option(
        None,
        "--strategy",
        help="Strategy to try, in order (repeatable). Overrides the configured fallback chain.",
    ),
    settings: Path | None = _SETTINGS_OPTION,
) -> None:
    """Checkpoint a running container or process."""
    from dockercr.cli_helpers import build_checkpoint_orchestrator

    config = _load_settings(settings)
    orchestrator = build_checkpoint_orchestrator(config)
    try:
        result = orchestrator.checkpoint(target, destination, relocate=relocate, strategies=strategy or None)
    except DockerCRError as e:
        _report_error(e)
        raise typer.Exit(1) from None

    for outcome in result.outcomes:
        if not outcome.succeeded:
            typer.echo(f"Warning: strategy {outcome.strategy.value} failed: {outcome.error}", err=True)
    record = result.record
    typer.echo(f"Checkpoint {record.checkpoint_id} written to {record.checkpoint_dir}")
    typer.echo(f"  Strategy: {record.strategy.value}")
    typer.echo(f"  Process:  {record.pid}")


@app.command("cp", help="Alias for 'checkpoint'.")
def checkpoint_alias(
    target: str = typer.Argument(..., help="Container name or id, or the pid of a bare process."),
    destination: Path = typer.Argument(..., help="Checkpoint root; each checkpoint gets its own subdirectory."),
    relocate: bool = typer.Option(False, "--relocate", help="Stop the source after the checkpoint."),
    strategy: list[Strategy] | None = typer.Option(None, "--strategy", help="Strategy to try, in order (repeatable)."),
    settings: Path | None = _SETTINGS_OPTION,
) -> None:
    checkpoint(target, destination, relocate=relocate, strategy=strategy, settings=settings)


@app.command("restore")
def restore(
    checkpoint_path: Path = typer.Argument(..., help="Checkpoint directory, or a checkpoint root (latest wins)."),
    target: str | None = typer.Argument(None, help="Container to restore into (default: the recorded one)."),
    settings: Path | None = _SETTINGS_OPTION,
) -> None:
    """Restore a checkpoint with the strategy it was taken with."""
    from dockercr.cli_helpers import build_restore_orchestrator

    config = _load_settings(settings)
    orchestrator = build_restore_orchestrator(config)
    try:
        result = orchestrator.restore(checkpoint_path, target)
    except DockerCRError as e:
        _report_error(e)
        raise typer.Exit(1) from None

    typer.echo(f"Restored {result.target} from {result.record.checkpoint_id}")
    typer.echo(f"  Strategy: {result.record.strategy.value}")
    typer.echo(f"  Process:  {result.restored_pid}")


@app.command("rs", help="Alias for 'restore'.")
def restore_alias(
    checkpoint_path: Path = typer.Argument(..., help="Checkpoint directory, or a checkpoint root (latest wins)."),
    target: str | None = typer.Argument(None, help="Container to restore into (default: the recorded one)."),
    settings: Path | None = _SETTINGS_OPTION,
) -> None:
    restore(checkpoint_path, target, settings=settings)


@app.command("list")
def list_checkpoints(
    root: Path = typer.Argument(..., help="Checkpoint root to list."),
) -> None:
    """List checkpoints under a checkpoint root, oldest first."""
    from dockercr.core.checkpoint import CheckpointMetadataStore

    try:
        records = CheckpointMetadataStore().list_records(root)
    except DockerCRError as e:
        _report_error(e)
        raise typer.Exit(1) from None

    if not records:
        typer.echo(f"No checkpoints under {root}")
        return
    for record in records:
        subject = record.container_name if record.container_name else f"pid {record.pid}"
        typer.echo(f"{record.checkpoint_id}  {record.created_at.isoformat()}  {record.strategy.value:26}  {subject}")


@app.command("help")
def help_command(ctx: typer.Context) -> None:
    """Show this help and exit."""
    parent = ctx.parent if ctx.parent is not None else ctx
    typer.echo(parent.get_help())


if __name__ == "__main__":
    app()
