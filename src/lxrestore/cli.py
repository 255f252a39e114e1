"""Typer-powered command line interface for ``lxrestore``.

The CLI is a thin shell around :mod:`lxrestore.restore`: it resolves the
configuration, opens a structured logging scope for each command and maps
restore errors onto exit codes.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from botocore.exceptions import BotoCoreError
from rich.console import Console
from rich.table import Table

from . import get_version
from .config import AppConfig, ConfigError, load_config
from .errors import ExternalToolError, InvalidArguments, RestoreError
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .restore import RestoreContext, RestoreCoordinator

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to lxrestore's YAML config file.",
)

RESTORE_EPILOG = textwrap.dedent(
    """
    Example: restore an instance 'u2' from a backup 'backup_2022-02-16-04-1040.tar.gz'

        lxrestore restore u2 backup_2022-02-16-04-1040.tar.gz
    """
).strip()

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Restore LXC instances from backups stored in an S3-compatible bucket.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the resolved configuration.")

app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc
    runtime = RuntimeContext(config=config, logger=StructuredLogger(config.logs_dir))
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    root = ctx.find_root()
    if isinstance(root.obj, RuntimeContext):
        return root.obj
    return _ensure_runtime(ctx, None)


def _build_restore_context(runtime: RuntimeContext) -> RestoreContext:
    return RestoreContext.from_config(runtime.config, console)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the lxrestore version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"lxrestore {get_version()}")
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
    warnings: Sequence[str] = (),
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc), warnings=warnings)
    raise typer.Exit(code=int(rc))


def _usage_error(ctx: typer.Context, op: OperationScope, message: str) -> NoReturn:
    console.print(ctx.get_help())
    _command_error(op, message, rc=ExitCode.USAGE)


def _error_notes(exc: BaseException) -> list[str]:
    return [str(note) for note in getattr(exc, "__notes__", [])]


@app.command(
    "restore",
    context_settings={"allow_extra_args": True},
    epilog=RESTORE_EPILOG,
)
def restore_command(
    ctx: typer.Context,
    instance: str | None = typer.Argument(
        None,
        metavar="INSTANCENAME",
        help="Name of the instance to restore.",
        show_default=False,
    ),
    backup: str | None = typer.Argument(
        None,
        metavar="BACKUPNAME",
        help="Backup object stored under the instance prefix.",
        show_default=False,
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit the restore result as JSON.",
    ),
) -> None:
    """Restore an instance image from object storage."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "restore",
        args={"instance": instance, "backup": backup, "json": json_output},
        target={"kind": "instance", "name": (instance or "").strip()},
    ) as op:
        if ctx.args:
            extra = " ".join(ctx.args)
            _usage_error(ctx, op, f"Unexpected extra arguments: {extra}")
        if not (instance or "").strip() or not (backup or "").strip():
            _usage_error(ctx, op, "Both INSTANCENAME and BACKUPNAME are required.")

        try:
            restore_context = _build_restore_context(runtime)
        except (ValueError, BotoCoreError) as exc:
            _command_error(
                op,
                f"Unable to configure object storage client: {exc}",
                rc=ExitCode.ENVIRONMENT,
            )

        coordinator = RestoreCoordinator(restore_context)
        try:
            result = coordinator.restore(instance, backup, op=op)
        except InvalidArguments as exc:
            _usage_error(ctx, op, str(exc))
        except ExternalToolError as exc:
            notes = _error_notes(exc)
            for note in notes:
                console.print(f"[yellow]{note}[/yellow]")
            _command_error(
                op,
                f"Restore failed during lxc {exc.operation}: {exc.cause}",
                rc=exc.exit_code,
                errors=[str(exc)],
                warnings=notes,
            )
        except RestoreError as exc:
            _command_error(op, str(exc), rc=exc.exit_code, warnings=_error_notes(exc))

        payload = result.to_dict()
        if json_output:
            console.print_json(data=payload)
        else:
            console.print(
                f"[green]Instance '{result.instance}' restored from "
                f"'{result.backup}'.[/green]"
            )
        op.success("Instance restored.", changed=1, context=payload)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()
