"""Click commands: plan, apply, destroy, outputs.

Reports go to stdout as JSON; logs go to stderr. Exit codes:

    0  every node converged (or, for plan, evaluated)
    1  at least one node failed, was skipped or cancelled
    2  the document or configuration is invalid
    3  no caller identity could be resolved
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import click

from eksorch import __version__
from eksorch.app import EksOrchApp
from eksorch.config import load_config
from eksorch.errors import AuthenticationError, ValidationError
from eksorch.models.report import Operation, Outcome, RunReport
from eksorch.observability.logging import setup_logging
from eksorch.outputs import collect_outputs

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2
EXIT_AUTH = 3

_UNSETTLED = (Outcome.FAILED, Outcome.SKIPPED, Outcome.CANCELLED)

_document_option = click.option(
    "-f",
    "--file",
    "document",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Stack document (YAML).",
)


@click.group()
@click.version_option(__version__, prog_name="eksorch")
@click.option("--log-level", default=None, help="Overrides EKSORCH_LOG_LEVEL.")
@click.option("--console-logs", is_flag=True, help="Human-readable logs instead of JSON.")
@click.option("--state-path", default=None, help="Overrides EKSORCH_STATE_PATH.")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None, console_logs: bool, state_path: str | None) -> None:
    """Converge a managed Kubernetes cluster composition."""
    if ctx.obj is not None:
        return
    try:
        config = load_config()
    except ValueError as exc:
        click.echo(f"error: {exc}", err=True)
        raise SystemExit(EXIT_INVALID) from exc
    if log_level:
        config.log.level = log_level.lower()
    if state_path:
        config.state.path = state_path
    setup_logging(config.log.level, json_output=not console_logs)
    ctx.obj = EksOrchApp(config)


@cli.command()
@_document_option
@click.pass_obj
def plan(app: EksOrchApp, document: str) -> None:
    """Show what apply would create, update or leave alone."""
    report = _run(app, Operation.PLAN, document)
    _echo(report.to_dict())
    raise SystemExit(exit_code(report))


@cli.command()
@_document_option
@click.pass_obj
def apply(app: EksOrchApp, document: str) -> None:
    """Create or update every resource until the composition converges."""
    report = _run(app, Operation.APPLY, document)
    _echo(report.to_dict())
    raise SystemExit(exit_code(report))


@cli.command()
@_document_option
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_obj
def destroy(app: EksOrchApp, document: str, yes: bool) -> None:
    """Tear down every resource, dependents first."""
    if not yes:
        click.confirm(f"Destroy every resource described by {document}?", abort=True, err=True)
    report = _run(app, Operation.DESTROY, document)
    _echo(report.to_dict())
    raise SystemExit(exit_code(report))


@cli.command()
@_document_option
@click.pass_obj
def outputs(app: EksOrchApp, document: str) -> None:
    """Print network, subnetwork, cluster and node pool identifiers."""
    report = _run(app, Operation.PLAN, document)
    _echo(collect_outputs(report))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def exit_code(report: RunReport) -> int:
    unsettled = [r for r in report.nodes.values() if r.outcome in _UNSETTLED]
    if not unsettled:
        return EXIT_OK
    if any(r.error_type == AuthenticationError.__name__ for r in unsettled):
        return EXIT_AUTH
    return EXIT_FAILED


def _run(app: EksOrchApp, operation: Operation, document: str) -> RunReport:
    try:
        return asyncio.run(app.run(operation, document))
    except ValidationError as exc:
        where = f" [{exc.node_id}{'.' + exc.field if exc.field else ''}]" if exc.node_id else ""
        click.echo(f"invalid: {exc}{where}", err=True)
        raise SystemExit(EXIT_INVALID) from exc
    except AuthenticationError as exc:
        click.echo(f"authentication failed: {exc}", err=True)
        raise SystemExit(EXIT_AUTH) from exc


def _echo(payload: dict[str, Any]) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))
