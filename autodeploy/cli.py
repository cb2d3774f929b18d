"""Command-line interface for autodeploy."""

import asyncio
import json
import sys

import click

from autodeploy import __version__
from autodeploy.config import settings
from autodeploy.core.exceptions import (
    DeploymentFailedError,
    DeploymentInProgressError,
    PreflightError,
)
from autodeploy.core.orchestrator import DeploymentOrchestrator, get_orchestrator
from autodeploy.models.deployment import CommitInfo
from autodeploy.utils.logging import configure_logging, tail_log


def _get_orchestrator() -> DeploymentOrchestrator:
    return get_orchestrator()


@click.group()
@click.version_option(__version__, prog_name="autodeploy")
def cli():
    """Deploy the gateway checkout with backup and automatic rollback."""
    configure_logging()


@cli.command()
@click.option("--commit", "commit_id", default="manual", show_default=True, help="Commit id to record")
@click.option("--message", default="Manual deployment", show_default=True, help="Commit message to record")
@click.option("--author", default="Manual", show_default=True, help="Author to record")
def deploy(commit_id: str, message: str, author: str):
    """Run one deployment attempt in the foreground."""
    orchestrator = _get_orchestrator()
    commit = CommitInfo(
        id=commit_id,
        message=message,
        author=author,
        branch=orchestrator.settings.deploy_branch,
    )

    try:
        record = asyncio.run(orchestrator.deploy(commit))
    except DeploymentInProgressError as e:
        click.secho(f"✗ {e.message}", fg="yellow")
        sys.exit(1)
    except PreflightError as e:
        click.secho(f"✗ {e.message}", fg="red")
        sys.exit(1)
    except DeploymentFailedError as e:
        click.secho(f"✗ Deployment failed and was rolled back: {e.record.error}", fg="red")
        sys.exit(1)

    click.secho(f"✓ Deployed {record.commit} on {record.branch}", fg="green")


@cli.command()
def preflight():
    """Check tools, repository state and network before deploying."""
    orchestrator = _get_orchestrator()
    report = asyncio.run(orchestrator.preflight.run())

    for check in report.checks:
        if check.passed:
            click.secho(f"  ✓ {check.name}", fg="green")
        else:
            click.secho(f"  ✗ {check.name}: {check.message}", fg="red")

    if not report.passed:
        sys.exit(1)
    click.secho("✓ Pre-flight checks passed", fg="green")


@cli.command()
def status():
    """Print the last deployment record as JSON."""
    orchestrator = _get_orchestrator()
    snapshot = orchestrator.status()
    last_backup = orchestrator.backups.last_backup()

    output = snapshot.model_dump(mode="json", by_alias=True, exclude={"current_attempt"})
    output["lastBackup"] = str(last_backup.path) if last_backup else None
    click.echo(json.dumps(output, indent=2))


@cli.command()
@click.option(
    "-n",
    "--lines",
    default=100,
    show_default=True,
    type=click.IntRange(min=1),
    help="Number of lines",
)
def logs(lines: int):
    """Print the tail of the deployment log."""
    config = _get_orchestrator().settings
    output = tail_log(config.resolve_path(config.deployment_log_file), lines)
    if not output:
        click.echo("No deployment logs found")
        return
    for line in output:
        click.echo(line)


@cli.command()
@click.option("--host", default=None, help="Bind host (defaults to API_HOST)")
@click.option("--port", default=None, type=int, help="Bind port (defaults to API_PORT)")
def serve(host: str | None, port: int | None):
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run(
        "autodeploy.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
    )


if __name__ == "__main__":
    cli()
