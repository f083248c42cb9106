"""cliwire check — verify the agent CLI is installed."""

from __future__ import annotations

from pathlib import Path

import click

from cliwire.config.parser import ConfigError, load_config
from cliwire.process.supervisor import ProcessSupervisor


@click.command()
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to cliwire.yaml (default: ./cliwire.yaml if present).",
)
def check(config_file: str | None) -> None:
    """Report whether the configured agent CLI is on PATH."""
    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    supervisor = ProcessSupervisor(config)
    cli = supervisor.cli_command
    path = supervisor.cli_path()
    if path is None:
        click.echo(f"'{cli}' not found on PATH.")
        raise SystemExit(1)
    click.echo(f"'{cli}' found at {path}")
