"""Root CLI group and version flag."""

import faulthandler
import signal

import click

from cliwire import __version__
from cliwire.commands.check import check
from cliwire.commands.run import run
from cliwire.commands.serve import serve

faulthandler.enable()

# JSONL output is usually piped; a closed reader must not kill us silently.
if hasattr(signal, "SIGPIPE"):
    signal.signal(signal.SIGPIPE, signal.SIG_IGN)


@click.group()
@click.version_option(version=__version__, prog_name="cliwire")
def cli() -> None:
    """cliwire — run agent CLIs and stream their output as canonical events."""


cli.add_command(run)
cli.add_command(serve)
cli.add_command(check)
