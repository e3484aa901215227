"""
agentdeploy CLI: create, deploy and probe agents from the command line.

Commands live in their own modules and are registered on the main group
via register functions.

Entry point: agentdeploy.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="agentdeploy")
@click.option("-v", "--verbose", count=True, help="-v for INFO logs, -vv for DEBUG.")
def main(verbose: int):
    """agentdeploy: scaffold, deploy and health-check agents.

    Agents run locally under Docker Compose or remotely in a TEE.
    """
    level = {0: logging.WARNING, 1: logging.INFO}.get(verbose, logging.DEBUG)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Register all commands from modular files
# ---------------------------------------------------------------------------

from .agents import register_agent_commands
from .health import register_health_commands

register_agent_commands(main)
register_health_commands(main)
