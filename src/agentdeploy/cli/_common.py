"""Shared helpers for the CLI command modules."""

from __future__ import annotations

import json
from pathlib import Path

import click
from pydantic import BaseModel
from rich.console import Console

from .. import AGENTDEPLOY_HOME
from ..config import ServiceConfig, load_config
from ..health import PollVerdict

console = Console()

__all__ = ["AGENTDEPLOY_HOME", "console", "echo_json", "get_config", "verdict_line"]


def get_config(home: str) -> ServiceConfig:
    """Load the service config from a (possibly ~-relative) home dir."""
    return load_config(Path(home).expanduser())


def echo_json(model: BaseModel) -> None:
    click.echo(json.dumps(model.model_dump(mode="json"), indent=2))


def verdict_line(verdict: PollVerdict) -> str:
    """Rich markup summary of a poll verdict."""
    if verdict.ready:
        return f"[bold green]READY[/] after {verdict.attempts_made} attempt(s)"
    return f"[bold red]FAILED[/] {verdict.describe()}"
