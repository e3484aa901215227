"""Endpoint commands: health, interact."""

from __future__ import annotations

import asyncio
import json
import sys

import click

from ..endpoint import AgentEndpoint, AgentInteractionError
from ..health import PollPolicy, PollVerdict, ProbeOutcome
from ._common import AGENTDEPLOY_HOME, console, get_config, verdict_line


def register_health_commands(main: click.Group) -> None:
    """Register health and interact."""

    @main.command("health")
    @click.argument("url")
    @click.option("--attempts", type=int, default=None, help="Max probe attempts.")
    @click.option("--timeout", type=float, default=None, help="Per-attempt timeout (s).")
    @click.option("--home", default=AGENTDEPLOY_HOME, type=click.Path())
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def health_cmd(url: str, attempts, timeout, home: str, json_out: bool):
        """Poll an agent's /health until it is ready.

        Uses the local poll policy from config; --attempts and --timeout
        override it.

        Example:

            agentdeploy health http://localhost:3000 --attempts 5
        """
        settings = get_config(home).local_health.model_dump()
        if attempts is not None:
            settings["max_attempts"] = attempts
        if timeout is not None:
            settings["per_attempt_timeout"] = timeout
        try:
            policy = PollPolicy(**settings)
            agent = AgentEndpoint(url)
        except ValueError as exc:
            raise click.BadParameter(str(exc))

        def on_attempt(attempt: int, outcome: ProbeOutcome) -> None:
            if not json_out:
                mark = "[green]ok[/]" if outcome.is_healthy else "[yellow]..[/]"
                console.print(f"  {mark} attempt {attempt}: {outcome.describe()}")

        async def _poll() -> PollVerdict:
            async with agent:
                return await agent.wait_for_health(policy, on_attempt=on_attempt)

        verdict = asyncio.run(_poll())

        if json_out:
            last = verdict.last_outcome
            click.echo(json.dumps({
                "url": agent.base_url,
                "status": verdict.status.value,
                "attempts_made": verdict.attempts_made,
                "last_outcome": last.kind.value if last else None,
                "last_message": last.describe() if last else None,
                "delays": list(verdict.delays),
            }, indent=2))
        else:
            console.print(f"\n  {verdict_line(verdict)}\n")

        if not verdict.ready:
            sys.exit(1)

    @main.command("interact")
    @click.argument("url")
    @click.argument("message")
    @click.option("--timeout", type=float, default=30.0, show_default=True)
    def interact_cmd(url: str, message: str, timeout: float):
        """Send MESSAGE to an agent's /interact endpoint.

        Example:

            agentdeploy interact http://localhost:3000 "What is my balance?"
        """
        try:
            agent = AgentEndpoint(url)
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="URL")

        async def _send():
            async with agent:
                return await agent.interact(message, timeout=timeout)

        try:
            reply = asyncio.run(_send())
        except AgentInteractionError as exc:
            console.print(f"\n  [red]Interaction failed:[/] {exc}\n")
            sys.exit(1)

        click.echo(json.dumps(reply, indent=2))
