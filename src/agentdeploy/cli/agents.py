"""Agent lifecycle commands: create, deploy, compose."""

from __future__ import annotations

import asyncio
import sys
from typing import Optional

import click
from rich.panel import Panel
from rich.table import Table

from ..compose import render_compose
from ..models import (
    AgentConfig,
    AgentMode,
    AgentPorts,
    ApiKeyConfig,
    CreateAgentParams,
    DeployAgentParams,
    DeploymentConfig,
)
from ..orchestrator import AgentOrchestrator
from ..providers import DeploymentError
from ._common import AGENTDEPLOY_HOME, console, echo_json, get_config


def _key_options(func):
    """Attach the three credential options shared by create and deploy."""
    func = click.option(
        "--cdp-private-key", envvar="CDP_API_KEY_PRIVATE_KEY", default=None,
        help="CDP API private key (or CDP_API_KEY_PRIVATE_KEY).",
    )(func)
    func = click.option(
        "--cdp-key-name", envvar="CDP_API_KEY_NAME", default=None,
        help="CDP API key name (or CDP_API_KEY_NAME).",
    )(func)
    func = click.option(
        "--openai-key", envvar="OPENAI_API_KEY", default=None,
        help="OpenAI API key (or OPENAI_API_KEY).",
    )(func)
    return func


def register_agent_commands(main: click.Group) -> None:
    """Register create, deploy and compose."""

    @main.command("create")
    @click.argument("name")
    @click.option(
        "--mode", type=click.Choice([m.value for m in AgentMode]),
        default=AgentMode.CHAT.value, show_default=True,
    )
    @click.option("--model", default="gpt-4o-mini", show_default=True, help="LLM model name.")
    @click.option("--port", type=int, default=None, help="Host HTTP port (default 3000).")
    @click.option("--tee", is_flag=True, help="Fetch a TEE encryption key for the agent.")
    @_key_options
    @click.option("--home", default=AGENTDEPLOY_HOME, type=click.Path())
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def create_cmd(
        name: str,
        mode: str,
        model: str,
        port: Optional[int],
        tee: bool,
        openai_key: Optional[str],
        cdp_key_name: Optional[str],
        cdp_private_key: Optional[str],
        home: str,
        json_out: bool,
    ):
        """Scaffold a new agent from the starter template.

        Example:

            agentdeploy create trader --port 4000
        """
        try:
            params = CreateAgentParams(
                name=name,
                agent_config=AgentConfig(mode=AgentMode(mode), model=model),
                deployment_config=DeploymentConfig(tee_enabled=tee, http_port=port),
                api_key_config=ApiKeyConfig(
                    openai_api_key=openai_key,
                    cdp_api_key_name=cdp_key_name,
                    cdp_api_key_private_key=cdp_private_key,
                ),
            )
        except ValueError as exc:
            raise click.BadParameter(str(exc))

        orchestrator = AgentOrchestrator(get_config(home))
        try:
            result = asyncio.run(orchestrator.create_agent(params))
        except DeploymentError as exc:
            console.print(f"\n  [red]Create failed:[/] {exc}\n")
            sys.exit(1)

        if json_out:
            echo_json(result)
            return

        body = (
            f"[bold]Agent ID:[/] [cyan]{result.agent_id}[/]\n"
            f"[bold]Directory:[/] {orchestrator.agent_dir(result.agent_id)}\n"
            f"[bold]Ports:[/] HTTP {result.ports.http_port}, WS {result.ports.websocket_port}"
        )
        if result.tee_pubkey:
            body += f"\n[bold]TEE pubkey:[/] {result.tee_pubkey}\n[bold]Salt:[/] {result.tee_salt}"
        console.print()
        console.print(Panel(body, title=f"Created {name}", border_style="green"))
        console.print(f"  [dim]Deploy:[/] [cyan]agentdeploy deploy {result.agent_id}[/]\n")

    @main.command("deploy")
    @click.argument("agent_id")
    @click.option("--encrypted-env", default=None, help="Env encrypted with the TEE pubkey.")
    @_key_options
    @click.option(
        "--fail-on-unhealthy/--no-fail-on-unhealthy", default=None,
        help="Override whether a failed health check aborts the deployment.",
    )
    @click.option("--home", default=AGENTDEPLOY_HOME, type=click.Path())
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def deploy_cmd(
        agent_id: str,
        encrypted_env: Optional[str],
        openai_key: Optional[str],
        cdp_key_name: Optional[str],
        cdp_private_key: Optional[str],
        fail_on_unhealthy: Optional[bool],
        home: str,
        json_out: bool,
    ):
        """Launch an agent and wait for its health check.

        Example:

            agentdeploy deploy 0b6c... --fail-on-unhealthy
        """
        params = DeployAgentParams(
            agent_id=agent_id,
            api_key_config=ApiKeyConfig(
                openai_api_key=openai_key,
                cdp_api_key_name=cdp_key_name,
                cdp_api_key_private_key=cdp_private_key,
            ),
            encrypted_env=encrypted_env,
            fail_on_unhealthy=fail_on_unhealthy,
        )

        orchestrator = AgentOrchestrator(get_config(home))
        if not json_out:
            console.print(f"\n  Deploying [cyan]{agent_id}[/]...")
        try:
            result = asyncio.run(orchestrator.deploy_agent(params))
        except DeploymentError as exc:
            console.print(f"\n  [red]Deploy failed:[/] {exc}\n")
            sys.exit(1)

        if json_out:
            echo_json(result)
            return

        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Field", style="bold")
        table.add_column("Value")
        table.add_row("Deployment", result.deployment_id)
        table.add_row("Kind", result.kind.value)
        table.add_row("Endpoint", result.endpoint or "[dim]none[/]")
        if result.tee_app_id:
            table.add_row("TEE app", result.tee_app_id)
        health = "[green]healthy[/]" if result.healthy else f"[yellow]unhealthy[/] ({result.health_failure})"
        table.add_row("Health", health)
        console.print(table)
        console.print()

    @main.command("compose")
    @click.argument("agent_id")
    @click.option("--port", type=int, default=None, help="Host HTTP port (default 3000).")
    def compose_cmd(agent_id: str, port: Optional[int]):
        """Print the docker-compose.yml an agent would get."""
        try:
            ports = AgentPorts.from_http_port(port)
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="--port")
        click.echo(render_compose(agent_id, ports), nl=False)
