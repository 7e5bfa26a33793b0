"""Alto CLI: maintenance and diagnostics for the agent layer.

Usage:
    alto chat                          # Interactive chat against the configured provider
    alto test                          # Probe the configured provider
    alto reset-cache                   # Unload the local engine and purge its caches
    alto config                        # Show configuration
    alto config provider.kind=ollama   # Set configuration
    alto parse "Scanning now. ACTION:scan_junk"   # Show how a reply is interpreted
"""

import asyncio
import json
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from alto.bridge import HttpHostBridge
from alto.config import AltoConfig, ProviderKind
from alto.context import ConversationMessage, Role, follow_up_notice
from alto.errors import AltoError
from alto.events import ProgressEvent
from alto.protocol import ExplicitAction, InferredAction, ProtocolParser, strip_schedule_lines
from alto.service import AgentService

console = Console()

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def _run_async(coro):
    """Run async function from sync context."""
    return asyncio.run(coro)


def _build_service(cfg: AltoConfig, config_path: Path | None) -> AgentService:
    bridge = HttpHostBridge(cfg.bridge.url, timeout=cfg.bridge.timeout_seconds)
    return AgentService(cfg, bridge, config_path=config_path)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option(
    "--config-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default ~/.alto/config.json)",
)
@click.pass_context
def cli(ctx, verbose, config_file):
    """Alto: the on-device assistant's agent layer."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format=LOG_FORMAT)
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file


# --- Conversation ---


@cli.command()
@click.pass_context
def chat(ctx):
    """Interactive chat session. Type 'exit' to quit."""
    config_file = ctx.obj["config_file"]
    cfg = AltoConfig.load(config_file)
    service = _build_service(cfg, config_file)

    def on_progress(event: ProgressEvent):
        pct = f" {event.fraction:.0%}" if event.fraction is not None else ""
        console.print(f"[dim]  {event.text}{pct}[/]")

    service.progress.add_listener(on_progress)
    console.print(f"\n[bold blue]Alto[/] via {service.provider_label} ([italic]{cfg.provider.model}[/])")
    console.print("[dim]Type 'exit' to quit[/]\n")
    _run_async(_chat_loop(service))


async def _chat_loop(service: AgentService):
    messages: list[ConversationMessage] = []
    while True:
        try:
            text = console.input("[bold]You:[/] ").strip()
        except (EOFError, KeyboardInterrupt):
            break
        if text.lower() in ("exit", "quit"):
            break
        if not text:
            continue

        messages.append(ConversationMessage(Role.USER, text))
        result = await service.chat(messages)
        messages.append(ConversationMessage(Role.ASSISTANT, result.text))
        console.print(f"[green]Alto:[/] {result.text}")

        if result.action_result:
            action = result.action_result
            for step in action.step_log:
                console.print(f"[dim]  -> {step}[/]")
            color = "green" if action.success else "red"
            console.print(f"[bold {color}]{action.action_id}[/]: {action.summary_text}")
            for suggestion in action.suggestions:
                console.print(f"[dim]  suggestion: {suggestion.label}[/]")

            messages.append(follow_up_notice(action.action_id, action.summary_text))
            follow = await service.chat(messages)
            messages.append(ConversationMessage(Role.ASSISTANT, follow.text))
            console.print(f"[green]Alto:[/] {follow.text}")
    await service.engine.unload()


# --- Maintenance ---


@cli.command()
@click.pass_context
def test(ctx):
    """Test the connection to the configured provider."""
    cfg = AltoConfig.load(ctx.obj["config_file"])
    service = _build_service(cfg, ctx.obj["config_file"])
    console.print(f"Testing {service.provider_label} ({cfg.provider.model})...")
    result = _run_async(service.test_connection())
    if result.ok:
        console.print(f"[green]{result.message}[/] [dim]({result.latency_ms:.0f}ms)[/]")
    else:
        console.print(f"[bold red]Connection failed:[/] {result.message}")


@cli.command("reset-cache")
@click.pass_context
def reset_cache(ctx):
    """Unload the local engine and delete its cached model stores."""
    cfg = AltoConfig.load(ctx.obj["config_file"])
    service = _build_service(cfg, ctx.obj["config_file"])
    outcomes = _run_async(service.reset_engine_cache())

    table = Table(title="Engine cache reset")
    table.add_column("Store")
    table.add_column("Result")
    colors = {"deleted": "green", "missing": "dim", "blocked": "yellow", "error": "red"}
    for outcome in outcomes:
        color = colors.get(outcome.status, "white")
        detail = f" ({outcome.detail})" if outcome.detail else ""
        table.add_row(outcome.store, f"[{color}]{outcome.status}[/]{detail}")
    console.print(table)


CONFIG_KEYS = {
    "alerts.enabled": ("alerts", "enabled", lambda v: v.lower() in ("1", "true", "yes", "on")),
    "alerts.check_interval_seconds": ("alerts", "check_interval_seconds", float),
    "alerts.cooldown_seconds": ("alerts", "cooldown_seconds", float),
    "alerts.cpu_threshold_percent": ("alerts", "cpu_threshold_percent", float),
    "alerts.junk_threshold_bytes": ("alerts", "junk_threshold_bytes", int),
    "bridge.url": ("bridge", "url", str),
    "bridge.timeout_seconds": ("bridge", "timeout_seconds", float),
    "profile.name": ("profile", "name", str),
    "profile.role": ("profile", "role", str),
}


@cli.command()
@click.argument("key_value", nargs=-1)
@click.pass_context
def config(ctx, key_value):
    """View or set Alto configuration.

    Examples:
        alto config                                 # show all
        alto config provider.kind=ollama            # use a local Ollama server
        alto config provider.model=llama3.2         # model identifier
        alto config alerts.cooldown_seconds=600     # alert spacing
    """
    config_file = ctx.obj["config_file"]
    cfg = AltoConfig.load(config_file)
    if not key_value:
        provider = cfg.provider.to_dict()
        if "credential" in provider:
            provider["credential"] = "***"
        console.print_json(json.dumps({
            "provider": provider,
            "alerts": vars(cfg.alerts),
            "bridge": vars(cfg.bridge),
            "profile": vars(cfg.profile),
        }))
        return

    kv = " ".join(key_value)
    if "=" not in kv:
        console.print("[yellow]Usage: alto config key=value[/]")
        return

    key, value = kv.split("=", 1)
    key = key.strip()
    value = value.strip()
    try:
        if key == "provider.kind":
            cfg.provider.kind = ProviderKind.parse(value)
        elif key == "provider.credential":
            cfg.provider.credential = value or None
        elif key in ("provider.endpoint", "provider.model"):
            setattr(cfg.provider, key.split(".", 1)[1], value)
        elif key in CONFIG_KEYS:
            section, attr, convert = CONFIG_KEYS[key]
            setattr(getattr(cfg, section), attr, convert(value))
        else:
            console.print(f"[red]Unknown config key: {key}[/]")
            return
    except AltoError as e:
        console.print(f"[red]{e.message}[/]")
        return
    except ValueError:
        console.print(f"[red]Invalid value for {key}: {value}[/]")
        return

    cfg.save(config_file)
    shown = "***" if key == "provider.credential" else value
    console.print(f"[green]Set {key} = {shown}[/]")


@cli.command()
@click.argument("text")
@click.option("--follow-up", is_flag=True, help="Interpret as a reply to an action-completed notice")
def parse(text, follow_up):
    """Show how a model reply would be interpreted."""
    parsed = ProtocolParser().parse(text.replace("\\n", "\n"), follow_up=follow_up)

    table = Table(show_header=False, box=None)
    if isinstance(parsed.action, ExplicitAction):
        table.add_row("Action", f"[green]{parsed.action.action_id}[/] (tag)")
    elif isinstance(parsed.action, InferredAction):
        table.add_row(
            "Action",
            f"[yellow]{parsed.action.action_id}[/] (inferred from '{parsed.action.matched_phrase}')",
        )
    else:
        table.add_row("Action", "[dim]none[/]")
    for directive in parsed.schedules:
        table.add_row("Schedule", f"{directive.cron} -> {directive.task}")
    table.add_row("Display", strip_schedule_lines(parsed.display_text) or "[dim](empty)[/]")
    console.print(Panel(table, title="Parsed reply", border_style="blue"))


if __name__ == "__main__":
    cli()
