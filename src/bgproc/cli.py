"""CLI entry point using typer."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from bgproc import __version__
from bgproc.config import (
    CONFIG_FILE,
    AppConfig,
    BotConfig,
    ensure_config_dir,
    load_config,
    save_config,
)
from bgproc.exceptions import ConfigError
from bgproc.processes.models import ProcessStatus
from bgproc.processes.registry import ProcessRegistry
from bgproc.utils.formatting import format_history

app = typer.Typer(
    name="bgproc",
    help="Run and track background shell processes.",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)

EXIT_CODES = {
    ProcessStatus.COMPLETED: 0,
    ProcessStatus.FAILED: 1,
    ProcessStatus.CANCELLED: 130,
}


def _setup_logging(config: AppConfig, to_console: bool = True) -> None:
    ensure_config_dir()
    log_path = Path(config.logging.file).expanduser().resolve()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(str(log_path)),
            *([logging.StreamHandler()] if to_console else []),
        ],
    )


@app.command()
def init() -> None:
    """Interactive setup wizard."""
    console.print(f"\n[bold]bgproc v{__version__}[/bold]")
    console.print("Interactive Setup\n")

    console.print("[bold]Step 1:[/bold] Telegram Bot Token")
    console.print("  Create a bot at https://t.me/BotFather and paste the token below.")
    token = typer.prompt("  Bot Token", default="", show_default=False)
    if not token:
        console.print("[red]Bot token is required.[/red]")
        raise typer.Exit(1)

    console.print("\n[bold]Step 2:[/bold] Allowed Telegram User IDs")
    console.print("  Enter multiple IDs separated by commas, or leave empty to allow all.")
    user_ids_str = typer.prompt("  User IDs", default="", show_default=False)
    allowed_users: list[int] = []
    if user_ids_str:
        try:
            allowed_users = [int(uid.strip()) for uid in user_ids_str.split(",") if uid.strip()]
        except ValueError:
            console.print("[red]Invalid user ID format. Use numbers only.[/red]")
            raise typer.Exit(1)

    config = AppConfig(bot=BotConfig(token=token, allowed_users=allowed_users))
    save_config(config)

    console.print(f"\n[green]Configuration saved to {CONFIG_FILE}[/green]")
    console.print("\nNext step:")
    console.print("  [bold]bgproc start[/bold]  Start the bot\n")


@app.command()
def start() -> None:
    """Start the Telegram bot in the foreground."""
    if not CONFIG_FILE.exists():
        console.print("[red]Configuration not found.[/red]")
        console.print("Run [bold]bgproc init[/bold] first.")
        raise typer.Exit(1)

    config = load_config()
    if not config.bot.token:
        console.print("[red]Bot token not configured.[/red]")
        raise typer.Exit(1)

    _setup_logging(config)
    console.print("[green]Bot started![/green] Send /help to your bot on Telegram.")
    console.print("Press Ctrl+C to stop.\n")

    try:
        from bgproc.bot.app import run_bot

        asyncio.run(run_bot(config))
    except KeyboardInterrupt:
        pass
    finally:
        console.print("\n[dim]Bot stopped.[/dim]")


async def _run_tracked(
    config: AppConfig,
    command: str,
    name: Optional[str],
    tags: List[str],
    timeout: Optional[float],
) -> dict:
    registry = ProcessRegistry(config.processes)
    try:
        process_id = await registry.create(command, name=name, tags=tags, session_id="cli")
        try:
            snapshot = await registry.wait(process_id, timeout=timeout)
        except asyncio.TimeoutError:
            registry.terminate(process_id)
            try:
                snapshot = await registry.wait(
                    process_id, timeout=config.processes.shutdown_timeout
                )
            except asyncio.TimeoutError:
                logger.warning("Process %s did not exit after termination", process_id)
                snapshot = registry.get(process_id)
        return snapshot.to_dict()
    finally:
        await registry.shutdown()


@app.command()
def run(
    command: str = typer.Argument(..., help="Shell command to run"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name"),
    tag: List[str] = typer.Option([], "--tag", "-t", help="Tag (repeatable)"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Terminate after N seconds"),
) -> None:
    """Run one tracked process and print its final record as JSON."""
    config = load_config()
    try:
        result = asyncio.run(_run_tracked(config, command, name, tag, timeout))
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(2)

    typer.echo(json.dumps(result, indent=2))
    raise typer.Exit(EXIT_CODES.get(ProcessStatus(result["status"]), 1))


@app.command()
def config(
    key: str = typer.Argument(None, help="Config key (e.g., processes.kill_signal)"),
    value: str = typer.Argument(None, help="New value"),
) -> None:
    """View or modify configuration."""
    if not CONFIG_FILE.exists():
        console.print("[red]Not configured. Run 'bgproc init'.[/red]")
        raise typer.Exit(1)

    cfg = load_config()
    section_map = {
        "bot": cfg.bot,
        "processes": cfg.processes,
        "storage": cfg.storage,
        "logging": cfg.logging,
    }

    if key is None:
        table = Table(title="Configuration")
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")
        for section, obj in section_map.items():
            for attr, current in vars(obj).items():
                if section == "bot" and attr == "token":
                    shown = current[:8] + "..." if current else "(not set)"
                elif section == "bot" and attr == "allowed_users":
                    shown = str(current) if current else "all"
                else:
                    shown = str(current)
                table.add_row(f"{section}.{attr}", shown)
        console.print(table)
        return

    if value is None:
        console.print("[red]Usage: bgproc config <key> <value>[/red]")
        raise typer.Exit(1)

    parts = key.split(".")
    if len(parts) != 2:
        console.print("[red]Key format: section.key (e.g., processes.list_lines)[/red]")
        raise typer.Exit(1)

    section, attr = parts
    if section not in section_map:
        console.print(f"[red]Unknown section: {section}[/red]")
        raise typer.Exit(1)

    obj = section_map[section]
    if not hasattr(obj, attr):
        console.print(f"[red]Unknown key: {key}[/red]")
        raise typer.Exit(1)

    current = getattr(obj, attr)
    try:
        if isinstance(current, bool):
            typed_value = value.lower() in ("true", "1", "yes")
        elif isinstance(current, int):
            typed_value = int(value)
        elif isinstance(current, float):
            typed_value = float(value)
        elif isinstance(current, list):
            typed_value = [int(v.strip()) for v in value.split(",") if v.strip()]
        else:
            typed_value = value
    except ValueError:
        console.print(f"[red]Invalid value type for {key}[/red]")
        raise typer.Exit(1)

    setattr(obj, attr, typed_value)
    if key == "processes.kill_signal":
        try:
            cfg.processes.resolve_signal()
        except ConfigError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)

    save_config(cfg)
    console.print(f"[green]{key} = {typed_value}[/green]")


@app.command()
def history(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of entries"),
) -> None:
    """Show recently finished processes."""
    from bgproc.storage.database import close_db, get_recent_processes, init_db

    cfg = load_config()

    async def _fetch() -> list[dict]:
        await init_db(cfg.storage.db_path)
        try:
            return await get_recent_processes(limit=limit)
        finally:
            await close_db()

    console.print(format_history(asyncio.run(_fetch())))


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"bgproc v{__version__}")
    console.print(f"Python: {sys.version.split()[0]}")
    console.print(f"Config: {CONFIG_FILE}")


if __name__ == "__main__":
    app()
