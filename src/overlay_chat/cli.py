"""Terminal front-end for Overlay Chat: streamed replies, queue and settings."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import click
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.table import Table

from overlay_chat import __version__
from overlay_chat.app import SETTINGS, ChatApp
from overlay_chat.config import ChatConfig, find_config_file, load_config
from overlay_chat.events.bus import WILDCARD, EventBus
from overlay_chat.types import ChatEvent, EventType

console = Console()

_HISTORY_PATH = Path.home() / ".config" / "overlay-chat" / "history"

HELP_ROWS = [
    ("/help", "Show this help"),
    ("/settings", "Show settings"),
    ("/settings <key> <value>", "Change and save a setting (url, temperature, no_think, debug_mode)"),
    ("/clear", "Clear the screen"),
    ("/queue", "Show queued messages"),
    ("/cancel <n>", "Cancel queued message n"),
    ("/health", "Check the connection to the server"),
    ("/quit", "Exit"),
]


class ConsoleSink:
    """Prints assistant messages as they stream in.

    Updates carry the whole message so far; only the new tail is printed.
    """

    def __init__(self, con: Console) -> None:
        self.con = con
        self._shown: dict[int, str] = {}
        self._next = 0

    def open(self) -> int:
        handle = self._next
        self._next += 1
        self._shown[handle] = ""
        self.con.print()
        return handle

    def update(self, handle: int, text: str) -> None:
        shown = self._shown.get(handle, "")
        if text.startswith(shown):
            new = text[len(shown):]
        else:
            self.con.print()
            new = text
        self._shown[handle] = text
        if new:
            self.con.print(new, end="", markup=False, highlight=False)

    def close(self, handle: int) -> None:
        if self._shown.pop(handle, None) is not None:
            self.con.print()

    def discard(self, handle: int) -> None:
        self._shown.pop(handle, None)


class StatusDisplay:
    """Turns bus events into short status lines."""

    def __init__(self, con: Console, verbose: bool = False) -> None:
        self.con = con
        self.verbose = verbose

    def attach(self, bus: EventBus) -> None:
        bus.subscribe(WILDCARD, self.handle)

    def handle(self, event: ChatEvent) -> None:
        data = event.data
        if event.type == EventType.THINKING_STARTED:
            self.con.print("[dim italic]Thinking...[/dim italic]")
        elif event.type == EventType.THINKING_ENDED:
            if data.get("aborted"):
                self.con.print("[dim]Thinking interrupted[/dim]")
            elif self.verbose:
                self.con.print(f"[dim]Thought for {data.get('reasoning_length', 0)} chars[/dim]")
        elif event.type == EventType.TOOLS_EXECUTING:
            names = ", ".join(data.get("tools", []))
            self.con.print(f"[yellow]Calling tool: {names}[/yellow]")
        elif event.type == EventType.TOOL_ERROR:
            self.con.print(f"[red]{data.get('tool')}: {data.get('error')}[/red]")
        elif event.type == EventType.TOOL_DELEGATED:
            self.con.print(f"[dim]{data.get('tool')} runs on the server[/dim]")
        elif event.type == EventType.HEALTH_CHANGED:
            if data.get("connected"):
                self.con.print(f"[green]● connected[/green] [dim]{data.get('url')}[/dim]")
            else:
                self.con.print(f"[red]● disconnected[/red] [dim]{data.get('url')}[/dim]")
        elif event.type == EventType.QUEUE_DISPATCHED:
            self.con.print(f"\n[bold cyan]❯[/bold cyan] {data.get('text', '')}")


def parse_setting(key: str, raw: str) -> Any:
    """Convert the text typed after ``/settings <key>`` to the setting's type."""
    kind = SETTINGS.get(key)
    if kind is None:
        raise click.BadParameter(f"unknown setting {key!r}")
    if kind is bool:
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise click.BadParameter(f"{key} expects on/off, got {raw!r}")
    if kind is float:
        try:
            value = float(raw)
        except ValueError:
            raise click.BadParameter(f"{key} expects a number, got {raw!r}") from None
        if not 0.0 <= value <= 2.0:
            raise click.BadParameter("temperature must be between 0 and 2")
        return value
    return raw.strip()


def _settings_table(config: ChatConfig) -> Table:
    table = Table(title="Settings", show_lines=False, border_style="dim")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("url", config.api.url)
    table.add_row("temperature", f"{config.api.temperature:g}")
    table.add_row("no_think", "on" if config.no_think else "off")
    table.add_row("debug_mode", "on" if config.debug_mode else "off")
    table.add_row("request_timeout", f"{config.api.request_timeout:g}s")
    table.add_row("max_tool_depth", str(config.max_tool_depth))
    return table


async def handle_command(cmd: str, app: ChatApp) -> str | None:
    """Run a slash command.  Returns ``"quit"`` to leave the REPL."""
    parts = cmd.split(maxsplit=2)
    name = parts[0].lower()

    if name in ("/quit", "/exit"):
        return "quit"

    if name == "/help":
        table = Table(title="Commands", show_header=False, border_style="dim")
        for usage, desc in HELP_ROWS:
            table.add_row(f"[cyan]{usage}[/cyan]", desc)
        console.print(table)

    elif name == "/settings":
        if len(parts) == 1:
            console.print(_settings_table(app.config))
        elif len(parts) == 3:
            key = parts[1]
            try:
                value = parse_setting(key, parts[2])
                await app.update_setting(key, value)
            except (click.BadParameter, KeyError, RuntimeError) as e:
                console.print(f"[red]{getattr(e, 'message', None) or e}[/red]")
                return None
            try:
                path = app.save_setting(key)
            except (OSError, ValueError) as e:
                console.print(f"[red]Setting applied but not saved: {e}[/red]")
            else:
                console.print(f"[dim]Saved to {path}[/dim]")
            if key == "url":
                await app.check_health()
        else:
            console.print("[yellow]Usage: /settings <key> <value>[/yellow]")

    elif name == "/clear":
        console.clear()

    elif name == "/queue":
        entries = app.dispatcher.entries
        if not entries:
            state = "a request is in flight" if app.dispatcher.in_flight else "idle"
            console.print(f"[dim]Queue empty ({state})[/dim]")
        for i, entry in enumerate(entries, 1):
            console.print(f"  {i}. {entry.text[:60]} [dim]{entry.remaining_ms / 1000:.1f}s[/dim]")

    elif name == "/cancel":
        try:
            index = int(parts[1]) - 1
            if index < 0:
                raise ValueError(index)
            entry = await app.dispatcher.cancel(index)
        except (IndexError, ValueError):
            console.print("[yellow]Usage: /cancel <n> (see /queue)[/yellow]")
        else:
            console.print(f"[dim]Cancelled: {entry.text[:60]}[/dim]")

    elif name == "/health":
        await app.check_health()

    else:
        console.print(f"[yellow]Unknown command {name}. Type /help[/yellow]")
    return None


def _toolbar(app: ChatApp) -> HTML:
    dot = {
        True: "<ansigreen>●</ansigreen>",
        False: "<ansired>●</ansired>",
        None: "<ansigray>●</ansigray>",
    }[app.connected]
    think = "no-think" if app.config.no_think else "think"
    parts = [f" {dot} {think}"]
    if app.dispatcher.in_flight:
        parts.append("<ansiyellow>sending</ansiyellow>")
    for entry in app.dispatcher.entries[:3]:
        label = entry.text[:24].replace("<", "&lt;")
        parts.append(f"<b>{label}</b> {entry.remaining_ms / 1000:.1f}s")
    return HTML("  ".join(parts))


async def _repl(app: ChatApp) -> None:
    _HISTORY_PATH.parent.mkdir(parents=True, exist_ok=True)
    session: PromptSession[str] = PromptSession(
        history=FileHistory(str(_HISTORY_PATH)),
        bottom_toolbar=lambda: _toolbar(app),
        refresh_interval=0.1,
    )
    with patch_stdout(raw=True):
        while True:
            try:
                user_input = (await session.prompt_async(HTML("<b>❯ </b>"))).strip()
            except (EOFError, KeyboardInterrupt):
                console.print("[dim]Goodbye![/dim]")
                return
            if not user_input:
                continue
            if user_input.startswith("/"):
                if await handle_command(user_input, app) == "quit":
                    console.print("[dim]Goodbye![/dim]")
                    return
                continue
            problem = await app.submit(user_input)
            if problem:
                console.print(f"[red]{problem}[/red]")


async def _run(
    config: ChatConfig,
    config_file: Path | None,
    prompt_text: str | None,
    verbose: bool,
) -> int:
    bus = EventBus()
    StatusDisplay(console, verbose=verbose).attach(bus)
    async with ChatApp(
        config, ConsoleSink(console), event_bus=bus, config_path=config_file,
    ) as app:
        await app.check_health()
        if prompt_text is not None:
            problem = await app.submit(prompt_text)
            if problem:
                console.print(f"[red]{problem}[/red]")
                return 1
            await app.dispatcher.wait_idle()
            return 0
        await _repl(app)
    return 0


@click.command()
@click.option("--config", "-c", "config_path", default=None,
              help="Path to overlay_chat.yaml (default: ./ or ~/.config/overlay-chat/)")
@click.option("--url", default=None, help="Inference server URL, e.g. http://localhost:1234")
@click.option("--temperature", "-t", type=float, default=None, help="Sampling temperature")
@click.option("--no-think/--think", "no_think", default=None,
              help="Ask the model to answer without <think> blocks")
@click.option("--raw", "debug_mode", is_flag=True, default=None,
              help="Show raw output including <think> tags")
@click.option("--prompt", "-p", "prompt_text", default=None,
              help="Send one message, print the reply and exit")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.version_option(__version__, prog_name="overlay-chat")
def main(
    config_path: str | None,
    url: str | None,
    temperature: float | None,
    no_think: bool | None,
    debug_mode: bool | None,
    prompt_text: str | None,
    verbose: bool,
) -> None:
    """Overlay Chat - streamed chat with tool calling for local LLM servers."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    config = load_config(config_path)
    config_file = find_config_file(config_path)
    if config_file:
        console.print(f"[dim]Config: {config_file}[/dim]")
    else:
        console.print("[dim]Config: defaults (no overlay_chat.yaml found)[/dim]")

    if url:
        config.api.url = url.rstrip("/")
    if temperature is not None:
        config.api.temperature = temperature
    if no_think is not None:
        config.no_think = no_think
    if debug_mode:
        config.debug_mode = True

    if prompt_text is None:
        console.print(
            f"[bold cyan]Overlay Chat[/bold cyan] [dim]v{__version__}"
            " - type /help for commands[/dim]"
        )
    # An explicit --config path is where settings go, even before it exists
    save_path = config_file or (Path(config_path) if config_path else None)
    raise SystemExit(asyncio.run(_run(config, save_path, prompt_text, verbose)))


if __name__ == "__main__":
    main()
