"""Terminal front-end for parley."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

import typer
from rich.console import Console
from rich.markup import escape

from parley.config import Settings, get_settings
from parley.errors import ParleyError
from parley.events import (
    AgentEvent,
    MessageEndEvent,
    MessageStartEvent,
    MessageUpdateEvent,
    ToolExecutionEndEvent,
    ToolExecutionStartEvent,
    TurnEndEvent,
)
from parley.logging_utils import configure_logging
from parley.messages import AssistantMessage, CustomMessage, Message
from parley.runner import TurnOutcome
from parley.session import Conversation

app = typer.Typer(
    name="parley",
    help="Streamed multi-turn conversations with tool calls.",
    add_completion=False,
    rich_markup_mode="rich",
)


class Renderer:
    """Renders the conversation event stream with Rich."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def __call__(self, event: AgentEvent) -> None:
        if isinstance(event, MessageStartEvent) and event.message_type == "assistant":
            self.console.print("[bold yellow]parley:[/bold yellow] ", end="")
        elif isinstance(event, MessageUpdateEvent) and event.message_type == "assistant" and event.delta:
            self.console.print(event.delta, end="", markup=False, highlight=False)
        elif isinstance(event, MessageEndEvent) and isinstance(event.message, AssistantMessage):
            self.console.print()
            if event.message.is_incomplete:
                self.console.print("[dim](interrupted)[/dim]")
        elif isinstance(event, MessageEndEvent) and event.message_type == "custom":
            self.console.print(f"[magenta]note:[/magenta] {escape(str(event.message.content))}")
        elif isinstance(event, ToolExecutionStartEvent):
            self.console.print(f"[dim]tool {escape(event.tool_name)} {escape(str(event.arguments))}[/dim]")
        elif isinstance(event, ToolExecutionEndEvent) and event.is_error:
            self.console.print(f"[red]tool {escape(event.tool_name)} failed:[/red] {escape(event.result.text)}")
        elif isinstance(event, TurnEndEvent) and event.status == "error":
            self.error(event.error or "turn failed")

    def info(self, message: str) -> None:
        self.console.print(message)

    def error(self, message: str) -> None:
        self.console.print(f"[bold red]Error:[/bold red] {escape(message)}")

    def welcome(self, model: str) -> None:
        self.console.print(f"[bold blue]parley[/bold blue] [dim]model={escape(model)}[/dim]")
        self.console.print("[dim]/history shows the transcript, /reset starts over, /quit exits[/dim]")

    def history(self, messages: Iterable[Message]) -> None:
        empty = True
        for message in messages:
            empty = False
            if isinstance(message, CustomMessage):
                text = str(message.content)
            else:
                text = message.text
            self.console.print(f"[cyan]{message.role}[/cyan] {escape(text)}")
        if empty:
            self.console.print("[dim](no messages)[/dim]")

    def read_input(self) -> str:
        return self.console.input("[bold cyan]you:[/bold cyan] ")


def _build_conversation(settings: Settings, system: str | None) -> Conversation:
    conversation = Conversation.from_settings(settings)
    if system is not None:
        conversation.set_system_prompt(system)
    return conversation


async def _ask(conversation: Conversation, message: str, renderer: Renderer) -> TurnOutcome:
    async with conversation:
        conversation.subscribe(renderer)
        return await conversation.prompt(message)


async def _chat(conversation: Conversation, renderer: Renderer) -> None:
    async with conversation:
        conversation.subscribe(renderer)
        while True:
            try:
                user_input = renderer.read_input()
            except (KeyboardInterrupt, EOFError):
                renderer.info("\nGoodbye!")
                break

            command = user_input.strip()
            if not command:
                continue
            if command in ("/quit", "/exit"):
                renderer.info("Goodbye!")
                break
            if command == "/reset":
                conversation.reset()
                renderer.info("[dim]Conversation reset[/dim]")
                continue
            if command == "/history":
                renderer.history(conversation.state.messages)
                continue

            try:
                await conversation.prompt(command)
            except ParleyError as exc:
                renderer.error(str(exc))


@app.command()
def ask(
    message: str = typer.Argument(..., help="Message to send"),
    system: str | None = typer.Option(None, "--system", "-s", help="System prompt override"),
) -> None:
    """Send one message and print the streamed answer."""
    settings = get_settings()
    configure_logging(profile="chat", level=settings.log_level)
    renderer = Renderer()
    outcome = asyncio.run(_ask(_build_conversation(settings, system), message, renderer))
    if outcome.status != "completed":
        raise typer.Exit(1)


@app.command()
def chat(
    system: str | None = typer.Option(None, "--system", "-s", help="System prompt override"),
) -> None:
    """Start an interactive conversation."""
    settings = get_settings()
    configure_logging(profile="chat", level=settings.log_level)
    renderer = Renderer()
    renderer.welcome(settings.model)
    asyncio.run(_chat(_build_conversation(settings, system), renderer))


if __name__ == "__main__":
    app()
