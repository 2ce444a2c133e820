"""Main CLI application using Typer."""
import asyncio
import logging
from contextlib import asynccontextmanager

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.live import Live
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..chat import (
    ChatMode,
    ChatSession,
    ChunkApplied,
    EventBus,
    LimitPrompt,
    PersistenceGateway,
    StreamCompleted,
    Typewriter,
    UIDispatcher,
)
from ..suggestions import HabitSuggestion, Suggestion
from .providers import get_backend, get_cache_store, get_history_cache, get_stream_timeout, get_user_context

# Load environment variables
load_dotenv()

# Create Typer app
app = typer.Typer(
    name="stoachat",
    help="Streaming habit and task coaching chat client",
    no_args_is_help=True,
    add_completion=True,
)

# Console for rich output
console = Console()

_EXIT_WORDS = ("exit", "quit", "q")


@app.callback()
def configure(
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        "-l",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
):
    """Configure logging for all commands."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


@asynccontextmanager
async def open_session():
    """Build a session from the environment and tear it down afterwards."""
    backend = get_backend(console)
    store = get_cache_store()
    await store.connect()

    dispatcher = UIDispatcher()
    dispatcher.bind()
    session = ChatSession(
        backend=backend,
        gateway=PersistenceGateway(backend, get_history_cache(store)),
        user_context=get_user_context(),
        events=EventBus(),
        dispatcher=dispatcher,
        stream_timeout=get_stream_timeout(),
    )
    try:
        await session.restore_cached_history()
        yield session
    finally:
        await session.aclose()
        await store.disconnect()


def _render_suggestion(suggestion: Suggestion) -> Panel:
    lines = [f"[bold]{suggestion.name}[/bold]", suggestion.description]
    if isinstance(suggestion, HabitSuggestion):
        if suggestion.goal and suggestion.goal != suggestion.description:
            lines.append(f"[dim]Goal:[/dim] {suggestion.goal}")
        for milestone in suggestion.milestones:
            days = f" ({milestone.target_days} days)" if milestone.target_days else ""
            lines.append(f"  • {milestone.description}{days}")
        title = "Habit suggestion"
    else:
        for step in suggestion.steps:
            lines.append(f"  • {step.description}")
        title = "Task suggestion"
    return Panel("\n".join(line for line in lines if line), title=title, border_style="green")


async def _reveal(typewriter: Typewriter, live: Live) -> None:
    while True:
        if typewriter.done:
            await asyncio.sleep(0.05)
            continue
        await typewriter.run(lambda shown: live.update(Text(shown)))


async def send_and_render(session: ChatSession, text: str) -> bool:
    """Send one message, revealing the reply with a typewriter effect.

    Returns:
        Whether the exchange completed without an error
    """
    typewriter = Typewriter()
    completed: list[StreamCompleted] = []

    def on_event(event) -> None:
        if isinstance(event, ChunkApplied):
            typewriter.set_target(event.cleaned_text)
        elif isinstance(event, StreamCompleted):
            typewriter.set_target(event.cleaned_text)
            completed.append(event)

    unsubscribe = session.events.subscribe(on_event)
    with Live(Text("…", style="dim"), console=console, refresh_per_second=20) as live:
        reveal = asyncio.create_task(_reveal(typewriter, live))
        try:
            await session.send_message(text)
        finally:
            unsubscribe()
            reveal.cancel()
            try:
                await reveal
            except asyncio.CancelledError:
                pass
        live.update(Text(typewriter.finish()))

    if completed and completed[-1].suggestion is not None:
        console.print(_render_suggestion(completed[-1].suggestion))

    if session.limit_prompt is LimitPrompt.LOGIN:
        console.print(f"[yellow]{session.limit_message} Sign in to keep chatting.[/yellow]")
    elif session.limit_prompt is LimitPrompt.UPGRADE:
        console.print(f"[yellow]{session.limit_message} Upgrade to premium for more messages.[/yellow]")
    elif session.error:
        console.print(f"[red]Error: {session.error}[/red]")

    return session.error is None


def _print_history(session: ChatSession) -> None:
    if not session.sections:
        console.print("[dim]No conversations yet.[/dim]")
        return

    for section in session.sections:
        table = Table(show_header=True, header_style="bold cyan", title=section.section.value)
        table.add_column("Title", style="cyan")
        table.add_column("Mode", style="yellow", width=6)
        table.add_column("Updated", style="dim", width=16)
        table.add_column("Last message")
        for conversation in section.conversations:
            table.add_row(
                conversation.title,
                conversation.mode.value,
                conversation.timestamp.astimezone().strftime("%Y-%m-%d %H:%M"),
                conversation.last_message_preview,
            )
        console.print(table)


@app.command()
def send(
    message: str = typer.Argument(..., help="Message to send"),
    mode: ChatMode = typer.Option(
        ChatMode.TASK,
        "--mode",
        "-m",
        help="Chat mode"
    )
):
    """Send a single message and print the reply."""
    async def _send():
        async with open_session() as session:
            if not session.switch_mode(mode):
                console.print("[red]Error: habit mode requires a signed-in account[/red]")
                raise typer.Exit(code=1)
            if not await send_and_render(session, message):
                raise typer.Exit(code=1)

    asyncio.run(_send())


@app.command()
def history():
    """Show conversation history grouped by date."""
    async def _history():
        async with open_session() as session:
            await session.load_history(force=True)
            if session.history_error:
                console.print(f"[red]Error: {session.history_error}[/red]")
                if not session.history:
                    raise typer.Exit(code=1)
                console.print("[dim]Showing cached history.[/dim]")
            _print_history(session)

    asyncio.run(_history())


@app.command()
def chat(
    mode: ChatMode = typer.Option(
        ChatMode.TASK,
        "--mode",
        "-m",
        help="Chat mode to start in"
    )
):
    """Start an interactive chat.

    Commands: /new, /mode task|habit, /history, exit
    """
    async def _chat():
        async with open_session() as session:
            if not session.switch_mode(mode):
                console.print("[yellow]Habit mode requires a signed-in account; using task mode.[/yellow]")

            await session.load_history()
            console.print(f"[bold cyan]Stoa Chat[/bold cyan] [dim]({session.mode.display_name})[/dim]")
            console.print("[dim]Type 'exit', 'quit', or 'q' to leave\n[/dim]")

            while True:
                try:
                    user_input = console.input("[bold yellow]You:[/bold yellow] ").strip()
                except (KeyboardInterrupt, EOFError):
                    console.print("\n[dim]Goodbye![/dim]")
                    break

                if not user_input:
                    continue
                if user_input.lower() in _EXIT_WORDS:
                    console.print("[dim]Goodbye![/dim]")
                    break

                if user_input == "/new":
                    session.new_conversation()
                    console.print("[dim]Started a new conversation.[/dim]")
                elif user_input.startswith("/mode"):
                    requested = user_input.removeprefix("/mode").strip().lower()
                    if requested not in (m.value for m in ChatMode):
                        console.print("[red]Usage: /mode task|habit[/red]")
                    elif session.switch_mode(requested):
                        console.print(f"[dim]Switched to {session.mode.display_name}.[/dim]")
                    else:
                        console.print("[yellow]Habit mode requires a signed-in account.[/yellow]")
                elif user_input == "/history":
                    await session.load_history()
                    _print_history(session)
                else:
                    await send_and_render(session, user_input)
                console.print()

    asyncio.run(_chat())


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
