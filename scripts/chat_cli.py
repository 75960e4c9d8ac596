#!/usr/bin/env python3
"""Interactive terminal client for the Taiga assistant service."""

import asyncio
import contextlib
import json
import os
import signal
import sys
from pathlib import Path

import httpx
from rich.console import Console, Group
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from app.clients.chat_stream import ChatBusyError, ChatClient, ChatStreamError
from app.config import DEFAULT_TAIGA_API_URL
from app.models.messages import Message, ReasoningPart, TextPart, ToolCallPart, ToolCallState
from app.services.transcript_store import TranscriptStore

DEFAULT_HISTORY_PATH = Path.home() / ".taiga-assistant" / "sessions.json"

TOOL_STATE_ICONS = {
    ToolCallState.INPUT_STREAMING: "⏳",
    ToolCallState.INPUT_AVAILABLE: "⏳",
    ToolCallState.OUTPUT_AVAILABLE: "✅",
    ToolCallState.OUTPUT_ERROR: "❌",
}


def render_message(message: Message) -> Group:
    """Render an assistant message part by part."""
    renderables = []
    for part in message.parts:
        if isinstance(part, ReasoningPart):
            renderables.append(Text(part.text, style="dim italic"))
        elif isinstance(part, TextPart):
            renderables.append(Markdown(part.text))
        elif isinstance(part, ToolCallPart):
            line = Text(f"{TOOL_STATE_ICONS[part.state]} {part.tool_name} {json.dumps(part.input)}", style="cyan")
            if part.state is ToolCallState.OUTPUT_ERROR:
                line.append(f"\n   {part.error_text}", style="red")
            renderables.append(line)
    if not renderables:
        renderables.append(Text("💭 Thinking...", style="dim"))
    return Group(*renderables)


class ChatCLI:
    """Interactive chat interface for the Taiga assistant service."""

    def __init__(self, base_url: str = "http://localhost:8000", history_path: Path = DEFAULT_HISTORY_PATH):
        """Initialize chat CLI."""
        self.base_url = base_url.rstrip("/")
        self.console = Console()
        self.http = httpx.AsyncClient(timeout=httpx.Timeout(None, connect=10.0))
        self.store = TranscriptStore(history_path)
        self.chat: ChatClient | None = None
        self._live: Live | None = None

    async def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]🤖 Taiga AI Assistant - Interactive Chat[/bold blue]\n"
                "Ask about your projects, sprints, stories and tasks.\n"
                "Commands: /help, /new, /sessions, /switch <n>, /rename <title>, /clear, /delete, /regenerate, /quit",
                border_style="blue",
            )
        )

        try:
            if not await self._test_connection():
                self.console.print(f"[red]❌ Cannot connect to the service at {self.base_url}.[/red]")
                return

            self.console.print("[green]✅ Connected to the assistant service[/green]\n")
            if not await self._login():
                return

            await self._loop()
        finally:
            if self.chat:
                await self.chat.aclose()
            await self.http.aclose()
            self.console.print("\n[yellow]👋 Goodbye![/yellow]")

    async def _ask(self, prompt: str, **kwargs) -> str:
        return await asyncio.to_thread(Prompt.ask, prompt, **kwargs)

    async def _test_connection(self) -> bool:
        """Test connection to the service."""
        try:
            response = await self.http.get(f"{self.base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def _login(self) -> bool:
        backend_url = await self._ask("Taiga API URL", default=os.getenv("TAIGA_API_URL", DEFAULT_TAIGA_API_URL))
        username = await self._ask("Username")
        password = await self._ask("Password", password=True)

        response = await self.http.post(
            f"{self.base_url}/api/auth",
            json={"username": username, "password": password, "backendUrl": backend_url},
        )
        data = response.json()
        if response.status_code != 200:
            self.console.print(f"[red]❌ Login failed: {data.get('error', response.text)}[/red]")
            return False

        user = data["user"]
        self.console.print(f"[green]✅ Logged in as {user.get('full_name') or user['username']}[/green]")

        session = self.store.active_session
        self.chat = ChatClient(
            self.base_url,
            credential=data["token"],
            backend_url=backend_url,
            session_id=session.id if session else None,
            messages=list(session.messages) if session else None,
            on_update=self._on_update,
            http_client=self.http,
        )
        if session:
            self.console.print(f"[dim]Resuming conversation: {session.title}[/dim]")
        return True

    async def _loop(self) -> None:
        while True:
            try:
                user_input = (await self._ask("\n[bold cyan]You[/bold cyan]")).strip()
            except (EOFError, KeyboardInterrupt):
                break

            if not user_input:
                continue
            if user_input.lower() in ["/quit", "/exit"]:
                break
            if user_input.startswith("/"):
                await self._command(user_input)
                continue

            await self._run_turn(self.chat.send_message(user_input), user_input)

    async def _command(self, command: str) -> None:
        name, _, argument = command.partition(" ")
        name = name.lower()

        if name == "/help":
            self._show_help()
        elif name == "/new":
            session = self.store.create_session()
            self._load_session(session.id)
            self.console.print("[yellow]🔄 New conversation[/yellow]")
        elif name == "/sessions":
            self._show_sessions()
        elif name == "/switch":
            sessions = self.store.sessions
            if not argument.isdigit() or not 1 <= int(argument) <= len(sessions):
                self.console.print("[red]Usage: /switch <n> (see /sessions)[/red]")
                return
            session = self.store.select_session(sessions[int(argument) - 1].id)
            self._load_session(session.id)
            self.console.print(f"[yellow]Switched to: {session.title}[/yellow]")
        elif name == "/delete":
            active = self.store.active_session
            if active is None:
                self.console.print("[dim]No active conversation[/dim]")
                return
            self.store.delete_session(active.id)
            self._load_session(self.store.active_session_id)
            self.console.print(f"[yellow]Deleted: {active.title}[/yellow]")
        elif name == "/rename":
            active = self.store.active_session
            if active is None or not argument.strip():
                self.console.print("[red]Usage: /rename <title> (in an active conversation)[/red]")
                return
            self.store.rename_session(active.id, argument.strip())
            self.console.print(f"[yellow]Renamed to: {argument.strip()}[/yellow]")
        elif name == "/clear":
            if self.store.active_session is None:
                self.console.print("[dim]No active conversation[/dim]")
                return
            self.store.clear_active_session()
            self.chat.messages = []
            self.console.print("[yellow]🧹 Conversation cleared[/yellow]")
        elif name == "/regenerate":
            session = self.store.active_session
            last_user = next(
                (m for m in reversed(self.chat.messages) if m.role == "user"),
                None,
            )
            if last_user is None:
                self.console.print("[dim]Nothing to regenerate[/dim]")
                return
            if session:
                kept = next((i for i, m in enumerate(session.messages) if m.id == last_user.id), len(session.messages))
                self.store.truncate_active_session(kept)
            await self._run_turn(self.chat.reload(), last_user.content)
        else:
            self.console.print(f"[red]Unknown command: {name}. Type /help.[/red]")

    def _load_session(self, session_id: str | None) -> None:
        session = self.store.get_session(session_id) if session_id else None
        self.chat.messages = list(session.messages) if session else []
        self.chat.session_id = session.id if session else None

    async def _run_turn(self, turn, user_text: str) -> None:
        """Stream one reply; Ctrl-C stops it without saving anything."""
        loop = asyncio.get_running_loop()
        stop_requested = False

        def request_stop() -> None:
            nonlocal stop_requested
            stop_requested = True
            loop.create_task(self.chat.stop())

        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGINT, request_stop)

        try:
            with Live(console=self.console, refresh_per_second=12, transient=False) as live:
                self._live = live
                reply = await turn
        except ChatBusyError as e:
            self.console.print(f"[red]❌ {e}[/red]")
            return
        finally:
            self._live = None
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGINT)

        if stop_requested or reply is None:
            if isinstance(self.chat.error, ChatStreamError):
                self.console.print(f"[red]❌ {self.chat.error.message}[/red]")
            else:
                self.console.print("[yellow]⏹ Stopped[/yellow]")
            return

        user_message = self.chat.messages[-2] if len(self.chat.messages) >= 2 else Message.user(user_text)
        self.store.add_message(user_message)
        session = self.store.add_message(reply)
        self.chat.session_id = session.id

    async def _on_update(self, message: Message) -> None:
        if self._live is not None:
            self._live.update(
                Panel(render_message(message), title="[bold green]🤖 Taiga Assistant[/bold green]", border_style="green")
            )

    def _show_sessions(self) -> None:
        table = Table(title="Conversations")
        table.add_column("#", justify="right")
        table.add_column("Title")
        table.add_column("Messages", justify="right")
        table.add_column("Updated")
        for index, session in enumerate(self.store.sessions, start=1):
            marker = " ●" if session.id == self.store.active_session_id else ""
            table.add_row(
                str(index),
                f"{session.title}{marker}",
                str(len(session.messages)),
                session.updated_at.strftime("%Y-%m-%d %H:%M"),
            )
        self.console.print(table)

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /new - Start a new conversation
• /sessions - List saved conversations
• /switch <n> - Continue conversation number n
• /rename <title> - Rename the current conversation
• /clear - Remove all messages from the current conversation
• /delete - Delete the current conversation
• /regenerate - Ask again for the last answer
• /quit or /exit - Exit the chat

[bold]Example Questions:[/bold]
1. "List my projects"
2. "Show the current sprint of project 3"
3. "Show the last 5 user stories"
4. "Create a task 'Update docs' in story #12"

[bold]Tips:[/bold]
• Press Ctrl-C while the assistant is answering to stop the reply
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]❓ Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"
    history_path = Path(os.getenv("TAIGA_ASSISTANT_HISTORY", str(DEFAULT_HISTORY_PATH)))

    chat = ChatCLI(base_url, history_path)
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(chat.start())


if __name__ == "__main__":
    main()
