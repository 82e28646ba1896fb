#!/usr/bin/env python3
"""Kaiwa Practice CLI - terminal client for the practice backend.

Generates dialogues with live progress, browses saved practices and runs
line-by-line speaking practice with audio playback.
"""

import argparse
import asyncio
import os
import signal
import sys
from typing import Optional

import httpx
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.style import Style
from rich.table import Table
from rich.text import Text

from kaiwa.client import (
    ApiError,
    FfplayAudioPlayer,
    PlaybackController,
    PracticeApiClient,
    PracticeSession,
)
from kaiwa.schemas.conversation import (
    Conversation,
    GenerateRequest,
    PartialLLMConversation,
)
from kaiwa.schemas.events import CompleteEvent, ProgressEvent
from kaiwa.schemas.practice import PracticeListItem
from kaiwa.services.reading_alignment import render_inline

# Styles
ROLE_A_STYLE = Style(color="bright_magenta", bold=True)
ROLE_B_STYLE = Style(color="bright_cyan", bold=True)
ERROR_STYLE = Style(color="red", bold=True)
INFO_STYLE = Style(color="cyan")

DIFFICULTIES = ["JLPT N5", "JLPT N4", "JLPT N4-N5", "JLPT N3", "JLPT N2", "JLPT N1"]
VOICE_LABELS = {"different": "不同聲音", "same": "相同聲音"}
FAMILIARITY_LABELS = {"stranger": "初次見面", "casual": "最近認識", "close": "好朋友"}


class _SilentPlayer:
    """Fallback when ffplay is not installed."""

    async def play(self, audio_url: str, *, rate: float = 1.0) -> None:
        return None


class PracticeCli:
    """Terminal client for generating and practicing dialogues."""

    def __init__(self, server_url: str):
        self.server_url = server_url.rstrip("/")
        self.console = Console()
        self.api = PracticeApiClient(self.server_url)
        if FfplayAudioPlayer.available():
            self.player = FfplayAudioPlayer(base_url=self.server_url)
        else:
            self.player = None
        self.playback = PlaybackController(self.player or _SilentPlayer())
        self.running = True
        self.difficulty = "JLPT N4-N5"
        self.voice_mode = "different"
        self.familiarity = "casual"
        self.practices: list[PracticeListItem] = []
        self.current_practice_id: Optional[str] = None
        self.current_prompt: Optional[str] = None
        self.current_conversation: Optional[Conversation] = None

    async def _check_health(self) -> bool:
        """Check if backend is reachable."""
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(f"{self.server_url}/health")
                if resp.status_code == 200:
                    data = resp.json()
                    self.console.print(
                        f"[dim]Connected to backend. LLM: {data.get('llmProvider')}/"
                        f"{data.get('llmModel')}, TTS: {data.get('ttsProvider')}[/dim]"
                    )
                    if self.player is None:
                        self.console.print(
                            "[dim]ffplay not found; audio playback is disabled.[/dim]"
                        )
                    return True
        except httpx.HTTPError as e:
            self.console.print(
                f"[error]Cannot connect to backend: {e}[/error]", style=ERROR_STYLE
            )
        return False

    def _show_help(self) -> None:
        """Show available commands."""
        help_text = """
[bold]Commands:[/bold]
  /new <topic>          Generate a dialogue for a new practice
  /more                 Generate another dialogue for the current practice
  /list                 List saved practices
  /open <n>             Open practice n and its latest dialogue
  /conv <n>             Switch to dialogue n of the current practice
  /rename <n> <title>   Rename practice n
  /delete <n>           Delete practice n (asks for confirmation)
  /delconv <n>          Delete dialogue n of the current practice
  /show                 Print the current dialogue
  /practice [A|B|All]   Practice the current dialogue as a role
  /level <JLPT Nx>      Set difficulty
  /voice different|same Set voice mode
  /tone stranger|casual|close
                        Set familiarity
  /quit                 Exit

[bold]During practice:[/bold]
  n next   p previous   r replay   s slow   f readings
  t translation   b blur   x reset   q leave practice
"""
        self.console.print(
            Panel(help_text.strip(), title="Kaiwa Practice Help", border_style="blue")
        )

    def _settings_line(self) -> str:
        return (
            f"{self.difficulty} · {VOICE_LABELS[self.voice_mode]} · "
            f"{FAMILIARITY_LABELS[self.familiarity]}"
        )

    def _draft_table(self, draft: PartialLLMConversation) -> Table:
        table = Table(
            title=draft.title or "生成中...",
            caption=self._settings_line(),
            expand=True,
        )
        table.add_column("#", justify="right", width=3)
        table.add_column("日文")
        table.add_column("讀音")
        table.add_column("翻譯")
        for index, sentence in enumerate(draft.sentences or []):
            table.add_row(
                str(index + 1),
                sentence.text or "",
                sentence.hiragana or "",
                sentence.translation or "",
            )
        return table

    async def _generate(self, prompt: str, practice_id: Optional[str]) -> None:
        request = GenerateRequest(
            prompt=prompt,
            practice_id=practice_id,
            difficulty=self.difficulty,
            voice_mode=self.voice_mode,
            familiarity=self.familiarity,
        )
        try:
            with Live(console=self.console, refresh_per_second=10) as live:
                live.update(Text("等待模型回應...", style=INFO_STYLE))
                async for event in self.api.generate(request):
                    if isinstance(event, ProgressEvent):
                        live.update(self._draft_table(event.data))
                    elif isinstance(event, CompleteEvent):
                        live.update(Text("完成！", style=INFO_STYLE))
                        self.current_practice_id = event.practice.id
                        self.current_prompt = event.practice.prompt
                        self.current_conversation = event.conversation
        except ApiError as e:
            self.console.print(
                f"[error]Generation failed ({e.status_code}): {e.detail}[/error]",
                style=ERROR_STYLE,
            )
            return
        except httpx.HTTPError as e:
            self.console.print(f"[error]Error: {e}[/error]", style=ERROR_STYLE)
            return

        if self.current_conversation is not None:
            self._print_conversation(self.current_conversation)

    def _print_conversation(self, conversation: Conversation) -> None:
        self.console.print(f"\n[bold]{conversation.title or '(untitled)'}[/bold]")
        self.console.print(
            f"[dim]{conversation.difficulty} · {VOICE_LABELS[conversation.voice_mode]}"
            f" · {FAMILIARITY_LABELS[conversation.familiarity]}[/dim]\n"
        )
        for sentence in conversation.sentences:
            style = ROLE_A_STYLE if sentence.role == "A" else ROLE_B_STYLE
            self.console.print(Text(f"{sentence.role}: ", style=style), end="")
            self.console.print(render_inline(sentence.text, sentence.hiragana))
            self.console.print(f"   [dim]{sentence.translation}[/dim]")
        self.console.print()

    async def _list(self) -> None:
        self.practices = await self.api.list_practices()
        if not self.practices:
            self.console.print("[dim]No practices yet. Try /new 在咖啡店[/dim]")
            return
        table = Table(title="Practices")
        table.add_column("#", justify="right")
        table.add_column("Title / topic")
        table.add_column("Dialogues", justify="right")
        table.add_column("Created")
        for index, practice in enumerate(self.practices, start=1):
            marker = " *" if practice.id == self.current_practice_id else ""
            table.add_row(
                str(index),
                (practice.title or practice.prompt) + marker,
                str(len(practice.conversations)),
                practice.created_at[:16].replace("T", " "),
            )
        self.console.print(table)

    def _practice_at(self, raw: str) -> Optional[PracticeListItem]:
        try:
            index = int(raw) - 1
        except ValueError:
            index = -1
        if not 0 <= index < len(self.practices):
            self.console.print("[dim]Unknown practice number; run /list first.[/dim]")
            return None
        return self.practices[index]

    async def _open(self, raw: str) -> None:
        practice = self._practice_at(raw)
        if practice is None:
            return
        detail = await self.api.get_practice(practice.id)
        self.current_practice_id = detail.id
        self.current_prompt = detail.prompt
        self.current_conversation = detail.conversations[0] if detail.conversations else None
        for index, conversation in enumerate(detail.conversations, start=1):
            self.console.print(f"  {index}. {conversation.title or '(untitled)'}")
        if self.current_conversation is not None:
            self._print_conversation(self.current_conversation)

    async def _switch_conversation(self, raw: str, *, delete: bool = False) -> None:
        if self.current_practice_id is None:
            self.console.print("[dim]Open a practice first.[/dim]")
            return
        detail = await self.api.get_practice(self.current_practice_id)
        try:
            conversation = detail.conversations[int(raw) - 1]
        except (ValueError, IndexError):
            self.console.print("[dim]Unknown dialogue number.[/dim]")
            return
        if not delete:
            self.current_conversation = conversation
            self._print_conversation(conversation)
            return
        if not Confirm.ask("確定要刪除這個對話嗎？", default=False):
            return
        await self.api.delete_conversation(conversation.id)
        if self.current_conversation and self.current_conversation.id == conversation.id:
            self.current_conversation = None
        self.console.print("[info]Dialogue deleted.[/info]", style=INFO_STYLE)

    async def _delete_practice(self, raw: str) -> None:
        practice = self._practice_at(raw)
        if practice is None:
            return
        if not Confirm.ask("確定要刪除這個練習嗎？", default=False):
            return
        await self.api.delete_practice(practice.id)
        if practice.id == self.current_practice_id:
            self.current_practice_id = None
            self.current_prompt = None
            self.current_conversation = None
        self.console.print("[info]Practice deleted.[/info]", style=INFO_STYLE)
        await self._list()

    def _render_line(self, session: PracticeSession) -> None:
        sentence = session.current
        if sentence is None:
            return
        style = ROLE_A_STYLE if sentence.role == "A" else ROLE_B_STYLE
        text = (
            render_inline(sentence.text, sentence.hiragana)
            if session.display.show_reading
            else sentence.text
        )
        if session.display.blur and session.is_learner_line(sentence):
            text = "█" * len(sentence.text)
        body = Text(f"{sentence.role}: ", style=style)
        body.append(text)
        if session.display.show_translation:
            body.append(f"\n{sentence.translation}", style="dim")
        if sentence.grammar_explanation:
            body.append(f"\n\n{sentence.grammar_explanation}", style="italic")
        position = f"{session.current_index + 1}/{len(session.sentences)}"
        speed = " · 0.75x" if session.playback.slow else ""
        self.console.print(Panel(body, title=f"{position}{speed}", border_style="blue"))

    async def _practice(self, role: str) -> None:
        if self.current_conversation is None:
            self.console.print("[dim]Generate or open a dialogue first.[/dim]")
            return
        selected = role if role in ("A", "B") else "All"
        session = PracticeSession(
            sentences=self.current_conversation.sentences,
            playback=self.playback,
            role=selected,
        )
        await session.start()
        self._render_line(session)
        while session.practicing:
            # Read input off the event loop so playback keeps running.
            key = await asyncio.to_thread(
                Prompt.ask, "[bold blue]>[/bold blue]", default="n"
            )
            key = key.strip().lower()
            if key == "n":
                if not await session.next():
                    self.console.print("[dim]Last line. x to reset, q to leave.[/dim]")
                    continue
            elif key == "p":
                if not await session.previous():
                    continue
            elif key == "r":
                await session.replay()
                continue
            elif key == "s":
                slow = session.toggle_slow()
                self.console.print(f"[dim]Slow playback {'on' if slow else 'off'}[/dim]")
                continue
            elif key == "f":
                session.display.show_reading = not session.display.show_reading
            elif key == "t":
                session.display.show_translation = not session.display.show_translation
            elif key == "b":
                session.display.blur = not session.display.blur
            elif key == "x":
                await session.start()
            elif key == "q":
                await session.reset()
                return
            self._render_line(session)

    async def _handle_command(self, cmd: str) -> bool:
        """Handle slash commands. Returns True if handled."""
        parts = cmd.strip().split(maxsplit=2)
        if not parts:
            return False

        command = parts[0].lower()
        rest = cmd.strip()[len(parts[0]) :].strip()

        if command == "/help":
            self._show_help()
        elif command == "/quit":
            self.running = False
        elif command == "/new":
            if not rest:
                self.console.print("[dim]Usage: /new <topic>[/dim]")
            else:
                await self._generate(rest, None)
        elif command == "/more":
            if self.current_practice_id is None or self.current_prompt is None:
                self.console.print("[dim]Open or create a practice first.[/dim]")
            else:
                await self._generate(self.current_prompt, self.current_practice_id)
        elif command == "/list":
            await self._list()
        elif command == "/open" and len(parts) > 1:
            await self._open(parts[1])
        elif command == "/conv" and len(parts) > 1:
            await self._switch_conversation(parts[1])
        elif command == "/delconv" and len(parts) > 1:
            await self._switch_conversation(parts[1], delete=True)
        elif command == "/rename" and len(parts) > 2:
            practice = self._practice_at(parts[1])
            if practice is not None:
                await self.api.rename_practice(practice.id, parts[2])
                await self._list()
        elif command == "/delete" and len(parts) > 1:
            await self._delete_practice(parts[1])
        elif command == "/show":
            if self.current_conversation is not None:
                self._print_conversation(self.current_conversation)
        elif command == "/practice":
            await self._practice(parts[1] if len(parts) > 1 else "All")
        elif command == "/level":
            level = rest.upper().replace("JLPT", "").strip()
            candidate = f"JLPT {level}"
            if candidate in DIFFICULTIES:
                self.difficulty = candidate
            else:
                self.console.print(f"[dim]Choose one of: {', '.join(DIFFICULTIES)}[/dim]")
        elif command == "/voice" and rest in VOICE_LABELS:
            self.voice_mode = rest
        elif command == "/tone" and rest in FAMILIARITY_LABELS:
            self.familiarity = rest
        else:
            return False
        return True

    async def run(self) -> None:
        """Main loop."""
        if not await self._check_health():
            return

        self.console.print()
        self.console.print(
            "[bold]Kaiwa Practice[/bold] - Type /help for commands, Ctrl+D to exit",
            style=INFO_STYLE,
        )
        self.console.print(f"[dim]{self._settings_line()}[/dim]\n")

        try:
            while self.running:
                try:
                    user_input = await asyncio.to_thread(
                        Prompt.ask, "[bold blue]Kaiwa[/bold blue]"
                    )
                    if not user_input.strip():
                        continue
                    if user_input.startswith("/"):
                        try:
                            handled = await self._handle_command(user_input)
                        except ApiError as e:
                            self.console.print(
                                f"[error]Error {e.status_code}: {e.detail}[/error]",
                                style=ERROR_STYLE,
                            )
                            continue
                        if not handled:
                            self.console.print("[dim]Unknown command. /help[/dim]")
                        continue
                    # Plain text is a new topic
                    await self._generate(user_input.strip(), None)
                except EOFError:
                    self.console.print("\n[dim]さようなら！[/dim]")
                    break
                except KeyboardInterrupt:
                    self.console.print()
                    continue
        finally:
            await self.playback.stop()
            if self.player is not None:
                await self.player.aclose()
            await self.api.aclose()


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Kaiwa Practice - terminal client for the practice backend",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  practice_cli.py                           Connect to localhost:8000
  practice_cli.py --server http://pi:8000   Connect to remote server

Environment Variables:
  KAIWA_SERVER    Default server URL
""",
    )
    parser.add_argument(
        "--server",
        "-s",
        default=os.environ.get("KAIWA_SERVER", "http://localhost:8000"),
        help="Backend server URL (default: http://localhost:8000)",
    )

    args = parser.parse_args()

    def signal_handler(sig, frame):
        print("\nExiting...")
        sys.exit(0)

    signal.signal(signal.SIGTERM, signal_handler)

    cli = PracticeCli(server_url=args.server)
    try:
        asyncio.run(cli.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
