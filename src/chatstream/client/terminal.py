"""Line-oriented terminal front end for the conversation orchestrator."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from ..core.config import Settings, load_settings
from ..core.exceptions import ConfigurationError
from ..core.logging import get_conversation_logger
from ..core.models import Attachment, Message
from ..core.orchestrator import ConversationOrchestrator
from ..core.persistence import FileKeyValueStore
from ..core.store import PromptStore, SessionStore
from ..core.stream import StreamController

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".heic"}

HELP_TEXT = """Commands:
  /new                start a new chat
  /list               list chats (most recent first)
  /select N           open chat number N from /list
  /rename TITLE       rename the open chat
  /delete             delete the open chat
  /stop               stop the reply being generated
  /prompts            show starter prompts
  /prompt N           send starter prompt number N
  /attach PATH        attach a file reference to the next message
  /quit               exit
Anything else is sent as a message."""


def attachment_for(path: str) -> Attachment:
    p = Path(path).expanduser()
    kind = "image" if p.suffix.lower() in IMAGE_SUFFIXES else "file"
    return Attachment(name=p.name, kind=kind, url=p.resolve().as_uri())


class TerminalClient:
    """Prints the live view incrementally and dispatches slash commands."""

    def __init__(self, orchestrator: ConversationOrchestrator):
        self.orchestrator = orchestrator
        self.orchestrator.on_change = self.render
        self._printed: Dict[str, int] = {}
        self._pending_attachments: List[Attachment] = []
        self._turns: List[asyncio.Task] = []

    def render(self, messages: List[Message]) -> None:
        visible = {m.id for m in messages}
        self._printed = {k: v for k, v in self._printed.items() if k in visible}
        for message in messages:
            if message.role != "assistant":
                self._printed.setdefault(message.id, len(message.content))
                continue
            shown = self._printed.get(message.id)
            if shown is None:
                sys.stdout.write("\nassistant: ")
                shown = 0
            sys.stdout.write(message.content[shown:])
            sys.stdout.flush()
            self._printed[message.id] = len(message.content)

    def show_view(self) -> None:
        print(f"--- {self.orchestrator.chat_title} ---")
        self._printed = {}
        for message in self.orchestrator.messages:
            print(f"{message.role}: {message.content}")
            self._printed[message.id] = len(message.content)

    async def handle(self, line: str) -> bool:
        """Process one input line. Returns False when the client should exit."""
        line = line.strip()
        if not line:
            return True
        if not line.startswith("/"):
            self._start_turn(line)
            return True

        command, _, arg = line.partition(" ")
        arg = arg.strip()
        orch = self.orchestrator

        if command == "/quit":
            return False
        if command == "/help":
            print(HELP_TEXT)
        elif command == "/new":
            orch.new_chat()
            self.show_view()
        elif command == "/list":
            for index, session in enumerate(orch.sessions, start=1):
                marker = "*" if session.id == orch.active_session_id else " "
                print(f"{marker} {index}. {session.title}")
        elif command == "/select":
            session = self._session_at(arg)
            if session and orch.select_session(session.id):
                self.show_view()
        elif command == "/rename":
            if orch.active_session_id and arg:
                await orch.rename_session(orch.active_session_id, arg)
        elif command == "/delete":
            if orch.active_session_id:
                await orch.delete_session(orch.active_session_id)
                self.show_view()
        elif command == "/stop":
            if not orch.stop():
                print("Nothing to stop.")
        elif command == "/prompts":
            for index, prompt in enumerate(orch.prompts, start=1):
                print(f"{index}. {prompt.title} - {prompt.subtitle}")
        elif command == "/prompt":
            prompts = orch.prompts
            if arg.isdigit() and 1 <= int(arg) <= len(prompts):
                self._start_turn(prompts[int(arg) - 1].prompt)
            else:
                print("Unknown prompt number.")
        elif command == "/attach":
            if arg:
                self._pending_attachments.append(attachment_for(arg))
                print(f"Attached {self._pending_attachments[-1].name}")
        else:
            print(f"Unknown command {command}. Type /help for a list.")
        return True

    def _session_at(self, arg: str):
        sessions = self.orchestrator.sessions
        if arg.isdigit() and 1 <= int(arg) <= len(sessions):
            return sessions[int(arg) - 1]
        print("Unknown chat number.")
        return None

    def _start_turn(self, text: str) -> None:
        attachments, self._pending_attachments = self._pending_attachments, []
        task = asyncio.ensure_future(self.orchestrator.send(text, attachments))
        self._turns.append(task)
        task.add_done_callback(self._turns.remove)

    async def run(self) -> None:
        print(HELP_TEXT)
        while True:
            line = await asyncio.to_thread(input, "\n> ")
            if not await self.handle(line):
                break
        self.orchestrator.stop()
        if self._turns:
            await asyncio.gather(*self._turns, return_exceptions=True)


def build_orchestrator(settings: Settings) -> ConversationOrchestrator:
    storage = FileKeyValueStore(settings.storage_dir)
    return ConversationOrchestrator(
        SessionStore(storage),
        StreamController(settings.chat_endpoint, connect_timeout=settings.connect_timeout),
        prompts=PromptStore(storage),
        conversation_logger=get_conversation_logger(settings.log_dir),
    )


async def run_client(settings: Settings) -> None:
    orchestrator = build_orchestrator(settings)
    await orchestrator.load()
    try:
        await TerminalClient(orchestrator).run()
    finally:
        await orchestrator.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="chatstream terminal client")
    parser.add_argument("--config", type=Path, help="Configuration YAML file")
    parser.add_argument("--endpoint", help="Chat endpoint URL (default: from config)")
    args = parser.parse_args(argv)

    load_dotenv()
    try:
        settings = load_settings(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    if args.endpoint:
        settings.chat_endpoint = args.endpoint

    # keep log records out of the conversation on stdout
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        filename=str(settings.log_dir / "client.log"),
    )

    try:
        asyncio.run(run_client(settings))
    except (KeyboardInterrupt, EOFError):
        print("\nBye")
    return 0
