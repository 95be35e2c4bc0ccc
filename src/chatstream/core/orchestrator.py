from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional

from .logging import ConversationLogger
from .models import Attachment, ChatSession, Message, StarterPrompt
from .store import UNTITLED, PromptStore, SessionStore
from .stream import DeltaStream, StreamController, StreamOutcome

logger = logging.getLogger(__name__)


ViewListener = Callable[[List[Message]], None]


class TurnState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    ABORTED = "aborted"


@dataclass
class TurnResult:
    """How one send ended."""

    session_id: Optional[str]
    committed: bool
    content: str
    outcome: Optional[StreamOutcome] = None


@dataclass
class _Turn:
    session_id: Optional[str] = None
    placeholder: Optional[Message] = None
    run: Optional[DeltaStream] = None
    buffer: str = ""
    deltas: int = 0


class ConversationOrchestrator:
    """Runs chat turns against a SessionStore and keeps the live view in sync.

    The live view (``messages``) is what the user currently sees. Every stream
    continuation re-reads ``store.active_session_id`` when a delta arrives, so a
    reply keeps landing in its own session's history while the user browses
    elsewhere, and only shows up live when its session is the one on screen.
    """

    def __init__(
        self,
        store: SessionStore,
        controller: StreamController,
        *,
        prompts: Optional[PromptStore] = None,
        conversation_logger: Optional[ConversationLogger] = None,
        on_change: Optional[ViewListener] = None,
    ):
        self.store = store
        self.controller = controller
        self.prompt_store = prompts
        self.conversation_logger = conversation_logger
        self.on_change = on_change
        self.state = TurnState.IDLE
        self.is_loading = False
        self._messages: List[Message] = []
        self._current: Optional[_Turn] = None
        self._inflight: Optional[_Turn] = None

    # ------------------------------------------------------------------
    # read-only views

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def sessions(self) -> List[ChatSession]:
        return self.store.sessions

    @property
    def prompts(self) -> List[StarterPrompt]:
        return self.prompt_store.prompts if self.prompt_store else []

    @property
    def active_session_id(self) -> Optional[str]:
        return self.store.active_session_id

    @property
    def chat_title(self) -> str:
        session = self.store.active_session
        return session.title if session else UNTITLED

    async def load(self) -> None:
        await self.store.load()
        if self.prompt_store is not None:
            await self.prompt_store.load()
        self._set_view([])

    async def aclose(self) -> None:
        await self.controller.aclose()

    # ------------------------------------------------------------------
    # navigation

    def new_chat(self) -> None:
        """Show an empty conversation. A reply still streaming keeps going."""
        self.store.deselect_to_new()
        self._set_view([])

    def select_session(self, session_id: str) -> bool:
        if not self.store.select_session(session_id):
            return False
        session = self.store.get(session_id)
        view = [m.model_copy(deep=True) for m in session.messages]
        turn = self._inflight
        if turn is not None and turn.session_id == session_id and turn.placeholder is not None:
            view.append(turn.placeholder.model_copy(update={"content": turn.buffer}))
        self._set_view(view)
        return True

    async def rename_session(self, session_id: str, title: str) -> bool:
        return await self.store.rename_session(session_id, title)

    async def delete_session(self, session_id: str) -> bool:
        was_active = self.store.active_session_id == session_id
        turn = self._inflight
        if turn is not None and turn.session_id == session_id:
            self.stop()
        deleted = await self.store.delete_session(session_id)
        if deleted and was_active:
            self.new_chat()
        return deleted

    async def update_prompt(self, prompt: StarterPrompt) -> bool:
        if self.prompt_store is None:
            return False
        return await self.prompt_store.update_prompt(prompt)

    def stop(self) -> bool:
        """Cancel the running reply. The partial text is not persisted."""
        stopped = self.controller.stop()
        if stopped:
            self.is_loading = False
        return stopped

    # ------------------------------------------------------------------
    # turns

    async def send(
        self,
        text: str,
        attachments: Optional[Iterable[Attachment]] = None,
        *,
        session_id: Optional[str] = None,
    ) -> Optional[TurnResult]:
        """Send a user message and stream the assistant reply.

        Args:
            text: Message text
            attachments: Optional file references
            session_id: Send into this session instead of the active one

        Returns:
            TurnResult, or None when the send was rejected (nothing to send or
            unknown target session).
        """
        attachment_list = list(attachments or [])
        if not text.strip() and not attachment_list:
            logger.debug("Ignoring send with no text and no attachments")
            return None

        target = session_id or self.store.active_session_id
        if target is not None and self.store.get(target) is None:
            logger.warning("Ignoring send to unknown session %s", target)
            return None

        turn = _Turn(session_id=target)
        self._current = turn
        self.state = TurnState.SENDING
        self.is_loading = True

        user_message = Message(role="user", content=text, attachments=attachment_list or None)
        result = TurnResult(session_id=target, committed=False, content="")
        try:
            if target is None:
                target = await self.store.create_session(user_message)
                turn.session_id = target
                context = [user_message]
                if target == self.store.active_session_id:
                    self._set_view([user_message.model_copy(deep=True)])
            else:
                context = list(self.store.get(target).messages) + [user_message]
                await self.store.append_message(target, user_message)
                if target == self.store.active_session_id:
                    self._set_view(self._messages + [user_message.model_copy(deep=True)])
            result.session_id = target

            wire = [m.to_wire() for m in context]
            if self.conversation_logger is not None:
                await self.conversation_logger.log_request(target, wire)

            turn.placeholder = Message(role="assistant", content="")
            turn.run = self.controller.start(wire)
            self._inflight = turn
            self._set_state(turn, TurnState.STREAMING)
            if target == self.store.active_session_id:
                self._set_view(self._messages + [turn.placeholder.model_copy()])

            async for delta in turn.run:
                turn.buffer += delta
                turn.deltas += 1
                self._apply_live(turn)

            result.content = turn.buffer
            result.outcome = turn.run.outcome
            if turn.run.outcome is StreamOutcome.CANCELLED:
                self._set_state(turn, TurnState.ABORTED)
                logger.info("Reply for session %s aborted after %d deltas", target, turn.deltas)
            else:
                self._set_state(turn, TurnState.FINALIZING)
                reply = turn.placeholder.model_copy(update={"content": turn.buffer})
                result.committed = await self.store.append_message(target, reply)

            if self.conversation_logger is not None:
                await self.conversation_logger.log_turn(target, {
                    "outcome": result.outcome.value if result.outcome else None,
                    "committed": result.committed,
                    "deltas": turn.deltas,
                    "reply_length": len(turn.buffer),
                })
        except Exception as exc:
            logger.exception("Chat turn failed for session %s", target)
            if self.conversation_logger is not None and target is not None:
                await self.conversation_logger.log_error(target, "pipeline_error", str(exc))
        finally:
            if turn.run is not None:
                if not turn.run.finished:
                    await turn.run.aclose()
                self.controller.release(turn.run)
            if self._inflight is turn:
                self._inflight = None
            if self._current is turn:
                self._current = None
                self.is_loading = False
                self.state = TurnState.IDLE
        return result

    def _set_state(self, turn: _Turn, state: TurnState) -> None:
        # a superseded turn no longer owns the state machine
        if self._current is turn:
            self.state = state

    def _apply_live(self, turn: _Turn) -> None:
        if turn.session_id != self.store.active_session_id:
            return
        for index, message in enumerate(self._messages):
            if message.id == turn.placeholder.id:
                self._messages[index] = message.model_copy(update={"content": turn.buffer})
                self._notify()
                return

    def _set_view(self, messages: List[Message]) -> None:
        self._messages = messages
        self._notify()

    def _notify(self) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(self.messages)
        except Exception as exc:  # pragma: no cover - logging branch only
            logger.warning("View listener raised an exception: %s", exc, exc_info=True)
