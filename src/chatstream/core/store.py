from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from .models import ChatSession, Message, StarterPrompt
from .persistence import KeyValueStore

logger = logging.getLogger(__name__)

HISTORY_KEY = "chatHistory"
PROMPTS_KEY = "starterPrompts"

TITLE_MAX_CHARS = 30
TITLE_ELLIPSIS = "..."
UNTITLED = "New chat"

DEFAULT_STARTER_PROMPTS: List[StarterPrompt] = [
    StarterPrompt(
        id="1",
        title="Explore the architecture",
        subtitle="See how the hybrid AI agent works and what it is made of.",
        prompt=(
            "Describe the architecture of the hybrid AI agent in detail. Which "
            "components does it consist of and how do they work together?"
        ),
    ),
    StarterPrompt(
        id="2",
        title="Discover the capabilities",
        subtitle="Check which processes the agent can automate in your company.",
        prompt=(
            "List and describe the business processes that can be automated by "
            "deploying an AI agent in my company."
        ),
    ),
    StarterPrompt(
        id="3",
        title="Examples in action",
        subtitle="See short examples of agents used in practice.",
        prompt="Give concrete, practical use cases of AI agents across different industries.",
    ),
    StarterPrompt(
        id="4",
        title="Check integrations",
        subtitle="Learn how agents connect to company tools and systems.",
        prompt=(
            "What does integrating AI agents with external tools and company "
            "systems (CRM, ERP, Slack, etc.) look like?"
        ),
    ),
]

_sessions_adapter = TypeAdapter(List[ChatSession])
_prompts_adapter = TypeAdapter(List[StarterPrompt])


def derive_title(message: Message) -> str:
    """First 30 characters of the message text, with an ellipsis if cut."""
    text = message.content
    if not text.strip() and message.attachments:
        text = message.attachments[0].name
    if not text.strip():
        return UNTITLED
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + TITLE_ELLIPSIS
    return text


class SessionStore:
    """Authoritative collection of chat sessions plus the active-session pointer.

    Sessions are kept most-recent-first. Every collection mutation is applied in
    memory and then written through to ``storage`` as one JSON array; the
    active pointer itself is not persisted (``None`` after boot).
    """

    def __init__(self, storage: KeyValueStore):
        self.storage = storage
        self._sessions: List[ChatSession] = []
        self.active_session_id: Optional[str] = None

    @property
    def sessions(self) -> List[ChatSession]:
        return list(self._sessions)

    @property
    def active_session(self) -> Optional[ChatSession]:
        if self.active_session_id is None:
            return None
        return self.get(self.active_session_id)

    def get(self, session_id: str) -> Optional[ChatSession]:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    async def load(self) -> List[ChatSession]:
        raw = await self.storage.get(HISTORY_KEY)
        self._sessions = []
        self.active_session_id = None
        if raw:
            try:
                self._sessions = _sessions_adapter.validate_json(raw)
            except (ValidationError, ValueError) as exc:
                logger.error("Stored chat history is corrupt, starting empty: %s", exc)
        logger.info("Loaded %d chat sessions", len(self._sessions))
        return self.sessions

    async def create_session(self, first_message: Message) -> str:
        session = ChatSession(
            title=derive_title(first_message),
            messages=[first_message.model_copy(deep=True)],
            updated_at=first_message.timestamp,
        )
        self._sessions.insert(0, session)
        self.active_session_id = session.id
        logger.info("Created chat session %s", session.id)
        await self._persist()
        return session.id

    async def append_message(self, session_id: str, message: Message) -> bool:
        session = self.get(session_id)
        if session is None:
            logger.warning("Dropping message %s for missing session %s", message.id, session_id)
            return False
        session.messages.append(message.model_copy(deep=True))
        session.updated_at = message.timestamp
        await self._persist()
        return True

    async def replace_message_content(self, session_id: str, message_id: str, new_content: str) -> bool:
        session = self.get(session_id)
        if session is None:
            return False
        for message in session.messages:
            if message.id == message_id:
                message.content = new_content
                await self._persist()
                return True
        return False

    def select_session(self, session_id: str) -> bool:
        if self.get(session_id) is None:
            logger.warning("Cannot select unknown session %s", session_id)
            return False
        self.active_session_id = session_id
        return True

    def deselect_to_new(self) -> None:
        self.active_session_id = None

    async def rename_session(self, session_id: str, title: str) -> bool:
        session = self.get(session_id)
        if session is None:
            return False
        session.title = title
        await self._persist()
        return True

    async def delete_session(self, session_id: str) -> bool:
        remaining = [s for s in self._sessions if s.id != session_id]
        if len(remaining) == len(self._sessions):
            return False
        self._sessions = remaining
        if self.active_session_id == session_id:
            self.deselect_to_new()
        logger.info("Deleted chat session %s", session_id)
        await self._persist()
        return True

    async def _persist(self) -> None:
        payload = _sessions_adapter.dump_json(self._sessions, by_alias=True, exclude_none=True)
        try:
            await self.storage.set(HISTORY_KEY, payload.decode("utf-8"))
        except OSError as exc:
            logger.error("Failed to persist chat history: %s", exc)


class PromptStore:
    """Editable starter prompts, persisted under ``starterPrompts``."""

    def __init__(self, storage: KeyValueStore, defaults: Optional[List[StarterPrompt]] = None):
        self.storage = storage
        self.defaults = list(defaults if defaults is not None else DEFAULT_STARTER_PROMPTS)
        self._prompts: List[StarterPrompt] = list(self.defaults)

    @property
    def prompts(self) -> List[StarterPrompt]:
        return list(self._prompts)

    async def load(self) -> List[StarterPrompt]:
        raw = await self.storage.get(PROMPTS_KEY)
        self._prompts = list(self.defaults)
        if raw:
            try:
                self._prompts = _prompts_adapter.validate_json(raw)
            except (ValidationError, ValueError) as exc:
                logger.error("Stored starter prompts are corrupt, using defaults: %s", exc)
        return self.prompts

    async def update_prompt(self, prompt: StarterPrompt) -> bool:
        for index, existing in enumerate(self._prompts):
            if existing.id == prompt.id:
                self._prompts[index] = prompt
                await self._persist()
                return True
        logger.warning("Ignoring update for unknown starter prompt %s", prompt.id)
        return False

    async def _persist(self) -> None:
        payload = _prompts_adapter.dump_json(self._prompts)
        try:
            await self.storage.set(PROMPTS_KEY, payload.decode("utf-8"))
        except OSError as exc:
            logger.error("Failed to persist starter prompts: %s", exc)
