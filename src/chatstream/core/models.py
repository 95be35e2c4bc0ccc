from __future__ import annotations

import itertools
import time
import uuid
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant"]

_id_counter = itertools.count()


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def generate_id() -> str:
    """Return a new message/session id.

    The process-wide counter keeps ids distinct even when several are created
    within the same millisecond; the random suffix keeps them distinct across
    restarts.
    """
    return f"{now_ms()}-{next(_id_counter)}-{uuid.uuid4().hex[:9]}"


class Attachment(BaseModel):
    """File reference attached to a user message. Contents are never read."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    kind: Literal["image", "file"] = Field(default="file", alias="type")
    url: Optional[str] = None


class Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=generate_id)
    role: Role
    content: str = ""
    timestamp: int = Field(default_factory=now_ms)
    attachments: Optional[List[Attachment]] = None

    def to_wire(self) -> Dict[str, str]:
        """The {role, content} shape sent to the chat endpoint."""
        return {"role": self.role, "content": self.content}


class ChatSession(BaseModel):
    """One persisted conversation thread."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=generate_id)
    title: str
    messages: List[Message] = Field(default_factory=list)
    updated_at: int = Field(default_factory=now_ms, alias="updatedAt")


class StarterPrompt(BaseModel):
    id: str
    title: str
    subtitle: str = ""
    prompt: str


class WireMessage(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    """Request body of the chat endpoint."""
    messages: List[WireMessage]


class ChatKitSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    device_id: Optional[str] = Field(default=None, alias="deviceId")


class ChatKitSessionResponse(BaseModel):
    client_secret: str


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""
    status: str
    service: str
