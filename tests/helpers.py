"""Scripted chat endpoint used by the stream and orchestrator tests."""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import httpx

DONE = b"data: [DONE]\n\n"


def sse(text: str) -> bytes:
    """One chat-completion delta event carrying ``text``."""
    payload = {"choices": [{"delta": {"content": text}}]}
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


class ScriptedStream:
    """Response body whose chunks are released by the test."""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()

    def push(self, *deltas: str) -> None:
        for delta in deltas:
            self.queue.put_nowait(sse(delta))

    def push_raw(self, data: bytes) -> None:
        self.queue.put_nowait(data)

    def finish(self) -> None:
        self.queue.put_nowait(DONE)
        self.queue.put_nowait(None)

    async def body(self):
        while True:
            chunk = await self.queue.get()
            if chunk is None:
                return
            yield chunk


class FakeChatEndpoint:
    """httpx mock of the chat endpoint; request N streams ``stream(N)``."""

    URL = "http://chat.test/api/chat"

    def __init__(self):
        self.requests: List[Dict[str, Any]] = []
        self.streams: List[ScriptedStream] = []
        self.canned: List[httpx.Response] = []
        self.error: Optional[Exception] = None

    def stream(self, index: int) -> ScriptedStream:
        while len(self.streams) <= index:
            self.streams.append(ScriptedStream())
        return self.streams[index]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if self.error is not None:
            raise self.error
        if self.canned:
            return self.canned.pop(0)
        stream = self.stream(len(self.requests) - 1)
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=stream.body(),
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


async def until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.001)


async def settle() -> None:
    """Give in-flight stream reads time to land (for negative assertions)."""
    await asyncio.sleep(0.05)
