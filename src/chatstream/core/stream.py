from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, AsyncGenerator, Dict, List, Optional, Sequence, Tuple

import httpx

from .decoder import iter_deltas
from .exceptions import StreamResponseError

logger = logging.getLogger(__name__)

ERROR_DELTA_TEMPLATE = "\n[Connection error: {message}]"
DEFAULT_CONNECT_TIMEOUT = 10.0


class StreamOutcome(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class CancellationToken:
    """Cooperative cancellation flag shared between a run and its owner."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


async def _read_error_message(response: httpx.Response) -> str:
    """Best-effort extraction of ``{"error": ...}`` from a failed response."""
    fallback = f"Error: {response.reason_phrase}"
    try:
        body = await response.aread()
        data = json.loads(body)
    except (httpx.HTTPError, ValueError):
        return fallback
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        error = error.get("message")
    return error if isinstance(error, str) and error else fallback


class DeltaStream:
    """One cancellable request, exposed as a lazy async sequence of text deltas.

    Nothing is sent until the first pull. Transport failures and non-2xx
    responses end the sequence with a single human-readable error delta; a
    cancelled run simply stops, even if a read was in progress.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoint: str,
        messages: List[Dict[str, Any]],
        token: CancellationToken,
        *,
        error_template: str = ERROR_DELTA_TEMPLATE,
    ):
        self.messages = messages
        self.token = token
        self.outcome: Optional[StreamOutcome] = None
        self._finished = False
        self._client = client
        self._endpoint = endpoint
        self._error_template = error_template
        self._source = self._events()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def cancel(self) -> None:
        self.token.cancel()

    @property
    def finished(self) -> bool:
        return self._finished

    def __aiter__(self) -> "DeltaStream":
        return self

    async def __anext__(self) -> str:
        if self._finished:
            raise StopAsyncIteration
        if self.token.cancelled:
            await self._finish(StreamOutcome.CANCELLED)
            raise StopAsyncIteration

        pull = asyncio.ensure_future(self._pull())
        waiter = asyncio.ensure_future(self.token.wait())
        try:
            await asyncio.wait({pull, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not pull.done():
                pull.cancel()
                await asyncio.wait({pull})

        # The token is the only source of truth: a chunk that raced with
        # stop() is dropped.
        if self.token.cancelled:
            if not pull.cancelled():
                pull.exception()
            await self._finish(StreamOutcome.CANCELLED)
            raise StopAsyncIteration

        has_value, delta = pull.result()
        if not has_value:
            await self._finish(StreamOutcome.COMPLETED)
            raise StopAsyncIteration
        return delta

    async def aclose(self) -> None:
        await self._finish(StreamOutcome.CANCELLED)

    async def _pull(self) -> Tuple[bool, Optional[str]]:
        try:
            return True, await self._source.__anext__()
        except StopAsyncIteration:
            return False, None

    async def _finish(self, outcome: StreamOutcome) -> None:
        self._finished = True
        if self.outcome is None:
            self.outcome = outcome
        await self._source.aclose()

    async def _events(self) -> AsyncGenerator[str, None]:
        try:
            async with self._client.stream(
                "POST", self._endpoint, json={"messages": self.messages}
            ) as response:
                if not response.is_success:
                    raise StreamResponseError(
                        await _read_error_message(response), response.status_code
                    )
                async for delta in iter_deltas(response.aiter_bytes()):
                    yield delta
        except (httpx.HTTPError, StreamResponseError) as exc:
            if self.token.cancelled:
                return
            logger.error("Chat stream failed: %s", exc)
            self.outcome = StreamOutcome.FAILED
            yield self._error_template.format(message=str(exc) or exc.__class__.__name__)


class StreamController:
    """Owns at most one outstanding chat stream and its cancellation token."""

    def __init__(
        self,
        endpoint: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        error_template: str = ERROR_DELTA_TEMPLATE,
    ):
        self.endpoint = endpoint
        self.connect_timeout = connect_timeout
        self.error_template = error_template
        self._client = client
        self._owns_client = client is None
        self._active: Optional[DeltaStream] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            # no read timeout: a stalled stream lasts until stopped
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(None, connect=self.connect_timeout)
            )
        return self._client

    @property
    def active(self) -> Optional[DeltaStream]:
        return self._active

    def start(self, messages: Sequence[Dict[str, Any]]) -> DeltaStream:
        """Cancel any active run, then return a new lazy run for ``messages``."""
        self.stop()
        run = DeltaStream(
            self.client,
            self.endpoint,
            list(messages),
            CancellationToken(),
            error_template=self.error_template,
        )
        self._active = run
        logger.debug("Started chat stream with %d context messages", len(messages))
        return run

    def stop(self) -> bool:
        """Signal cancellation of the active run. Returns False if there was none."""
        run, self._active = self._active, None
        if run is None:
            return False
        run.cancel()
        logger.info("Cancelled active chat stream")
        return True

    def release(self, run: DeltaStream) -> None:
        """Forget ``run`` if it is still the active one."""
        if self._active is run:
            self._active = None

    async def aclose(self) -> None:
        self.stop()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
