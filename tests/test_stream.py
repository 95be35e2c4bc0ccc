"""Tests for the cancellable stream controller."""

import asyncio

import httpx

from chatstream.core.stream import StreamController, StreamOutcome
from helpers import FakeChatEndpoint, until

CONTEXT = [{"role": "user", "content": "Hello"}]


async def test_stream_yields_deltas_and_completes(endpoint, controller):
    print("Testing a complete stream...")
    endpoint.stream(0).push("Hi", " there")
    endpoint.stream(0).finish()

    run = controller.start(CONTEXT)
    deltas = [delta async for delta in run]

    assert deltas == ["Hi", " there"]
    assert run.outcome is StreamOutcome.COMPLETED
    assert endpoint.requests == [{"messages": CONTEXT}]
    print("✅ Complete stream test passed")


async def test_error_response_becomes_single_error_delta(endpoint, controller):
    endpoint.canned.append(httpx.Response(502, json={"error": "upstream down"}))

    run = controller.start(CONTEXT)
    deltas = [delta async for delta in run]

    assert deltas == ["\n[Connection error: upstream down]"]
    assert run.outcome is StreamOutcome.FAILED


async def test_error_response_without_json_uses_reason_phrase(endpoint, controller):
    endpoint.canned.append(httpx.Response(500, text="<html>oops</html>"))

    deltas = [delta async for delta in controller.start(CONTEXT)]

    assert deltas == ["\n[Connection error: Error: Internal Server Error]"]


async def test_transport_failure_becomes_error_delta(endpoint, controller):
    endpoint.error = httpx.ConnectError("connection refused")

    run = controller.start(CONTEXT)
    deltas = [delta async for delta in run]

    assert len(deltas) == 1
    assert "connection refused" in deltas[0]
    assert run.outcome is StreamOutcome.FAILED


async def test_stop_ends_blocked_read_without_error(endpoint, controller):
    print("Testing cancellation of a stalled stream...")
    stream = endpoint.stream(0)
    stream.push("first")

    run = controller.start(CONTEXT)
    assert await run.__anext__() == "first"

    async def stop_soon():
        await asyncio.sleep(0.01)
        assert controller.stop() is True

    stopper = asyncio.ensure_future(stop_soon())
    rest = await asyncio.wait_for(_drain(run), timeout=1.0)
    await stopper

    assert rest == []
    assert run.outcome is StreamOutcome.CANCELLED
    # chunks that arrive afterwards are never seen
    stream.push("late")
    assert await _drain(run) == []
    print("✅ Cancellation test passed")


async def test_starting_new_stream_cancels_previous(endpoint, controller):
    first = controller.start(CONTEXT)
    second = controller.start(CONTEXT + [{"role": "user", "content": "again"}])

    assert first.cancelled
    assert not second.cancelled
    assert controller.active is second
    assert await _drain(first) == []
    assert first.outcome is StreamOutcome.CANCELLED
    # the cancelled run never reached the network
    endpoint.stream(0).push("ok")
    endpoint.stream(0).finish()
    assert await _drain(second) == ["ok"]
    assert len(endpoint.requests) == 1


async def test_cancellation_is_not_reported_as_error():
    async def handler(request):
        await asyncio.sleep(0.05)
        raise httpx.ReadError("socket closed")

    controller = StreamController(
        FakeChatEndpoint.URL,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    run = controller.start(CONTEXT)
    pull = asyncio.ensure_future(_drain(run))
    await asyncio.sleep(0.01)
    controller.stop()

    assert await pull == []
    assert run.outcome is StreamOutcome.CANCELLED


async def test_release_only_forgets_matching_run(controller):
    first = controller.start(CONTEXT)
    second = controller.start(CONTEXT)
    controller.release(first)
    assert controller.active is second
    controller.release(second)
    assert controller.active is None
    assert controller.stop() is False


async def test_request_is_lazy(endpoint, controller):
    controller.start(CONTEXT)
    await asyncio.sleep(0.01)
    assert endpoint.requests == []

    run = controller.start(CONTEXT)
    endpoint.stream(0).finish()
    await _drain(run)
    await until(lambda: len(endpoint.requests) == 1)


async def _drain(run):
    return [delta async for delta in run]
