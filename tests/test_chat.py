"""Tests for the analyst chat session: in-place growth, history, cancellation."""

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import httpx
import pytest
import respx

from quinn.analysis.chat import ChatSession, StreamingMessage
from quinn.analysis.stream import AnalysisBusyError, AnalysisRequestError, AnalysisUnavailableError

CHAT_URL = "http://quinn.test/analysis/chat"


def _sse(*parts: str) -> bytes:
    frames = [
        "data: " + json.dumps({"choices": [{"delta": {"content": part}}]}) + "\n\n" for part in parts
    ]
    return ("".join(frames) + "data: [DONE]\n\n").encode()


@pytest.fixture(autouse=True)
def _use_mock_settings(mock_settings: Any) -> None:
    """Automatically use mock settings for all tests in this module."""


@pytest.mark.integration
class TestAsk:
    @respx.mock
    async def test_message_grows_in_place(self) -> None:
        respx.post(CHAT_URL).mock(return_value=httpx.Response(200, content=_sse("Hello", " world")))
        session = ChatSession()

        snapshots: list[tuple[str, bool]] = []
        seen: set[int] = set()
        async for message in session.ask("What happened on Line 3?"):
            snapshots.append((message.text, message.complete))
            seen.add(id(message))
            # One assistant entry, replaced rather than appended
            assert [m["role"] for m in session.messages] == ["user", "assistant"]
            assert session.messages[message.turn_index]["content"] == message.text

        assert snapshots == [("Hello", False), ("Hello world", False), ("Hello world", True)]
        assert len(seen) == 1
        assert session.messages == [
            {"role": "user", "content": "What happened on Line 3?"},
            {"role": "assistant", "content": "Hello world"},
        ]
        assert not session.loading

    @respx.mock
    async def test_history_carried_into_next_turn(self) -> None:
        route = respx.post(CHAT_URL).mock(
            side_effect=[
                httpx.Response(200, content=_sse("Packet loss.")),
                httpx.Response(200, content=_sse("Line 3.")),
            ]
        )
        session = ChatSession()
        async for _ in session.ask("What failed?"):
            pass
        async for _ in session.ask("Where?"):
            pass

        second = json.loads(route.calls[1].request.content)
        assert second["messages"] == [
            {"role": "user", "content": "What failed?"},
            {"role": "assistant", "content": "Packet loss."},
            {"role": "user", "content": "Where?"},
        ]
        assert len(session.messages) == 4

    @respx.mock
    async def test_context_sent_with_request(self) -> None:
        route = respx.post(CHAT_URL).mock(return_value=httpx.Response(200, content=_sse("ok")))
        context: Any = {"incidents": [], "events": [], "session_name": "Champions League Semi — QC"}

        async for _ in ChatSession().ask("status?", context):
            pass

        body = json.loads(route.calls.last.request.content)
        assert body["context"]["session_name"] == "Champions League Semi — QC"

    @respx.mock
    async def test_error_leaves_history_unchanged(self) -> None:
        respx.post(CHAT_URL).mock(return_value=httpx.Response(429))
        session = ChatSession()

        with pytest.raises(AnalysisRequestError, match="Rate limit exceeded"):
            async for _ in session.ask("anything?"):
                pass

        assert session.messages == []
        assert not session.loading

    @respx.mock
    async def test_retry_after_error(self) -> None:
        respx.post(CHAT_URL).mock(
            side_effect=[httpx.Response(500, json={"error": "AI gateway error"}), httpx.Response(200, content=_sse("ok"))]
        )
        session = ChatSession()
        with pytest.raises(AnalysisRequestError):
            async for _ in session.ask("q"):
                pass

        replies = [m.text async for m in session.ask("q")]
        assert replies[-1] == "ok"
        assert [m["role"] for m in session.messages] == ["user", "assistant"]

    @respx.mock
    async def test_empty_answer_keeps_question(self) -> None:
        respx.post(CHAT_URL).mock(return_value=httpx.Response(200, content=b"data: [DONE]\n\n"))
        session = ChatSession()

        yielded = [m async for m in session.ask("hello?")]

        assert yielded == []
        assert session.messages == [{"role": "user", "content": "hello?"}]


@pytest.mark.integration
class TestConcurrency:
    @respx.mock
    async def test_second_ask_while_loading_is_rejected(self) -> None:
        respx.post(CHAT_URL).mock(return_value=httpx.Response(200, content=_sse("one", "two")))
        session = ChatSession()

        first = session.ask("first")
        message: StreamingMessage = await anext(first)
        assert message.text == "one"
        assert session.loading

        with pytest.raises(AnalysisBusyError):
            await anext(session.ask("second"))

        await first.aclose()
        assert not session.loading
        assert [m["content"] for m in session.messages] == ["first", "one"]

    @respx.mock
    async def test_cancel_stops_stale_stream(self) -> None:
        route = respx.post(CHAT_URL).mock(
            side_effect=[
                httpx.Response(200, content=_sse("Hel", "lo", " there")),
                httpx.Response(200, content=_sse("fresh")),
            ]
        )
        session = ChatSession()

        stale = session.ask("first")
        await anext(stale)
        session.cancel()
        assert not session.loading

        remaining = [m async for m in stale]
        assert remaining == []
        assert session.messages[-1] == {"role": "assistant", "content": "Hel"}

        replies = [m.text async for m in session.ask("again")]
        assert replies[-1] == "fresh"
        body = json.loads(route.calls[1].request.content)
        assert body["messages"][-1] == {"role": "user", "content": "again"}


class _StalledBody:
    """Response body that sends one frame and then waits for bytes that never come."""

    def __init__(self, first: bytes) -> None:
        self.first = first
        self.stalled = asyncio.Event()
        self.reads_after_stall = 0
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        try:
            yield self.first
            self.stalled.set()
            await asyncio.Event().wait()
            self.reads_after_stall += 1
            yield b""
        finally:
            self.closed = True


def _transport(body: Any) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)

    return httpx.MockTransport(handler)


class TestCancelledRead:
    async def test_cancel_closes_stalled_response(self) -> None:
        body = _StalledBody(_sse("Hel")[: -len(b"data: [DONE]\n\n")])
        async with httpx.AsyncClient(transport=_transport(body)) as client:
            session = ChatSession(client=client)
            stream = session.ask("first")

            message = await anext(stream)
            assert message.text == "Hel"
            await asyncio.wait_for(body.stalled.wait(), timeout=5)

            session.cancel()
            remaining = [m async for m in stream]

        assert remaining == []
        assert body.closed
        assert body.reads_after_stall == 0
        assert not session.loading
        assert session.messages[-1] == {"role": "assistant", "content": "Hel"}


class TestDroppedConnection:
    async def test_partial_answer_rolled_back(self) -> None:
        async def body() -> AsyncIterator[bytes]:
            yield _sse("Most likely")[: -len(b"data: [DONE]\n\n")]
            raise httpx.ReadError("connection reset")

        async with httpx.AsyncClient(transport=_transport(body())) as client:
            session = ChatSession(client=client)
            seen: list[str] = []
            with pytest.raises(AnalysisUnavailableError):
                async for message in session.ask("What failed?"):
                    seen.append(message.text)

        assert seen == ["Most likely"]
        assert session.messages == []
        assert not session.loading

    async def test_earlier_turns_survive_a_dropped_one(self) -> None:
        async def dropped() -> AsyncIterator[bytes]:
            yield _sse("partial")[: -len(b"data: [DONE]\n\n")]
            raise httpx.ReadError("connection reset")

        bodies = iter([_sse("Packet loss."), dropped()])

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=next(bodies))

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            session = ChatSession(client=client)
            async for _ in session.ask("What failed?"):
                pass
            with pytest.raises(AnalysisUnavailableError):
                async for _ in session.ask("Where?"):
                    pass

        assert session.messages == [
            {"role": "user", "content": "What failed?"},
            {"role": "assistant", "content": "Packet loss."},
        ]
