"""Conversation state for the Quinn analyst chat.

``ChatSession.ask`` sends the history plus a new question, then grows a single
assistant message in place as deltas stream in. Only one request may be in
flight per session; ``cancel()`` stops the network read of the outstanding
request and keeps its stream from emitting anything further.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Literal

from typing_extensions import TypedDict

import httpx

from quinn.analysis.context import AnalysisContext
from quinn.analysis.stream import AnalysisBusyError, decode_stream

logger = logging.getLogger(__name__)

# Queue markers posted by the reader task
_END = object()
_CANCELLED = object()


class ChatMessage(TypedDict):
    role: Literal["user", "assistant"]
    content: str


@dataclass
class StreamingMessage:
    """The assistant's in-progress reply for one turn. Not persisted."""

    turn_index: int
    fragments: list[str] = field(default_factory=list)
    complete: bool = False

    @property
    def text(self) -> str:
        return "".join(self.fragments)


class ChatSession:
    def __init__(self, *, url: str | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.messages: list[ChatMessage] = []
        self._url = url
        self._client = client
        self._generation = 0
        self._active: int | None = None  # generation of the request in flight
        self._reader: asyncio.Task[None] | None = None

    @property
    def loading(self) -> bool:
        return self._active is not None

    def cancel(self) -> None:
        """Abandon the outstanding request.

        The read in progress is cancelled, which closes the response, and the
        stale ``ask`` stops without yielding again. A new question may be
        asked straight away.
        """
        self._generation += 1
        self._active = None
        if self._reader is not None:
            self._reader.cancel()
            self._reader = None

    async def _read(self, body: dict[str, Any], queue: asyncio.Queue[object]) -> None:
        try:
            async for delta in decode_stream(body, url=self._url, client=self._client):
                queue.put_nowait(delta)
        except asyncio.CancelledError:
            queue.put_nowait(_CANCELLED)
            raise
        except Exception as exc:
            queue.put_nowait(exc)
        else:
            queue.put_nowait(_END)

    async def ask(self, question: str, context: AnalysisContext | None = None) -> AsyncIterator[StreamingMessage]:
        """Stream Quinn's answer to ``question``.

        Yields the same ``StreamingMessage`` after every delta, and once more
        with ``complete=True`` when the stream ends normally. The question and
        the growing answer join ``messages`` once the first delta arrives (or
        the stream ends cleanly). If the request fails, even midway through
        the answer, the turn is rolled back and history is left as it was.

        Raises:
            AnalysisBusyError: If another ``ask`` on this session is still running.
            AnalysisRequestError / AnalysisUnavailableError: From the stream.
        """
        if self._active is not None:
            raise AnalysisBusyError("Quinn is still answering the previous question.")

        self._generation += 1
        generation = self._generation
        self._active = generation

        user_message = ChatMessage(role="user", content=question)
        body: dict[str, Any] = {"messages": [*self.messages, user_message]}
        if context is not None:
            body["context"] = context

        queue: asyncio.Queue[object] = asyncio.Queue()
        reader = asyncio.create_task(self._read(body, queue))
        self._reader = reader

        message: StreamingMessage | None = None
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    break
                if item is _CANCELLED or generation != self._generation:
                    logger.debug("Dropping stale analysis stream (generation %d)", generation)
                    return
                if isinstance(item, BaseException):
                    if message is not None:
                        # A partial answer is not kept as if it were complete
                        del self.messages[message.turn_index - 1 :]
                    raise item

                if message is None:
                    self.messages.append(user_message)
                    message = StreamingMessage(turn_index=len(self.messages))
                    self.messages.append(ChatMessage(role="assistant", content=""))
                message.fragments.append(str(item))
                self.messages[message.turn_index] = ChatMessage(role="assistant", content=message.text)
                yield message

            if generation == self._generation:
                if message is None:
                    self.messages.append(user_message)
                else:
                    message.complete = True
                    yield message
        finally:
            if not reader.done():
                reader.cancel()
                await asyncio.gather(reader, return_exceptions=True)
            if self._active == generation:
                self._active = None
                self._reader = None
