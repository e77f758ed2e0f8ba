"""Streaming analysis decoder — server-sent-event frames to text deltas.

The analysis endpoint answers with ``text/event-stream`` framing::

    data: {"choices":[{"delta":{"content":"Hello"}}]}

    data: [DONE]

Byte chunks from the network are decoded incrementally and split into lines.
Blank lines, ``:`` comments and non-``data:`` lines are ignored. A ``data:``
line whose JSON does not parse is put back at the front of the buffer and the
decoder waits for more bytes before retrying it, so a frame is never lost just
because it straddled two reads. A line that still fails after more bytes have
arrived (or at the final flush) is dropped as malformed; it never aborts the
stream.
"""

import codecs
import json
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

import httpx

from quinn.config import get_settings
from quinn.observability.metrics import STREAM_FRAMES_TOTAL

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

_STATUS_MESSAGES: dict[int, str] = {
    402: "AI credits exhausted.",
    429: "Rate limit exceeded. Please try again shortly.",
}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class AnalysisError(Exception):
    """Base class for analysis failures shown to the operator."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class AnalysisRequestError(AnalysisError):
    """The analysis endpoint answered with a non-2xx status. Retryable."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        super().__init__(message)


class AnalysisUnavailableError(AnalysisError):
    """The request could not be sent or the stream was cut off mid-read."""


class AnalysisBusyError(AnalysisError):
    """A request is already in flight for this conversation."""


# ---------------------------------------------------------------------------
# Frame decoder
# ---------------------------------------------------------------------------


def extract_delta(payload: Any) -> str | None:
    """Pull ``choices[0].delta.content`` out of a chat-completions chunk."""
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None


class SSEDeltaDecoder:
    """Line-buffer state machine turning SSE byte chunks into text deltas.

    Call ``feed()`` for every chunk and ``finish()`` once the read loop hits
    end-of-stream. Both return the deltas completed by that call, in order.
    ``done`` flips once the ``[DONE]`` sentinel has been seen; everything after
    it is ignored.
    """

    def __init__(self) -> None:
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        # Head line waiting for more bytes, and the buffer size when it was deferred
        self._deferred: tuple[str, int] | None = None
        self.done = False

    def feed(self, chunk: bytes) -> list[str]:
        if self.done:
            return []
        self._buffer += self._text.decode(chunk)
        return self._drain(final=False)

    def finish(self) -> list[str]:
        """Flush whatever is left, including a last line with no trailing newline."""
        if self.done:
            return []
        self._buffer += self._text.decode(b"", final=True)
        if self._buffer and not self._buffer.endswith("\n"):
            self._buffer += "\n"
        return self._drain(final=True)

    def _drain(self, *, final: bool) -> list[str]:
        deltas: list[str] = []
        while not self.done:
            newline = self._buffer.find("\n")
            if newline == -1:
                break
            line = self._buffer[:newline]
            if line.endswith("\r"):
                line = line[:-1]

            outcome, delta = _classify(line)
            if outcome == "deferred":
                retried = self._deferred is not None and self._deferred[0] == line
                if retried and not final and self._deferred[1] == len(self._buffer):  # type: ignore[index]
                    break  # nothing new since the last attempt
                if final or retried:
                    outcome = "malformed"
                    logger.debug("Dropping malformed stream frame: %.200s", line)
                else:
                    self._deferred = (line, len(self._buffer))
                    STREAM_FRAMES_TOTAL.labels(outcome="deferred").inc()
                    break

            self._deferred = None
            self._buffer = self._buffer[newline + 1 :]
            STREAM_FRAMES_TOTAL.labels(outcome=outcome).inc()
            if outcome == "done":
                self.done = True
            elif delta:
                deltas.append(delta)
        return deltas


def _classify(line: str) -> tuple[str, str | None]:
    """Return (outcome, delta) for one complete line."""
    if not line.strip() or line.startswith(":"):
        return "ignored", None
    if not line.startswith(DATA_PREFIX):
        return "ignored", None
    data = line[len(DATA_PREFIX) :].strip()
    if data == DONE_SENTINEL:
        return "done", None
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        return "deferred", None
    delta = extract_delta(payload)
    if delta is None:
        return "ignored", None
    return "delta", delta


# ---------------------------------------------------------------------------
# HTTP read loop
# ---------------------------------------------------------------------------


def _error_message(status_code: int, body: bytes) -> str:
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        data = None
    if isinstance(data, dict) and isinstance(data.get("error"), str) and data["error"]:
        return data["error"]
    return _STATUS_MESSAGES.get(status_code, f"Analysis request failed (HTTP {status_code})")


async def decode_stream(
    request_body: Mapping[str, Any],
    *,
    url: str | None = None,
    client: httpx.AsyncClient | None = None,
    headers: Mapping[str, str] | None = None,
) -> AsyncIterator[str]:
    """POST an analysis request and yield text deltas as they stream in.

    The sequence is finite and cannot be restarted. Closing the generator
    early (e.g. the caller cancelled) closes the response and issues no
    further reads.

    Args:
        request_body: JSON body, typically ``{"messages": [...], "context": {...}}``.
        url: Analysis endpoint. Defaults to ``ANALYSIS_URL`` from settings.
        client: Shared ``httpx.AsyncClient``. A private one is created (and
            closed) when omitted.
        headers: Extra request headers.

    Raises:
        AnalysisRequestError: On a non-2xx response.
        AnalysisUnavailableError: If the connection fails or drops mid-stream.
    """
    settings = get_settings()
    target = url or settings.analysis_url
    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=settings.analysis_timeout_seconds)
    decoder = SSEDeltaDecoder()

    try:
        async with http.stream("POST", target, json=dict(request_body), headers=dict(headers or {})) as response:
            if not response.is_success:
                body = await response.aread()
                message = _error_message(response.status_code, body)
                logger.warning("Analysis request failed: HTTP %d — %s", response.status_code, message)
                raise AnalysisRequestError(response.status_code, message)

            async for chunk in response.aiter_bytes():
                for delta in decoder.feed(chunk):
                    yield delta
                if decoder.done:
                    return

            for delta in decoder.finish():
                yield delta
    except httpx.TransportError as exc:
        logger.warning("Analysis stream unavailable: %s", exc)
        raise AnalysisUnavailableError(f"Quinn is unavailable: {exc}") from exc
    finally:
        if owns_client:
            await http.aclose()
