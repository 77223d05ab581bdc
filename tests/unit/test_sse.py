# tests/unit/test_sse.py

from __future__ import annotations
import json
import sys
from pathlib import Path
import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from switchyard.core.errors import BackendError, TransportError  # type: ignore
from switchyard.providers.anthropic import messages_stream_fragment  # type: ignore
from switchyard.providers.openai import chat_stream_fragment  # type: ignore
from switchyard.streaming.sse import decode_event_stream  # type: ignore


class LineSource:
    """Async line source that remembers how far it was read and whether it was closed."""

    def __init__(self, lines, fail_after: int | None = None):
        self.lines = list(lines)
        self.fail_after = fail_after
        self.pulled = 0
        self.closed = False

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        try:
            for line in self.lines:
                if self.fail_after is not None and self.pulled >= self.fail_after:
                    raise TransportError("connection reset")
                self.pulled += 1
                yield line
        finally:
            self.closed = True


def chunk(text: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": text}}]})


async def collect(agen):
    return [x async for x in agen]


@pytest.mark.asyncio
async def test_fragments_in_order_until_done():
    lines = [
        'data: {"choices":[{"delta":{"content":"Hi"}}]}',
        'data: {"choices":[{"delta":{"content":" there"}}]}',
        "data: [DONE]",
    ]
    assert await collect(decode_event_stream(LineSource(lines))) == ["Hi", " there"]


@pytest.mark.asyncio
async def test_malformed_frame_is_skipped():
    lines = [
        "data: not-json",
        'data: {"choices":[{"delta":{"content":"ok"}}]}',
        "data: [DONE]",
    ]
    assert await collect(decode_event_stream(LineSource(lines))) == ["ok"]


@pytest.mark.asyncio
async def test_non_data_lines_and_empty_deltas_are_ignored():
    lines = [
        ": keep-alive",
        "",
        "event: message",
        'data: {"choices":[{"delta":{"role":"assistant"}}]}',   # no content field
        'data: {"choices":[]}',                                 # no choices
        'data: {"choices":[{"delta":{"content":""}}]}',         # empty content
        chunk("a") + "\r",
        "data: [DONE]",
        chunk("never"),
    ]
    assert await collect(decode_event_stream(LineSource(lines))) == ["a"]


@pytest.mark.asyncio
async def test_stream_ends_when_source_is_exhausted():
    lines = [chunk("x"), chunk("y")]
    assert await collect(decode_event_stream(LineSource(lines))) == ["x", "y"]


@pytest.mark.asyncio
async def test_source_errors_propagate():
    src = LineSource([chunk("x"), chunk("y"), chunk("z")], fail_after=1)
    seen = []
    with pytest.raises(TransportError):
        async for piece in decode_event_stream(src):
            seen.append(piece)
    assert seen == ["x"]


@pytest.mark.asyncio
async def test_early_close_releases_source():
    src = LineSource([chunk(str(i)) for i in range(100)])
    stream = decode_event_stream(src)
    first = await stream.__anext__()
    assert first == "0"
    await stream.aclose()
    assert src.closed
    assert src.pulled < 100


@pytest.mark.asyncio
async def test_done_releases_source():
    src = LineSource([chunk("a"), "data: [DONE]", chunk("b")])
    assert await collect(decode_event_stream(src)) == ["a"]
    assert src.closed


@pytest.mark.asyncio
async def test_error_frame_terminates_with_classified_error():
    lines = [chunk("a"), 'data: {"error": {"message": "overloaded"}}', chunk("b")]
    with pytest.raises(BackendError, match="overloaded"):
        await collect(decode_event_stream(LineSource(lines), chat_stream_fragment))


@pytest.mark.asyncio
async def test_messages_api_frames():
    lines = [
        "event: message_start",
        'data: {"type":"message_start","message":{"id":"msg_1"}}',
        "event: content_block_delta",
        'data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"Hel"}}',
        'data: {"type":"ping"}',
        'data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"lo"}}',
        'data: {"type":"message_stop"}',
    ]
    out = await collect(decode_event_stream(LineSource(lines), messages_stream_fragment))
    assert out == ["Hel", "lo"]


@pytest.mark.asyncio
async def test_messages_api_error_frame():
    lines = ['data: {"type":"error","error":{"type":"overloaded_error","message":"Overloaded"}}']
    with pytest.raises(BackendError, match="Overloaded"):
        await collect(decode_event_stream(LineSource(lines), messages_stream_fragment))
