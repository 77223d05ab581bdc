"""Decoder for `data: {json}` event streams.

Turns an incremental line source into a lazy sequence of text fragments.
Keep-alive/comment lines and frames that are not JSON, or lack the content
field, are skipped. Errors from the line source itself propagate.
"""

from __future__ import annotations

import json
from contextlib import aclosing
from typing import Any, AsyncIterable, AsyncIterator, Callable, Optional

from switchyard.logging_setup import get_logger

logger = get_logger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

FragmentExtractor = Callable[[Any], Optional[str]]


def chat_completion_delta(payload: Any) -> Optional[str]:
    """choices[0].delta.content of a chat-completions chunk."""
    return payload["choices"][0]["delta"]["content"]


async def decode_event_stream(
    lines: AsyncIterable[str],
    extract: FragmentExtractor = chat_completion_delta,
) -> AsyncIterator[str]:
    """
    Yield one fragment per usable `data:` frame, in arrival order.

    Stops on the `[DONE]` sentinel or when the source is exhausted. The
    extractor may raise a ProviderError for backend error frames; that ends
    the stream. Shape errors (KeyError, IndexError, TypeError) mean "no
    content in this frame" and are skipped.
    """
    source = lines.__aiter__()
    async with aclosing(_lines_of(source)) as frames:
        async for line in frames:
            if not line.startswith(DATA_PREFIX):
                continue
            data = line[len(DATA_PREFIX):]
            if data.strip() == DONE_SENTINEL:
                return
            try:
                payload = json.loads(data)
            except ValueError:
                logger.debug("sse_frame_unparseable", size=len(data))
                continue
            try:
                fragment = extract(payload)
            except (KeyError, IndexError, TypeError, AttributeError):
                continue
            if isinstance(fragment, str) and fragment:
                yield fragment


async def _lines_of(source: AsyncIterator[str]) -> AsyncIterator[str]:
    try:
        async for line in source:
            yield line.rstrip("\r")
    finally:
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()
