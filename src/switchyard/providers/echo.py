from __future__ import annotations
from typing import AsyncIterator, Dict, List, Optional, Sequence
import asyncio

from switchyard.core.models import Capability, Model

_LOREM_50 = (
    "Lorem ipsum dolor sit amet consectetur adipiscing elit sed do eiusmod tempor "
    "incididunt ut labore et dolore magna aliqua Curabitur non nulla sit amet nisl "
    "tempor convallis quis ac lectus Phasellus viverra nulla ut metus varius laoreet "
    "Quisque rutrum Aenean imperdiet Etiam ultricies nisi vel augue Curabitur ullamcorper ultricies nisi"
).split()

ECHO_MODEL = Model(
    id="echo-lorem",
    name="Echo Lorem",
    description="Offline stub engine that answers with a fixed lorem ipsum",
    context_window=8192,
    provider="local",
    capabilities=(Capability.TEXT_GENERATION, Capability.CONVERSATION, Capability.SUMMARIZATION),
)


class EchoEngine:
    """
    Offline inference engine that returns a fixed 50-word lorem ipsum.
    Streaming yields one word at a time with a small delay to simulate tokens.
    """

    def __init__(self, token_delay: float = 0.05, words: Optional[List[str]] = None):
        self.token_delay = float(token_delay)
        self.words = list(words) if words is not None else list(_LOREM_50)
        self.turns = 0

    async def self_check(self) -> None:
        return None

    def models(self) -> Sequence[Model]:
        return [ECHO_MODEL]

    async def generate(self, messages: List[Dict[str, str]], max_tokens: int) -> str:
        self.turns += 1
        return " ".join(self.words[:max_tokens])

    async def stream(self, messages: List[Dict[str, str]], max_tokens: int) -> AsyncIterator[str]:
        self.turns += 1
        words = self.words[:max_tokens]
        last_idx = len(words) - 1
        for i, w in enumerate(words):
            yield w + ("" if i == last_idx else " ")
            if self.token_delay > 0:
                await asyncio.sleep(self.token_delay)

    async def reset(self) -> None:
        self.turns = 0
