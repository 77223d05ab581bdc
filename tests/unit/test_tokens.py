# tests/unit/test_tokens.py

from __future__ import annotations
import sys
from pathlib import Path

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

import switchyard.accounting.tokens as tokens  # type: ignore
from switchyard.accounting.tokens import TokenCounter  # type: ignore


class FakeEncoding:
    def encode(self, text):
        return text.split()


def test_heuristic_without_encoding():
    counter = TokenCounter()
    assert counter.count_text("") == 0
    assert counter.count_text("abcd") == 1
    assert counter.count_text("abcdefgh") == 2


def test_uses_tiktoken_encoding_when_configured(monkeypatch):
    monkeypatch.setattr(tokens.tiktoken, "get_encoding", lambda name: FakeEncoding())
    counter = TokenCounter("cl100k_base")
    assert counter.count_text("one two three") == 3


def test_falls_back_when_encoding_cannot_load(monkeypatch):
    def boom(name):
        raise ValueError(f"unknown encoding {name}")

    monkeypatch.setattr(tokens.tiktoken, "get_encoding", boom)
    counter = TokenCounter("no-such-encoding")
    assert counter.count_text("abcdefgh") == 2


def test_message_overhead():
    counter = TokenCounter()
    msgs = [{"role": "system", "content": "abcd"}, {"role": "user", "content": ""}]
    assert counter.count_messages(msgs) == 4 + 1 + 4
