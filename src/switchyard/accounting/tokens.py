# src/switchyard/accounting/tokens.py
from __future__ import annotations
from typing import Dict, Iterable, Optional

import tiktoken


def _rough_token_count(text: str) -> int:
    # Fallback heuristic ≈ 4 chars/token
    if not text:
        return 0
    return max(1, (len(text) + 3) // 4)


class TokenCounter:
    """
    Estimates token counts when a backend does not report usage
    (streamed replies, local generation).
    Uses tiktoken when an encoding is configured and loads; otherwise a simple heuristic.
    """
    def __init__(self, encoding_name: Optional[str] = None):
        self.encoding_name = encoding_name
        self._enc = None
        self._loaded = False

    def _encoding(self):
        if not self._loaded:
            self._loaded = True
            if self.encoding_name:
                try:
                    # get_encoding may need to fetch the BPE file on first use
                    self._enc = tiktoken.get_encoding(self.encoding_name)
                except Exception:
                    self._enc = None
        return self._enc

    def count_text(self, text: str) -> int:
        enc = self._encoding()
        if enc is not None:
            try:
                return len(enc.encode(text))
            except Exception:
                pass
        return _rough_token_count(text)

    def count_messages(self, messages: Iterable[Dict[str, str]]) -> int:
        # per-message overhead (role, separators) + content tokens
        total = 0
        for m in messages:
            total += 4
            total += self.count_text(str(m.get("content", "")))
        return total
