"""API key naming, format validation and bulk operations on top of a vault."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from switchyard.core.errors import InvalidCredentialFormat, PartialFailure
from switchyard.core.ports import CredentialVault
from switchyard.logging_setup import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class KeyFormat:
    """Shape a key must have before we hand it to the vault."""

    min_length: int
    prefix: str = ""
    pattern: Optional[str] = None
    hint: str = ""

    def check(self, kind: str, secret: str) -> None:
        ok = secret.startswith(self.prefix) and len(secret) >= self.min_length
        if ok and self.pattern:
            ok = re.fullmatch(self.pattern, secret) is not None
        if not ok:
            raise InvalidCredentialFormat(
                f"Invalid API key format: {self.hint or self._describe(kind)}"
            )

    def _describe(self, kind: str) -> str:
        parts = []
        if self.prefix:
            parts.append(f"start with '{self.prefix}'")
        parts.append(f"be at least {self.min_length} characters")
        return f"{kind} API keys should " + " and ".join(parts)


DEFAULT_KEY_FORMATS: Dict[str, KeyFormat] = {
    "openai": KeyFormat(min_length=20, prefix="sk-"),
    "anthropic": KeyFormat(min_length=30, prefix="sk-ant-"),
    "google_gemini": KeyFormat(
        min_length=20,
        pattern=r"[A-Za-z0-9_-]+",
        hint="Google API keys should be alphanumeric and at least 20 characters",
    ),
}


def key_formats_from_config(raw: Optional[Mapping[str, Mapping[str, Any]]]) -> Dict[str, KeyFormat]:
    formats = dict(DEFAULT_KEY_FORMATS)
    for kind, entry in (raw or {}).items():
        base = formats.get(kind, KeyFormat(min_length=1))
        formats[kind] = KeyFormat(
            min_length=int(entry.get("min_length", base.min_length)),
            prefix=str(entry.get("prefix", base.prefix)),
            pattern=entry.get("pattern", base.pattern),
            hint=str(entry.get("hint", "")),
        )
    return formats


def credential_key(kind: str) -> str:
    return f"{kind}_api_key"


class ApiKeyStore:
    def __init__(
        self,
        vault: CredentialVault,
        kinds: Sequence[str],
        formats: Optional[Mapping[str, KeyFormat]] = None,
    ):
        self.vault = vault
        self.kinds = list(kinds)
        self.formats = dict(formats if formats is not None else DEFAULT_KEY_FORMATS)

    def validate(self, kind: str, secret: str) -> str:
        secret = (secret or "").strip()
        if not secret:
            raise InvalidCredentialFormat("API key cannot be empty")
        fmt = self.formats.get(kind)
        if fmt is not None:
            fmt.check(kind, secret)
        return secret

    def store(self, kind: str, secret: str) -> None:
        self._require_known(kind)
        secret = self.validate(kind, secret)
        self.vault.set(credential_key(kind), secret)
        logger.info("api_key_stored", kind=kind)

    def retrieve(self, kind: str) -> Optional[str]:
        return self.vault.get(credential_key(kind))

    def delete(self, kind: str) -> None:
        self.vault.delete(credential_key(kind))
        logger.info("api_key_deleted", kind=kind)

    def exists(self, kind: str) -> bool:
        return self.vault.exists(credential_key(kind))

    def list_with_credentials(self) -> Set[str]:
        return {kind for kind in self.kinds if self.exists(kind)}

    def clear_all(self, kinds: Optional[Iterable[str]] = None) -> List[str]:
        """
        Delete every known key. Returns the kinds that were cleared; raises
        PartialFailure (after attempting all of them) if any delete failed.
        """
        cleared: List[str] = []
        errors: List[Exception] = []
        for kind in list(kinds if kinds is not None else self.kinds):
            try:
                self.delete(kind)
                cleared.append(kind)
            except Exception as e:
                errors.append(e)
        if errors:
            raise PartialFailure(errors, succeeded=cleared)
        logger.info("api_keys_cleared", count=len(cleared))
        return cleared

    def _require_known(self, kind: str) -> None:
        if kind not in self.kinds:
            raise InvalidCredentialFormat(f"Unknown provider kind '{kind}'. Expected one of {self.kinds}")
