from __future__ import annotations
from typing import Iterable, List, Optional


class ProviderError(Exception):
    """Base class for provider-level failures."""


class ProviderClientError(ProviderError):
    """
    Non-retryable: caller/config issue (missing or rejected credential, bad
    endpoint, unsupported setting, etc.). The fix is change input/config, not retry.
    """


class ProviderTransientError(ProviderError):
    """
    Retryable in principle: backend rate limits, timeouts, network hiccups.
    Nothing in switchyard retries automatically; callers decide.
    """


class MissingCredential(ProviderClientError):
    def __init__(self, provider: str):
        super().__init__(f"Missing API key for {provider}")
        self.provider = provider


class InvalidConfiguration(ProviderClientError):
    """Malformed endpoint, unserializable payload, bad setting value."""


class InvalidCredentialFormat(InvalidConfiguration):
    """A credential failed the per-kind format check before reaching the vault."""


class AuthenticationFailed(ProviderClientError):
    def __init__(self, message: str = "API authentication failed"):
        super().__init__(message)


class UnsupportedOperation(ProviderClientError):
    def __init__(self, operation: str):
        super().__init__(f"Unsupported operation: {operation}")
        self.operation = operation


class RateLimitExceeded(ProviderTransientError):
    def __init__(self, message: str = "API rate limit exceeded"):
        super().__init__(message)


class TransportError(ProviderTransientError):
    """Connectivity failure or timeout below the HTTP status level."""


class MalformedResponse(ProviderError):
    """The backend answered, but not in the envelope shape we expect."""


class BackendError(ProviderError):
    """Non-success HTTP status that has no more specific classification."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class CredentialStoreError(ProviderError):
    """The credential vault itself failed (keyring backend error, read-only store)."""


class PartialFailure(ProviderError):
    """A bulk operation where some of the sub-operations failed."""

    def __init__(self, errors: Iterable[Exception], succeeded: Iterable[str] = ()):
        self.errors: List[Exception] = list(errors)
        self.succeeded: List[str] = list(succeeded)
        detail = ", ".join(str(e) for e in self.errors)
        super().__init__(f"Some operations failed: {detail}")


def classify_status(status: int, body: str, provider: str) -> ProviderError:
    """
    Map a non-success HTTP status from a backend onto the error taxonomy.
    The body is only used to enrich the message.
    """
    snippet = (body or "").strip()
    if len(snippet) > 200:
        snippet = snippet[:200] + "..."
    if status in (401, 403):
        return AuthenticationFailed(f"{provider} rejected the API key (HTTP {status})")
    if status == 429:
        return RateLimitExceeded(f"{provider} rate limit exceeded")
    msg = f"{provider} returned HTTP {status}"
    if snippet:
        msg += f": {snippet}"
    return BackendError(msg, status=status)
