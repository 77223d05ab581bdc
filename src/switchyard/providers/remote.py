"""Shared plumbing for HTTP-backed providers."""

from __future__ import annotations

import abc
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional

from switchyard.accounting.tokens import TokenCounter
from switchyard.core.errors import (
    InvalidConfiguration,
    MalformedResponse,
    MissingCredential,
    UnsupportedOperation,
    classify_status,
)
from switchyard.core.models import NUMBER, ProviderSetting, ProviderType, SettingType
from switchyard.logging_setup import get_logger
from switchyard.providers.base import BaseProvider
from switchyard.providers.param_policy import ParamPolicy
from switchyard.resilience.rate_limiter import DEFAULT_MIN_INTERVAL, RateLimiter
from switchyard.secrets.keys import ApiKeyStore
from switchyard.streaming.sse import FragmentExtractor, decode_event_stream
from switchyard.transport.http import HttpTransport

logger = get_logger(__name__)

USER_AGENT = "switchyard/0.1"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TOP_P = 0.9


class RemoteProvider(BaseProvider):
    """
    Base for remote backends:
    - pulls its API key from the key store on initialize
    - posts JSON through the shared transport, classifying non-2xx statuses
    - exposes model_selection / temperature settings
    """

    provider_type = ProviderType.EXTERNAL
    requires_credential = True
    base_url: str = ""

    def __init__(
        self,
        key_store: ApiKeyStore,
        transport: HttpTransport,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        default_model: Optional[str] = None,
        temperature: float = DEFAULT_TEMPERATURE,
        top_p: Optional[float] = DEFAULT_TOP_P,
        params: Optional[Dict[str, Any]] = None,
        param_policy: Optional[ParamPolicy] = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.key_store = key_store
        self.transport = transport
        if base_url:
            self.base_url = base_url
        if default_model:
            self.default_model_id = default_model
        self.timeout = timeout
        self.temperature = float(temperature)
        self.top_p = top_p
        self.params = dict(params or {})
        self.param_policy = param_policy
        self._api_key: Optional[str] = None

    @classmethod
    def create(
        cls,
        *,
        provider_cfg: Optional[Dict[str, Any]],
        key_store: ApiKeyStore,
        transport: HttpTransport,
        token_counter: Optional[TokenCounter] = None,
        param_policy: Optional[ParamPolicy] = None,
    ) -> "RemoteProvider":
        cfg = provider_cfg or {}
        if param_policy is None and cfg.get("param_rules"):
            param_policy = ParamPolicy.from_config(cfg["param_rules"])
        return cls(
            key_store,
            transport,
            base_url=cfg.get("base_url"),
            timeout=cfg.get("timeout"),
            default_model=cfg.get("default_model"),
            temperature=float(cfg.get("temperature", DEFAULT_TEMPERATURE)),
            top_p=cfg.get("top_p", DEFAULT_TOP_P),
            params=cfg.get("params"),
            param_policy=param_policy,
            rate_limiter=RateLimiter(float(cfg.get("min_request_interval", DEFAULT_MIN_INTERVAL))),
            token_counter=token_counter,
            system_prompt=cfg.get("system_prompt"),
            max_tokens=int(cfg.get("max_tokens", 2048)),
        )

    # ----- credentials -----

    async def _prepare(self) -> None:
        api_key = self.key_store.retrieve(self.kind)
        if not api_key:
            raise MissingCredential(self.display_name)
        self._api_key = api_key

    def _has_credential(self) -> bool:
        return bool(self._api_key)

    def _release(self) -> None:
        self._api_key = None

    def _require_key(self) -> str:
        if not self._api_key:
            raise MissingCredential(self.display_name)
        return self._api_key

    @abc.abstractmethod
    def _auth_headers(self) -> Dict[str, str]: ...

    # ----- wire helpers -----

    def _url(self, path: str) -> str:
        if not self.base_url.startswith(("http://", "https://")):
            raise InvalidConfiguration(f"Invalid API endpoint: {self.base_url!r}")
        return self.base_url.rstrip("/") + path

    def _sampling(self, model_id: str) -> Dict[str, Any]:
        raw: Dict[str, Any] = {"temperature": self.temperature}
        if self.top_p is not None:
            raw["top_p"] = self.top_p
        raw.update(self.params)
        if self.param_policy is None:
            return raw
        effective, warnings = self.param_policy.evaluate(model_id, raw)
        for w in warnings:
            logger.warning("param_policy_drop", provider=self.provider_id, model=model_id, message=w)
        return effective

    async def _post_json(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.transport.request(
            "POST", self._url(path), headers=self._auth_headers(), body=payload, timeout=self.timeout
        )
        if not response.ok:
            raise classify_status(response.status, response.text, self.display_name)
        data = response.json()
        if not isinstance(data, dict):
            raise MalformedResponse(f"Invalid JSON response from {self.display_name}")
        return data

    async def _stream_fragments(
        self, path: str, payload: Dict[str, Any], extract: FragmentExtractor
    ) -> AsyncIterator[str]:
        async with self.transport.open_stream(
            "POST", self._url(path), headers=self._auth_headers(), body=payload, timeout=self.timeout
        ) as stream:
            if not stream.ok:
                raise classify_status(stream.status, await stream.read(), self.display_name)
            async with aclosing(decode_event_stream(stream.lines(), extract)) as fragments:
                async for fragment in fragments:
                    yield fragment

    # ----- settings -----

    def get_configurable_settings(self) -> List[ProviderSetting]:
        default = next((m for m in self._models if m.id == self.default_model_id), None)
        default_name = default.name if default else self.default_model_id
        current = self._selected.name if self._selected else default_name
        return [
            ProviderSetting(
                id="model_selection",
                name="Model",
                description=f"Select the {self.display_name} model to use",
                type=SettingType.selection([m.name for m in self._models]),
                default_value=default_name,
                current_value=current,
                is_required=True,
            ),
            ProviderSetting(
                id="temperature",
                name="Temperature",
                description="Controls randomness in responses (0.0-2.0)",
                type=NUMBER,
                default_value=DEFAULT_TEMPERATURE,
                current_value=self.temperature,
                minimum=0.0,
                maximum=2.0,
            ),
        ]

    def update_setting(self, setting_id: str, value: object) -> None:
        settings = {s.id: s for s in self.get_configurable_settings()}
        if setting_id not in settings:
            raise UnsupportedOperation(f"Setting '{setting_id}' not supported by {self.display_name}")
        if setting_id == "model_selection":
            # accept model ids as well as display names
            if isinstance(value, str) and any(m.id == value for m in self._models):
                self.select_model(value)
                return
            self.select_model(settings[setting_id].validate(value))
        elif setting_id == "temperature":
            self.temperature = settings[setting_id].validate(value)
            logger.info("setting_updated", provider=self.provider_id, setting=setting_id, value=self.temperature)
