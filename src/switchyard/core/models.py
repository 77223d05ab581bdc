from __future__ import annotations
import datetime as dt
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from .errors import InvalidConfiguration, MalformedResponse

Role = Literal["user", "assistant"]


class Capability(str, Enum):
    TEXT_GENERATION = "text_generation"
    CONVERSATION = "conversation"
    SUMMARIZATION = "summarization"
    CODE_GENERATION = "code_generation"
    IMAGE_ANALYSIS = "image_analysis"
    FUNCTION_CALLING = "function_calling"

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class ProviderType(str, Enum):
    LOCAL = "local"
    EXTERNAL = "external"

    @property
    def display_name(self) -> str:
        return "Local (Private)" if self is ProviderType.LOCAL else "External API"


class ProviderState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"
    CLEANED_UP = "cleaned_up"


class EnergyImpact(str, Enum):
    LOW = "low"
    MODERATE = "moderate"

    @classmethod
    def from_elapsed(cls, seconds: float) -> "EnergyImpact":
        return cls.MODERATE if seconds >= 5.0 else cls.LOW


@dataclass(frozen=True)
class Model:
    """
    Immutable catalog entry. A provider rebuilds its catalog on initialize;
    references handed out before a cleanup should not be reused.
    """
    id: str
    name: str
    description: str
    context_window: int
    provider: str
    capabilities: Tuple[Capability, ...] = ()
    cost_per_token: Optional[float] = None
    is_available: bool = True

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "context_window": self.context_window,
            "cost_per_token": self.cost_per_token,
            "capabilities": [c.value for c in self.capabilities],
            "provider": self.provider,
            "is_available": self.is_available,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Model":
        try:
            caps = tuple(Capability(c) for c in data.get("capabilities") or [])
            cost = data.get("cost_per_token")
            return cls(
                id=str(data["id"]),
                name=str(data["name"]),
                description=str(data.get("description", "")),
                context_window=int(data["context_window"]),
                provider=str(data["provider"]),
                capabilities=caps,
                cost_per_token=float(cost) if cost is not None else None,
                is_available=bool(data.get("is_available", True)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponse(f"Invalid model description: {e}") from e


@dataclass(frozen=True)
class ConversationMessage:
    role: Role
    content: str

    def as_wire(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class UsageStatistics:
    request_count: int = 0
    token_count: int = 0
    average_response_time: float = 0.0
    error_count: int = 0
    last_used: Optional[dt.datetime] = None
    estimated_cost: Optional[float] = None


@dataclass(frozen=True)
class SettingType:
    kind: Literal["string", "number", "boolean", "selection"]
    options: Tuple[str, ...] = ()

    @classmethod
    def selection(cls, options: Sequence[str]) -> "SettingType":
        return cls("selection", tuple(options))


STRING = SettingType("string")
NUMBER = SettingType("number")
BOOLEAN = SettingType("boolean")


@dataclass(frozen=True)
class ProviderSetting:
    id: str
    name: str
    description: str
    type: SettingType
    default_value: Any
    current_value: Any
    is_required: bool = False
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def validate(self, value: Any) -> Any:
        """Return the coerced value, or raise InvalidConfiguration."""
        kind = self.type.kind
        if kind == "boolean":
            if not isinstance(value, bool):
                raise InvalidConfiguration(f"Setting '{self.id}' expects a boolean")
            return value
        if kind == "number":
            if isinstance(value, bool):
                raise InvalidConfiguration(f"Setting '{self.id}' expects a number")
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise InvalidConfiguration(f"Setting '{self.id}' expects a number") from None
            if not math.isfinite(number):
                raise InvalidConfiguration(f"Setting '{self.id}' must be a finite number")
            if self.minimum is not None and number < self.minimum:
                raise InvalidConfiguration(f"Setting '{self.id}' must be >= {self.minimum}")
            if self.maximum is not None and number > self.maximum:
                raise InvalidConfiguration(f"Setting '{self.id}' must be <= {self.maximum}")
            return number
        if kind == "selection":
            if value not in self.type.options:
                raise InvalidConfiguration(
                    f"Setting '{self.id}' must be one of {list(self.type.options)}"
                )
            return value
        if not isinstance(value, str):
            raise InvalidConfiguration(f"Setting '{self.id}' expects a string")
        if self.is_required and not value.strip():
            raise InvalidConfiguration(f"Setting '{self.id}' is required")
        return value


@dataclass(frozen=True)
class ResponseMetadata:
    model_id: str
    context_used: bool
    energy_impact: EnergyImpact


@dataclass(frozen=True)
class ProviderResponse:
    text: str
    processing_time: float
    token_count: int
    metadata: ResponseMetadata


@dataclass(frozen=True)
class Completion:
    """What a backend hands back for one non-streaming call."""
    text: str
    total_tokens: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def history_window(history: Sequence[ConversationMessage], size: int) -> List[ConversationMessage]:
    if size <= 0:
        return []
    return list(history[-size:])
