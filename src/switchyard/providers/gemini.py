from __future__ import annotations
from typing import Sequence

from switchyard.core.models import Capability, Model
from switchyard.providers.factory import ProviderFactory
from switchyard.providers.openai import OpenAIProvider

_GEMINI_CAPS = (
    Capability.TEXT_GENERATION,
    Capability.CONVERSATION,
    Capability.SUMMARIZATION,
    Capability.CODE_GENERATION,
    Capability.IMAGE_ANALYSIS,
    Capability.FUNCTION_CALLING,
)


@ProviderFactory.register("google_gemini")
class GeminiProvider(OpenAIProvider):
    """Google Gemini through its OpenAI-compatible chat-completions endpoint."""

    provider_id = "google_gemini"
    kind = "google_gemini"
    display_name = "Google Gemini"
    base_url = "https://generativelanguage.googleapis.com/v1beta/openai"
    default_model_id = "gemini-2.0-flash"

    def catalog(self) -> Sequence[Model]:
        return [
            Model(
                id="gemini-2.0-flash",
                name="Gemini 2.0 Flash",
                description="Fast multimodal model for everyday tasks",
                context_window=1048576,
                cost_per_token=0.0000004,
                capabilities=_GEMINI_CAPS,
                provider=self.provider_id,
            ),
            Model(
                id="gemini-1.5-pro",
                name="Gemini 1.5 Pro",
                description="Long-context model for complex reasoning",
                context_window=2097152,
                cost_per_token=0.000005,
                capabilities=_GEMINI_CAPS,
                provider=self.provider_id,
            ),
            Model(
                id="gemini-1.5-flash",
                name="Gemini 1.5 Flash",
                description="Lightweight, cost-efficient model",
                context_window=1048576,
                cost_per_token=0.0000003,
                capabilities=_GEMINI_CAPS,
                provider=self.provider_id,
            ),
        ]
