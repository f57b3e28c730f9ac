import os
from dataclasses import dataclass

from app.ai.providers.openai_provider import OpenAIProvider


@dataclass(frozen=True)
class ProviderSettings:
    provider: str
    model: str
    vision_model: str


def load_provider_settings() -> ProviderSettings:
    model = os.getenv("AI_MODEL", "gpt-4o-mini").strip()
    return ProviderSettings(
        provider=os.getenv("AI_PROVIDER", "openai").strip().lower(),
        model=model,
        # OCR runs on the completion model unless a dedicated vision model is set.
        vision_model=(os.getenv("AI_VISION_MODEL") or model).strip(),
    )


def get_ai_client() -> OpenAIProvider:
    """Build the client used for both completions and vision OCR."""
    cfg = load_provider_settings()

    if cfg.provider == "openai":
        return OpenAIProvider(model=cfg.model, vision_model=cfg.vision_model)

    raise ValueError(f"Unsupported AI_PROVIDER='{cfg.provider}'")
