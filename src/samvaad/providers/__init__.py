# samvaad: Provider factory keyed by ProviderName; the only place that branches on vendor identity. Resolution precedence for credentials is args > settings['api'] > environment.

from typing import Any, Dict, Optional, Union

from .. import config
from ..context import Context
from ..settings import api_settings
from .anthropic import AnthropicProvider
from .base import LLMProvider, ProviderName
from .openai import OpenAIProvider

__all__ = ["AnthropicProvider", "LLMProvider", "OpenAIProvider", "ProviderName", "create_provider"]


def create_provider(
    ctx: Context,
    name: Union[str, ProviderName, None] = None,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    base_url: Optional[str] = None,
    settings: Optional[Dict[str, Any]] = None,
    **kwargs: Any,
) -> LLMProvider:
    """
    Build the adapter for the requested vendor.

    Raises:
        ValueError: Unknown provider name.
        RuntimeError: No API key could be resolved.
    """
    api_cfg = api_settings(settings)
    raw = name or api_cfg.get("provider") or config.PROVIDER
    try:
        provider = ProviderName(str(raw.value if isinstance(raw, ProviderName) else raw).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown LLM provider: {raw}")

    if provider == ProviderName.anthropic:
        key = api_key or api_cfg.get("api_key") or config.ANTHROPIC_API_KEY
        if not key:
            raise RuntimeError("Anthropic provider selected but no API key provided (ANTHROPIC_API_KEY or settings.api.api_key).")
        return AnthropicProvider(
            ctx,
            api_key=key,
            model=model or api_cfg.get("model") or config.ANTHROPIC_MODEL,
            base_url=base_url or api_cfg.get("base_url") or config.ANTHROPIC_BASE_URL,
            **kwargs,
        )

    key = api_key or api_cfg.get("api_key") or config.OPENAI_API_KEY
    if not key:
        raise RuntimeError("OpenAI provider selected but no API key provided (OPENAI_API_KEY or settings.api.api_key).")
    return OpenAIProvider(
        ctx,
        api_key=key,
        model=model or api_cfg.get("model") or config.OPENAI_MODEL,
        base_url=base_url or api_cfg.get("base_url") or config.OPENAI_BASE_URL,
        **kwargs,
    )
