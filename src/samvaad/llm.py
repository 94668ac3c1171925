# samvaad: Resilience layer around a provider adapter: request-fingerprint caching, bounded retry with response validation, and usage accounting. Retries are strictly sequential; attempts never fan out.

from __future__ import annotations

import asyncio
import json
import pathlib
import random
from typing import Any, Callable, Dict, Optional, Tuple

from . import config
from .context import Context
from .errors import RetriesExhaustedError, SamvaadError
from .fs import md5_text, now_ts, read_json, write_json
from .models import ProviderResponse, SpeakOptions, StopReason, TextPart, TokenUsage, ToolUsePart
from .providers.base import LLMProvider

ValidateCallback = Callable[[ProviderResponse, Any], Optional[str]]


class RequestCache:
    """
    Fingerprint -> provider response store with per-entry expiry.

    Entries live in memory and, when a directory is given, are mirrored to
    <dir>/<fingerprint>.json so identical prompts hit across restarts. One
    instance is meant to be shared by every conversation in the process.
    """

    def __init__(self, directory: Optional[pathlib.Path] = None, expiry_sec: int = config.REQUEST_CACHE_EXPIRY_SEC) -> None:
        self.directory = directory
        self.expiry_sec = expiry_sec
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    def _path(self, key: str) -> Optional[pathlib.Path]:
        if self.directory is None:
            return None
        return self.directory / f"{key.replace(':', '_')}.json"

    def get(self, key: str) -> Optional[ProviderResponse]:
        entry = self._entries.get(key)
        if entry is None:
            path = self._path(key)
            if path is not None:
                raw = read_json(path, None)
                if isinstance(raw, dict) and "expires_at" in raw and "response" in raw:
                    entry = (float(raw["expires_at"]), raw["response"])
                    self._entries[key] = entry
        if entry is None:
            return None
        expires_at, record = entry
        if expires_at <= now_ts():
            self.delete(key)
            return None
        return ProviderResponse.model_validate(record)

    def set(self, key: str, response: ProviderResponse, expiry_sec: Optional[int] = None) -> None:
        expires_at = now_ts() + (expiry_sec if expiry_sec is not None else self.expiry_sec)
        record = response.model_dump(mode="json")
        self._entries[key] = (expires_at, record)
        path = self._path(key)
        if path is not None:
            write_json(path, {"expires_at": expires_at, "response": record})

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)
        path = self._path(key)
        if path is not None and path.exists():
            path.unlink()

    def clear(self) -> None:
        for key in list(self._entries):
            self.delete(key)


def request_fingerprint(provider_name: str, payload: Dict[str, Any]) -> str:
    """Deterministic cache key: provider name plus an md5 of the canonically serialized request."""
    serialized = json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)
    return f"messageRequest:{provider_name}:{md5_text(serialized)}"


class LLM:
    """Wraps an LLMProvider with caching, retry and validation."""

    def __init__(
        self,
        provider: LLMProvider,
        ctx: Context,
        cache: Optional[RequestCache] = None,
        max_speak_retries: int = config.MAX_SPEAK_RETRIES,
        retry_delay_sec: float = config.RETRY_DELAY_SEC,
        backoff: str = config.RETRY_BACKOFF,
        ignore_cache: bool = config.IGNORE_REQUEST_CACHE,
    ) -> None:
        self.provider = provider
        self.ctx = ctx
        self.cache = cache if cache is not None else RequestCache()
        self.max_speak_retries = max_speak_retries
        self.retry_delay_sec = retry_delay_sec
        self.backoff = backoff
        self.ignore_cache = ignore_cache
        # Rolling usage across every network call made through this instance
        self.token_usage = TokenUsage()

    @property
    def provider_name(self) -> str:
        return self.provider.name.value

    def _retry_delay(self, attempt: int) -> float:
        if self.backoff == "exponential":
            return self.retry_delay_sec * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5)
        return self.retry_delay_sec

    async def speak_once(self, interaction: Any, options: Optional[SpeakOptions] = None) -> ProviderResponse:
        """
        Make a single request, served from the cache when possible.

        The assistant reply is appended to the interaction either way. Cache hits
        are flagged from_cache and do not count toward token usage.
        """
        payload = await self.provider.prepare_request(interaction, options)
        key = request_fingerprint(self.provider_name, payload)

        if not self.ignore_cache:
            cached = self.cache.get(key)
            if cached is not None:
                self.ctx.log(f"provider[{self.provider_name}] speak_once: using cached response")
                cached.from_cache = True
                self._record_assistant(interaction, cached)
                return cached

        response = await self.provider.send(payload)
        response.from_cache = False
        self.token_usage.add(response.usage)

        if response.is_tool or any(isinstance(p, ToolUsePart) for p in response.answer_content):
            self.provider.extract_tool_uses(response)
        elif response.answer_content and isinstance(response.answer_content[0], TextPart):
            response.answer = response.answer_content[0].text

        self._record_assistant(interaction, response)

        if not self.ignore_cache:
            self.cache.set(key, response)
        return response

    def _record_assistant(self, interaction: Any, response: ProviderResponse) -> None:
        if response.answer_content:
            interaction.add_message_for_assistant_role(list(response.answer_content), provider_response=response)
        else:
            self.ctx.warn(f"provider[{self.provider_name}] returned an empty answer; not adding an assistant message")

    async def speak_with_retry(
        self,
        interaction: Any,
        options: Optional[SpeakOptions] = None,
        validate_callback: Optional[ValidateCallback] = None,
    ) -> ProviderResponse:
        """
        Call speak_once until a response validates or the attempt budget is spent.

        Raises:
            RetriesExhaustedError: Every attempt failed validation or raised.
        """
        retry_options = options.model_copy() if options is not None else SpeakOptions()
        attempts = 0
        fail_reason = ""
        usage = TokenUsage()
        provider_requests = 0

        while attempts < self.max_speak_retries:
            attempts += 1
            try:
                response = await self.speak_once(interaction, retry_options)
                if not response.from_cache:
                    usage.add(response.usage)
                    provider_requests += 1
                reason = self.validate_response(response, interaction, validate_callback)
                if reason is None:
                    interaction.update_totals(usage, provider_requests)
                    return response
                self.provider.on_validation_retry(interaction, retry_options, reason)
                fail_reason = f"validation: {reason}"
            except Exception as e:
                self.ctx.error_message(f"provider[{self.provider_name}] speak_with_retry: error calling speak_once: {e}")
                fail_reason = f"caught error: {e}"
            self.ctx.warn(
                f"provider[{self.provider_name}] request failed. Retrying ({attempts}/{self.max_speak_retries}) - {fail_reason}"
            )
            if attempts < self.max_speak_retries:
                await asyncio.sleep(self._retry_delay(attempts))

        interaction.update_totals(usage, provider_requests)
        try:
            await interaction.save()
        except SamvaadError as e:
            self.ctx.error_message(f"Could not persist conversation {interaction.id} after failed retries: {e}")
        self.ctx.error_message(f"provider[{self.provider_name}] max retries reached; request failed.")
        raise RetriesExhaustedError(
            reason=fail_reason,
            max_retries=self.max_speak_retries,
            current_retry=attempts,
            provider=self.provider_name,
            model=interaction.model,
            conversation_id=interaction.id,
        )

    def validate_response(
        self,
        response: ProviderResponse,
        interaction: Any,
        validate_callback: Optional[ValidateCallback] = None,
    ) -> Optional[str]:
        """Return None when the response is acceptable, otherwise the failure reason."""
        if response.tools_used:
            for tu in response.tools_used:
                t = interaction.get_tool(tu.tool_name)
                if t is None:
                    self.ctx.error_message(f"Tool not found: {tu.tool_name}")
                    return f"Tool not found: {tu.tool_name}"
                if response.stop_reason_kind == StopReason.length_limit:
                    self.ctx.error_message("Tool input exceeded max tokens")
                    return "Tool exceeded max tokens"
                violation = t.validate_input(tu.tool_input)
                tu.tool_validation.validated = True
                if violation:
                    tu.tool_validation.results = f"validation failed: {violation}"
                    self.ctx.error_message(f"Tool input validation failed: {violation}")
                    return f"Tool input validation failed: {violation}"

        if validate_callback is not None:
            failed = validate_callback(response, interaction)
            if failed:
                self.ctx.error_message(f"Callback validation failed: {failed}")
                return failed
        return None
