# samvaad: Provider adapter interface. Each vendor implements payload building, response parsing and stop-reason mapping; the shared pieces (HTTP via requests.Session, tool-use extraction, validation-retry nudges) live here so callers never branch on vendor identity.

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

import requests

from ..config import HTTP_TIMEOUT_SEC
from ..context import Context
from ..errors import LLMError, RateLimitError
from ..models import (
    Message,
    ProviderResponse,
    SpeakOptions,
    StopReason,
    TextPart,
    ToolDescriptor,
    ToolUse,
    ToolUsePart,
)

INVALID_TOOL_INPUT_NUDGE = "The previous tool input was invalid. Please provide a valid input according to the tool's schema"
TOOL_MAX_TOKENS_NUDGE = "The previous tool input was too large and exceeded the max tokens. Please provide a smaller answer, splitting it across several tool calls if needed."


class ProviderName(str, Enum):
    anthropic = "anthropic"
    openai = "openai"


class LLMProvider(ABC):
    """
    One implementation per LLM vendor.

    Subclasses provide build_payload/parse_response/endpoint and a STOP_REASONS
    map; everything else (request preparation from an interaction, the HTTP
    call, tool-use extraction, retry nudges) is shared.
    """

    name: ProviderName
    STOP_REASONS: Dict[str, StopReason] = {}

    def __init__(
        self,
        ctx: Context,
        api_key: str,
        model: str,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: int = HTTP_TIMEOUT_SEC,
    ) -> None:
        self.ctx = ctx
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        self._apply_auth_headers()

    # ---------- vendor hooks ----------

    @abstractmethod
    def _apply_auth_headers(self) -> None:
        ...

    @property
    @abstractmethod
    def endpoint(self) -> str:
        ...

    @abstractmethod
    def build_payload(
        self,
        system: str,
        messages: List[Message],
        tools: List[ToolDescriptor],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    def parse_response(self, body: Dict[str, Any], headers: Dict[str, str], status_code: int, reason: str) -> ProviderResponse:
        ...

    # ---------- shared behavior ----------

    async def prepare_request(self, interaction: Any, options: Optional[SpeakOptions] = None) -> Dict[str, Any]:
        """Map an interaction plus per-call overrides (overrides win) into the vendor wire payload."""
        options = options or SpeakOptions()
        base_system = options.system if options.system is not None else interaction.base_system
        system = await interaction.prepare_system_prompt(base_system)
        messages = await interaction.prepare_messages(options.messages if options.messages is not None else interaction.messages)
        tools = interaction.tool_descriptors(options.tool_names)
        return self.build_payload(
            system=system,
            messages=messages,
            tools=tools,
            model=options.model or interaction.model or self.model,
            max_tokens=options.max_tokens if options.max_tokens is not None else interaction.max_tokens,
            temperature=options.temperature if options.temperature is not None else interaction.temperature,
        )

    def _post(self, payload: Dict[str, Any]) -> requests.Response:
        return self.session.post(self.endpoint, json=payload, timeout=self.timeout)

    async def send(self, payload: Dict[str, Any]) -> ProviderResponse:
        """
        Perform the HTTP call and normalize the vendor response.

        Raises:
            RateLimitError: On HTTP 429.
            LLMError: On transport failures and any other non-2xx status.
        """
        t0 = time.time()
        try:
            r = await asyncio.to_thread(self._post, payload)
        except requests.exceptions.RequestException as e:
            raise LLMError(f"{self.name.value} request failed: {e}", provider=self.name.value, model=payload.get("model"))
        elapsed_ms = int((time.time() - t0) * 1000)
        self.ctx.log(f"{self.name.value} responded {r.status_code} in {elapsed_ms}ms")

        if r.status_code == 429:
            raise RateLimitError(
                f"{self.name.value} rate limit exceeded: {r.text[:500]}",
                provider=self.name.value,
                model=payload.get("model"),
            )
        if not 200 <= r.status_code < 300:
            raise LLMError(
                f"{self.name.value} API error {r.status_code}: {r.text[:2000]}",
                provider=self.name.value,
                model=payload.get("model"),
                args={"status": r.status_code},
            )
        try:
            body = r.json()
        except ValueError as e:
            raise LLMError(f"{self.name.value} returned invalid JSON: {e}", provider=self.name.value, model=payload.get("model"))
        headers = {str(k).lower(): v for k, v in r.headers.items()}
        response = self.parse_response(body, headers, r.status_code, getattr(r, "reason", "") or "")
        response.stop_reason_kind = self.classify_stop_reason(response)
        response.is_tool = response.stop_reason_kind == StopReason.tool_call
        return response

    def classify_stop_reason(self, response: ProviderResponse) -> StopReason:
        kind = self.STOP_REASONS.get(response.stop_reason or "")
        if kind is None:
            self.ctx.warn(f"{self.name.value}: unknown stop reason {response.stop_reason!r}; treating as other")
            return StopReason.other
        return kind

    def extract_tool_uses(self, response: ProviderResponse) -> List[ToolUse]:
        """
        Turn the response's content stream into ordered ToolUse entries.

        Free text preceding a tool_use becomes that tool's thinking; text after
        the last tool_use is appended to the last tool's thinking.
        """
        tools: List[ToolUse] = []
        thinking = ""
        for part in response.answer_content:
            if isinstance(part, TextPart):
                thinking += part.text + "\n"
            elif isinstance(part, ToolUsePart):
                tools.append(ToolUse(
                    tool_use_id=part.id,
                    tool_name=part.name,
                    tool_input=part.input,
                    tool_thinking=thinking,
                ))
                thinking = ""
        if thinking and tools:
            tools[-1].tool_thinking += thinking
        response.tools_used = tools
        response.tool_thinking = "".join(t.tool_thinking for t in tools) or None
        return tools

    def on_validation_retry(self, interaction: Any, options: SpeakOptions, reason: str) -> None:
        """Nudge the next attempt toward a valid response (best effort)."""
        prev = interaction.get_last_message()
        pr = prev.provider_response if prev is not None and prev.role == "assistant" else None
        if reason.startswith("Tool input validation failed"):
            if pr is not None and pr.is_tool and pr.tools_used:
                for tu in pr.tools_used:
                    interaction.add_message_for_tool_result(tu.tool_use_id, INVALID_TOOL_INPUT_NUDGE, True)
            else:
                self.ctx.warn(f"{self.name.value}: no previous tool use to attach the validation nudge to")
        elif reason.startswith("Tool not found"):
            for tu in (pr.tools_used if pr is not None else []):
                interaction.add_message_for_tool_result(tu.tool_use_id, f"{reason}. Use only the tools you were given.", True)
        elif reason.startswith("Tool exceeded max tokens"):
            # Every tool_use needs a matching tool_result before the vendor accepts more user text.
            for tu in (pr.tools_used if pr is not None else []):
                interaction.add_message_for_tool_result(tu.tool_use_id, TOOL_MAX_TOKENS_NUDGE, True)
            interaction.add_message_for_user_role([TextPart(text=TOOL_MAX_TOKENS_NUDGE)])
        elif reason == "Empty answer":
            options.temperature = 0.5 if options.temperature is None else min(options.temperature + 0.1, 1.0)
