# samvaad: Anthropic Messages API adapter. Content parts map one-to-one; tool-role messages fold into user turns and consecutive same-role turns are merged because the API requires strict user/assistant alternation.

import datetime
from typing import Any, Dict, List, Optional

from ..config import ANTHROPIC_VERSION
from ..models import (
    FilePart,
    ImagePart,
    Message,
    ProviderResponse,
    RateLimit,
    ResponseMeta,
    StopReason,
    TextPart,
    TokenUsage,
    ToolDescriptor,
    ToolResultPart,
    ToolUsePart,
)
from .base import LLMProvider, ProviderName


def _parse_iso_epoch(value: Optional[str]) -> float:
    if not value:
        return 0.0
    try:
        return datetime.datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


def _as_int(v: Any) -> int:
    try:
        return int(v) if v is not None else 0
    except (TypeError, ValueError):
        return 0


def _wire_part(part: Any) -> Dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ImagePart):
        return {"type": "image", "source": part.source.model_dump()}
    if isinstance(part, ToolUsePart):
        return {"type": "tool_use", "id": part.id, "name": part.name, "input": part.input}
    if isinstance(part, ToolResultPart):
        return {
            "type": "tool_result",
            "tool_use_id": part.tool_use_id,
            "content": [_wire_part(p) for p in part.content],
            "is_error": part.is_error,
        }
    if isinstance(part, FilePart):
        # Unhydrated reference; should not normally reach the wire.
        return {"type": "text", "text": f"File added: {part.path}"}
    raise ValueError(f"Unsupported content part: {part!r}")


class AnthropicProvider(LLMProvider):
    name = ProviderName.anthropic
    STOP_REASONS = {
        "tool_use": StopReason.tool_call,
        "end_turn": StopReason.natural_end,
        "stop_sequence": StopReason.natural_end,
        "max_tokens": StopReason.length_limit,
    }

    def _apply_auth_headers(self) -> None:
        self.session.headers.update({
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        })

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/v1/messages"

    def build_payload(
        self,
        system: str,
        messages: List[Message],
        tools: List[ToolDescriptor],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> Dict[str, Any]:
        system_chunks = [system] if system else []
        wire: List[Dict[str, Any]] = []
        for m in messages:
            if m.role == "system":
                system_chunks.append(m.text())
                continue
            role = "assistant" if m.role == "assistant" else "user"
            content = [_wire_part(p) for p in m.content]
            if wire and wire[-1]["role"] == role:
                wire[-1]["content"].extend(content)
            else:
                wire.append({"role": role, "content": content})
        payload: Dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": "\n\n".join(system_chunks),
            "messages": wire,
        }
        if tools:
            payload["tools"] = [t.model_dump() for t in tools]
        return payload

    def parse_response(self, body: Dict[str, Any], headers: Dict[str, str], status_code: int, reason: str) -> ProviderResponse:
        content: List[Any] = []
        for item in body.get("content") or []:
            if not isinstance(item, dict):
                continue
            if item.get("type") == "text":
                content.append(TextPart(text=item.get("text", "")))
            elif item.get("type") == "tool_use":
                content.append(ToolUsePart(id=item["id"], name=item["name"], input=item.get("input") or {}))
        usage = body.get("usage") or {}
        input_tokens = _as_int(usage.get("input_tokens"))
        output_tokens = _as_int(usage.get("output_tokens"))
        self.ctx.log(f"Anthropic usage: input_tokens={input_tokens}, output_tokens={output_tokens}")
        return ProviderResponse(
            id=body.get("id", ""),
            type=body.get("type", "message"),
            role=body.get("role", "assistant"),
            model=body.get("model", ""),
            provider=self.name.value,
            answer_content=content,
            stop_reason=body.get("stop_reason"),
            usage=TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens, total_tokens=input_tokens + output_tokens),
            rate_limit=RateLimit(
                requests_remaining=_as_int(headers.get("anthropic-ratelimit-requests-remaining")),
                requests_limit=_as_int(headers.get("anthropic-ratelimit-requests-limit")),
                requests_reset=_parse_iso_epoch(headers.get("anthropic-ratelimit-requests-reset")),
                tokens_remaining=_as_int(headers.get("anthropic-ratelimit-tokens-remaining")),
                tokens_limit=_as_int(headers.get("anthropic-ratelimit-tokens-limit")),
                tokens_reset=_parse_iso_epoch(headers.get("anthropic-ratelimit-tokens-reset")),
            ),
            meta=ResponseMeta(status_code=status_code, status_text=reason),
        )
