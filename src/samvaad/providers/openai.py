# samvaad: OpenAI Chat Completions adapter. Tool uses become assistant tool_calls with JSON-encoded arguments, each tool result becomes its own tool-role message, and the system prompt is prepended as a system message.

import json
import re
import time
from typing import Any, Dict, List, Optional

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

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_reset_duration(value: Optional[str], now: Optional[float] = None) -> float:
    """Convert an OpenAI reset duration such as '6m0s' or '1.5s' into an absolute epoch; 0.0 when absent."""
    if not value:
        return 0.0
    seconds = sum(float(num) * _UNIT_SECONDS[unit] for num, unit in _DURATION_RE.findall(value))
    return (now if now is not None else time.time()) + seconds


def _as_int(v: Any) -> int:
    try:
        return int(v) if v is not None else 0
    except (TypeError, ValueError):
        return 0


def _text_of(parts: List[Any]) -> str:
    chunks: List[str] = []
    for p in parts:
        if isinstance(p, TextPart):
            chunks.append(p.text)
        elif isinstance(p, FilePart):
            chunks.append(f"File added: {p.path}")
        elif isinstance(p, ImagePart):
            chunks.append(f"[image {p.source.media_type}]")
    return "\n".join(chunks)


def _user_content(parts: List[Any]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for p in parts:
        if isinstance(p, TextPart):
            out.append({"type": "text", "text": p.text})
        elif isinstance(p, FilePart):
            out.append({"type": "text", "text": f"File added: {p.path}"})
        elif isinstance(p, ImagePart):
            out.append({"type": "image_url", "image_url": {"url": f"data:{p.source.media_type};base64,{p.source.data}"}})
    return out


class OpenAIProvider(LLMProvider):
    name = ProviderName.openai
    STOP_REASONS = {
        "tool_calls": StopReason.tool_call,
        "function_call": StopReason.tool_call,
        "stop": StopReason.natural_end,
        "length": StopReason.length_limit,
        "content_filter": StopReason.content_filtered,
    }

    def _apply_auth_headers(self) -> None:
        self.session.headers.update({"Authorization": f"Bearer {self.api_key}"})

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _wire_messages(self, system: str, messages: List[Message]) -> List[Dict[str, Any]]:
        wire: List[Dict[str, Any]] = []
        if system:
            wire.append({"role": "system", "content": system})
        for m in messages:
            if m.role == "system":
                wire.append({"role": "system", "content": m.text()})
            elif m.role == "tool":
                wire.append({"role": "tool", "tool_call_id": m.tool_call_id or "", "content": _text_of(m.content)})
            elif m.role == "assistant":
                text = _text_of([p for p in m.content if not isinstance(p, ToolUsePart)])
                msg: Dict[str, Any] = {"role": "assistant", "content": text or None}
                calls = [
                    {"id": p.id, "type": "function", "function": {"name": p.name, "arguments": json.dumps(p.input)}}
                    for p in m.content if isinstance(p, ToolUsePart)
                ]
                if calls:
                    msg["tool_calls"] = calls
                wire.append(msg)
            else:
                # Tool results must directly follow the assistant tool_calls message, ahead of any user text.
                for p in m.content:
                    if isinstance(p, ToolResultPart):
                        content = _text_of(p.content)
                        wire.append({
                            "role": "tool",
                            "tool_call_id": p.tool_use_id,
                            "content": f"Error: {content}" if p.is_error else content,
                        })
                rest = _user_content([p for p in m.content if not isinstance(p, ToolResultPart)])
                if rest:
                    wire.append({"role": "user", "content": rest})
        return wire

    def build_payload(
        self,
        system: str,
        messages: List[Message],
        tools: List[ToolDescriptor],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": self._wire_messages(system, messages),
        }
        if tools:
            payload["tools"] = [
                {"type": "function", "function": {"name": t.name, "description": t.description, "parameters": t.input_schema}}
                for t in tools
            ]
        return payload

    def parse_response(self, body: Dict[str, Any], headers: Dict[str, str], status_code: int, reason: str) -> ProviderResponse:
        choices = body.get("choices") or [{}]
        choice = choices[0] if isinstance(choices[0], dict) else {}
        message = choice.get("message") or {}
        content: List[Any] = []
        if isinstance(message.get("content"), str) and message["content"]:
            content.append(TextPart(text=message["content"]))
        for tc in message.get("tool_calls") or []:
            fn = tc.get("function") or {}
            args_text = fn.get("arguments", "{}")
            try:
                args = json.loads(args_text) if isinstance(args_text, str) else (args_text or {})
            except ValueError:
                # Malformed arguments surface as a schema violation on validation.
                args = {}
            content.append(ToolUsePart(id=tc.get("id", ""), name=fn.get("name", ""), input=args if isinstance(args, dict) else {}))

        usage = body.get("usage") or {}
        input_tokens = _as_int(usage.get("prompt_tokens"))
        output_tokens = _as_int(usage.get("completion_tokens"))
        total_tokens = _as_int(usage.get("total_tokens")) or input_tokens + output_tokens
        self.ctx.log(f"OpenAI usage: input_tokens={input_tokens}, output_tokens={output_tokens}")
        now = time.time()
        return ProviderResponse(
            id=body.get("id", ""),
            model=body.get("model", ""),
            provider=self.name.value,
            answer_content=content,
            stop_reason=choice.get("finish_reason"),
            usage=TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens, total_tokens=total_tokens),
            rate_limit=RateLimit(
                requests_remaining=_as_int(headers.get("x-ratelimit-remaining-requests")),
                requests_limit=_as_int(headers.get("x-ratelimit-limit-requests")),
                requests_reset=parse_reset_duration(headers.get("x-ratelimit-reset-requests"), now),
                tokens_remaining=_as_int(headers.get("x-ratelimit-remaining-tokens")),
                tokens_limit=_as_int(headers.get("x-ratelimit-limit-tokens")),
                tokens_reset=parse_reset_duration(headers.get("x-ratelimit-reset-tokens"), now),
            ),
            meta=ResponseMeta(status_code=status_code, status_text=reason),
        )
