"""Scripted provider: replays canned responses through the real Anthropic payload builder, never touching the network."""

from typing import Any, Dict, List, Optional, Tuple, Union

from samvaad.errors import LLMError
from samvaad.models import ProviderResponse, StopReason, TextPart, TokenUsage, ToolUsePart
from samvaad.providers.anthropic import AnthropicProvider

ScriptItem = Union[ProviderResponse, Exception]


def usage(input_tokens: int = 10, output_tokens: int = 5) -> TokenUsage:
    return TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens, total_tokens=input_tokens + output_tokens)


def text_response(text: str, input_tokens: int = 10, output_tokens: int = 5, stop_reason: str = "end_turn") -> ProviderResponse:
    return ProviderResponse(
        answer_content=[TextPart(text=text)],
        stop_reason=stop_reason,
        usage=usage(input_tokens, output_tokens),
    )


def tool_response(
    *calls: Tuple[str, str, Dict[str, Any]],
    text: Optional[str] = None,
    input_tokens: int = 10,
    output_tokens: int = 5,
    stop_reason: str = "tool_use",
) -> ProviderResponse:
    """calls are (tool_use_id, tool_name, tool_input) triples, in the order the model asked for them."""
    content: List[Any] = [TextPart(text=text)] if text else []
    content += [ToolUsePart(id=cid, name=name, input=tool_input) for cid, name, tool_input in calls]
    return ProviderResponse(answer_content=content, stop_reason=stop_reason, usage=usage(input_tokens, output_tokens))


class ScriptedProvider(AnthropicProvider):
    def __init__(self, ctx, script: Optional[List[ScriptItem]] = None, model: str = "claude-test"):
        super().__init__(ctx, api_key="test-key", model=model, base_url="http://fake-anthropic")
        self.script: List[ScriptItem] = list(script or [])
        self.payloads: List[Dict[str, Any]] = []

    def queue(self, *items: ScriptItem) -> None:
        self.script.extend(items)

    @property
    def call_count(self) -> int:
        return len(self.payloads)

    async def send(self, payload: Dict[str, Any]) -> ProviderResponse:
        self.payloads.append(payload)
        if not self.script:
            raise LLMError("scripted provider has no responses left", provider=self.name.value)
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        response = item.model_copy(deep=True)
        response.provider = self.name.value
        response.model = payload.get("model", "")
        response.stop_reason_kind = self.classify_stop_reason(response)
        response.is_tool = response.stop_reason_kind == StopReason.tool_call
        return response
