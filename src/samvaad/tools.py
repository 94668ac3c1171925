# samvaad: Tool registry and dispatcher. Tools are plain (sync or async) functions turned into Tool objects by the @tool decorator; the advertised JSON schema is reflected from the signature and inputs are validated with a Pydantic model built from the same signature. Registries are explicit instances so tests can build their own.

from __future__ import annotations

import inspect
from typing import Any, Callable, Dict, List, Optional, Tuple, Union, get_args, get_origin, get_type_hints

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from .context import Context
from .models import ImagePart, TextPart, ToolDescriptor, ToolResultContent, ToolUse


# -----------------------------
# Reflection utilities
# -----------------------------

_type_map = {
    str: {"type": "string"},
    int: {"type": "integer"},
    bool: {"type": "boolean"},
    float: {"type": "number"},
}


def _unwrap_optional(ann: Any) -> Any:
    """Return T for Optional[T] (Union[T, None]); otherwise ann unchanged."""
    if get_origin(ann) is Union:
        args = [a for a in get_args(ann) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return ann


def _json_schema_for_annotation(ann: Any) -> Dict[str, Any]:
    """Map a Python annotation to a simple JSON Schema snippet."""
    ann = _unwrap_optional(ann)
    if get_origin(ann) in (list, List):
        args = get_args(ann)
        return {"type": "array", "items": _json_schema_for_annotation(args[0]) if args else {}}
    if get_origin(ann) in (dict, Dict):
        return {"type": "object"}
    return dict(_type_map.get(ann, {"type": "string"}))


def _tool_params(fn: Callable) -> List[inspect.Parameter]:
    # Skip first arg (the ToolCall)
    return list(inspect.signature(fn).parameters.values())[1:]


def _build_parameters_schema(fn: Callable, overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> Dict[str, Any]:
    hints = get_type_hints(fn)
    props: Dict[str, Any] = {}
    required: List[str] = []
    for p in _tool_params(fn):
        schema = _json_schema_for_annotation(hints.get(p.name, str))
        schema.update({k: v for k, v in ((overrides or {}).get(p.name) or {}).items() if v is not None})
        if p.default is inspect.Parameter.empty:
            required.append(p.name)
        elif p.default is not None:
            schema.setdefault("default", p.default)
        props[p.name] = schema
    return {
        "type": "object",
        "properties": props,
        "required": required,
        "additionalProperties": False,
    }


def _build_input_model(name: str, fn: Callable, overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> type:
    """Build a strict Pydantic model mirroring the tool function's parameters."""
    hints = get_type_hints(fn)
    fields: Dict[str, Any] = {}
    for p in _tool_params(fn):
        description = ((overrides or {}).get(p.name) or {}).get("description")
        default = ... if p.default is inspect.Parameter.empty else p.default
        fields[p.name] = (hints.get(p.name, str), Field(default, description=description))
    model_name = "".join(part.capitalize() for part in name.split("_")) + "Input"
    return create_model(model_name, __config__=ConfigDict(extra="forbid"), **fields)


def format_validation_error(err: ValidationError) -> str:
    parts = []
    for e in err.errors():
        loc = ".".join(str(x) for x in e.get("loc", ())) or "input"
        parts.append(f"{loc}: {e.get('msg')}")
    return "; ".join(parts)


# -----------------------------
# Tool objects
# -----------------------------

class ToolRunResult:
    """
    Outcome of a successful tool run.

    tool_results is what the model sees inside the tool_result block,
    tool_response is the feedback line for the continuation prompt and
    display is the user-facing summary.
    """

    def __init__(
        self,
        tool_results: Union[str, List[ToolResultContent]],
        tool_response: str,
        display: Optional[str] = None,
        finalize_callback: Optional[Callable[[str], None]] = None,
        is_error: bool = False,
    ) -> None:
        self.tool_results = tool_results
        self.tool_response = tool_response
        self.display = display if display is not None else tool_response
        self.finalize_callback = finalize_callback
        # Ran, but the outcome should be reported to the model as a failure
        self.is_error = is_error


class ToolCall:
    """Everything an executor needs: the interaction, the tool-use request and the project it runs against."""

    def __init__(self, interaction: Any, tool_use: ToolUse, project: Any) -> None:
        self.interaction = interaction
        self.tool_use = tool_use
        self.project = project

    @property
    def ctx(self) -> Context:
        return self.project.ctx


class Tool:
    def __init__(
        self,
        name: str,
        description: str,
        fn: Callable,
        *,
        param_overrides: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> None:
        self.name = name
        self.description = description
        self.fn = fn
        self.input_schema = _build_parameters_schema(fn, overrides=param_overrides)
        self.input_model = _build_input_model(name, fn, overrides=param_overrides)

    @property
    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(name=self.name, description=self.description, input_schema=self.input_schema)

    def validate_input(self, tool_input: Dict[str, Any]) -> Optional[str]:
        """Return None when tool_input satisfies the schema, otherwise the violation text."""
        try:
            self.input_model.model_validate(tool_input or {})
        except ValidationError as e:
            return format_validation_error(e)
        return None

    async def run(self, call: ToolCall) -> ToolRunResult:
        parsed: BaseModel = self.input_model.model_validate(call.tool_use.tool_input or {})
        kwargs = {name: getattr(parsed, name) for name in type(parsed).model_fields}
        raw = self.fn(call, **kwargs)
        if inspect.isawaitable(raw):
            raw = await raw
        if isinstance(raw, ToolRunResult):
            return raw
        text = raw if isinstance(raw, str) else str(raw)
        return ToolRunResult(tool_results=text, tool_response=text)

    def __repr__(self) -> str:
        return f"Tool({self.name!r})"


def tool(name: str, description: str, *, param_overrides: Optional[Dict[str, Dict[str, Any]]] = None):
    """Decorator turning a function into a Tool with a reflective schema.

    param_overrides allows per-parameter JSON Schema fields like description, pattern, enum, etc.
    """
    def _wrap(fn: Callable) -> Tool:
        return Tool(name, description, fn, param_overrides=param_overrides)
    return _wrap


# -----------------------------
# Registry and dispatcher
# -----------------------------

class DispatchResult:
    def __init__(self, tool_name: str, message_id: str, feedback: str, display: str, is_error: bool) -> None:
        self.tool_name = tool_name
        self.message_id = message_id
        # Line fed back to the model in the continuation prompt
        self.feedback = feedback
        self.display = display
        self.is_error = is_error

    def __repr__(self) -> str:
        return f"DispatchResult({self.tool_name!r}, is_error={self.is_error})"


class ToolRegistry:
    """Name-keyed tool set; list() keeps registration order, re-registering a name replaces it in place."""

    def __init__(self, tools: Optional[List[Tool]] = None) -> None:
        self._tools: Dict[str, Tool] = {}
        for t in tools or []:
            self.register(t)

    def register(self, t: Tool) -> None:
        self._tools[t.name] = t

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def list(self) -> List[Tool]:
        return list(self._tools.values())

    def names(self) -> List[str]:
        return list(self._tools.keys())

    def descriptors(self) -> List[ToolDescriptor]:
        return [t.descriptor for t in self._tools.values()]

    def subset(self, names: List[str]) -> "ToolRegistry":
        return ToolRegistry([self._tools[n] for n in names if n in self._tools])

    async def dispatch(self, interaction: Any, tool_use: ToolUse, project: Any) -> DispatchResult:
        """
        Run one tool-use request and record its result on the interaction.

        Never raises for tool-level problems: unknown tools, schema violations
        and executor exceptions all become error results fed back to the model.
        """
        ctx: Context = project.ctx
        t = self.get(tool_use.tool_name)
        if t is None:
            ctx.warn(f"Unknown tool used: {tool_use.tool_name}")
            return self._error(interaction, tool_use, f"Unknown tool used: {tool_use.tool_name}")

        validation = tool_use.tool_validation
        if validation.validated and validation.results:
            # Already checked upstream and found invalid
            return self._error(interaction, tool_use, f"Invalid input for {t.name} tool: {validation.results}")
        if not validation.validated:
            violation = t.validate_input(tool_use.tool_input)
            if violation:
                return self._error(interaction, tool_use, f"Invalid input for {t.name} tool: {violation}")

        try:
            result = await t.run(ToolCall(interaction, tool_use, project))
        except Exception as e:
            ctx.error_message(f"Error executing tool {t.name}: {e}")
            return self._error(interaction, tool_use, str(e))

        message_id, _summary = self.finalize(interaction, tool_use, result.tool_results, is_error=result.is_error)
        if result.finalize_callback is not None:
            result.finalize_callback(message_id)
        feedback = f"Error with {t.name}: {result.tool_response}" if result.is_error else result.tool_response
        return DispatchResult(t.name, message_id, feedback, result.display, is_error=result.is_error)

    def _error(self, interaction: Any, tool_use: ToolUse, message: str) -> DispatchResult:
        message_id, summary = self.finalize(interaction, tool_use, message, is_error=True)
        return DispatchResult(
            tool_use.tool_name,
            message_id,
            feedback=f"Error with {tool_use.tool_name}: {message}",
            display=summary,
            is_error=True,
        )

    def finalize(
        self,
        interaction: Any,
        tool_use: ToolUse,
        result_content: Union[str, List[ToolResultContent]],
        is_error: bool,
    ) -> Tuple[str, str]:
        """Attach a tool_result for tool_use to the interaction; returns (message_id, summary)."""
        message_id = interaction.add_message_for_tool_result(tool_use.tool_use_id, result_content, is_error)
        rendered = _render_result(result_content)
        if is_error:
            summary = f"Tool {tool_use.tool_name} failed to run: {rendered}"
        else:
            summary = f"Tool {tool_use.tool_name} executed successfully: {rendered}"
        return message_id, summary


def _render_result(content: Union[str, List[ToolResultContent]]) -> str:
    if isinstance(content, str):
        return content
    out: List[str] = []
    for part in content:
        if isinstance(part, TextPart):
            out.append(part.text)
        elif isinstance(part, ImagePart):
            out.append(f"[image {part.source.media_type}]")
        else:
            out.append(f"File added: {part.path}")
    return "\n".join(out)
