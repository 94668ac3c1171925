"""Unit tests for tool schema reflection, the registry and the dispatcher."""

from typing import List

import pytest

from samvaad.interaction import Interaction
from samvaad.models import ToolResultPart, ToolUse, ToolUsePart
from samvaad.tools import ToolRegistry, ToolRunResult, tool


@tool(name="first", description="Returns its value")
def first(call, value: int) -> str:
    return f"first {value}"


@tool(name="explode", description="Always fails")
def explode(call) -> str:
    raise RuntimeError("kaboom")


@tool(name="greet", description="Greets people", param_overrides={"names": {"description": "People to greet"}})
async def greet(call, names: List[str], loud: bool = False) -> ToolRunResult:
    return ToolRunResult(tool_results="hello " + ", ".join(names), tool_response=f"greeted {len(names)}")


@tool(name="soft_fail", description="Runs but reports failure")
def soft_fail(call) -> ToolRunResult:
    return ToolRunResult(tool_results="nothing matched", tool_response="nothing matched", is_error=True)


@pytest.fixture
def registry():
    return ToolRegistry([first, explode, greet, soft_fail])


@pytest.fixture
def interaction(ctx, llm, registry):
    interaction = Interaction(ctx, llm, tools=registry)
    interaction.add_message_for_user_role("go")
    return interaction


def _use(tool_use_id, name, tool_input=None):
    return ToolUse(tool_use_id=tool_use_id, tool_name=name, tool_input=tool_input or {})


def test_schema_is_reflected_from_signature():
    assert greet.input_schema == {
        "type": "object",
        "properties": {
            "names": {"type": "array", "items": {"type": "string"}, "description": "People to greet"},
            "loud": {"type": "boolean", "default": False},
        },
        "required": ["names"],
        "additionalProperties": False,
    }
    assert greet.descriptor.name == "greet"


def test_validate_input():
    assert first.validate_input({"value": 3}) is None
    assert "value" in first.validate_input({})
    assert first.validate_input({"value": "abc"}) is not None
    assert first.validate_input({"value": 1, "extra": True}) is not None


def test_registry_keeps_order_and_replaces_in_place(registry):
    assert registry.names() == ["first", "explode", "greet", "soft_fail"]

    @tool(name="explode", description="Fixed")
    def fixed(call) -> str:
        return "fine"

    registry.register(fixed)
    assert registry.names() == ["first", "explode", "greet", "soft_fail"]
    assert registry.get("explode").description == "Fixed"
    assert registry.subset(["greet", "missing", "first"]).names() == ["greet", "first"]


class TestDispatch:
    @pytest.mark.asyncio
    async def test_failing_tool_does_not_stop_its_neighbours(self, interaction, registry, project):
        uses = [
            _use("a", "first", {"value": 1}),
            _use("b", "explode"),
            _use("c", "greet", {"names": ["x", "y"]}),
        ]
        interaction.add_message_for_assistant_role(
            [ToolUsePart(id=u.tool_use_id, name=u.tool_name, input=u.tool_input) for u in uses]
        )
        results = [await registry.dispatch(interaction, u, project) for u in uses]

        assert [r.is_error for r in results] == [False, True, False]
        assert results[0].feedback == "first 1"
        assert results[1].feedback == "Error with explode: kaboom"
        assert results[2].feedback == "greeted 2"
        assert len({r.message_id for r in results}) == 1

        last = interaction.get_last_message()
        assert last.role == "user"
        parts = [p for p in last.content if isinstance(p, ToolResultPart)]
        assert [p.tool_use_id for p in parts] == ["a", "b", "c"]
        assert [p.is_error for p in parts] == [False, True, False]

    @pytest.mark.asyncio
    async def test_unknown_tool(self, interaction, registry, project):
        result = await registry.dispatch(interaction, _use("z", "ghost"), project)
        assert result.is_error
        assert result.feedback == "Error with ghost: Unknown tool used: ghost"

    @pytest.mark.asyncio
    async def test_invalid_input_is_reported(self, interaction, registry, project):
        result = await registry.dispatch(interaction, _use("a", "first", {"value": "abc"}), project)
        assert result.is_error
        assert result.feedback.startswith("Error with first: Invalid input for first tool:")

    @pytest.mark.asyncio
    async def test_upstream_validation_result_is_reused(self, interaction, registry, project):
        use = _use("a", "first", {"value": 1})
        use.tool_validation.validated = True
        use.tool_validation.results = "validation failed: value: too small"
        result = await registry.dispatch(interaction, use, project)
        assert result.is_error
        assert "validation failed: value: too small" in result.feedback

    @pytest.mark.asyncio
    async def test_soft_failure_is_fed_back_as_error(self, interaction, registry, project):
        result = await registry.dispatch(interaction, _use("s", "soft_fail"), project)
        assert result.is_error
        assert result.feedback == "Error with soft_fail: nothing matched"
        part = interaction.get_last_message().content[0]
        assert part.is_error is True

    @pytest.mark.asyncio
    async def test_display_summary(self, interaction, registry, project):
        result = await registry.dispatch(interaction, _use("c", "greet", {"names": ["ana"]}), project)
        assert result.display == "greeted 1"
        error = await registry.dispatch(interaction, _use("b", "explode"), project)
        assert error.display == "Tool explode failed to run: kaboom"

    @pytest.mark.asyncio
    async def test_finalize_callback_receives_message_id(self, interaction, project):
        seen = []

        @tool(name="track", description="Reports its message id")
        def track(call) -> ToolRunResult:
            return ToolRunResult(tool_results="ok", tool_response="ok", finalize_callback=seen.append)

        registry = ToolRegistry([track])
        result = await registry.dispatch(interaction, _use("t", "track"), project)
        assert seen == [result.message_id]
