"""Saving, resuming, listing and deleting conversations; the patch log and the audit log."""

import json

import pytest

from samvaad.interaction import InteractionManager
from samvaad.models import ToolResultPart, ToolUsePart
from samvaad.orchestrator import Orchestrator
from samvaad.persistence import (
    INTERRUPTED_TOOL_USE_TEXT,
    ConversationPersistence,
    data_dir,
    delete_conversation,
    list_conversations,
)


async def _reload(project, llm, conversation_id):
    """Load a conversation through a fresh orchestrator, as a new process would."""
    fresh = Orchestrator(project, llm, interactions=InteractionManager())
    return await fresh.get_or_load_conversation(conversation_id)


@pytest.mark.asyncio
async def test_round_trip(orchestrator, project, llm, project_root):
    (project_root / "a.txt").write_text("alpha\n")
    interaction = await orchestrator.get_or_load_conversation("conv-rt")
    interaction.title = "Round trip"
    interaction.add_message_for_user_role("hello")
    interaction.add_message_for_assistant_role("hi there")
    interaction.add_files_for_message(["a.txt"], "tool-1")
    interaction.statement_count = 1
    interaction.conversation_turn_count = 1
    interaction.provider_request_count = 4
    await interaction.save()

    loaded = await _reload(project, llm, "conv-rt")
    assert loaded is not interaction
    assert loaded.title == "Round trip"
    assert [m.id for m in loaded.messages] == [m.id for m in interaction.messages]
    assert [m.role for m in loaded.messages] == ["user", "assistant", "user"]
    assert loaded.messages[1].text() == "hi there"
    assert loaded.message_counters == interaction.message_counters
    assert loaded.files["a.txt"].message_id == interaction.messages[2].id
    assert loaded.stats().statement_count == 1
    assert loaded.provider_request_count == 4

    metadata = orchestrator.persistence_for("conv-rt").get_metadata()
    assert metadata["providerName"] == "anthropic"
    assert metadata["tools"][0]["name"] == "search_project"


@pytest.mark.asyncio
async def test_interrupted_tool_uses_are_closed(orchestrator, project, llm):
    interaction = await orchestrator.get_or_load_conversation("conv-int")
    interaction.add_message_for_user_role("go")
    interaction.add_message_for_assistant_role([
        ToolUsePart(id="u1", name="search_project", input={}),
        ToolUsePart(id="u2", name="request_files", input={"file_names": ["a.txt"]}),
    ])
    await interaction.save()

    loaded = await _reload(project, llm, "conv-int")
    last = loaded.get_last_message()
    assert last.role == "user"
    results = [p for p in last.content if isinstance(p, ToolResultPart)]
    assert [r.tool_use_id for r in results] == ["u1", "u2"]
    assert all(r.is_error for r in results)
    assert results[0].content[0].text == INTERRUPTED_TOOL_USE_TEXT


@pytest.mark.asyncio
async def test_corrupt_message_lines_are_skipped(orchestrator, project, llm):
    interaction = await orchestrator.get_or_load_conversation("conv-bad")
    interaction.add_message_for_user_role("one")
    interaction.add_message_for_assistant_role("two")
    await interaction.save()

    messages_file = orchestrator.persistence_for("conv-bad").messages_file
    with messages_file.open("a", encoding="utf-8") as f:
        f.write("{not json\n")
        f.write(json.dumps({"role": "robot", "content": []}) + "\n")

    loaded = await _reload(project, llm, "conv-bad")
    assert [m.text() for m in loaded.messages] == ["one", "two"]


@pytest.mark.asyncio
async def test_load_without_saved_state(project_root, ctx):
    persistence = ConversationPersistence(project_root, "never-saved", ctx)
    assert await persistence.load_conversation(object()) is None
    assert persistence.get_metadata() is None


@pytest.mark.asyncio
async def test_list_conversations(orchestrator, project_root):
    for i, cid in enumerate(["c1", "c2", "c3"]):
        interaction = await orchestrator.get_or_load_conversation(cid)
        interaction.title = f"Conversation {cid}"
        interaction.created_at = f"2024-01-0{i + 1}T00:00:00Z"
        interaction.updated_at = f"2024-02-0{3 - i}T00:00:00Z"
        await interaction.save()

    entries, total = list_conversations(project_root)
    assert total == 3
    assert [e["id"] for e in entries] == ["c1", "c2", "c3"]

    page, total = list_conversations(project_root, page=2, page_size=2)
    assert total == 3
    assert [e["id"] for e in page] == ["c3"]

    recent, total = list_conversations(project_root, start_date="2024-01-02")
    assert total == 2
    assert {e["id"] for e in recent} == {"c2", "c3"}

    assert list_conversations(project_root, provider="openai") == ([], 0)
    assert list_conversations(project_root, provider="anthropic")[1] == 3


@pytest.mark.asyncio
async def test_save_upserts_index_entry(orchestrator, project_root):
    interaction = await orchestrator.get_or_load_conversation("c-up")
    await interaction.save()
    interaction.title = "Renamed"
    await interaction.save()
    entries, total = list_conversations(project_root)
    assert total == 1
    assert entries[0]["title"] == "Renamed"


@pytest.mark.asyncio
async def test_delete_conversation(orchestrator, project_root):
    interaction = await orchestrator.get_or_load_conversation("c-del")
    await interaction.save()
    assert delete_conversation(project_root, "c-del") is True
    assert not (data_dir(project_root) / "conversations" / "c-del").exists()
    assert list_conversations(project_root) == ([], 0)
    assert delete_conversation(project_root, "c-del") is False


@pytest.mark.asyncio
async def test_patch_log(project_root, ctx):
    persistence = ConversationPersistence(project_root, "c-log", ctx).init()
    await persistence.log_change("a.txt", "patch one")
    await persistence.log_change("b.txt", "patch two")

    log = await persistence.get_change_log()
    assert [(e.file_path, e.patch) for e in log] == [("a.txt", "patch one"), ("b.txt", "patch two")]

    removed = await persistence.remove_last_change()
    assert removed.file_path == "b.txt"
    assert [e.file_path for e in await persistence.get_change_log()] == ["a.txt"]
    await persistence.remove_last_change()
    assert await persistence.remove_last_change() is None


@pytest.mark.asyncio
async def test_audit_log_entries(orchestrator):
    interaction = await orchestrator.get_or_load_conversation("c-audit")
    interaction.record_entry("user", "hello")
    interaction.record_entry("tool_use", {"file_pattern": "*.py"}, tool_name="search_project")

    records = orchestrator.persistence_for("c-audit").read_audit_log()
    assert len(records) == 2
    assert "type" not in records[0]
    assert records[0]["conversationId"] == "c-audit"
    assert records[0]["logEntry"] == {"entryType": "user", "content": "hello"}
    assert records[1]["logEntry"]["toolName"] == "search_project"
