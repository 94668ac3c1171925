"""REPL command handling and argument parsing."""

import pytest

from samvaad.main import Session, _parse_args


@pytest.fixture
def session(orchestrator, project_root):
    (project_root / "a.txt").write_text("alpha\n")
    return Session(orchestrator, "conv-cli")


def test_parse_args(tmp_path):
    root, conversation_id, provider = _parse_args(["-c", "conv-1", "--provider", "openai", str(tmp_path)])
    assert root == tmp_path.resolve()
    assert conversation_id == "conv-1"
    assert provider == "openai"


@pytest.mark.asyncio
async def test_pin_adds_file_to_system_prompt(session, orchestrator, capsys):
    assert await session.handle_command(":pin a.txt missing.txt") is True
    conversation = orchestrator.interactions.get("conv-cli")
    assert conversation.system_prompt_files() == ["a.txt"]
    assert "Pinned a.txt" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_pin_without_path_prints_usage(session, orchestrator, capsys):
    await session.handle_command(":pin")
    assert "Usage: :pin PATH" in capsys.readouterr().out
    assert orchestrator.interactions.get("conv-cli") is None


@pytest.mark.asyncio
async def test_undo_with_nothing_logged(session, capsys):
    await session.handle_command(":undo")
    assert "No patches to revert." in capsys.readouterr().out


@pytest.mark.asyncio
async def test_quit_ends_session(session):
    assert await session.handle_command(":quit") is False
