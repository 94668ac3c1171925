import pytest

from samvaad.context import Context
from samvaad.llm import LLM, RequestCache
from samvaad.orchestrator import Orchestrator
from samvaad.project import ProjectEditor
from tests.mocks.fake_provider import ScriptedProvider


@pytest.fixture
def ctx():
    """Context with console output silenced."""
    return Context(quiet=True)


@pytest.fixture
def project_root(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def provider(ctx):
    return ScriptedProvider(ctx)


@pytest.fixture
def llm(provider, ctx):
    """LLM without retry delays; the cache is bypassed so scripted responses are always consumed in order."""
    return LLM(provider, ctx, cache=RequestCache(), retry_delay_sec=0, ignore_cache=True)


@pytest.fixture
def project(project_root, ctx):
    return ProjectEditor(project_root, ctx, settings={"git": {"auto_commit": False}})


@pytest.fixture
def orchestrator(project, llm):
    return Orchestrator(project, llm, max_turns=5)
