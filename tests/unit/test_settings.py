"""YAML settings loading and the typed accessors over it."""

import pytest

from samvaad import config
from samvaad.settings import (
    allowed_commands,
    auto_commit,
    cache_settings,
    conversation_defaults,
    display_names,
    load_settings,
)


def _write(project_root, text, name="settings.yaml"):
    data = project_root / config.DATA_DIR_NAME
    data.mkdir(exist_ok=True)
    (data / name).write_text(text)


def test_missing_settings_file(project_root):
    assert load_settings(project_root) == {}


def test_loads_yaml_mapping(project_root):
    _write(project_root, "conversation:\n  max_turns: 7\ntools:\n  allowed_commands: [ls, 'git status']\n")
    settings = load_settings(project_root)
    assert settings["conversation"]["max_turns"] == 7
    assert allowed_commands(settings) == ["ls", "git status"]


def test_yml_extension(project_root):
    _write(project_root, "git:\n  auto_commit: false\n", name="settings.yml")
    assert auto_commit(load_settings(project_root)) is False


@pytest.mark.parametrize("text", ["conversation: [unclosed", "- just\n- a list\n", "plain string"])
def test_malformed_or_non_mapping_is_empty(project_root, text):
    _write(project_root, text)
    assert load_settings(project_root) == {}


def test_defaults_come_from_config():
    assert conversation_defaults({}) == {
        "max_turns": config.MAX_TURNS,
        "max_tokens": config.MAX_TOKENS,
        "temperature": config.TEMPERATURE,
    }
    assert cache_settings(None) == {"ignore": config.IGNORE_REQUEST_CACHE, "expiry_sec": config.REQUEST_CACHE_EXPIRY_SEC}
    assert allowed_commands({"tools": {"allowed_commands": []}}) == list(config.ALLOWED_COMMANDS)
    assert auto_commit({}) is config.AUTO_COMMIT


def test_overrides_are_coerced():
    settings = {"conversation": {"max_turns": "3", "temperature": 1}, "cache": {"ignore": 1, "expiry_sec": "60"}}
    assert conversation_defaults(settings)["max_turns"] == 3
    assert conversation_defaults(settings)["temperature"] == 1.0
    assert cache_settings(settings) == {"ignore": True, "expiry_sec": 60}


def test_wrong_section_types_are_ignored():
    assert conversation_defaults({"conversation": "fast"})["max_turns"] == config.MAX_TURNS
    assert display_names({"names": ["x"]}) == {"person": "Person", "assistant": "Assistant"}


def test_display_names():
    assert display_names({"names": {"person": "Asha"}}) == {"person": "Asha", "assistant": "Assistant"}
