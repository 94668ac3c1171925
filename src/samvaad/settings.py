# samvaad: Lightweight YAML settings loader plus typed accessors layered over config.py defaults.

from __future__ import annotations

import pathlib
from typing import Any, Dict, List, Optional

import yaml

from . import config


def load_settings(project_root: pathlib.Path) -> Dict[str, Any]:
    """
    Load project settings from <project>/.samvaad/settings.yaml or settings.yml.

    Returns an empty dict {} when the settings file is missing, unreadable, or
    does not contain a mapping. The function never raises.
    """
    data_dir = pathlib.Path(project_root) / config.DATA_DIR_NAME
    for p in (data_dir / "settings.yaml", data_dir / "settings.yml"):
        try:
            if not (p.exists() and p.is_file()):
                continue
            data = yaml.safe_load(p.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError):
            # samvaad: Unreadable or malformed settings fall through to the next candidate.
            continue
        # samvaad: Non-mapping YAML is treated as empty settings.
        return data if isinstance(data, dict) else {}
    return {}


def _section(settings: Optional[Dict[str, Any]], name: str) -> Dict[str, Any]:
    section = (settings or {}).get(name) if isinstance(settings, dict) else None
    return section if isinstance(section, dict) else {}


def api_settings(settings: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return _section(settings, "api")


def conversation_defaults(settings: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Return max_turns/max_tokens/temperature with settings overriding env defaults."""
    conv = _section(settings, "conversation")
    return {
        "max_turns": int(conv.get("max_turns", config.MAX_TURNS)),
        "max_tokens": int(conv.get("max_tokens", config.MAX_TOKENS)),
        "temperature": float(conv.get("temperature", config.TEMPERATURE)),
    }


def cache_settings(settings: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    cache = _section(settings, "cache")
    return {
        "ignore": bool(cache.get("ignore", config.IGNORE_REQUEST_CACHE)),
        "expiry_sec": int(cache.get("expiry_sec", config.REQUEST_CACHE_EXPIRY_SEC)),
    }


def allowed_commands(settings: Optional[Dict[str, Any]]) -> List[str]:
    cmds = _section(settings, "tools").get("allowed_commands")
    if isinstance(cmds, list) and cmds:
        return [str(c) for c in cmds]
    return list(config.ALLOWED_COMMANDS)


def auto_commit(settings: Optional[Dict[str, Any]]) -> bool:
    return bool(_section(settings, "git").get("auto_commit", config.AUTO_COMMIT))


def display_names(settings: Optional[Dict[str, Any]]) -> Dict[str, str]:
    names = _section(settings, "names")
    return {
        "person": str(names.get("person") or "Person"),
        "assistant": str(names.get("assistant") or "Assistant"),
    }
