# samvaad: Prompt templates live as text files in samvaad.resources and are loaded via importlib.resources, optionally formatted with dynamic values.

from importlib import resources
from typing import Dict, List, Optional

TITLE_PROMPT_MAX_CHARS = 500


def get_prompt(name: str, **kwargs) -> str:
    """
    Load a text prompt from the samvaad.resources package.

    If kwargs are provided, apply str.format(**kwargs) to the content so prompts can
    contain placeholders (e.g., {person_name}). If no kwargs are provided, return the
    raw text without attempting formatting.
    """
    data = resources.files("samvaad.resources").joinpath(name).read_text(encoding="utf-8")
    if kwargs:
        return data.format(**kwargs)
    return data


def system_prompt(names: Optional[Dict[str, str]] = None) -> str:
    names = names or {}
    return get_prompt(
        "system_prompt.txt",
        person_name=names.get("person", "the user"),
        assistant_name=names.get("assistant", "Samvaad"),
    ).strip()


def title_prompt(statement: str) -> str:
    return get_prompt("title_prompt.txt", prompt=statement[:TITLE_PROMPT_MAX_CHARS]).strip()


def commit_message_prompt(patches: Dict[str, str]) -> str:
    blocks = "\n".join(f'<file path="{path}">\n{patch}\n</file>' for path, patch in patches.items())
    return get_prompt("commit_message_prompt.txt", patches=blocks).strip()


def commit_message_footer(paths: List[str]) -> str:
    listing = "\n".join(f"- {p}" for p in paths)
    return f"Applied patches from Samvaad to {len(paths)} file(s)\n\nFiles modified:\n{listing}"
