# samvaad: Small async wrappers over the git CLI (fs.run_git) used for commit-sha context in prompts and for committing tool-driven file changes.

import asyncio
import pathlib
from typing import List, Optional

from .fs import run_git


async def is_git_repo(project_root: pathlib.Path) -> bool:
    rc, out, _ = await asyncio.to_thread(run_git, ["rev-parse", "--is-inside-work-tree"], project_root)
    return rc == 0 and out.strip() == "true"


async def get_current_commit(project_root: pathlib.Path) -> Optional[str]:
    """Return HEAD's sha, or None outside a repository or before the first commit."""
    rc, out, _ = await asyncio.to_thread(run_git, ["rev-parse", "HEAD"], project_root)
    if rc != 0:
        return None
    return out.strip() or None


async def stage_and_commit(project_root: pathlib.Path, paths: List[str], message: str) -> Optional[str]:
    """
    Stage paths (additions, modifications and deletions) and commit them.

    Returns:
        The new commit sha.

    Raises:
        RuntimeError: git add or git commit failed.
    """
    rc, _, err = await asyncio.to_thread(run_git, ["add", "-A", "--"] + list(paths), project_root)
    if rc != 0:
        raise RuntimeError(f"git add failed: {err.strip()}")
    rc, out, err = await asyncio.to_thread(run_git, ["commit", "-m", message, "--"] + list(paths), project_root)
    if rc != 0:
        raise RuntimeError(f"git commit failed: {(err or out).strip()}")
    return await get_current_commit(project_root)
