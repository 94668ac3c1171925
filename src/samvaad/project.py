# samvaad: The project a conversation works against: root path, settings-derived tool policy, the advisory file lock and the per-statement set of changed files that the orchestrator logs and commits.

import pathlib
from typing import Any, Dict, List, Optional, Set

from .context import Context
from .resource_lock import ResourceLock
from .settings import allowed_commands, auto_commit, load_settings


class ProjectEditor:
    def __init__(
        self,
        project_root: pathlib.Path,
        ctx: Optional[Context] = None,
        settings: Optional[Dict[str, Any]] = None,
        resource_lock: Optional[ResourceLock] = None,
    ) -> None:
        self.project_root = pathlib.Path(project_root).resolve()
        self.settings = settings if settings is not None else load_settings(self.project_root)
        self.ctx = ctx or Context(project_root=self.project_root, settings=self.settings)
        self.resource_lock = resource_lock or ResourceLock()
        self.allowed_commands: List[str] = allowed_commands(self.settings)
        self.auto_commit: bool = auto_commit(self.settings)
        # Paths and diffs touched during the current statement; cleared after each commit attempt
        self.changed_files: Set[str] = set()
        self.change_contents: Dict[str, str] = {}
        self.orchestrator: Any = None

    async def log_change_and_commit(self, interaction: Any, paths: List[str], diffs: List[str]) -> Optional[str]:
        """
        Record file changes made by a tool and commit them when possible.

        Raises:
            RuntimeError: No orchestrator is attached to this project.
        """
        if self.orchestrator is None:
            raise RuntimeError("ProjectEditor has no orchestrator attached; cannot log changes")
        return await self.orchestrator.log_change_and_commit(interaction, paths, diffs)
