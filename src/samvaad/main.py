# samvaad: Console entrypoint. Wires settings, provider, LLM (with an on-disk request cache) and the orchestrator, then runs a small REPL. Statements run as tasks so :cancel can reach a statement that is still looping over tools.

import asyncio
import pathlib
import sys
from typing import List, Optional, Tuple

from .context import Context
from .errors import NothingToUndoError, SamvaadError
from .fs import short_id
from .llm import LLM, RequestCache
from .orchestrator import Orchestrator
from .persistence import data_dir, list_conversations
from .project import ProjectEditor
from .providers import create_provider
from .settings import cache_settings, load_settings

HELP = """Commands:
  :help           Show this help
  :undo           Revert the last change made in this conversation
  :pin PATH       Keep PATH in the system prompt of this conversation
  :list           List saved conversations for this project
  :cancel         Cancel the statement in progress after its current turn
  :quit           Exit
Anything else is sent to the assistant as a statement."""


def _parse_args(argv: List[str]) -> Tuple[pathlib.Path, Optional[str], Optional[str]]:
    """Parse `[--conversation ID] [--provider NAME] [project_root]`."""
    conversation_id: Optional[str] = None
    provider: Optional[str] = None
    root = "."
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg in ("-c", "--conversation") and i + 1 < len(argv):
            conversation_id = argv[i + 1]
            i += 2
            continue
        if arg in ("-p", "--provider") and i + 1 < len(argv):
            provider = argv[i + 1]
            i += 2
            continue
        if not arg.startswith("-"):
            root = arg
        i += 1
    return pathlib.Path(root).resolve(), conversation_id, provider


class Session:
    """One REPL session bound to a single conversation id."""

    def __init__(self, orchestrator: Orchestrator, conversation_id: Optional[str]) -> None:
        self.orchestrator = orchestrator
        self.ctx = orchestrator.ctx
        # Fixed up front so :cancel and :undo can address a brand-new conversation
        self.conversation_id: str = conversation_id or short_id()
        self.task: Optional["asyncio.Task[None]"] = None

    async def _run_statement(self, text: str) -> None:
        try:
            event = await self.orchestrator.handle_statement(text, self.conversation_id)
        except SamvaadError as e:
            self.ctx.error_message(str(e))
            return
        self.conversation_id = event.conversation_id
        self.ctx.send_to_user(f"\n{event.log_entry.content}\n")

    async def handle_command(self, text: str) -> bool:
        """Run a :command; returns False when the session should end."""
        cmd = text.split()[0].lower()
        if cmd == ":help":
            self.ctx.send_to_user(HELP)
        elif cmd == ":quit":
            return False
        elif cmd == ":cancel":
            if not self.orchestrator.cancel(self.conversation_id):
                self.ctx.send_to_user("Nothing to cancel.")
        elif cmd == ":undo":
            if self.task is not None and not self.task.done():
                self.ctx.send_to_user("Wait for the current statement to finish before undoing.")
            else:
                try:
                    entry = await self.orchestrator.revert_last_patch(self.conversation_id)
                    self.ctx.send_to_user(f"Reverted last change to {entry.file_path}")
                except NothingToUndoError as e:
                    self.ctx.send_to_user(str(e))
                except SamvaadError as e:
                    self.ctx.error_message(str(e))
        elif cmd == ":pin":
            paths = text.split()[1:]
            if not paths:
                self.ctx.send_to_user("Usage: :pin PATH [PATH ...]")
                return True
            interaction = await self.orchestrator.get_or_load_conversation(self.conversation_id)
            for path in paths:
                try:
                    meta = interaction.add_file_for_system_prompt(path)
                except ValueError as e:
                    self.ctx.error_message(str(e))
                    continue
                self.ctx.send_to_user(f"Pinned {meta.path}")
        elif cmd == ":list":
            entries, total = list_conversations(self.orchestrator.project.project_root)
            self.ctx.send_to_user(f"{total} conversation(s):")
            for e in entries:
                self.ctx.send_to_user(f"- {e.get('id')}  {e.get('title') or '(untitled)'}  {e.get('updatedAt', '')}")
        else:
            self.ctx.send_to_user(f"Unknown command: {cmd}. Type :help for commands.")
        return True

    async def run(self) -> None:
        self.ctx.send_to_user(f"Samvaad ready at project root: {self.orchestrator.project.project_root}")
        self.ctx.send_to_user("Type :help for commands.")
        while True:
            try:
                text = (await asyncio.to_thread(input, "> ")).strip()
            except EOFError:
                self.ctx.send_to_user("\nGoodbye.")
                break
            if not text:
                continue
            if text.startswith(":"):
                if not await self.handle_command(text):
                    break
                continue
            if self.task is not None and not self.task.done():
                self.ctx.send_to_user("A statement is still running; use :cancel to stop it.")
                continue
            self.task = asyncio.create_task(self._run_statement(text))
        if self.task is not None and not self.task.done():
            self.orchestrator.cancel(self.conversation_id)
            await self.task


def build_orchestrator(project_root: pathlib.Path, provider_name: Optional[str] = None) -> Orchestrator:
    settings = load_settings(project_root)
    ctx = Context(project_root=project_root, settings=settings)
    project = ProjectEditor(project_root, ctx, settings=settings)
    cache_cfg = cache_settings(settings)
    cache = RequestCache(directory=data_dir(project.project_root) / "cache", expiry_sec=cache_cfg["expiry_sec"])
    provider = create_provider(ctx, provider_name, settings=settings)
    llm = LLM(provider, ctx, cache=cache, ignore_cache=cache_cfg["ignore"])
    return Orchestrator(project, llm)


def main() -> None:
    if len(sys.argv) >= 2 and sys.argv[1] in ("-h", "--help"):
        print("Usage: samvaad [--conversation ID] [--provider anthropic|openai] [project_root]")
        print("Environment: ANTHROPIC_API_KEY, OPENAI_API_KEY, SAMVAAD_PROVIDER")
        print(HELP)
        return
    project_root, conversation_id, provider_name = _parse_args(sys.argv[1:])
    try:
        orchestrator = build_orchestrator(project_root, provider_name)
    except (ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    try:
        asyncio.run(Session(orchestrator, conversation_id).run())
    except KeyboardInterrupt:
        print("\nGoodbye.")


if __name__ == "__main__":
    main()
