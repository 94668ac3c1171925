# samvaad: The statement/turn engine. One statement runs converse, then dispatches tool uses and feeds their results back until the model stops asking for tools, the turn ceiling is hit or the statement is cancelled. Conversations are persisted after the first response and again at the end. Also owns change logging, commit-after-patch and undo.

from __future__ import annotations

import re
from typing import Dict, List, Optional, Set, Tuple

from .context import Context
from .errors import ConversationError, FilePatchError, NothingToUndoError, SamvaadError, classify_os_error
from .events import ConversationAnswerEvent, ConversationCancelledEvent, ConversationErrorEvent, ConversationReadyEvent, ErrorCode
from .fs import read_file, safe_abs, short_id, write_file
from .git_utils import is_git_repo, stage_and_commit
from .interaction import ChatInteraction, ConversationInteraction, InteractionManager
from .llm import LLM
from .models import ConversationTokenUsage, PatchLogEntry, ProviderResponse, TextPart, TokenUsage
from .patches import PatchApplyError, apply_file_patch, parse_patch
from .persistence import ConversationPersistence
from .project import ProjectEditor
from .prompts import commit_message_footer, commit_message_prompt, system_prompt, title_prompt
from .settings import conversation_defaults, display_names
from .tools import ToolRegistry

_REPLY_RE = re.compile(r"<reply>(.*?)</reply>", re.DOTALL)

TURN_LIMIT_TOOL_TEXT = "Tool was not run: the turn limit for this statement was reached."
CANCELLED_TOOL_TEXT = "Tool was not run: the statement was cancelled."


def extract_reply(text: str) -> Tuple[str, str]:
    """
    Split model output into (answer, thinking).

    Text inside <reply></reply> is the answer; everything else is thinking.
    Without a reply block the whole text is the answer.
    """
    replies = _REPLY_RE.findall(text or "")
    if not replies:
        return (text or "").strip(), ""
    answer = "\n\n".join(r.strip() for r in replies)
    thinking = _REPLY_RE.sub("", text).strip()
    return answer, thinking


def _response_text(response: ProviderResponse) -> str:
    if response.answer:
        return response.answer
    return "\n".join(p.text for p in response.answer_content if isinstance(p, TextPart))


class AggregateStats:
    """Totals across every conversation hosted by one orchestrator; conversations report in on finalize."""

    def __init__(self) -> None:
        self.statement_count = 0
        self.statement_turn_count = 0
        self.conversation_turn_count = 0
        self.token_usage = ConversationTokenUsage()

    def record(self, turns: int, usage: TokenUsage) -> None:
        self.statement_count += 1
        self.statement_turn_count = turns
        self.conversation_turn_count += turns
        self.token_usage.add(usage)


class Orchestrator:
    """
    Hosts conversations for one project.

    A conversation runs at most one statement at a time; a second
    handle_statement for a busy id is rejected with CONVERSATION_BUSY.
    Cancellation is cooperative: the flag is checked before each turn and never
    interrupts a request or tool already in flight.
    """

    def __init__(
        self,
        project: ProjectEditor,
        llm: LLM,
        tools: Optional[ToolRegistry] = None,
        interactions: Optional[InteractionManager] = None,
        max_turns: Optional[int] = None,
    ) -> None:
        if tools is None:
            from .builtin_tools import default_tool_registry

            tools = default_tool_registry()
        self.project = project
        self.ctx: Context = project.ctx
        self.llm = llm
        self.tools = tools
        self.interactions = interactions or InteractionManager()
        defaults = conversation_defaults(project.settings)
        self.max_turns = max_turns if max_turns is not None else defaults["max_turns"]
        self.max_tokens = defaults["max_tokens"]
        self.temperature = defaults["temperature"]
        self.stats = AggregateStats()
        self._busy: Set[str] = set()
        self._cancelled: Dict[str, bool] = {}
        project.orchestrator = self

    # ---------- conversation lifecycle ----------

    def persistence_for(self, conversation_id: str) -> ConversationPersistence:
        return ConversationPersistence(self.project.project_root, conversation_id, self.ctx)

    async def get_or_load_conversation(self, conversation_id: Optional[str] = None) -> ConversationInteraction:
        """Return the live conversation, resuming it from disk or starting a new one."""
        if conversation_id:
            existing = self.interactions.get(conversation_id)
            if isinstance(existing, ConversationInteraction):
                return existing
        conversation_id = conversation_id or short_id()
        persistence = self.persistence_for(conversation_id).init()
        interaction = ConversationInteraction(
            self.ctx,
            self.llm,
            self.project,
            persistence=persistence,
            interaction_id=conversation_id,
            base_system=system_prompt(display_names(self.project.settings)),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            tools=self.tools,
        )
        if await persistence.load_conversation(interaction) is not None:
            self.ctx.log(f"Resumed conversation {conversation_id} ({len(interaction.messages)} messages)")
        else:
            self.ctx.log(f"Started new conversation {conversation_id}")
        existing = self.interactions.get(conversation_id)
        if isinstance(existing, ConversationInteraction):
            # Another caller finished loading first; its copy stays the live one
            return existing
        self.interactions.add(interaction)
        self.ctx.emit(ConversationReadyEvent(
            conversation_id=interaction.id,
            conversation_title=interaction.title,
            conversation_stats=interaction.stats(),
            token_usage_conversation=interaction.token_usage_conversation.model_copy(),
        ))
        return interaction

    def _reject(self, conversation_id: str, code: ErrorCode, message: str) -> ConversationError:
        self.ctx.error_message(message)
        self.ctx.emit(ConversationErrorEvent(conversation_id=conversation_id, error=message, code=code))
        return ConversationError(message, code=code.value, conversation_id=conversation_id)

    async def handle_statement(self, statement: str, conversation_id: Optional[str] = None) -> ConversationAnswerEvent:
        """
        Run one statement to completion and return the answer event.

        Raises:
            ConversationError: Empty statement or the conversation is already busy.
            SamvaadError: Failures on the last allowed turn and persistence failures.
        """
        cid = conversation_id or short_id()
        if not statement or not statement.strip():
            raise self._reject(conversation_id or "", ErrorCode.EMPTY_PROMPT, "Statement is empty")
        if cid in self._busy:
            raise self._reject(cid, ErrorCode.CONVERSATION_BUSY, f"Conversation {cid} is already handling a statement")

        # Claimed before loading so a concurrent statement cannot load a second copy
        self._busy.add(cid)
        self._cancelled[cid] = False
        try:
            interaction = await self.get_or_load_conversation(cid)
            if not interaction.title:
                interaction.title = await self.generate_title(interaction, statement)
            return await self._run_statement(interaction, statement)
        except ConversationError:
            raise
        except Exception as e:
            self.ctx.error_message(f"Error handling statement for conversation {cid}: {e}")
            self.ctx.emit(ConversationErrorEvent(conversation_id=cid, error=str(e), code=ErrorCode.STATEMENT_ERROR))
            raise
        finally:
            self._busy.discard(cid)
            self._cancelled.pop(cid, None)

    async def _run_statement(self, interaction: ConversationInteraction, statement: str) -> ConversationAnswerEvent:
        cid = interaction.id
        response = await interaction.converse(statement)
        # Checkpoint so a crash mid-loop still leaves a resumable conversation
        await interaction.save()

        turns = 1
        while True:
            if self._cancelled.get(cid):
                self.ctx.log(f"Conversation {cid}: statement cancelled after {turns} turn(s)")
                self._close_pending_tool_uses(interaction, response, CANCELLED_TOOL_TEXT)
                break
            if not (response.is_tool and response.tools_used):
                self.ctx.log(f"Conversation {cid}: no more tool calls, statement complete after {turns} turn(s)")
                break
            if turns >= self.max_turns:
                self.ctx.warn(f"Conversation {cid}: reached maximum turns ({self.max_turns})")
                self._close_pending_tool_uses(interaction, response, TURN_LIMIT_TOOL_TEXT)
                break

            feedback = await self._dispatch_tools(interaction, response)
            turns += 1
            prompt = "Tool results feedback:\n" + "\n".join(feedback) + "\nPlease continue the conversation."
            try:
                response = await interaction.speak_with_llm(prompt)
            except Exception as e:
                if turns >= self.max_turns:
                    raise
                self.ctx.error_message(f"Conversation {cid}: error on turn {turns}: {e}")
                text = f"Error occurred: {e}; continuing"
                response = ProviderResponse(answer=text, answer_content=[TextPart(text=text)], provider=self.llm.provider_name)

        interaction.complete_statement()
        self.stats.record(interaction.statement_turn_count, interaction.token_usage_statement)
        await interaction.save()

        answer, thinking = extract_reply(_response_text(response))
        if thinking:
            interaction.record_entry("auxiliary", thinking)
        last = interaction.get_last_message()
        message_id = last.id if last is not None and last.role == "assistant" else None
        return interaction.record_entry("answer", answer, message_id=message_id, answer=True)

    async def _dispatch_tools(self, interaction: ConversationInteraction, response: ProviderResponse) -> List[str]:
        """Run every tool use in model order; one feedback line per tool, failures included."""
        feedback: List[str] = []
        for tu in response.tools_used:
            result = await interaction.tools.dispatch(interaction, tu, self.project)
            interaction.record_entry("tool_result", result.display, message_id=result.message_id, tool_name=tu.tool_name)
            feedback.append(result.feedback)
        return feedback

    def _close_pending_tool_uses(self, interaction: ConversationInteraction, response: ProviderResponse, text: str) -> None:
        for tu in response.tools_used:
            interaction.add_message_for_tool_result(tu.tool_use_id, [TextPart(text=text)], is_error=True)

    # ---------- cancellation ----------

    def cancel(self, conversation_id: str) -> bool:
        """Request cooperative cancellation; the in-flight turn always finishes first."""
        if not self.interactions.has(conversation_id):
            self._reject(conversation_id, ErrorCode.NO_ACTIVE_CONVERSATION, f"No active conversation {conversation_id}")
            return False
        if conversation_id not in self._busy:
            self._reject(conversation_id, ErrorCode.CANCELLATION_ERROR, f"Conversation {conversation_id} has no statement in progress")
            return False
        self._cancelled[conversation_id] = True
        self.ctx.emit(ConversationCancelledEvent(conversation_id=conversation_id, message="Cancellation requested"))
        return True

    def is_busy(self, conversation_id: str) -> bool:
        return conversation_id in self._busy

    # ---------- child chats ----------

    async def _child_chat(self, parent: ConversationInteraction, prompt: str, max_tokens: int) -> str:
        child = ChatInteraction(
            self.ctx, self.llm, parent_id=parent.id, model=parent.model, max_tokens=max_tokens, temperature=parent.temperature
        )
        self.interactions.add(child)
        try:
            response = await child.chat(prompt)
            return response.answer.strip()
        finally:
            self.interactions.remove(child.id)

    async def generate_title(self, interaction: ConversationInteraction, statement: str) -> str:
        """Ask a throwaway chat for a short title; failures fall back to the start of the statement."""
        try:
            title = await self._child_chat(interaction, title_prompt(statement), max_tokens=100)
        except SamvaadError as e:
            self.ctx.error_message(f"Title generation failed for {interaction.id}: {e}")
            title = ""
        title = title.strip().strip('"').strip()
        if not title:
            title = " ".join(statement.split()[:5])
        return title

    async def generate_commit_message(self, interaction: ConversationInteraction, patches: Dict[str, str]) -> str:
        try:
            summary = await self._child_chat(interaction, commit_message_prompt(patches), max_tokens=500)
        except SamvaadError as e:
            self.ctx.error_message(f"Commit message generation failed: {e}")
            summary = "Update files"
        return f"{summary or 'Update files'}\n\n{commit_message_footer(sorted(patches))}"

    # ---------- change log, commit and undo ----------

    async def log_change_and_commit(self, interaction: ConversationInteraction, paths: List[str], diffs: List[str]) -> Optional[str]:
        persistence = interaction.persistence or self.persistence_for(interaction.id)
        for path, diff in zip(paths, diffs):
            await persistence.log_change(path, diff)
            self.project.changed_files.add(path)
            self.project.change_contents[path] = diff
        return await self.stage_and_commit_after_patching(interaction)

    async def stage_and_commit_after_patching(self, interaction: ConversationInteraction) -> Optional[str]:
        """Commit the statement's changed files when auto-commit is on and the project is a git repo."""
        try:
            if not self.project.changed_files or not self.project.auto_commit:
                return None
            if not await is_git_repo(self.project.project_root):
                return None
            message = await self.generate_commit_message(interaction, dict(self.project.change_contents))
            sha = await stage_and_commit(self.project.project_root, sorted(self.project.changed_files), message)
            self.ctx.log(f"Committed {len(self.project.changed_files)} file(s) as {sha}")
            return sha
        except RuntimeError as e:
            self.ctx.error_message(f"Failed to commit changes: {e}")
            return None
        finally:
            self.project.changed_files.clear()
            self.project.change_contents.clear()

    async def revert_last_patch(self, conversation_id: str) -> PatchLogEntry:
        """
        Undo the most recent logged change for a conversation.

        The reverse diff is applied to the file's current content and the log
        entry is only removed once that succeeded.

        Raises:
            NothingToUndoError: The change log is empty.
            FilePatchError: The file no longer matches the logged change.
        """
        persistence = self.persistence_for(conversation_id)
        log = await persistence.get_change_log()
        if not log:
            raise NothingToUndoError("No patches to revert.")
        entry = log[-1]
        root = self.project.project_root
        owner = f"undo-{conversation_id}"
        if not await self.project.resource_lock.acquire(entry.file_path, owner):
            raise FilePatchError(f"Timed out waiting for a lock on {entry.file_path}", file_path=entry.file_path, operation="patch")
        try:
            for fp in parse_patch(entry.patch, entry.file_path):
                path = fp.path
                abs_path = safe_abs(root, path)
                try:
                    if fp.is_new_file:
                        if abs_path.exists():
                            abs_path.unlink()
                        continue
                    current = "" if fp.is_deleted_file and not abs_path.exists() else read_file(root, path)
                    try:
                        restored = apply_file_patch(current, fp.reversed())
                    except PatchApplyError as e:
                        raise FilePatchError(
                            f"Failed to revert patch for {path}: the file has changed since the patch was applied ({e})",
                            file_path=path,
                            operation="patch",
                        )
                    write_file(root, path, restored)
                except OSError as e:
                    raise classify_os_error(e, path, "patch")
        finally:
            self.project.resource_lock.release(entry.file_path, owner)

        await persistence.remove_last_change()
        self.ctx.log(f"Reverted last change to {entry.file_path}")
        return entry
