# samvaad: Conversation state. Interaction holds the message log, counters, token totals and tools for one logical chat; ConversationInteraction adds project awareness (system prompt assembly, file attachments, hydration, persistence); ChatInteraction is the disposable one-shot used for titles and commit messages. InteractionManager tracks parent/child relationships.

from __future__ import annotations

import asyncio
import datetime
import pathlib
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from . import config
from .context import Context
from .events import ConversationAnswerEvent, ConversationEntryEvent, EntryType, LogEntry
from .fs import (
    file_stat,
    is_ignored_rel,
    is_path_within_project,
    list_all_nonignored_files,
    normalize_path,
    now_iso,
    read_file,
    short_id,
)
from .git_utils import get_current_commit, is_git_repo
from .models import (
    ConversationStats,
    ConversationTokenUsage,
    FileMetadata,
    FilePart,
    Message,
    ProviderResponse,
    SpeakOptions,
    TextPart,
    TokenUsage,
    ToolDescriptor,
    ToolResultPart,
)
from .tools import Tool, ToolRegistry

ContentInput = Union[str, Any, List[Any]]


def _as_parts(content: ContentInput) -> List[Any]:
    if isinstance(content, str):
        return [TextPart(text=content)]
    if isinstance(content, list):
        return [TextPart(text=c) if isinstance(c, str) else c for c in content]
    return [content]


def _iso_from_epoch(ts: float) -> str:
    return datetime.datetime.fromtimestamp(ts, datetime.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Interaction:
    """
    Base interaction: message log plus the counters and usage totals for one chat.

    Counters follow the statement/turn model: statement_count only grows when a
    statement completes, statement_turn_count resets at the start of each
    statement and conversation_turn_count only grows.
    """

    emit_entries = True

    def __init__(
        self,
        ctx: Context,
        llm: Any,
        interaction_id: Optional[str] = None,
        title: str = "",
        base_system: str = "",
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        tools: Optional[ToolRegistry] = None,
        parent_id: Optional[str] = None,
    ) -> None:
        self.ctx = ctx
        self.llm = llm
        self.id = interaction_id or short_id()
        self.title = title
        self.base_system = base_system
        self.model = model or llm.provider.model
        self.max_tokens = max_tokens if max_tokens is not None else config.MAX_TOKENS
        self.temperature = temperature if temperature is not None else config.TEMPERATURE
        self.tools = tools if tools is not None else ToolRegistry()
        self.parent_id = parent_id

        self.messages: List[Message] = []
        # message id -> (statement_count, statement_turn_count) at the time it was created
        self.message_counters: Dict[str, Tuple[int, int]] = {}
        self.files: Dict[str, FileMetadata] = {}
        self.entries: List[ConversationEntryEvent] = []

        self.statement_count = 0
        self.statement_turn_count = 0
        self.conversation_turn_count = 0
        self.token_usage_turn = TokenUsage()
        self.token_usage_statement = TokenUsage()
        self.token_usage_conversation = ConversationTokenUsage()
        self.provider_request_count = 0

        self.created_at = now_iso()
        self.updated_at = self.created_at

    # ---------- identity / stats ----------

    @property
    def provider_name(self) -> str:
        return self.llm.provider_name

    def stats(self) -> ConversationStats:
        return ConversationStats(
            statement_count=self.statement_count,
            statement_turn_count=self.statement_turn_count,
            conversation_turn_count=self.conversation_turn_count,
        )

    def begin_statement(self) -> None:
        self.statement_turn_count = 0
        self.token_usage_statement = TokenUsage()
        self.token_usage_turn = TokenUsage()

    def complete_statement(self) -> None:
        self.statement_count += 1

    def update_totals(self, usage: TokenUsage, provider_requests: int) -> None:
        """Fold one speak_with_retry call's usage into turn/statement/conversation totals."""
        self.token_usage_turn = usage.model_copy()
        self.token_usage_statement.add(usage)
        self.token_usage_conversation.add(usage)
        self.provider_request_count += provider_requests

    # ---------- tools ----------

    def get_tool(self, name: str) -> Optional[Tool]:
        return self.tools.get(name)

    def tool_descriptors(self, names: Optional[List[str]] = None) -> List[ToolDescriptor]:
        if names is None:
            return self.tools.descriptors()
        return self.tools.subset(names).descriptors()

    # ---------- messages ----------

    def add_message(
        self,
        role: str,
        content: ContentInput,
        tool_call_id: Optional[str] = None,
        provider_response: Optional[ProviderResponse] = None,
        message_id: Optional[str] = None,
    ) -> Message:
        parts = _as_parts(content)
        if not parts:
            raise ValueError("Message content must not be empty")
        kwargs: Dict[str, Any] = {}
        if message_id:
            kwargs["id"] = message_id
        msg = Message(role=role, content=parts, tool_call_id=tool_call_id, provider_response=provider_response, **kwargs)
        self.messages.append(msg)
        self.message_counters[msg.id] = (self.statement_count, self.statement_turn_count)
        self.updated_at = msg.timestamp
        return msg

    def get_last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None

    def get_message(self, message_id: str) -> Optional[Message]:
        for m in self.messages:
            if m.id == message_id:
                return m
        return None

    def add_message_for_user_role(self, content: ContentInput) -> str:
        """Append user content, merging into a trailing user message; returns the message id."""
        last = self.get_last_message()
        if last is not None and last.role == "user":
            last.content.extend(_as_parts(content))
            self.updated_at = now_iso()
            return last.id
        return self.add_message("user", content).id

    def add_message_for_assistant_role(self, content: ContentInput, provider_response: Optional[ProviderResponse] = None) -> str:
        last = self.get_last_message()
        if last is not None and last.role == "assistant":
            self.ctx.error_message(f"Why are we adding another assistant message - SOMETHING IS WRONG! (conversation {self.id})")
            last.content.extend(_as_parts(content))
            if provider_response is not None:
                last.provider_response = provider_response
            self.updated_at = now_iso()
            return last.id
        return self.add_message("assistant", content, provider_response=provider_response).id

    def add_message_for_tool_result(self, tool_use_id: str, content: ContentInput, is_error: bool = False) -> str:
        """
        Attach a tool_result for tool_use_id to the trailing user message.

        A result already present for the same id is updated in place (content
        replaced, error flag kept once set). Tool results are kept ahead of other
        user content since vendors expect them first.
        """
        parts = _as_parts(content)
        last = self.get_last_message()
        if last is not None and last.role == "user":
            for p in last.content:
                if isinstance(p, ToolResultPart) and p.tool_use_id == tool_use_id:
                    p.content = parts
                    p.is_error = p.is_error or is_error
                    return last.id
            result = ToolResultPart(tool_use_id=tool_use_id, content=parts, is_error=is_error)
            idx = 0
            while idx < len(last.content) and isinstance(last.content[idx], ToolResultPart):
                idx += 1
            last.content.insert(idx, result)
            self.updated_at = now_iso()
            return last.id
        return self.add_message("user", [ToolResultPart(tool_use_id=tool_use_id, content=parts, is_error=is_error)]).id

    # ---------- prompt preparation (overridden for project-aware interactions) ----------

    async def prepare_system_prompt(self, base_system: str) -> str:
        return base_system

    async def prepare_messages(self, messages: List[Message]) -> List[Message]:
        return [m.model_copy(deep=True) for m in messages]

    # ---------- audit entries ----------

    def record_entry(
        self,
        entry_type: EntryType,
        content: Any,
        message_id: Optional[str] = None,
        tool_name: Optional[str] = None,
        answer: bool = False,
    ) -> ConversationEntryEvent:
        """Build a progress/answer event with the current stats envelope, keep it and emit it."""
        cls = ConversationAnswerEvent if answer else ConversationEntryEvent
        event = cls(
            conversation_id=self.id,
            message_id=message_id,
            conversation_title=self.title,
            conversation_stats=self.stats(),
            token_usage_turn=self.token_usage_turn.model_copy(),
            token_usage_statement=self.token_usage_statement.model_copy(),
            token_usage_conversation=self.token_usage_conversation.model_copy(),
            log_entry=LogEntry(entry_type=entry_type, content=content, tool_name=tool_name),
        )
        self.entries.append(event)
        if self.emit_entries:
            self._write_audit(event)
            self.ctx.emit(event)
        return event

    def _write_audit(self, event: ConversationEntryEvent) -> None:
        pass

    def _log_response(self, response: ProviderResponse) -> None:
        message = self.get_last_message()
        message_id = message.id if message is not None and message.role == "assistant" else None
        text = response.tool_thinking if response.is_tool else response.answer
        if not text:
            text = "\n".join(p.text for p in response.answer_content if isinstance(p, TextPart))
        if text and text.strip():
            self.record_entry("assistant", text.strip(), message_id=message_id)
        for tu in response.tools_used:
            self.record_entry("tool_use", tu.tool_input, message_id=message_id, tool_name=tu.tool_name)

    # ---------- talking to the model ----------

    async def _statement_prefix(self) -> Optional[str]:
        return None

    async def converse(
        self,
        statement: str,
        options: Optional[SpeakOptions] = None,
        validate_callback: Optional[Callable[[ProviderResponse, Any], Optional[str]]] = None,
    ) -> ProviderResponse:
        """
        First turn of a statement: resets the per-statement counters, appends the
        statement and asks the model. statement_count is bumped by the caller once
        the whole statement completes.
        """
        self.begin_statement()
        self.statement_turn_count += 1
        self.conversation_turn_count += 1
        prefix = await self._statement_prefix()
        text = f"{prefix}\n\n{statement}" if prefix else statement
        message_id = self.add_message_for_user_role(text)
        self.record_entry("user", statement, message_id=message_id)
        response = await self.llm.speak_with_retry(self, options, validate_callback)
        self._log_response(response)
        return response

    async def speak_with_llm(
        self,
        prompt: str,
        options: Optional[SpeakOptions] = None,
        validate_callback: Optional[Callable[[ProviderResponse, Any], Optional[str]]] = None,
    ) -> ProviderResponse:
        """Continuation turn within the current statement."""
        self.statement_turn_count += 1
        self.conversation_turn_count += 1
        self.add_message_for_user_role(prompt)
        response = await self.llm.speak_with_retry(self, options, validate_callback)
        self._log_response(response)
        return response

    async def save(self) -> None:
        pass


# -----------------------------
# Project-aware conversation
# -----------------------------

class ConversationInteraction(Interaction):
    """The primary, persisted, project-aware conversation."""

    def __init__(self, ctx: Context, llm: Any, project: Any, persistence: Any = None, **kwargs: Any) -> None:
        super().__init__(ctx, llm, **kwargs)
        self.project = project
        self.persistence = persistence
        self.current_commit: Optional[str] = None

    @property
    def project_root(self) -> pathlib.Path:
        return self.project.project_root

    async def save(self) -> None:
        if self.persistence is not None:
            await self.persistence.save_conversation(self)

    def _write_audit(self, event: ConversationEntryEvent) -> None:
        if self.persistence is not None:
            self.persistence.append_audit_entry(event)

    async def _statement_prefix(self) -> Optional[str]:
        if self.statement_count > 0 or self.messages:
            return None
        if not await is_git_repo(self.project_root):
            return None
        commit = await get_current_commit(self.project_root)
        return f"Current Git commit: {commit}" if commit else None

    # ---------- system prompt ----------

    async def _file_listing(self) -> str:
        files = await asyncio.to_thread(list_all_nonignored_files, self.project_root)
        listing = files[: config.PROJECT_LISTING_MAX_FILES]
        lines = "\n".join(listing)
        if len(files) > len(listing):
            lines += f"\n... {len(files) - len(listing)} more files not listed"
        return lines

    async def _file_xml(self, path: str) -> Tuple[str, bool]:
        """Return (<file ...> block, ok); on failure the text is an error note instead."""
        try:
            content = await asyncio.to_thread(read_file, self.project_root, path)
            _size, mtime = await asyncio.to_thread(file_stat, self.project_root, path)
        except (OSError, ValueError) as e:
            self.ctx.error_message(f"Error reading file {path}: {e}")
            return f"Error reading file {path}: {e}", False
        size = len(content.encode("utf-8"))
        return f'<file path="{path}" size="{size}" last_modified="{_iso_from_epoch(mtime)}">\n{content}\n</file>', True

    async def prepare_system_prompt(self, base_system: str) -> str:
        """base text, then project file listing, then pinned files, then the current commit."""
        system = base_system
        system += f"\n\n<project-details>\n<file-listing>\n{await self._file_listing()}\n</file-listing>\n</project-details>"
        for path in self.system_prompt_files():
            block, _ok = await self._file_xml(path)
            system += f"\n\n{block}"
        self.current_commit = await get_current_commit(self.project_root)
        if self.current_commit:
            system += f"\n\n<git-commit>{self.current_commit}</git-commit>"
        return system

    # ---------- hydration ----------

    async def prepare_messages(self, messages: List[Message]) -> List[Message]:
        """
        Expand file references newest-first.

        The newest reference to a path gets the file's current content; every
        older reference becomes a note pointing at the turn that holds it.
        """
        hydrated: Dict[str, int] = {}
        out: List[Message] = []
        for index in range(len(messages) - 1, -1, -1):
            m = messages[index]
            if m.role != "user":
                out.append(m.model_copy(deep=True))
                continue
            turn = index + 1
            content = [await self._hydrate_part(p, turn, hydrated) for p in m.content]
            out.append(m.model_copy(update={"content": content}, deep=True))
        out.reverse()
        return out

    async def _hydrate_part(self, part: Any, turn: int, hydrated: Dict[str, int]) -> Any:
        if isinstance(part, FilePart):
            if part.path in hydrated:
                return TextPart(text=f"Note: File {part.path} content is up-to-date as of turn {hydrated[part.path]}.")
            block, ok = await self._file_xml(part.path)
            if ok:
                hydrated[part.path] = turn
            return TextPart(text=block)
        if isinstance(part, ToolResultPart):
            content = [await self._hydrate_part(p, turn, hydrated) for p in part.content]
            return part.model_copy(update={"content": content})
        return part

    # ---------- file attachments ----------

    def system_prompt_files(self) -> List[str]:
        return [p for p, meta in self.files.items() if meta.in_system_prompt]

    def _stat_file(self, path: str) -> FileMetadata:
        path = normalize_path(path)
        if not is_path_within_project(self.project_root, path):
            return FileMetadata(path=path, error="Access denied: path is outside the project directory")
        if is_ignored_rel(self.project_root, path):
            return FileMetadata(path=path, error="Access denied: file is ignored")
        try:
            size, mtime = file_stat(self.project_root, path)
        except OSError as e:
            return FileMetadata(path=path, error=f"File not found or unreadable: {e.strerror or e}")
        return FileMetadata(path=path, size=size, last_modified=mtime)

    def add_file_for_system_prompt(self, path: str) -> FileMetadata:
        meta = self._stat_file(path)
        if meta.error:
            raise ValueError(f"Cannot add {meta.path} to the system prompt: {meta.error}")
        meta.in_system_prompt = True
        self.files[meta.path] = meta
        return meta

    def prepare_files_for_message(self, file_names: List[str]) -> Tuple[List[Any], bool, str, List[FileMetadata]]:
        """
        Build the tool_result content announcing file_names.

        Returns:
            (content parts, all_failed, summary line, metadata per file)
        """
        metas = [self._stat_file(name) for name in file_names]
        parts: List[Any] = []
        for meta in metas:
            if meta.error:
                parts.append(TextPart(text=f"Error adding file {meta.path}: {meta.error}"))
            else:
                parts.append(FilePart(path=meta.path))
        summary = "Files added to the conversation: " + ", ".join(
            f"{m.path} ({'Error' if m.error else 'Success'})" for m in metas
        )
        all_failed = all(m.error for m in metas) if metas else True
        return [TextPart(text=summary)] + parts, all_failed, summary, metas

    def register_message_files(self, metas: List[FileMetadata], message_id: str, tool_use_id: Optional[str]) -> None:
        for meta in metas:
            if meta.error:
                continue
            meta.message_id = message_id
            meta.tool_use_id = tool_use_id
            meta.in_system_prompt = False
            self.files[meta.path] = meta

    def add_files_for_message(self, file_names: List[str], tool_use_id: str) -> str:
        """Attach files to history as one tool_result; returns the owning message id."""
        content, all_failed, summary, metas = self.prepare_files_for_message(file_names)
        message_id = self.add_message_for_tool_result(tool_use_id, content, is_error=all_failed)
        self.register_message_files(metas, message_id, tool_use_id)
        self.ctx.log(summary)
        return message_id

    def remove_file(self, path: str) -> bool:
        """
        Detach a file. History-owned files also lose their reference in the
        owning message, and the message itself goes when nothing else is left in it.
        """
        meta = self.files.pop(normalize_path(path), None)
        if meta is None:
            return False
        if meta.in_system_prompt or not meta.message_id:
            return True
        message = self.get_message(meta.message_id)
        if message is None:
            return True

        def _keep(p: Any) -> bool:
            return not (isinstance(p, FilePart) and p.path == meta.path)

        message.content = [p for p in message.content if _keep(p)]
        for p in message.content:
            if isinstance(p, ToolResultPart):
                p.content = [c for c in p.content if _keep(c)]
        if not message.content:
            self.messages = [m for m in self.messages if m.id != message.id]
            self.message_counters.pop(message.id, None)
        return True


# -----------------------------
# Disposable single-exchange chats
# -----------------------------

def require_answer(response: ProviderResponse, _interaction: Any) -> Optional[str]:
    return None if response.answer.strip() else "Empty answer"


class ChatInteraction(Interaction):
    """A throwaway interaction with no tools; used for titles and commit messages."""

    emit_entries = False

    def __init__(self, ctx: Context, llm: Any, **kwargs: Any) -> None:
        kwargs["tools"] = ToolRegistry()
        super().__init__(ctx, llm, **kwargs)

    async def chat(self, prompt: str, options: Optional[SpeakOptions] = None) -> ProviderResponse:
        self.begin_statement()
        self.statement_turn_count += 1
        self.conversation_turn_count += 1
        self.add_message_for_user_role(prompt)
        response = await self.llm.speak_with_retry(self, options, require_answer)
        self.complete_statement()
        return response


class InteractionManager:
    """Registry of live interactions and their parent/child links."""

    def __init__(self) -> None:
        self._interactions: Dict[str, Interaction] = {}
        self._children: Dict[str, List[str]] = {}

    def add(self, interaction: Interaction, parent_id: Optional[str] = None) -> Interaction:
        interaction.parent_id = parent_id or interaction.parent_id
        self._interactions[interaction.id] = interaction
        if interaction.parent_id:
            self._children.setdefault(interaction.parent_id, []).append(interaction.id)
        return interaction

    def create_interaction(self, kind: str, ctx: Context, llm: Any, parent_id: Optional[str] = None, **kwargs: Any) -> Interaction:
        """
        Raises:
            ValueError: Unknown interaction kind.
        """
        if kind == "conversation":
            interaction: Interaction = ConversationInteraction(ctx, llm, parent_id=parent_id, **kwargs)
        elif kind == "chat":
            interaction = ChatInteraction(ctx, llm, parent_id=parent_id, **kwargs)
        else:
            raise ValueError(f"Unknown interaction kind: {kind}")
        return self.add(interaction, parent_id)

    def get(self, interaction_id: str) -> Optional[Interaction]:
        return self._interactions.get(interaction_id)

    def has(self, interaction_id: str) -> bool:
        return interaction_id in self._interactions

    def get_children(self, interaction_id: str) -> List[Interaction]:
        return [self._interactions[c] for c in self._children.get(interaction_id, []) if c in self._interactions]

    def remove(self, interaction_id: str) -> bool:
        """Remove an interaction and all of its descendants."""
        interaction = self._interactions.pop(interaction_id, None)
        if interaction is None:
            return False
        for child_id in self._children.pop(interaction_id, []):
            self.remove(child_id)
        if interaction.parent_id and interaction.parent_id in self._children:
            self._children[interaction.parent_id] = [c for c in self._children[interaction.parent_id] if c != interaction_id]
        return True

    def all(self) -> List[Interaction]:
        return list(self._interactions.values())
