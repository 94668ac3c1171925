# samvaad: File-backed conversation storage under <project>/.samvaad: a shared index, per-conversation metadata, a JSONL message log, attached-file metadata, the patch log used for undo and the audit log of emitted entries. JSON writes are atomic; OS failures are re-raised as classified FileHandlingErrors.

from __future__ import annotations

import asyncio
import json
import pathlib
import shutil
import threading
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from . import config
from .context import Context
from .errors import FileReadError, classify_os_error
from .fs import append_jsonl, now_iso, read_jsonl, write_json, write_jsonl
from .models import (
    ConversationTokenUsage,
    FileMetadata,
    Message,
    MessageRecord,
    PatchLogEntry,
    TextPart,
    ToolUsePart,
    TokenUsage,
)

INTERRUPTED_TOOL_USE_TEXT = "Tool use was interrupted, results could not be generated. You may try again now."

# Guards read-modify-write of the shared index across worker threads
_INDEX_LOCK = threading.Lock()


def data_dir(project_root: pathlib.Path) -> pathlib.Path:
    return pathlib.Path(project_root) / config.DATA_DIR_NAME


def _load_json_strict(path: pathlib.Path) -> Any:
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except OSError as e:
        raise classify_os_error(e, str(path), "read")
    except ValueError as e:
        raise FileReadError(f"Corrupt JSON in {path.name}: {e}", file_path=str(path), operation="read")


def _read_index(project_root: pathlib.Path) -> List[Dict[str, Any]]:
    path = data_dir(project_root) / "conversations.json"
    if not path.exists():
        return []
    data = _load_json_strict(path)
    return data if isinstance(data, list) else []


def list_conversations(
    project_root: pathlib.Path,
    page: int = 1,
    page_size: int = 20,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    provider: Optional[str] = None,
) -> Tuple[List[Dict[str, Any]], int]:
    """
    Return one page of index entries (newest updatedAt first) and the total match count.

    start_date/end_date are ISO-8601 strings compared against createdAt.
    """
    entries = _read_index(project_root)
    if start_date:
        entries = [e for e in entries if str(e.get("createdAt", "")) >= start_date]
    if end_date:
        entries = [e for e in entries if str(e.get("createdAt", "")) <= end_date]
    if provider:
        entries = [e for e in entries if e.get("providerName") == provider]
    entries.sort(key=lambda e: str(e.get("updatedAt", "")), reverse=True)
    total = len(entries)
    start = max(page - 1, 0) * page_size
    return entries[start:start + page_size], total


def delete_conversation(project_root: pathlib.Path, conversation_id: str) -> bool:
    """Remove a conversation's directory and index entry; False when it did not exist."""
    conv_dir = data_dir(project_root) / "conversations" / conversation_id
    existed = conv_dir.exists()
    try:
        if existed:
            shutil.rmtree(conv_dir)
        with _INDEX_LOCK:
            entries = _read_index(project_root)
            remaining = [e for e in entries if e.get("id") != conversation_id]
            if len(remaining) != len(entries):
                existed = True
                write_json(data_dir(project_root) / "conversations.json", remaining)
    except OSError as e:
        raise classify_os_error(e, str(conv_dir), "delete")
    return existed


class ConversationPersistence:
    """Storage for one conversation id."""

    def __init__(self, project_root: pathlib.Path, conversation_id: str, ctx: Context) -> None:
        self.project_root = pathlib.Path(project_root)
        self.conversation_id = conversation_id
        self.ctx = ctx
        self.data_dir = data_dir(self.project_root)
        self.index_file = self.data_dir / "conversations.json"
        self.conversation_dir = self.data_dir / "conversations" / conversation_id
        self.metadata_file = self.conversation_dir / "metadata.json"
        self.messages_file = self.conversation_dir / "messages.jsonl"
        self.files_metadata_file = self.conversation_dir / "files_metadata.json"
        self.patch_log_file = self.conversation_dir / "patches.jsonl"
        self.audit_log_file = self.conversation_dir / "conversation.jsonl"

    def init(self) -> "ConversationPersistence":
        """Create the conversation directory; safe to call repeatedly."""
        try:
            self.conversation_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise classify_os_error(e, str(self.conversation_dir), "write")
        return self

    # ---------- save ----------

    def _index_entry(self, interaction: Any) -> Dict[str, Any]:
        return {
            "id": interaction.id,
            "title": interaction.title,
            "providerName": interaction.provider_name,
            "model": interaction.model,
            "createdAt": interaction.created_at,
            "updatedAt": interaction.updated_at,
        }

    def _metadata(self, interaction: Any) -> Dict[str, Any]:
        md = self._index_entry(interaction)
        md.update({
            "parentId": interaction.parent_id,
            "system": interaction.base_system,
            "temperature": interaction.temperature,
            "maxTokens": interaction.max_tokens,
            "conversationStats": interaction.stats().to_record(),
            "tokenUsage": interaction.token_usage_conversation.to_record(),
            "tokenUsageStatement": interaction.token_usage_statement.to_record(),
            "providerRequestCount": interaction.provider_request_count,
            "tools": [{"name": t.name, "description": t.description} for t in interaction.tools.list()],
        })
        return md

    def _message_records(self, interaction: Any) -> List[Dict[str, Any]]:
        records = []
        for m in interaction.messages:
            statement_count, turn_count = interaction.message_counters.get(m.id, (interaction.statement_count, 0))
            record = MessageRecord(**m.model_dump(), statement_count=statement_count, turn_count=turn_count)
            records.append(record.to_record())
        return records

    def _save_sync(self, interaction: Any) -> None:
        self.init()
        path = self.metadata_file
        try:
            with _INDEX_LOCK:
                entries = _read_index(self.project_root)
                entry = self._index_entry(interaction)
                for i, e in enumerate(entries):
                    if e.get("id") == interaction.id:
                        entries[i] = entry
                        break
                else:
                    entries.append(entry)
                path = self.index_file
                write_json(self.index_file, entries)
            path = self.metadata_file
            write_json(self.metadata_file, self._metadata(interaction))
            path = self.messages_file
            write_jsonl(self.messages_file, self._message_records(interaction))
            path = self.files_metadata_file
            write_json(self.files_metadata_file, [f.to_record() for f in interaction.files.values()])
        except OSError as e:
            raise classify_os_error(e, str(path), "write")

    async def save_conversation(self, interaction: Any) -> None:
        """Write index entry (upsert), metadata, message log and file metadata."""
        await asyncio.to_thread(self._save_sync, interaction)
        self.ctx.log(f"Saved conversation {interaction.id} ({len(interaction.messages)} messages)")

    # ---------- load ----------

    def get_metadata(self) -> Optional[Dict[str, Any]]:
        if not self.metadata_file.exists():
            return None
        data = _load_json_strict(self.metadata_file)
        return data if isinstance(data, dict) else None

    def _load_sync(self, interaction: Any) -> Optional[Any]:
        md = self.get_metadata()
        if md is None:
            return None

        interaction.title = md.get("title") or ""
        interaction.base_system = md.get("system") or interaction.base_system
        interaction.model = md.get("model") or interaction.model
        interaction.max_tokens = int(md.get("maxTokens") or interaction.max_tokens)
        if md.get("temperature") is not None:
            interaction.temperature = float(md["temperature"])
        interaction.parent_id = md.get("parentId")
        interaction.created_at = md.get("createdAt") or interaction.created_at
        interaction.updated_at = md.get("updatedAt") or interaction.updated_at
        stats = md.get("conversationStats") or {}
        interaction.statement_count = int(stats.get("statementCount", 0))
        interaction.statement_turn_count = int(stats.get("statementTurnCount", 0))
        interaction.conversation_turn_count = int(stats.get("conversationTurnCount", 0))
        interaction.token_usage_conversation = ConversationTokenUsage.model_validate(md.get("tokenUsage") or {})
        interaction.token_usage_statement = TokenUsage.model_validate(md.get("tokenUsageStatement") or {})
        interaction.provider_request_count = int(md.get("providerRequestCount") or 0)

        def _bad_line(lineno: int, err: str) -> None:
            self.ctx.warn(f"Skipping corrupt message record {lineno} in {self.messages_file}: {err}")

        try:
            raw_messages = read_jsonl(self.messages_file, on_bad_line=_bad_line)
        except OSError as e:
            raise classify_os_error(e, str(self.messages_file), "read")

        interaction.messages = []
        interaction.message_counters = {}
        for lineno, raw in enumerate(raw_messages, start=1):
            try:
                record = MessageRecord.model_validate(raw)
            except ValidationError as e:
                self.ctx.warn(f"Skipping invalid message record {lineno} in {self.messages_file}: {e.error_count()} error(s)")
                continue
            message = Message.model_validate(record.model_dump(exclude={"statement_count", "turn_count"}))
            interaction.messages.append(message)
            interaction.message_counters[message.id] = (record.statement_count, record.turn_count)

        interaction.files = {}
        if self.files_metadata_file.exists():
            for raw in _load_json_strict(self.files_metadata_file) or []:
                try:
                    meta = FileMetadata.model_validate(raw)
                except ValidationError:
                    self.ctx.warn(f"Skipping invalid file metadata record in {self.files_metadata_file}")
                    continue
                interaction.files[meta.path] = meta

        self._close_interrupted_tool_use(interaction)
        return interaction

    def _close_interrupted_tool_use(self, interaction: Any) -> None:
        last = interaction.get_last_message()
        if last is None or last.role != "assistant":
            return
        uses = [p for p in last.content if isinstance(p, ToolUsePart)]
        if not uses:
            return
        self.ctx.warn(f"Conversation {interaction.id} ended with an unanswered tool use; marking it interrupted")
        for use in uses:
            interaction.add_message_for_tool_result(use.id, [TextPart(text=INTERRUPTED_TOOL_USE_TEXT)], is_error=True)

    async def load_conversation(self, interaction: Any) -> Optional[Any]:
        """
        Populate interaction from disk.

        Returns:
            The interaction, or None when nothing has been saved for this id yet.

        Raises:
            FileHandlingError: Metadata or message log could not be read.
        """
        return await asyncio.to_thread(self._load_sync, interaction)

    # ---------- patch log ----------

    def _get_change_log_sync(self) -> List[PatchLogEntry]:
        def _bad_line(lineno: int, err: str) -> None:
            self.ctx.warn(f"Skipping corrupt patch log record {lineno}: {err}")

        try:
            raw = read_jsonl(self.patch_log_file, on_bad_line=_bad_line)
        except OSError as e:
            raise classify_os_error(e, str(self.patch_log_file), "read")
        return [PatchLogEntry.model_validate(r) for r in raw]

    async def log_change(self, file_path: str, patch: str) -> PatchLogEntry:
        entry = PatchLogEntry(timestamp=now_iso(), file_path=file_path, patch=patch)
        try:
            await asyncio.to_thread(append_jsonl, self.patch_log_file, entry.to_record())
        except OSError as e:
            raise classify_os_error(e, str(self.patch_log_file), "write")
        return entry

    async def get_change_log(self) -> List[PatchLogEntry]:
        return await asyncio.to_thread(self._get_change_log_sync)

    def _remove_last_change_sync(self) -> Optional[PatchLogEntry]:
        entries = self._get_change_log_sync()
        if not entries:
            return None
        last = entries.pop()
        try:
            write_jsonl(self.patch_log_file, [e.to_record() for e in entries])
        except OSError as e:
            raise classify_os_error(e, str(self.patch_log_file), "write")
        return last

    async def remove_last_change(self) -> Optional[PatchLogEntry]:
        """Pop the most recent patch log entry; None when the log is empty."""
        return await asyncio.to_thread(self._remove_last_change_sync)

    # ---------- audit log ----------

    def append_audit_entry(self, event: Any) -> None:
        record = event.to_record()
        record.pop("type", None)
        try:
            append_jsonl(self.audit_log_file, record)
        except OSError as e:
            self.ctx.error_message(f"Could not append to conversation log {self.audit_log_file}: {e}")

    def read_audit_log(self) -> List[Dict[str, Any]]:
        return read_jsonl(self.audit_log_file)
