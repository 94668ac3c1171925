# samvaad: Event payloads emitted by the orchestrator to external listeners (CLI, HTTP/WebSocket layers). They serialise to the camelCase wire shapes consumed by UIs.

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import Field

from .fs import now_iso
from .models import CamelModel, ConversationStats, ConversationTokenUsage, TokenUsage


class ErrorCode(str, Enum):
    EMPTY_PROMPT = "EMPTY_PROMPT"
    NO_ACTIVE_CONVERSATION = "NO_ACTIVE_CONVERSATION"
    STATEMENT_ERROR = "STATEMENT_ERROR"
    CANCELLATION_ERROR = "CANCELLATION_ERROR"
    CONVERSATION_BUSY = "CONVERSATION_BUSY"


EntryType = Literal["user", "assistant", "tool_use", "tool_result", "auxiliary", "answer", "error"]


class LogEntry(CamelModel):
    entry_type: EntryType
    content: Any
    tool_name: Optional[str] = None


class ConversationEvent(CamelModel):
    type: str
    conversation_id: str
    timestamp: str = Field(default_factory=now_iso)


class ConversationReadyEvent(ConversationEvent):
    type: Literal["conversationReady"] = "conversationReady"
    conversation_title: str = ""
    conversation_stats: ConversationStats = Field(default_factory=ConversationStats)
    token_usage_conversation: ConversationTokenUsage = Field(default_factory=ConversationTokenUsage)


class ConversationEntryEvent(ConversationEvent):
    """Progress entry (user/assistant/tool_use/tool_result/auxiliary) with the stats/usage envelope."""
    type: Literal["conversationEntry", "conversationAnswer"] = "conversationEntry"
    message_id: Optional[str] = None
    conversation_title: str = ""
    conversation_stats: ConversationStats = Field(default_factory=ConversationStats)
    token_usage_turn: TokenUsage = Field(default_factory=TokenUsage)
    token_usage_statement: TokenUsage = Field(default_factory=TokenUsage)
    token_usage_conversation: ConversationTokenUsage = Field(default_factory=ConversationTokenUsage)
    log_entry: LogEntry


class ConversationAnswerEvent(ConversationEntryEvent):
    type: Literal["conversationAnswer"] = "conversationAnswer"


class ConversationCancelledEvent(ConversationEvent):
    type: Literal["conversationCancelled"] = "conversationCancelled"
    message: str = "Conversation cancelled"


class ConversationErrorEvent(ConversationEvent):
    type: Literal["conversationError"] = "conversationError"
    error: str
    code: ErrorCode
