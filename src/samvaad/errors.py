# samvaad: Error taxonomy. Every error carries a stable machine-readable code plus a human message; LLM errors also carry provider/model/conversation so operators can trace failures.

from typing import Any, Dict, Optional


class SamvaadError(Exception):
    """Base class for all Samvaad errors."""

    code = "SAMVAAD_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "error": self.message}


class APIError(SamvaadError):
    """Boundary-facing error carrying an HTTP-like status."""

    code = "API_ERROR"

    def __init__(self, message: str, status: int = 500, path: Optional[str] = None, expose: bool = True) -> None:
        super().__init__(message)
        self.status = status
        self.path = path
        self.expose = expose


class LLMError(SamvaadError):
    code = "LLM_ERROR"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        conversation_id: Optional[str] = None,
        args: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.conversation_id = conversation_id
        self.details = args or {}


class RateLimitError(LLMError):
    code = "RATE_LIMIT"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        conversation_id: Optional[str] = None,
        token_usage: Optional[int] = None,
        token_limit: Optional[int] = None,
        request_usage: Optional[int] = None,
        request_limit: Optional[int] = None,
    ) -> None:
        super().__init__(message, provider=provider, model=model, conversation_id=conversation_id)
        self.token_usage = token_usage
        self.token_limit = token_limit
        self.request_usage = request_usage
        self.request_limit = request_limit


class ValidationError(LLMError):
    """A model response failed schema or callback validation."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, reason: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.reason = reason or message


class RetriesExhaustedError(LLMError):
    code = "RETRIES_EXHAUSTED"

    def __init__(self, reason: str, max_retries: int, current_retry: int, **kwargs: Any) -> None:
        super().__init__("Request failed after multiple retries.", **kwargs)
        self.reason = reason
        self.max_retries = max_retries
        self.current_retry = current_retry

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["reason"] = self.reason
        d["retries"] = {"max": self.max_retries, "current": self.current_retry}
        return d


class ToolHandlingError(SamvaadError):
    code = "TOOL_ERROR"

    def __init__(self, message: str, tool_name: Optional[str] = None) -> None:
        super().__init__(message)
        self.tool_name = tool_name


class FileHandlingError(SamvaadError):
    code = "FILE_HANDLING_ERROR"
    default_operation = "read"

    def __init__(self, message: str, file_path: str, operation: Optional[str] = None) -> None:
        super().__init__(message)
        self.file_path = file_path
        self.operation = operation or self.default_operation


class FilePatchError(FileHandlingError):
    code = "FILE_PATCH_ERROR"
    default_operation = "patch"


class MissingFileError(FileHandlingError):
    code = "FILE_NOT_FOUND"


class FileReadError(FileHandlingError):
    code = "FILE_READ_ERROR"


class FileWriteError(FileHandlingError):
    code = "FILE_WRITE_ERROR"
    default_operation = "write"


class FilePermissionError(FileHandlingError):
    code = "FILE_PERMISSION_DENIED"


class OutsideProjectError(FileHandlingError):
    code = "FILE_OUTSIDE_PROJECT"


class CommandExecutionError(SamvaadError):
    code = "COMMAND_ERROR"

    def __init__(self, message: str, command: str) -> None:
        super().__init__(message)
        self.command = command


class VectorSearchError(SamvaadError):
    code = "VECTOR_SEARCH_ERROR"

    def __init__(self, message: str, operation: str) -> None:
        super().__init__(message)
        self.operation = operation


class ConversationError(SamvaadError):
    """Engine boundary error; code is one of the event error codes (EMPTY_PROMPT, ...)."""

    def __init__(self, message: str, code: str, conversation_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code
        self.conversation_id = conversation_id


class NothingToUndoError(SamvaadError):
    code = "NOTHING_TO_UNDO"


class UnauthorizedLockReleaseError(SamvaadError):
    code = "UNAUTHORIZED_LOCK_RELEASE"


def classify_os_error(exc: OSError, file_path: str, operation: str) -> FileHandlingError:
    """Map an OSError onto the file-handling taxonomy, keeping the operation tag."""
    if isinstance(exc, PermissionError):
        return FilePermissionError(f"Permission denied: {exc}", file_path=file_path, operation=operation)
    if isinstance(exc, FileNotFoundError):
        return MissingFileError(f"File not found: {exc}", file_path=file_path, operation=operation)
    if operation == "write":
        return FileWriteError(f"Failed to write: {exc}", file_path=file_path, operation=operation)
    return FileReadError(f"Failed to {operation}: {exc}", file_path=file_path, operation=operation)
