import errno

import pytest

from samvaad.errors import (
    APIError,
    CommandExecutionError,
    ConversationError,
    FilePermissionError,
    FileReadError,
    FileWriteError,
    MissingFileError,
    RateLimitError,
    RetriesExhaustedError,
    SamvaadError,
    ValidationError,
    VectorSearchError,
    classify_os_error,
)


@pytest.mark.parametrize(
    "exc, operation, expected",
    [
        (PermissionError(errno.EACCES, "denied"), "write", FilePermissionError),
        (FileNotFoundError(errno.ENOENT, "gone"), "read", MissingFileError),
        (OSError(errno.ENOSPC, "disk full"), "write", FileWriteError),
        (OSError(errno.EIO, "io"), "patch", FileReadError),
    ],
)
def test_classify_os_error(exc, operation, expected):
    err = classify_os_error(exc, "a.txt", operation)
    assert type(err) is expected
    assert err.file_path == "a.txt"
    assert err.operation == operation


def test_codes_and_dict_shape():
    err = ConversationError("busy", code="CONVERSATION_BUSY", conversation_id="c1")
    assert isinstance(err, SamvaadError)
    assert err.to_dict() == {"code": "CONVERSATION_BUSY", "error": "busy"}
    assert RateLimitError("slow down").code == "RATE_LIMIT"


def test_retries_exhausted_details():
    err = RetriesExhaustedError(reason="caught error: boom", max_retries=3, current_retry=3, provider="openai")
    assert str(err) == "Request failed after multiple retries."
    assert err.provider == "openai"
    assert err.to_dict()["retries"] == {"max": 3, "current": 3}
    assert err.to_dict()["reason"] == "caught error: boom"


def test_taxonomy_attributes():
    api = APIError("not found", status=404, path="/conversations/x")
    assert (api.code, api.status, api.path, api.expose) == ("API_ERROR", 404, "/conversations/x", True)
    invalid = ValidationError("bad tool input", provider="anthropic")
    assert invalid.reason == "bad tool input"
    assert invalid.provider == "anthropic"
    assert CommandExecutionError("nope", command="rm").command == "rm"
    assert VectorSearchError("index missing", operation="query").operation == "query"
