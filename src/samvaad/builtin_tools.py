# samvaad: Built-in tools the assistant can call: project search, file attachment, patching, whole-file rewrites, allow-listed commands and web fetches. Each is a plain function wrapped by @tool; file-mutating tools log their diffs through the project so changes can be undone and committed.

import asyncio
import datetime
import fnmatch
import pathlib
import re
import shlex
import subprocess
from typing import List, Optional, Tuple

import requests

from .errors import (
    CommandExecutionError,
    FilePatchError,
    MissingFileError,
    OutsideProjectError,
    SamvaadError,
    ToolHandlingError,
    classify_os_error,
)
from .fs import file_stat, is_path_within_project, list_all_nonignored_files, normalize_path, read_file, safe_abs, write_file
from .models import TextPart
from .patches import PatchApplyError, PatchParseError, apply_file_patch, make_unified_diff, parse_patch
from .tools import ToolCall, ToolRegistry, ToolRunResult, tool

_MAX_FETCH_BYTES = 500 * 1024
_MAX_SEARCH_FILE_BYTES = 2 * 1024 * 1024
_TAG_RE = re.compile(r"<[^>]+>")
_DROP_BLOCKS_RE = re.compile(r"<(script|style|noscript)\b.*?</\1>", re.IGNORECASE | re.DOTALL)
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


# -----------------------------
# search_project
# -----------------------------

def _parse_date(value: str) -> float:
    try:
        dt = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ToolHandlingError(f"Invalid date '{value}'; expected YYYY-MM-DD", tool_name="search_project")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt.timestamp()


def _matches_file_pattern(path: str, pattern: str) -> bool:
    name = pathlib.PurePosixPath(path).name
    return any(fnmatch.fnmatch(path, p) or fnmatch.fnmatch(name, p) for p in pattern.split("|") if p)


def _search(
    project_root: pathlib.Path,
    regex: Optional["re.Pattern[str]"],
    file_pattern: Optional[str],
    after: Optional[float],
    before: Optional[float],
    size_min: Optional[int],
    size_max: Optional[int],
) -> List[str]:
    found: List[str] = []
    for path in list_all_nonignored_files(project_root):
        if file_pattern and not _matches_file_pattern(path, file_pattern):
            continue
        try:
            size, mtime = file_stat(project_root, path)
        except OSError:
            continue
        if after is not None and mtime <= after:
            continue
        if before is not None and mtime >= before:
            continue
        if size_min is not None and size < size_min:
            continue
        if size_max is not None and size > size_max:
            continue
        if regex is not None:
            if size > _MAX_SEARCH_FILE_BYTES:
                continue
            try:
                text = read_file(project_root, path)
            except (OSError, UnicodeDecodeError):
                # Binary or unreadable files never match a content search
                continue
            if not regex.search(text):
                continue
        found.append(path)
    return found


@tool(
    name="search_project",
    description=(
        "Search project files by content (regular expression), file name glob, modification date and size. "
        "Returns the matching project-relative paths. Use file_pattern alone to list files."
    ),
    param_overrides={
        "content_pattern": {"description": "Regular expression matched against file contents."},
        "file_pattern": {"description": "Glob matched against the path or file name, e.g. '*.py'. Separate alternatives with '|'."},
        "case_sensitive": {"description": "Whether content_pattern is case sensitive."},
        "date_after": {"description": "Only files modified after this date (YYYY-MM-DD)."},
        "date_before": {"description": "Only files modified before this date (YYYY-MM-DD)."},
        "size_min": {"description": "Minimum file size in bytes."},
        "size_max": {"description": "Maximum file size in bytes."},
    },
)
async def search_project(
    call: ToolCall,
    content_pattern: Optional[str] = None,
    file_pattern: Optional[str] = None,
    case_sensitive: bool = False,
    date_after: Optional[str] = None,
    date_before: Optional[str] = None,
    size_min: Optional[int] = None,
    size_max: Optional[int] = None,
) -> ToolRunResult:
    regex = None
    if content_pattern:
        try:
            regex = re.compile(content_pattern, 0 if case_sensitive else re.IGNORECASE)
        except re.error as e:
            raise ToolHandlingError(f"Invalid content pattern: {e}", tool_name="search_project")
    after = _parse_date(date_after) if date_after else None
    before = _parse_date(date_before) if date_before else None

    files = await asyncio.to_thread(
        _search, call.project.project_root, regex, file_pattern, after, before, size_min, size_max
    )

    criteria = ", ".join(c for c in [
        content_pattern and f'content pattern "{content_pattern}"',
        content_pattern and ("case-sensitive" if case_sensitive else "case-insensitive"),
        file_pattern and f'file pattern "{file_pattern}"',
        date_after and f"modified after {date_after}",
        date_before and f"modified before {date_before}",
        size_min is not None and f"minimum size {size_min} bytes",
        size_max is not None and f"maximum size {size_max} bytes",
    ] if c) or "all files"
    results = f"{len(files)} files match the search criteria: {criteria}"
    if files:
        results += "\n<files>\n" + "\n".join(files) + "\n</files>"
    return ToolRunResult(
        tool_results=results,
        tool_response=f"Found {len(files)} files matching the search criteria: {criteria}",
    )


# -----------------------------
# request_files
# -----------------------------

@tool(
    name="request_files",
    description="Add the full contents of the given project files to the conversation. Request files before changing them.",
    param_overrides={"file_names": {"description": "Project-relative paths of the files to add."}},
)
def request_files(call: ToolCall, file_names: List[str]) -> ToolRunResult:
    interaction = call.interaction
    content, all_failed, summary, metas = interaction.prepare_files_for_message(file_names)
    tool_use_id = call.tool_use.tool_use_id
    return ToolRunResult(
        tool_results=content,
        tool_response=summary,
        finalize_callback=lambda message_id: interaction.register_message_files(metas, message_id, tool_use_id),
        is_error=all_failed,
    )


@tool(
    name="forget_files",
    description=(
        "Remove files from the conversation when they are no longer needed, to save tokens. "
        "Request them again later if their content is needed."
    ),
    param_overrides={"file_names": {"description": "Project-relative paths of the files to remove."}},
)
def forget_files(call: ToolCall, file_names: List[str]) -> ToolRunResult:
    interaction = call.interaction
    parts: List[TextPart] = []
    removed: List[str] = []
    failed: List[str] = []
    for name in file_names:
        path = normalize_path(name)
        if interaction.remove_file(path):
            removed.append(path)
            parts.append(TextPart(text=f"File removed: {path}"))
        else:
            failed.append(path)
            parts.append(TextPart(text=f"Error removing file {path}: File is not in the conversation"))
    responses = []
    if removed:
        responses.append("Removed files from the conversation: " + ", ".join(removed))
    if failed:
        responses.append("Failed to remove files from the conversation: " + ", ".join(failed))
    response = "\n".join(responses) if removed else "No files removed\n" + "\n".join(responses)
    return ToolRunResult(tool_results=parts, tool_response=response, is_error=not removed)


# -----------------------------
# apply_patch / rewrite_file
# -----------------------------

def _check_in_project(call: ToolCall, path: str, operation: str) -> str:
    path = normalize_path(path)
    if not is_path_within_project(call.project.project_root, path):
        raise OutsideProjectError(
            f"Access denied: {path} is outside the project directory", file_path=path, operation=operation
        )
    return path


def _read_existing(call: ToolCall, path: str, operation: str) -> Optional[str]:
    abs_path = safe_abs(call.project.project_root, path)
    if not abs_path.exists():
        return None
    try:
        return read_file(call.project.project_root, path)
    except OSError as e:
        raise classify_os_error(e, path, operation)


@tool(
    name="apply_patch",
    description=(
        "Apply a unified diff to one or more project files. Include '--- a/path' and '+++ b/path' headers; "
        "use '--- /dev/null' to create a new file. Paths are relative to the project root."
    ),
    param_overrides={
        "patch": {"description": "The unified diff to apply."},
        "file_path": {"description": "Target file when the patch has no file headers."},
    },
)
async def apply_patch(call: ToolCall, patch: str, file_path: Optional[str] = None) -> ToolRunResult:
    try:
        file_patches = parse_patch(patch, file_path)
    except PatchParseError as e:
        raise FilePatchError(f"Invalid patch: {e}", file_path=file_path or "", operation="patch")

    project = call.project
    owner = call.interaction.id
    paths = [_check_in_project(call, fp.path, "patch") for fp in file_patches]
    locked: List[str] = []
    failure: Optional[SamvaadError] = None
    try:
        for path in paths:
            if not await project.resource_lock.acquire(path, owner):
                raise FilePatchError(f"Timed out waiting for a lock on {path}", file_path=path, operation="patch")
            locked.append(path)

        # Compute every result before writing anything so a bad hunk leaves the tree untouched
        planned: List[Tuple[str, Optional[str], str]] = []
        for path, fp in zip(paths, file_patches):
            old = _read_existing(call, path, "patch")
            if fp.is_new_file:
                if old is not None:
                    raise FilePatchError(f"Cannot create {path}: file already exists", file_path=path, operation="patch")
                base = ""
            else:
                if old is None:
                    raise MissingFileError(f"File not found: {path}", file_path=path, operation="patch")
                base = old
            try:
                new = apply_file_patch(base, fp)
            except PatchApplyError as e:
                call.ctx.error_message(f"Patch mismatch for {path}: {e}")
                raise FilePatchError(
                    f"Failed to apply patch to {path}. The patch does not match the current file content.",
                    file_path=path,
                    operation="patch",
                )
            planned.append((path, old, new))

        written: List[str] = []
        diffs: List[str] = []
        for (path, old, new), fp in zip(planned, file_patches):
            try:
                if fp.is_deleted_file:
                    safe_abs(project.project_root, path).unlink()
                else:
                    write_file(project.project_root, path, new)
            except OSError as e:
                failure = classify_os_error(e, path, "write")
                break
            written.append(path)
            diffs.append(make_unified_diff(
                old or "",
                "" if fp.is_deleted_file else new,
                path,
                is_new_file=fp.is_new_file,
                is_deleted_file=fp.is_deleted_file,
            ))
    finally:
        for path in locked:
            project.resource_lock.release(path, owner)

    # Files written before a failure stay logged so they can still be undone
    if written:
        await project.log_change_and_commit(call.interaction, written, diffs)
    if failure is not None:
        raise failure
    new_files = [p for p, fp in zip(paths, file_patches) if fp.is_new_file]
    modified = [p for p in paths if p not in new_files]
    response = f"Applied patch successfully to {len(paths)} file(s)"
    details = []
    if modified:
        details.append("Modified: " + ", ".join(modified))
    if new_files:
        details.append("Created: " + ", ".join(new_files))
    return ToolRunResult(tool_results=response + "\n" + "\n".join(details), tool_response=response)


@tool(
    name="rewrite_file",
    description="Replace the entire content of a project file, creating it if needed. Prefer apply_patch for small edits.",
    param_overrides={
        "file_path": {"description": "Project-relative path of the file."},
        "content": {"description": "The complete new file content."},
        "create_if_missing": {"description": "Create the file when it does not exist."},
    },
)
async def rewrite_file(call: ToolCall, file_path: str, content: str, create_if_missing: bool = True) -> ToolRunResult:
    project = call.project
    path = _check_in_project(call, file_path, "write")
    owner = call.interaction.id
    if not await project.resource_lock.acquire(path, owner):
        raise FilePatchError(f"Timed out waiting for a lock on {path}", file_path=path, operation="write")
    try:
        old = _read_existing(call, path, "write")
        if old is None and not create_if_missing:
            raise MissingFileError(f"File not found: {path}", file_path=path, operation="write")
        try:
            write_file(project.project_root, path, content)
        except OSError as e:
            raise classify_os_error(e, path, "write")
    finally:
        project.resource_lock.release(path, owner)

    diff = make_unified_diff(old or "", content, path, is_new_file=old is None)
    if diff:
        await project.log_change_and_commit(call.interaction, [path], [diff])
    verb = "created" if old is None else "rewritten"
    return ToolRunResult(tool_results=f"File {path} {verb} successfully.", tool_response=f"File {path} {verb} successfully")


# -----------------------------
# run_command
# -----------------------------

def _is_allowed(command: str, allowed: List[str]) -> bool:
    return any(command == a or command.startswith(a + " ") for a in allowed)


@tool(
    name="run_command",
    description="Run an allow-listed command in the project root and return its exit code and output.",
    param_overrides={
        "command": {"description": "The command to run, e.g. 'git status'."},
        "args": {"description": "Extra arguments appended to the command."},
    },
)
async def run_command(call: ToolCall, command: str, args: Optional[List[str]] = None) -> ToolRunResult:
    allowed = call.project.allowed_commands
    if not _is_allowed(command.strip(), allowed):
        raise CommandExecutionError(f"Command not allowed: {command}", command=command)
    argv = shlex.split(command) + list(args or [])
    call.ctx.log(f"Running command: {' '.join(argv)}")
    try:
        proc = await asyncio.to_thread(
            subprocess.run, argv, cwd=str(call.project.project_root), capture_output=True, text=True, timeout=300
        )
    except (OSError, subprocess.SubprocessError) as e:
        raise CommandExecutionError(f"Failed to execute command: {e}", command=command)
    results = f"Command executed with exit code: {proc.returncode}\n\nOutput:\n{proc.stdout}"
    if proc.stderr:
        results += f"\n\nError output:\n{proc.stderr}"
    response = "Command completed successfully" if proc.returncode == 0 else "Command exited with non-zero status"
    return ToolRunResult(tool_results=results, tool_response=response)


# -----------------------------
# fetch_web_page
# -----------------------------

def html_to_text(html: str) -> str:
    text = _DROP_BLOCKS_RE.sub(" ", html)
    text = _TAG_RE.sub("", text)
    text = (text.replace("&nbsp;", " ").replace("&lt;", "<").replace("&gt;", ">")
            .replace("&quot;", '"').replace("&#39;", "'").replace("&amp;", "&"))
    return _BLANK_LINES_RE.sub("\n\n", text).strip()


def _fetch(url: str) -> Tuple[str, str]:
    headers = {"Accept": "text/html, text/*, application/json, application/xml"}
    with requests.get(url, headers=headers, timeout=30, stream=True) as resp:
        resp.raise_for_status()
        buf = bytearray()
        for chunk in resp.iter_content(chunk_size=65536):
            if not chunk:
                continue
            buf.extend(chunk)
            if len(buf) > _MAX_FETCH_BYTES:
                break
        enc = resp.encoding or "utf-8"
        return buf[:_MAX_FETCH_BYTES].decode(enc, errors="replace"), str(resp.headers.get("Content-Type", ""))


@tool(
    name="fetch_web_page",
    description="Fetch a web page and return its text content with HTML tags removed.",
    param_overrides={"url": {"description": "Absolute http(s) URL.", "pattern": "^https?://"}},
)
async def fetch_web_page(call: ToolCall, url: str) -> ToolRunResult:
    if not re.match(r"^https?://", url.strip()):
        raise ToolHandlingError(f"Invalid URL: {url}", tool_name="fetch_web_page")
    try:
        body, content_type = await asyncio.to_thread(_fetch, url.strip())
    except requests.exceptions.RequestException as e:
        raise ToolHandlingError(f"Failed to fetch web page: {e}", tool_name="fetch_web_page")
    text = html_to_text(body) if "html" in content_type.lower() or "<html" in body[:500].lower() else body
    return ToolRunResult(
        tool_results=text,
        tool_response=f"Fetched {len(text)} characters from {url}",
        display=f"Fetched content from {url}",
    )


BUILTIN_TOOLS = [search_project, request_files, forget_files, apply_patch, rewrite_file, run_command, fetch_web_page]


def default_tool_registry(names: Optional[List[str]] = None) -> ToolRegistry:
    """A fresh registry holding the built-in tools (optionally only those in names), in manifest order."""
    registry = ToolRegistry(BUILTIN_TOOLS)
    return registry.subset(names) if names is not None else registry
