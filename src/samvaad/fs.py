# samvaad: Filesystem helpers, time/id utilities, JSON/JSONL helpers, hashing, and git-aware file listing used by persistence, tools and interactions. Honors .samvaadignore so ignored files are never listed or read.

import datetime
import hashlib
import json
import os
import pathlib
import subprocess
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import DATA_DIR_NAME


def now_ts() -> float:
    """Return the current UNIX timestamp in seconds (float)."""
    return time.time()


def now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def short_id(prefix: str = "") -> str:
    """Return a short unique identifier, optionally prefixed (e.g., conv-1a2b3c4d)."""
    suffix = uuid.uuid4().hex[:8]
    return f"{prefix}-{suffix}" if prefix else suffix


_ID_LOCK = threading.Lock()
_last_ms = 0
_seq = 0


def sortable_id() -> str:
    """
    Return an identifier that sorts lexically in creation order.

    Layout is <12 hex ms timestamp><4 hex sequence><8 hex random>. The sequence
    disambiguates ids created within the same millisecond, and if the clock
    steps backwards the previous millisecond is reused so ordering still holds.
    """
    global _last_ms, _seq
    with _ID_LOCK:
        ms = time.time_ns() // 1_000_000
        if ms <= _last_ms:
            ms = _last_ms
            _seq += 1
        else:
            _seq = 0
        _last_ms = ms
        return f"{ms:012x}{_seq:04x}{uuid.uuid4().hex[:8]}"


def normalize_path(p: str) -> str:
    """Normalize a filesystem path to POSIX-style string (forward slashes)."""
    return str(pathlib.Path(p).as_posix())


def read_json(path: pathlib.Path, default: Any) -> Any:
    """Read JSON from path; return default if file is missing or invalid."""
    if not path.exists():
        return default
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        return default


def write_json(path: pathlib.Path, obj: Any) -> None:
    """Atomically write a JSON object to path (UTF-8, pretty-printed)."""
    tmp = path.with_suffix(path.suffix + ".tmp")
    path.parent.mkdir(parents=True, exist_ok=True)
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)
    tmp.replace(path)


def append_jsonl(path: pathlib.Path, obj: Any) -> None:
    """Append a single JSON object as one line to a JSONL file (creating parents)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(obj, ensure_ascii=False) + "\n")


def write_jsonl(path: pathlib.Path, objs: List[Any]) -> None:
    """Atomically replace a JSONL file with the given objects, one per line."""
    tmp = path.with_suffix(path.suffix + ".tmp")
    path.parent.mkdir(parents=True, exist_ok=True)
    with tmp.open("w", encoding="utf-8") as f:
        for obj in objs:
            f.write(json.dumps(obj, ensure_ascii=False) + "\n")
    tmp.replace(path)


def read_jsonl(path: pathlib.Path, on_bad_line: Optional[Callable[[int, str], None]] = None) -> List[Any]:
    """
    Read a JSONL file into a list of parsed objects; returns [] if missing.

    Invalid lines are skipped. When on_bad_line is given it is called with the
    1-based line number and the parse error text for every skipped line.
    """
    if not path.exists():
        return []
    lines: List[Any] = []
    with path.open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                lines.append(json.loads(line))
            except ValueError as e:
                if on_bad_line is not None:
                    on_bad_line(lineno, str(e))
                continue
    return lines


def md5_text(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


# -----------------------------
# .samvaadignore support
# -----------------------------

_IGNORE_FILE = ".samvaadignore"
_IGNORE_CACHE: Dict[pathlib.Path, Tuple[Optional[float], List[Tuple[bool, str]]]] = {}


def _parse_ignore_patterns(text: str) -> List[Tuple[bool, str]]:
    """
    Parse .samvaadignore contents into (negated, glob) rules.

    Rules:
      - Empty lines and comments (#) are ignored.
      - Lines starting with '!' negate the ignore (unignore).
      - Leading '/' anchors to the project root; otherwise the rule matches anywhere.
      - Trailing '/' targets directories (expanded to dir/**).
    """
    patterns: List[Tuple[bool, str]] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        negated = line.startswith("!")
        if negated:
            line = line[1:].strip()
            if not line:
                continue
        rooted = line.startswith("/")
        line = line.lstrip("/")
        if line.endswith("/"):
            line = f"{line.rstrip('/')}/**"
        patterns.append((negated, line if rooted else f"**/{line}"))
    return patterns


def _get_ignore_patterns(project_root: pathlib.Path) -> List[Tuple[bool, str]]:
    """Return cached ignore rules for project_root, refreshing when the file's mtime changes."""
    ig_path = project_root / _IGNORE_FILE
    try:
        mtime: Optional[float] = ig_path.stat().st_mtime
    except FileNotFoundError:
        mtime = None
    cached = _IGNORE_CACHE.get(project_root)
    if cached and cached[0] == mtime:
        return cached[1]
    patterns: List[Tuple[bool, str]] = []
    if mtime is not None:
        try:
            patterns = _parse_ignore_patterns(ig_path.read_text(encoding="utf-8"))
        except OSError:
            patterns = []
    _IGNORE_CACHE[project_root] = (mtime, patterns)
    return patterns


def is_ignored_rel(project_root: pathlib.Path, rel_posix: str) -> bool:
    """Return True if rel_posix is ignored (last matching rule wins; '!' unignores)."""
    p = pathlib.PurePosixPath(rel_posix)
    ignored = False
    for negated, pat in _get_ignore_patterns(project_root):
        # PurePosixPath.match has no '**' prefix semantics for top-level names, so also try the bare pattern.
        if p.match(pat) or (pat.startswith("**/") and p.match(pat[3:])):
            ignored = not negated
    return ignored


# -----------------------------
# Path safety and file IO
# -----------------------------

def safe_abs(project_root: pathlib.Path, rel: str) -> pathlib.Path:
    """Resolve a project-relative path and reject escapes outside project_root."""
    root = project_root.resolve()
    abs_path = (root / rel).resolve()
    try:
        abs_path.relative_to(root)
    except ValueError:
        raise ValueError(f"Path escapes project root: {rel}")
    return abs_path


def is_path_within_project(project_root: pathlib.Path, rel: str) -> bool:
    try:
        safe_abs(project_root, rel)
    except ValueError:
        return False
    return True


def _ensure_not_ignored(project_root: pathlib.Path, abs_path: pathlib.Path) -> None:
    rel = abs_path.relative_to(project_root.resolve()).as_posix()
    if is_ignored_rel(project_root, rel):
        raise PermissionError(f"Access to '{rel}' is blocked by {_IGNORE_FILE}")


def read_file(project_root: pathlib.Path, path: str) -> str:
    """Read a UTF-8 text file relative to project_root, enforcing ignore rules. Line endings are returned untranslated."""
    abs_path = safe_abs(project_root, path)
    _ensure_not_ignored(project_root, abs_path)
    with abs_path.open("r", encoding="utf-8", newline="") as f:
        return f.read()


def write_file(project_root: pathlib.Path, path: str, content: str) -> None:
    """Write text content to a project-relative file, creating parent directories."""
    abs_path = safe_abs(project_root, path)
    _ensure_not_ignored(project_root, abs_path)
    abs_path.parent.mkdir(parents=True, exist_ok=True)
    # samvaad: newline="" keeps the exact bytes we were given; undo relies on byte-for-byte restores.
    with abs_path.open("w", encoding="utf-8", newline="") as f:
        f.write(content)


def file_stat(project_root: pathlib.Path, path: str) -> Tuple[int, float]:
    """Return (size_bytes, mtime_seconds) for a project-relative file."""
    st = safe_abs(project_root, path).stat()
    return st.st_size, st.st_mtime


def _is_internal(rel: str) -> bool:
    return DATA_DIR_NAME in pathlib.PurePosixPath(rel).parts


def list_repo_paths(project_root: pathlib.Path) -> List[str]:
    """Walk the working tree and return non-ignored project-relative file paths (POSIX)."""
    paths: List[str] = []
    for root, dirs, files in os.walk(project_root):
        dirs[:] = [d for d in dirs if d not in (".git", DATA_DIR_NAME)]
        for name in files:
            rel = normalize_path(os.path.relpath(pathlib.Path(root) / name, project_root))
            if _is_internal(rel) or is_ignored_rel(project_root, rel):
                continue
            paths.append(rel)
    return sorted(paths)


# -----------------------------
# Git helpers for file discovery
# -----------------------------

def run_git(args: List[str], cwd: pathlib.Path) -> Tuple[int, str, str]:
    """Run a git command in cwd and return (returncode, stdout, stderr)."""
    try:
        proc = subprocess.Popen(["git"] + args, cwd=str(cwd), stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
    except FileNotFoundError as e:
        # git binary not installed
        return 127, "", str(e)
    out, err = proc.communicate()
    return proc.returncode, out, err


def _git_ls(project_root: pathlib.Path, extra: List[str]) -> List[str]:
    rc, out, _ = run_git(["ls-files", "-z"] + extra, project_root)
    if rc != 0:
        return []
    return [p for p in out.split("\x00") if p]


def list_all_nonignored_files(project_root: pathlib.Path) -> List[str]:
    """Return tracked plus untracked-unignored files, filtered by .samvaadignore and internal data."""
    rc, out, _ = run_git(["rev-parse", "--is-inside-work-tree"], project_root)
    if rc == 0 and out.strip() == "true":
        everything = set(_git_ls(project_root, [])) | set(_git_ls(project_root, ["-o", "--exclude-standard"]))
        return [
            p for p in sorted(normalize_path(x) for x in everything)
            if not _is_internal(p) and not is_ignored_rel(project_root, p) and (project_root / p).is_file()
        ]
    return list_repo_paths(project_root)
