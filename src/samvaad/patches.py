# samvaad: Unified-diff utilities for apply_patch, rewrite_file and undo. Diffs are produced with difflib; parsing and application are local since the hunks must round-trip byte for byte (including a missing trailing newline).

import difflib
import re
from typing import List, Optional, Tuple

from .fs import normalize_path

DEV_NULL = "/dev/null"
NO_NEWLINE_MARKER = "\\ No newline at end of file"

_HUNK_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


class PatchParseError(ValueError):
    pass


class PatchApplyError(ValueError):
    pass


def split_lines(text: str) -> List[str]:
    """Split on '\\n' only, keeping line endings (str.splitlines also breaks on form feeds and friends)."""
    if not text:
        return []
    parts = text.split("\n")
    lines = [p + "\n" for p in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


class Hunk:
    def __init__(self, old_start: int, old_len: int, new_start: int, new_len: int) -> None:
        self.old_start = old_start
        self.old_len = old_len
        self.new_start = new_start
        self.new_len = new_len
        # (op, text) where op is ' ', '-' or '+' and text keeps its line ending
        self.lines: List[Tuple[str, str]] = []

    @property
    def old_lines(self) -> List[str]:
        return [t for op, t in self.lines if op in (" ", "-")]

    @property
    def new_lines(self) -> List[str]:
        return [t for op, t in self.lines if op in (" ", "+")]

    def reversed(self) -> "Hunk":
        swap = {"-": "+", "+": "-", " ": " "}
        h = Hunk(self.new_start, self.new_len, self.old_start, self.old_len)
        h.lines = [(swap[op], t) for op, t in self.lines]
        return h

    def render(self) -> str:
        out = [f"@@ -{_range(self.old_start, self.old_len)} +{_range(self.new_start, self.new_len)} @@\n"]
        for op, t in self.lines:
            if t.endswith("\n"):
                out.append(op + t)
            else:
                out.append(op + t + "\n" + NO_NEWLINE_MARKER + "\n")
        return "".join(out)


def _range(start: int, length: int) -> str:
    return str(start) if length == 1 else f"{start},{length}"


class FilePatch:
    """All hunks targeting one file."""

    def __init__(self, old_path: str, new_path: str) -> None:
        self.old_path = old_path
        self.new_path = new_path
        self.hunks: List[Hunk] = []

    @property
    def is_new_file(self) -> bool:
        return self.old_path == DEV_NULL

    @property
    def is_deleted_file(self) -> bool:
        return self.new_path == DEV_NULL

    @property
    def path(self) -> str:
        """The project-relative path this patch touches."""
        return self.old_path if self.is_deleted_file else self.new_path

    def reversed(self) -> "FilePatch":
        fp = FilePatch(self.new_path, self.old_path)
        fp.hunks = [h.reversed() for h in self.hunks]
        return fp

    def render(self) -> str:
        old = self.old_path if self.is_new_file else f"a/{self.old_path}"
        new = self.new_path if self.is_deleted_file else f"b/{self.new_path}"
        return f"--- {old}\n+++ {new}\n" + "".join(h.render() for h in self.hunks)


# -----------------------------
# Producing diffs
# -----------------------------

def make_unified_diff(old: str, new: str, path: str, is_new_file: bool = False, is_deleted_file: bool = False) -> str:
    """Return a unified diff turning old into new for path; empty string when nothing changed."""
    if old == new and not is_new_file and not is_deleted_file:
        return ""
    path = normalize_path(path)
    fromfile = DEV_NULL if is_new_file else f"a/{path}"
    tofile = DEV_NULL if is_deleted_file else f"b/{path}"
    out: List[str] = []
    for line in difflib.unified_diff(split_lines(old), split_lines(new), fromfile=fromfile, tofile=tofile, n=3):
        if line.endswith("\n"):
            out.append(line)
        else:
            out.append(line + "\n" + NO_NEWLINE_MARKER + "\n")
    if not out and is_new_file:
        # Creating an empty file has no hunks
        out = [f"--- {fromfile}\n", f"+++ {tofile}\n"]
    return "".join(out)


# -----------------------------
# Parsing
# -----------------------------

def _clean_header_path(raw: str) -> str:
    p = raw.split("\t", 1)[0].strip()
    if p == DEV_NULL:
        return p
    if p.startswith(("a/", "b/")):
        p = p[2:]
    return normalize_path(p)


def parse_patch(text: str, default_path: Optional[str] = None) -> List[FilePatch]:
    """
    Parse a (possibly multi-file) unified diff.

    A patch consisting only of hunks is accepted when default_path names the
    target file.

    Raises:
        PatchParseError: No file headers and no default_path, or no hunks at all.
    """
    lines = split_lines(text)
    patches: List[FilePatch] = []
    current: Optional[FilePatch] = None
    hunk: Optional[Hunk] = None
    i = 0
    while i < len(lines):
        line = lines[i]
        if line.startswith("--- ") and i + 1 < len(lines) and lines[i + 1].startswith("+++ "):
            current = FilePatch(_clean_header_path(line[4:]), _clean_header_path(lines[i + 1][4:]))
            patches.append(current)
            hunk = None
            i += 2
            continue
        m = _HUNK_RE.match(line)
        if m:
            if current is None:
                if not default_path:
                    raise PatchParseError("Patch has hunks but no file header and no file path was given")
                path = normalize_path(default_path)
                current = FilePatch(path, path)
                patches.append(current)
            hunk = Hunk(
                int(m.group(1)),
                int(m.group(2)) if m.group(2) is not None else 1,
                int(m.group(3)),
                int(m.group(4)) if m.group(4) is not None else 1,
            )
            current.hunks.append(hunk)
            i += 1
            continue
        if hunk is not None:
            if line.startswith("\\"):
                if hunk.lines:
                    op, t = hunk.lines[-1]
                    hunk.lines[-1] = (op, t[:-1] if t.endswith("\n") else t)
            elif line[:1] in (" ", "-", "+"):
                hunk.lines.append((line[0], line[1:]))
            elif line in ("\n", "\r\n"):
                # Editors and models often drop the leading space on blank context lines
                hunk.lines.append((" ", line))
        i += 1

    if not patches:
        raise PatchParseError("No file patches found in patch text")
    return patches


# -----------------------------
# Applying
# -----------------------------

def _matches(src: List[str], at: int, want: List[str], loose: bool) -> bool:
    if at < 0 or at + len(want) > len(src):
        return False
    for k, w in enumerate(want):
        a = src[at + k]
        if loose:
            if a.rstrip() != w.rstrip():
                return False
        elif a != w:
            return False
    return True


def _locate(src: List[str], want: List[str], expected: int, floor: int) -> Tuple[int, bool]:
    """Find where want occurs in src, preferring the position closest to expected; exact before loose."""
    candidates = sorted(range(floor, len(src) - len(want) + 1), key=lambda a: abs(a - expected))
    for loose in (False, True):
        for at in candidates:
            if _matches(src, at, want, loose):
                return at, loose
    return -1, False


def _uses_crlf(lines: List[str]) -> bool:
    """True when every terminated line of the file ends in CRLF."""
    ended = [ln for ln in lines if ln.endswith("\n")]
    return bool(ended) and all(ln.endswith("\r\n") for ln in ended)


def _to_crlf(line: str) -> str:
    if line.endswith("\n") and not line.endswith("\r\n"):
        return line[:-1] + "\r\n"
    return line


def apply_file_patch(original: str, fp: FilePatch) -> str:
    """
    Apply every hunk of fp to original and return the new content.

    Hunk lines written with '\\n' still match a CRLF file, and added lines
    take the file's CRLF endings so the rest of the file is left untouched.

    Raises:
        PatchApplyError: A hunk's context/removed lines are not found in original.
    """
    src = split_lines(original)
    crlf = _uses_crlf(src)
    out: List[str] = []
    cursor = 0
    offset = 0
    for h in fp.hunks:
        want = h.old_lines
        if not want:
            at = min(max(h.old_start + offset, cursor), len(src))
            loose = False
        else:
            expected = max(h.old_start - 1 + offset, cursor)
            at, loose = _locate(src, want, expected, cursor)
            if at < 0:
                raise PatchApplyError(f"Hunk @@ -{h.old_start},{h.old_len} @@ does not match the file content")
        out.extend(src[cursor:at])
        pos = at
        for op, t in h.lines:
            if op == " ":
                # Keep the file's own bytes for context lines
                out.append(src[pos] if loose else t)
                pos += 1
            elif op == "-":
                pos += 1
            else:
                out.append(_to_crlf(t) if crlf else t)
        offset = at - (h.old_start - 1 if want else h.old_start)
        cursor = pos
    out.extend(src[cursor:])
    return "".join(out)


def reverse_patch_text(patch: str, default_path: Optional[str] = None) -> str:
    """Return the unified diff that undoes patch."""
    return "".join(fp.reversed().render() for fp in parse_patch(patch, default_path))
