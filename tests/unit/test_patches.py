"""Unit tests for unified-diff generation, parsing, application and reversal."""

import pytest

from samvaad.patches import (
    NO_NEWLINE_MARKER,
    PatchApplyError,
    PatchParseError,
    apply_file_patch,
    make_unified_diff,
    parse_patch,
    reverse_patch_text,
)

OLD = "alpha\nbeta\ngamma\ndelta\n"
NEW = "alpha\nbeta\nGAMMA\ndelta\nepsilon\n"


def test_identical_content_produces_no_diff():
    assert make_unified_diff(OLD, OLD, "a.txt") == ""


def test_generated_diff_applies_to_original():
    diff = make_unified_diff(OLD, NEW, "a.txt")
    assert diff.startswith("--- a/a.txt\n+++ b/a.txt\n")
    [fp] = parse_patch(diff)
    assert fp.path == "a.txt"
    assert apply_file_patch(OLD, fp) == NEW


def test_reversed_patch_restores_original():
    diff = make_unified_diff(OLD, NEW, "a.txt")
    [rev] = parse_patch(reverse_patch_text(diff))
    assert apply_file_patch(NEW, rev) == OLD


def test_missing_trailing_newline_is_preserved_both_ways():
    old = "one\ntwo"
    new = "one\ntwo\nthree"
    diff = make_unified_diff(old, new, "n.txt")
    assert NO_NEWLINE_MARKER in diff
    [fp] = parse_patch(diff)
    assert apply_file_patch(old, fp) == new
    assert apply_file_patch(new, fp.reversed()) == old


def test_new_file_patch():
    diff = make_unified_diff("", "hello\nworld\n", "docs/new.txt", is_new_file=True)
    assert diff.startswith("--- /dev/null\n+++ b/docs/new.txt\n")
    [fp] = parse_patch(diff)
    assert fp.is_new_file
    assert fp.path == "docs/new.txt"
    assert apply_file_patch("", fp) == "hello\nworld\n"
    assert apply_file_patch("hello\nworld\n", fp.reversed()) == ""


def test_deleted_file_patch():
    diff = make_unified_diff("bye\n", "", "old.txt", is_deleted_file=True)
    [fp] = parse_patch(diff)
    assert fp.is_deleted_file
    assert fp.path == "old.txt"
    assert apply_file_patch("bye\n", fp) == ""


def test_hunk_only_patch_uses_default_path():
    patch = "@@ -1,2 +1,2 @@\n alpha\n-beta\n+BETA\n"
    [fp] = parse_patch(patch, "a.txt")
    assert fp.path == "a.txt"
    assert apply_file_patch(OLD, fp) == "alpha\nBETA\ngamma\ndelta\n"


def test_hunk_only_patch_without_path_is_rejected():
    with pytest.raises(PatchParseError):
        parse_patch("@@ -1 +1 @@\n-a\n+b\n")


def test_text_without_patches_is_rejected():
    with pytest.raises(PatchParseError):
        parse_patch("just some prose\n")


def test_hunk_with_wrong_line_numbers_is_relocated():
    patch = "--- a/a.txt\n+++ b/a.txt\n@@ -10,2 +10,2 @@\n gamma\n-delta\n+DELTA\n"
    [fp] = parse_patch(patch)
    assert apply_file_patch(OLD, fp) == "alpha\nbeta\ngamma\nDELTA\n"


def test_mismatched_hunk_raises():
    patch = "--- a/a.txt\n+++ b/a.txt\n@@ -1,2 +1,2 @@\n alpha\n-zeta\n+ZETA\n"
    with pytest.raises(PatchApplyError):
        apply_file_patch(OLD, parse_patch(patch)[0])


def test_trailing_whitespace_in_file_is_tolerated_and_kept():
    original = "def f():  \n    return 1\n"
    patch = "@@ -1,2 +1,2 @@\n def f():\n-    return 1\n+    return 2\n"
    assert apply_file_patch(original, parse_patch(patch, "f.py")[0]) == "def f():  \n    return 2\n"


def test_blank_context_line_without_leading_space():
    patch = "@@ -1,3 +1,3 @@\n a\n\n-b\n+c\n"
    assert apply_file_patch("a\n\nb\n", parse_patch(patch, "x.txt")[0]) == "a\n\nc\n"


def test_multi_file_patch():
    patch = (
        "--- a/x.txt\n+++ b/x.txt\n@@ -1 +1 @@\n-x\n+X\n"
        "--- /dev/null\n+++ b/y.txt\n@@ -0,0 +1 @@\n+y\n"
    )
    fps = parse_patch(patch)
    assert [fp.path for fp in fps] == ["x.txt", "y.txt"]
    assert not fps[0].is_new_file
    assert fps[1].is_new_file
    assert apply_file_patch("x\n", fps[0]) == "X\n"
    assert apply_file_patch("", fps[1]) == "y\n"
