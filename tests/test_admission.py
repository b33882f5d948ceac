"""Tests for admission module."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from markpad import admission
from markpad.admission import (
    AccessPolicy,
    AdmissionDecision,
    DenyReason,
    Intent,
    evaluate,
    normalize_path,
    sanitize_content,
    validate_content_size,
    validate_path_input,
)


class TestAccessPolicy:
    """Tests for AccessPolicy construction."""

    def test_requires_a_directory(self) -> None:
        with pytest.raises(ValueError):
            AccessPolicy.build([], 1000)

    def test_requires_positive_size(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            AccessPolicy.build([str(tmp_path)], 0)

    def test_normalizes_directories(self, tmp_path: Path) -> None:
        policy = AccessPolicy.build([f"{tmp_path}/sub/../docs/"], 1000)
        assert policy.allowed_directories == (str(tmp_path / "docs"),)

    def test_normalizes_extensions(self, tmp_path: Path) -> None:
        policy = AccessPolicy.build([str(tmp_path)], 1000, {".MD", "Txt"})
        assert policy.allowed_extensions == frozenset({"md", "txt"})

    def test_default_extensions(self, tmp_path: Path) -> None:
        policy = AccessPolicy.build([str(tmp_path)], 1000)
        assert policy.allowed_extensions == frozenset({"md", "markdown", "txt"})

    def test_contains_respects_segment_boundary(self) -> None:
        policy = AccessPolicy.build(["/data/safe"], 1000)
        assert policy.contains("/data/safe") is True
        assert policy.contains("/data/safe/x.md") is True
        assert policy.contains("/data/safe-other/x.md") is False
        assert policy.contains("/data/saf") is False

    def test_root_directory_contains_everything(self) -> None:
        policy = AccessPolicy.build(["/"], 1000)
        assert policy.contains("/etc/passwd") is True


class TestEvaluate:
    """Tests for evaluate."""

    def test_end_to_end_scenario(self, tmp_path: Path) -> None:
        docs = tmp_path / "docs"
        docs.mkdir()
        (docs / "note.md").write_text("a" * 50)
        (docs / "note.exe").write_text("binary")
        policy = AccessPolicy.build([str(docs)], 1000, {"md"})

        allowed = evaluate(f"{docs}/../docs/note.md", policy)
        assert allowed.allowed is True
        assert allowed.path == str(docs / "note.md")

        escaped = evaluate(f"{docs}/../../etc/passwd", policy)
        assert escaped.reason is DenyReason.OUTSIDE_ALLOWED_DIRECTORIES

        wrong_ext = evaluate(f"{docs}/note.exe", policy)
        assert wrong_ext.reason is DenyReason.EXTENSION_NOT_ALLOWED

    def test_traversal_outside_is_denied_even_when_missing(
        self, docs_dir: Path, policy: AccessPolicy
    ) -> None:
        for candidate in (
            f"{docs_dir}/../secret.md",
            f"{docs_dir}/a/b/../../../secret.md",
            f"{docs_dir}/./../../../../../../etc/shadow.md",
        ):
            decision = evaluate(candidate, policy)
            assert decision.allowed is False
            assert decision.reason is DenyReason.OUTSIDE_ALLOWED_DIRECTORIES

    def test_sibling_with_shared_prefix_is_denied(self, tmp_path: Path) -> None:
        safe = tmp_path / "safe"
        other = tmp_path / "safe-other"
        safe.mkdir()
        other.mkdir()
        (other / "x.md").write_text("hello")
        policy = AccessPolicy.build([str(safe)], 1000)

        decision = evaluate(str(other / "x.md"), policy)
        assert decision.reason is DenyReason.OUTSIDE_ALLOWED_DIRECTORIES

    def test_extension_is_case_insensitive(self, docs_dir: Path, policy: AccessPolicy) -> None:
        (docs_dir / "UPPER.MD").write_text("hi")
        assert evaluate(str(docs_dir / "UPPER.MD"), policy).allowed is True

    @pytest.mark.parametrize("name", ["notes.txt", "notes.MDX", "notes", "notes.", ".md"])
    def test_disallowed_extensions(
        self, docs_dir: Path, policy: AccessPolicy, name: str
    ) -> None:
        (docs_dir / name).write_text("hi")
        decision = evaluate(str(docs_dir / name), policy)
        assert decision.reason is DenyReason.EXTENSION_NOT_ALLOWED

    def test_missing_file(self, docs_dir: Path, policy: AccessPolicy) -> None:
        decision = evaluate(str(docs_dir / "missing.md"), policy)
        assert decision.reason is DenyReason.NOT_FOUND

    def test_missing_parent_that_is_a_file(self, docs_dir: Path, policy: AccessPolicy) -> None:
        decision = evaluate(str(docs_dir / "note.md" / "child.md"), policy)
        assert decision.reason is DenyReason.NOT_FOUND

    def test_directory_is_not_a_file(self, docs_dir: Path, policy: AccessPolicy) -> None:
        (docs_dir / "folder.md").mkdir()
        assert evaluate(str(docs_dir / "folder.md"), policy).reason is DenyReason.NOT_A_FILE
        assert evaluate(str(docs_dir), policy).reason is DenyReason.NOT_A_FILE

    def test_size_limit_boundary(self, docs_dir: Path, policy: AccessPolicy) -> None:
        exact = docs_dir / "exact.md"
        exact.write_bytes(b"a" * 1000)
        over = docs_dir / "over.md"
        over.write_bytes(b"a" * 1001)

        assert evaluate(str(exact), policy).allowed is True
        assert evaluate(str(over), policy).reason is DenyReason.FILE_TOO_LARGE

    def test_write_intent_skips_size_limit(self, docs_dir: Path, policy: AccessPolicy) -> None:
        over = docs_dir / "over.md"
        over.write_bytes(b"a" * 1001)
        assert evaluate(str(over), policy, Intent.WRITE).allowed is True

    def test_relative_path_resolves_against_cwd(
        self, docs_dir: Path, policy: AccessPolicy, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(docs_dir)
        decision = evaluate("note.md", policy)
        assert decision.allowed is True
        assert decision.path == str(docs_dir / "note.md")

    def test_idempotent(self, docs_dir: Path, policy: AccessPolicy) -> None:
        for candidate in (str(docs_dir / "note.md"), f"{docs_dir}/../x.md"):
            assert evaluate(candidate, policy) == evaluate(candidate, policy)

    def test_metadata_failure_is_validation_error(
        self, docs_dir: Path, policy: AccessPolicy, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        target = str(docs_dir / "note.md")
        real_stat = os.stat

        def fake_stat(path: str, *args: object, **kwargs: object) -> os.stat_result:
            if path == target:
                raise PermissionError(13, "Permission denied", path)
            return real_stat(path, *args, **kwargs)  # type: ignore[arg-type]

        monkeypatch.setattr(admission.os, "stat", fake_stat)
        decision = evaluate(target, policy)

        assert decision.reason is DenyReason.VALIDATION_ERROR
        assert decision.cause == "PermissionError: Permission denied"
        assert target not in (decision.cause or "")

    def test_symlinks_are_not_resolved(self, tmp_path: Path, docs_dir: Path) -> None:
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "real.md").write_text("hi")
        link = docs_dir / "link"
        link.symlink_to(outside, target_is_directory=True)
        policy = AccessPolicy.build([str(docs_dir)], 1000)

        # Lexical containment only: the link's own path is inside the sandbox.
        assert evaluate(str(link / "real.md"), policy).allowed is True
        assert normalize_path(str(link / "real.md")) == str(link / "real.md")


class TestAdmissionDecision:
    """Tests for AdmissionDecision helpers."""

    def test_allow_is_truthy(self) -> None:
        assert bool(AdmissionDecision.allow("/x")) is True
        assert AdmissionDecision.allow().message == "Allowed"

    def test_deny_is_falsy(self) -> None:
        decision = AdmissionDecision.deny(DenyReason.NOT_FOUND)
        assert bool(decision) is False
        assert decision.message == "File does not exist"

    def test_cause_is_ignored_for_equality(self) -> None:
        a = AdmissionDecision.deny(DenyReason.VALIDATION_ERROR, cause="one")
        b = AdmissionDecision.deny(DenyReason.VALIDATION_ERROR, cause="two")
        assert a == b


class TestValidatePathInput:
    """Tests for validate_path_input."""

    @pytest.mark.parametrize("value", [None, 42, ["a.md"], {"path": "a.md"}, b"a.md"])
    def test_non_strings_rejected(self, value: object) -> None:
        assert validate_path_input(value) is None

    def test_empty_and_blank_rejected(self) -> None:
        assert validate_path_input("") is None
        assert validate_path_input("   ") is None

    def test_length_limit(self) -> None:
        assert validate_path_input("a" * 500) == "a" * 500
        assert validate_path_input("a" * 501) is None

    @pytest.mark.parametrize("value", ["a\0.md", "a\n.md", "a\r.md"])
    def test_control_characters_rejected(self, value: str) -> None:
        assert validate_path_input(value) is None

    def test_trims_whitespace(self) -> None:
        assert validate_path_input("  /tmp/docs/a.md \t") == "/tmp/docs/a.md"


class TestSanitizeContent:
    """Tests for sanitize_content."""

    def test_strips_leading_bom_only(self) -> None:
        assert sanitize_content("\ufeffhello\ufeff") == "hello\ufeff"

    def test_removes_null_bytes(self) -> None:
        assert sanitize_content("a\0b\0") == "ab"

    def test_non_string_becomes_empty(self) -> None:
        assert sanitize_content(None) == ""
        assert sanitize_content(123) == ""

    def test_plain_text_unchanged(self) -> None:
        assert sanitize_content("# Title\r\n\nbody") == "# Title\r\n\nbody"


class TestValidateContentSize:
    """Tests for validate_content_size."""

    def test_counts_utf8_bytes(self) -> None:
        assert validate_content_size("é", 2).allowed is True
        decision = validate_content_size("é", 1)
        assert decision.reason is DenyReason.FILE_TOO_LARGE
        assert decision.cause == "Content exceeds maximum size (1 bytes)"

    def test_exact_limit_allowed(self) -> None:
        assert validate_content_size("abc", 3).allowed is True
