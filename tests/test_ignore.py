"""Tests for ignore module."""

import pytest
from pathlib import Path

from lhbackup.exceptions import RootNotFoundError
from lhbackup.ignore import (
    collect_ignore_patterns,
    load_common_patterns,
    parse_ignore_content,
    read_ignore_file,
    resolve_ignore_patterns,
)
from lhbackup.patterns import PatternMatcher, exact_pattern


@pytest.fixture
def tree(tmp_path):
    """
    r/.ignore          -> build
    r/sub/.ignore      -> tmp
    r/build/.ignore    -> secret (must never be read)
    """
    root = tmp_path / "r"
    sub = root / "sub"
    build = root / "build"
    sub.mkdir(parents=True)
    build.mkdir()
    (root / ".ignore").write_text("build\n")
    (sub / ".ignore").write_text("# scratch files\n\ntmp/\n")
    (build / ".ignore").write_text("secret\n")
    return root


class TestParseIgnoreContent:
    """Tests for parse_ignore_content function."""

    def test_skips_blank_and_comment_lines(self):
        content = "# comment\n\nbuild\n   \n*.log\n"
        assert parse_ignore_content(content) == ["build", "*.log"]

    def test_strips_whitespace(self):
        assert parse_ignore_content("  dist/  \r\n") == ["dist/"]

    def test_drops_negated_rules(self):
        assert parse_ignore_content("*.log\n!keep.log\n") == ["*.log"]


class TestReadIgnoreFile:
    """Tests for read_ignore_file function."""

    def test_missing_file(self, tmp_path):
        assert read_ignore_file(tmp_path / ".gitignore") == []

    def test_unreadable_file(self, tmp_path):
        # A directory where a file is expected cannot be read as text.
        (tmp_path / ".gitignore").mkdir()
        assert read_ignore_file(tmp_path / ".gitignore") == []

    def test_reads_patterns(self, tmp_path):
        (tmp_path / ".gitignore").write_text("node_modules\n")
        assert read_ignore_file(tmp_path / ".gitignore") == ["node_modules"]


class TestCollectIgnorePatterns:
    """Tests for collect_ignore_patterns function."""

    def test_scopes_patterns_to_their_directory(self, tree):
        patterns = collect_ignore_patterns(tree, [".ignore"])
        prefix = exact_pattern(tree)

        assert f"{prefix}/**/build" in patterns
        assert f"{prefix}/sub/**/tmp" in patterns

    def test_child_inherits_parent_rules(self, tree):
        matcher = PatternMatcher(collect_ignore_patterns(tree, [".ignore"]))
        sub = tree / "sub"

        assert matcher.matches(sub / "tmp" / "a.txt") is True
        assert matcher.matches(sub / "deep" / "build" / "b.txt") is True
        assert matcher.matches(tree / "tmp" / "a.txt") is False
        assert matcher.matches(sub / "keep.txt") is False

    def test_ignored_directory_is_not_descended(self, tree):
        patterns = collect_ignore_patterns(tree, [".ignore"])
        assert not any("secret" in p for p in patterns)

    def test_inherited_patterns_prune_descent(self, tree):
        (tree / "sub" / "vendor").mkdir()
        (tree / "sub" / "vendor" / ".ignore").write_text("hidden\n")

        patterns = collect_ignore_patterns(tree, [".ignore"], inherited=["*/**/vendor"])

        assert not any("hidden" in p for p in patterns)
        assert "*/**/vendor" not in patterns

    def test_no_rule_files(self, tree):
        assert collect_ignore_patterns(tree, []) == frozenset()

    def test_multiple_rule_file_names(self, tree):
        (tree / ".backupignore").write_text("*.iso\n")
        patterns = collect_ignore_patterns(tree, [".ignore", ".backupignore"])
        assert f"{exact_pattern(tree)}/**/*.iso" in patterns

    def test_missing_root_raises(self, tmp_path):
        with pytest.raises(RootNotFoundError):
            collect_ignore_patterns(tmp_path / "missing", [".ignore"])


class TestResolveIgnorePatterns:
    """Tests for resolve_ignore_patterns function."""

    def test_unions_configured_and_collected(self, tree):
        patterns = resolve_ignore_patterns(tree, [".ignore"], ["node_modules/", "*/**/dist"])

        prefix = exact_pattern(tree)
        assert f"{prefix}/**/node_modules" in patterns
        assert f"{prefix}/**/dist" in patterns
        assert f"{prefix}/**/build" in patterns
        assert not any(p.startswith("*/**/") for p in patterns)

    def test_configured_patterns_do_not_match_above_root(self, tmp_path):
        root = tmp_path / "coverage" / "project"
        (root / "coverage").mkdir(parents=True)

        matcher = PatternMatcher(resolve_ignore_patterns(root, [], ["coverage"]))

        assert not matcher.matches(root / "notes.txt")
        assert matcher.matches(root / "coverage" / "lcov.info")

    def test_configured_patterns_prune_descent(self, tree):
        (tree / "node_modules").mkdir()
        (tree / "node_modules" / ".ignore").write_text("leaked\n")

        patterns = resolve_ignore_patterns(tree, [".ignore"], ["node_modules"])

        assert not any("leaked" in p for p in patterns)


class TestCommonPatterns:
    """Tests for the bundled common rules."""

    def test_load_common_patterns(self):
        patterns = load_common_patterns()
        assert "*/**/node_modules" in patterns
        assert "*/**/.git" in patterns
        assert "" not in patterns
        assert all(p.startswith("*/**/") for p in patterns)

    def test_load_custom_file(self, tmp_path):
        rules = tmp_path / "rules"
        rules.write_text("# only one\ncache/\n")
        assert load_common_patterns(rules) == ["*/**/cache"]
