"""Tests for the commit_story CLI."""

import json
import logging
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from commit_story import (
    EXIT_ERROR,
    EXIT_SKIPPED,
    EXIT_SUCCESS,
    HOOK_MARKER,
    JsonFormatter,
    build_parser,
    install_hook,
    main,
    run,
    uninstall_hook,
)
from journal_config import StoryConfig
from journal_manager import get_journal_entry_path

from helpers import FakeCommitSource, make_commit, make_section_client


@pytest.fixture
def config(repo_path: Path, projects_dir: Path) -> StoryConfig:
    return StoryConfig(repo_path=str(repo_path), collector={"projects_dir": str(projects_dir)})


@pytest.fixture
def git_ok():
    """Pretend repo_path is a git repository with a valid HEAD."""
    with patch("commit_story.is_git_repository", return_value=True), \
         patch("commit_story.is_valid_commit_ref", return_value=True):
        yield


def parse(*argv: str):
    return build_parser().parse_args(list(argv))


class TestParser:
    def test_defaults(self) -> None:
        args = parse()
        assert args.commit_ref == "HEAD"
        assert args.dry_run is False
        assert args.debug is False
        assert args.reflect is None
        assert args.install_hook is False

    def test_flags(self) -> None:
        args = parse("abc123", "--dry-run", "-d", "--json-log", "--repo", "/tmp/x")
        assert args.commit_ref == "abc123"
        assert args.dry_run and args.debug and args.json_log
        assert args.repo == "/tmp/x"


class TestJsonFormatter:
    def test_format(self) -> None:
        record = logging.LogRecord(
            name="commit_story", level=logging.WARNING, pathname="commit_story.py", lineno=1,
            msg="Skipping %s", args=("abc",), exc_info=None,
        )
        data = json.loads(JsonFormatter().format(record))
        assert data["level"] == "WARNING"
        assert data["message"] == "Skipping abc"
        assert data["module"] == "commit_story"
        assert "timestamp" in data


class TestRun:
    def test_not_a_repository(self, config: StoryConfig) -> None:
        with patch("commit_story.is_git_repository", return_value=False):
            assert run(parse(), config) == EXIT_ERROR

    def test_invalid_ref(self, config: StoryConfig) -> None:
        with patch("commit_story.is_git_repository", return_value=True), \
             patch("commit_story.is_valid_commit_ref", return_value=False):
            assert run(parse("nope"), config) == EXIT_ERROR

    def test_missing_api_key(self, config: StoryConfig, git_ok) -> None:
        assert "ANTHROPIC_API_KEY" not in os.environ
        assert run(parse(), config) == EXIT_ERROR

    def test_journal_only_commit_skipped(self, config: StoryConfig, git_ok) -> None:
        source = FakeCommitSource(changed_files=["journal/entries/2025-03/2025-03-14.md"])
        client = make_section_client()
        with patch("commit_story.GitCommitSource", return_value=source):
            assert run(parse(), config, client=client) == EXIT_SKIPPED
        client.messages.create.assert_not_called()

    def test_empty_merge_skipped(self, config: StoryConfig, git_ok) -> None:
        source = FakeCommitSource(commit=make_commit(diff="", is_merge=True, parent_count=2))
        client = make_section_client()
        with patch("commit_story.GitCommitSource", return_value=source):
            assert run(parse(), config, client=client) == EXIT_SKIPPED
        client.messages.create.assert_not_called()

    def test_dry_run_prints_context(
        self, config: StoryConfig, git_ok, capsys: pytest.CaptureFixture
    ) -> None:
        with patch("commit_story.GitCommitSource", return_value=FakeCommitSource()):
            assert run(parse("--dry-run"), config) == EXIT_SUCCESS
        out = capsys.readouterr().out
        assert "## Commit Information" in out
        assert '"token_estimate"' in out

    def test_dry_run_json(self, config: StoryConfig, git_ok, capsys: pytest.CaptureFixture) -> None:
        with patch("commit_story.GitCommitSource", return_value=FakeCommitSource()):
            assert run(parse("--dry-run", "--json-log"), config) == EXIT_SUCCESS
        data = json.loads(capsys.readouterr().out)
        assert data["commit"]["short_hash"] == "a1b2c3d"
        assert data["chat"]["message_count"] == 0
        assert data["metadata"]["redaction"]["total_redactions"] == 0

    def test_writes_entry(self, config: StoryConfig, repo_path: Path, git_ok) -> None:
        source = FakeCommitSource()
        client = make_section_client(summary="Added a greeting.")
        with patch("commit_story.GitCommitSource", return_value=source):
            assert run(parse(), config, client=client) == EXIT_SUCCESS

        entry = get_journal_entry_path(source.commit.timestamp, repo_path)
        content = entry.read_text(encoding="utf-8")
        assert "Added a greeting." in content
        assert "- Commit: a1b2c3d" in content
        assert client.messages.create.call_count == 3

    def test_reflect(self, config: StoryConfig, repo_path: Path) -> None:
        assert run(parse("--reflect", "Caching was premature"), config) == EXIT_SUCCESS
        files = list((repo_path / "journal" / "reflections").rglob("*.md"))
        assert len(files) == 1
        assert "Caching was premature" in files[0].read_text(encoding="utf-8")

    def test_capture_context(self, config: StoryConfig, repo_path: Path) -> None:
        assert run(parse("--capture-context", "Mid-refactor of budget"), config) == EXIT_SUCCESS
        files = list((repo_path / "journal" / "context").rglob("*.md"))
        assert len(files) == 1


class TestHooks:
    @pytest.fixture
    def repo(self, tmp_path: Path) -> Path:
        (tmp_path / ".git" / "hooks").mkdir(parents=True)
        return tmp_path

    def test_install(self, repo: Path) -> None:
        assert install_hook(repo) == EXIT_SUCCESS
        hook = repo / ".git" / "hooks" / "post-commit"
        assert HOOK_MARKER in hook.read_text(encoding="utf-8")
        assert os.access(hook, os.X_OK)

    def test_install_twice(self, repo: Path) -> None:
        install_hook(repo)
        assert install_hook(repo) == EXIT_SUCCESS

    def test_install_refuses_foreign_hook(self, repo: Path) -> None:
        hook = repo / ".git" / "hooks" / "post-commit"
        hook.write_text("#!/bin/sh\nmake lint\n", encoding="utf-8")
        assert install_hook(repo) == EXIT_ERROR
        assert hook.read_text(encoding="utf-8") == "#!/bin/sh\nmake lint\n"

    def test_install_outside_repository(self, tmp_path: Path) -> None:
        assert install_hook(tmp_path) == EXIT_ERROR

    def test_uninstall(self, repo: Path) -> None:
        install_hook(repo)
        assert uninstall_hook(repo) == EXIT_SUCCESS
        assert not (repo / ".git" / "hooks" / "post-commit").exists()

    def test_uninstall_leaves_foreign_hook(self, repo: Path) -> None:
        hook = repo / ".git" / "hooks" / "post-commit"
        hook.write_text("#!/bin/sh\nmake lint\n", encoding="utf-8")
        assert uninstall_hook(repo) == EXIT_ERROR
        assert hook.exists()

    def test_uninstall_missing(self, repo: Path) -> None:
        assert uninstall_hook(repo) == EXIT_SUCCESS


class TestMain:
    def test_install_hook_exit_code(self, tmp_path: Path) -> None:
        (tmp_path / ".git").mkdir()
        with pytest.raises(SystemExit) as exc:
            main(["--repo", str(tmp_path), "--install-hook"])
        assert exc.value.code == EXIT_SUCCESS

    def test_bad_config_exits_with_error(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.json"
        config_file.write_text("{broken", encoding="utf-8")
        with pytest.raises(SystemExit) as exc:
            main(["--repo", str(tmp_path), "--config", str(config_file)])
        assert exc.value.code == EXIT_ERROR

    def test_unexpected_error_is_exit_error(self, tmp_path: Path) -> None:
        with patch("commit_story.run", side_effect=RuntimeError("boom")):
            with pytest.raises(SystemExit) as exc:
                main(["--repo", str(tmp_path)])
        assert exc.value.code == EXIT_ERROR

    def test_repo_flag_sets_repo_path(self, tmp_path: Path) -> None:
        with patch("commit_story.run", return_value=EXIT_SKIPPED) as mock_run:
            with pytest.raises(SystemExit) as exc:
                main(["--repo", str(tmp_path), "HEAD~1"])
        assert exc.value.code == EXIT_SKIPPED
        args, config = mock_run.call_args[0]
        assert args.commit_ref == "HEAD~1"
        assert config.repo_path == str(tmp_path.resolve())
