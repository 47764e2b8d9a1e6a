"""Shared pytest fixtures for the commit-story test suite.

Non-fixture helpers (record builders, fake commit sources, git helpers) are
in helpers.py.
"""

import shutil
import sys
from pathlib import Path

import pytest

# Add the tests directory to sys.path so test files can import helpers.py
sys.path.insert(0, str(Path(__file__).parent))

from session_collector import encode_project_path  # noqa: E402


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's shell environment out of config and CLI tests."""
    for name in ("ANTHROPIC_API_KEY", "ANTHROPIC_MODEL", "JOURNAL_DIR"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def repo_path(tmp_path: Path) -> Path:
    """An (empty) repository directory, resolved like the collector resolves it."""
    path = (tmp_path / "repo").resolve()
    path.mkdir()
    return path


@pytest.fixture
def projects_dir(tmp_path: Path) -> Path:
    """Stand-in for ~/.claude/projects."""
    path = tmp_path / "claude-projects"
    path.mkdir()
    return path


@pytest.fixture
def transcript_dir(repo_path: Path, projects_dir: Path) -> Path:
    """The Claude project directory that belongs to repo_path."""
    path = projects_dir / encode_project_path(repo_path)
    path.mkdir()
    return path


@pytest.fixture
def git_available() -> None:
    if shutil.which("git") is None:
        pytest.skip("git executable not available")
