"""Git collector: commit metadata, diff and predecessor timestamp.

Journal entry files are excluded from the diff so generated entries never
feed back into the next generation.
"""

from __future__ import annotations

import logging
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 30
END_BODY_MARKER = "--END-BODY--"
# %H full hash, %h short hash, %s subject, %b body, %an author, %ae email, %aI ISO date
METADATA_FORMAT = f"%H%n%h%n%s%n%b%n{END_BODY_MARKER}%n%an%n%ae%n%aI"


class GitError(Exception):
    """A git command failed."""


class NotAGitRepositoryError(GitError):
    def __init__(self, path: str | Path) -> None:
        super().__init__(f"Not a git repository: {path}")
        self.path = str(path)


class InvalidCommitRefError(GitError):
    def __init__(self, ref: str) -> None:
        super().__init__(f"Invalid commit reference: {ref}")
        self.ref = ref


@dataclass(frozen=True)
class MergeInfo:
    is_merge: bool
    parent_count: int


@dataclass(frozen=True)
class CommitData:
    """Everything the journal needs to know about one commit."""

    hash: str
    short_hash: str
    subject: str
    message: str
    author: str
    author_email: str
    timestamp: datetime
    diff: str = ""
    is_merge: bool = False
    parent_count: int = 1


def _parse_git_date(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def run_git(args: Sequence[str], cwd: str | Path, ref: Optional[str] = None) -> str:
    """Run a git command and return stdout, mapping failures to GitError."""
    cmd = ["git", *args]
    try:
        result = subprocess.run(
            cmd,
            cwd=str(cwd),
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=GIT_TIMEOUT_SECONDS,
        )
    except FileNotFoundError as e:
        raise GitError("git executable not found on PATH") from e
    except subprocess.TimeoutExpired as e:
        raise GitError(f"git {args[0]} timed out after {GIT_TIMEOUT_SECONDS}s") from e

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        lowered = stderr.lower()
        if "not a git repository" in lowered:
            raise NotAGitRepositoryError(cwd)
        if ref is not None and (
            "unknown revision" in lowered
            or "bad revision" in lowered
            or "bad object" in lowered
            or "ambiguous argument" in lowered
        ):
            raise InvalidCommitRefError(ref)
        raise GitError(f"git {' '.join(args[:2])} failed (rc={result.returncode}): {stderr[:200]}")
    return result.stdout


def is_git_repository(cwd: str | Path) -> bool:
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--git-dir"],
            cwd=str(cwd), capture_output=True, text=True, timeout=GIT_TIMEOUT_SECONDS,
        )
    except (subprocess.SubprocessError, FileNotFoundError, OSError):
        return False
    return result.returncode == 0


def is_valid_commit_ref(ref: str, cwd: str | Path) -> bool:
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"],
            cwd=str(cwd), capture_output=True, text=True, timeout=GIT_TIMEOUT_SECONDS,
        )
    except (subprocess.SubprocessError, FileNotFoundError, OSError):
        return False
    return result.returncode == 0


class GitCommitSource:
    """Reads commit data from a local repository with the git CLI."""

    def __init__(self, repo_path: str | Path, journal_dir: str = "journal") -> None:
        self.repo_path = Path(repo_path)
        self.journal_dir = journal_dir.strip("/") or "journal"

    def _git(self, *args: str, ref: Optional[str] = None) -> str:
        return run_git(list(args), self.repo_path, ref=ref)

    def get_commit_metadata(self, ref: str = "HEAD") -> dict:
        output = self._git("show", "--no-patch", f"--format={METADATA_FORMAT}", ref, ref=ref)
        lines = output.split("\n")
        if END_BODY_MARKER not in lines or len(lines) < 4:
            raise GitError(f"Unexpected git show output for {ref}")
        end = lines.index(END_BODY_MARKER)

        subject = lines[2]
        body = "\n".join(lines[3:end]).strip()
        return {
            "hash": lines[0],
            "short_hash": lines[1],
            "subject": subject,
            "message": f"{subject}\n\n{body}" if body else subject,
            "author": lines[end + 1],
            "author_email": lines[end + 2],
            "timestamp": _parse_git_date(lines[end + 3]),
        }

    def get_commit_diff(self, ref: str = "HEAD") -> str:
        output = self._git(
            "diff-tree",
            "-p",
            "-m",
            "--first-parent",
            "--root",
            ref,
            "--",
            ".",
            f":!{self.journal_dir}/entries/",
            ref=ref,
        )
        # First line is the commit hash
        return "\n".join(output.split("\n")[1:]).strip()

    def get_merge_info(self, ref: str = "HEAD") -> MergeInfo:
        output = self._git("rev-list", "--parents", "-n", "1", ref, ref=ref)
        hashes = output.strip().split()
        parent_count = max(len(hashes) - 1, 0)
        return MergeInfo(is_merge=parent_count > 1, parent_count=parent_count)

    def get_commit_data(self, ref: str = "HEAD") -> CommitData:
        """Metadata, diff and merge info for one commit, fetched in parallel."""
        with ThreadPoolExecutor(max_workers=3) as pool:
            metadata = pool.submit(self.get_commit_metadata, ref)
            diff = pool.submit(self.get_commit_diff, ref)
            merge = pool.submit(self.get_merge_info, ref)
            merge_info = merge.result()
            return CommitData(
                **metadata.result(),
                diff=diff.result(),
                is_merge=merge_info.is_merge,
                parent_count=merge_info.parent_count,
            )

    def get_previous_commit_time(self, ref: str = "HEAD") -> Optional[datetime]:
        """Author time of the commit before ref, or None for a root commit."""
        output = self._git("log", "-2", "--format=%aI", ref, ref=ref)
        timestamps = [line for line in output.strip().split("\n") if line.strip()]
        if len(timestamps) < 2:
            return None
        return _parse_git_date(timestamps[1])

    def get_changed_files(self, ref: str = "HEAD") -> list[str]:
        output = self._git("diff-tree", "--no-commit-id", "--name-only", "-r", "--root", ref, ref=ref)
        return [line for line in output.strip().split("\n") if line]
