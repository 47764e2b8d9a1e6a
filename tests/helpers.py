"""Shared test helpers for the commit-story test suite.

Fixtures are in conftest.py. This module contains non-fixture helpers
(transcript builders, model builders, fake git sources, mock clients)
used across multiple test files.
"""

import json
import os
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional, Sequence
from unittest.mock import MagicMock

from context_models import BundleMetadata, ChatContext, ContextBundle
from git_collector import CommitData, GitError, MergeInfo
from message_filter import DialogueMessage, FilterStats, group_messages_by_session
from session_collector import TimeWindow, TranscriptRecord

COMMIT_TIME = datetime(2025, 3, 14, 15, 0, 0, tzinfo=timezone.utc)
PREVIOUS_COMMIT_TIME = datetime(2025, 3, 14, 12, 0, 0, tzinfo=timezone.utc)


# --- Transcript builders ---

def iso_z(moment: datetime) -> str:
    """Format like Claude Code does: 2025-03-14T12:00:00.000Z."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def make_transcript_entry(
    uuid: str,
    timestamp: datetime,
    cwd: str,
    record_type: Optional[str] = "user",
    content: Any = "Hello there",
    session_id: str = "session-1",
    is_meta: bool = False,
) -> dict:
    """Build one JSONL record in Claude Code's transcript shape."""
    entry: dict = {
        "parentUuid": None,
        "isSidechain": False,
        "cwd": cwd,
        "sessionId": session_id,
        "uuid": uuid,
        "timestamp": iso_z(timestamp),
        "message": {
            "role": "assistant" if record_type == "assistant" else "user",
            "content": content,
        },
    }
    if record_type is not None:
        entry["type"] = record_type
    if is_meta:
        entry["isMeta"] = True
    return entry


def write_transcript(directory: Path, name: str, entries: Sequence[Any]) -> Path:
    """Write entries (dicts or raw strings) as a .jsonl session file."""
    lines = [e if isinstance(e, str) else json.dumps(e) for e in entries]
    path = directory / name
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def make_record(
    uuid: str = "rec-1",
    timestamp: datetime = PREVIOUS_COMMIT_TIME,
    record_type: Optional[str] = "user",
    content: Any = "Hello there",
    session_id: Optional[str] = "session-1",
    cwd: Optional[str] = "/work/repo",
    is_meta: bool = False,
) -> TranscriptRecord:
    message = {"content": content} if content is not None else {}
    return TranscriptRecord(
        uuid=uuid,
        timestamp=timestamp,
        type=record_type,
        session_id=session_id,
        cwd=cwd,
        is_meta=is_meta,
        message=message,
    )


def tool_use_block(name: str = "Bash", tool_id: str = "toolu_1") -> dict:
    return {"type": "tool_use", "id": tool_id, "name": name, "input": {"command": "ls"}}


def tool_result_block(tool_id: str = "toolu_1") -> dict:
    return {"type": "tool_result", "tool_use_id": tool_id, "content": "file1\nfile2"}


def text_block(text: str) -> dict:
    return {"type": "text", "text": text}


# --- Model builders ---

def make_message(
    content: str = "Let's refactor the parser",
    role: str = "human",
    timestamp: datetime = PREVIOUS_COMMIT_TIME,
    session_id: str = "session-1",
    uuid: Optional[str] = None,
) -> DialogueMessage:
    return DialogueMessage(
        uuid=uuid or f"msg-{timestamp.timestamp()}-{role}",
        session_id=session_id,
        role=role,
        timestamp=timestamp,
        content=content,
    )


def make_messages(count: int, content: str = "x" * 100, role: str = "human") -> list[DialogueMessage]:
    """Chronological messages one minute apart, ending at COMMIT_TIME."""
    start = COMMIT_TIME - timedelta(minutes=count)
    return [
        make_message(
            content=f"{i:04d}{content}"[: len(content)] if content else "",
            role=role,
            timestamp=start + timedelta(minutes=i),
            uuid=f"msg-{i}",
        )
        for i in range(count)
    ]


def make_commit(
    diff: str = "diff --git a/app.py b/app.py\n+print('hello')",
    message: str = "Add greeting",
    timestamp: datetime = COMMIT_TIME,
    is_merge: bool = False,
    parent_count: int = 1,
) -> CommitData:
    return CommitData(
        hash="a1b2c3d4e5f60718293a4b5c6d7e8f9012345678",
        short_hash="a1b2c3d",
        subject=message.split("\n")[0],
        message=message,
        author="Test Dev",
        author_email="dev@example.com",
        timestamp=timestamp,
        diff=diff,
        is_merge=is_merge,
        parent_count=parent_count,
    )


def make_bundle(
    commit: Optional[CommitData] = None,
    messages: Sequence[DialogueMessage] = (),
) -> ContextBundle:
    commit = commit or make_commit()
    return ContextBundle(
        commit=commit,
        chat=ChatContext(
            messages=tuple(messages),
            sessions=tuple(group_messages_by_session(messages)),
        ),
        metadata=BundleMetadata(
            time_window=TimeWindow(start=PREVIOUS_COMMIT_TIME, end=commit.timestamp),
            filter_stats=FilterStats(),
            previous_commit_time=PREVIOUS_COMMIT_TIME,
        ),
    )


# --- Fake git ---

class FakeCommitSource:
    """In-memory stand-in for GitCommitSource."""

    def __init__(
        self,
        commit: Optional[CommitData] = None,
        previous_commit_time: Optional[datetime] = PREVIOUS_COMMIT_TIME,
        changed_files: Optional[list[str]] = None,
        journal_dir: str = "journal",
        fail_changed_files: bool = False,
    ) -> None:
        self.commit = commit or make_commit()
        self.previous_commit_time = previous_commit_time
        self.changed_files = changed_files if changed_files is not None else ["app.py"]
        self.journal_dir = journal_dir
        self.fail_changed_files = fail_changed_files

    def get_commit_data(self, ref: str = "HEAD") -> CommitData:
        return self.commit

    def get_previous_commit_time(self, ref: str = "HEAD") -> Optional[datetime]:
        return self.previous_commit_time

    def get_changed_files(self, ref: str = "HEAD") -> list[str]:
        if self.fail_changed_files:
            raise GitError("git diff-tree failed")
        return list(self.changed_files)

    def get_merge_info(self, ref: str = "HEAD") -> MergeInfo:
        return MergeInfo(is_merge=self.commit.is_merge, parent_count=self.commit.parent_count)


def mock_git_result(stdout: str = "", returncode: int = 0, stderr: str = "") -> MagicMock:
    """Build a mock subprocess result for a git command."""
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


def make_git_dispatcher(results: dict[str, MagicMock]):
    """Create a subprocess.run mock that dispatches on the git subcommand.

    Unknown subcommands get an empty successful result.
    """
    calls: list[list[str]] = []

    def side_effect(*args, **kwargs):
        cmd = args[0] if args else kwargs.get("args", [])
        calls.append(list(cmd))
        if isinstance(cmd, list) and len(cmd) >= 2 and cmd[0] == "git":
            if cmd[1] in results:
                return results[cmd[1]]
        return mock_git_result()

    side_effect.calls = calls
    return side_effect


# --- Real git repositories ---

def init_git_repo(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    for args in (
        ["init", "-q"],
        ["config", "user.name", "Test Dev"],
        ["config", "user.email", "dev@example.com"],
        ["config", "commit.gpgsign", "false"],
    ):
        subprocess.run(["git", *args], cwd=path, check=True, capture_output=True)
    return path


def git_commit(
    repo: Path,
    files: dict[str, str],
    message: str,
    when: datetime,
    paths: Optional[Sequence[str]] = None,
) -> str:
    """Write files, commit them at a fixed date and return the commit hash.

    Stages everything unless paths narrows what goes into the commit.
    """
    for name, content in files.items():
        file_path = repo / name
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content, encoding="utf-8")

    env = {
        **os.environ,
        "GIT_AUTHOR_DATE": when.isoformat(),
        "GIT_COMMITTER_DATE": when.isoformat(),
    }
    add_args = ["add", "--", *paths] if paths else ["add", "-A"]
    subprocess.run(["git", *add_args], cwd=repo, check=True, capture_output=True)
    subprocess.run(
        ["git", "commit", "-q", "-m", message], cwd=repo, env=env, check=True, capture_output=True
    )
    result = subprocess.run(
        ["git", "rev-parse", "HEAD"], cwd=repo, check=True, capture_output=True, text=True
    )
    return result.stdout.strip()


# --- Anthropic mocks ---

def mock_anthropic_response(text: str) -> MagicMock:
    block = MagicMock(type="text", text=text)
    return MagicMock(content=[block])


def make_section_client(
    summary: str = "Refactored the parser to stream input.",
    technical: str = "- Streamed parsing (Made)",
    dialogue: str = 'Human: "Streaming keeps memory flat"',
) -> MagicMock:
    """Mock Anthropic client that answers each journal prompt by its closing instruction."""
    def create(**kwargs):
        prompt = kwargs["messages"][0]["content"]
        if "Write your summary" in prompt:
            return mock_anthropic_response(summary)
        if "Extract technical decisions" in prompt:
            return mock_anthropic_response(technical)
        return mock_anthropic_response(dialogue)

    client = MagicMock()
    client.messages.create.side_effect = create
    return client
