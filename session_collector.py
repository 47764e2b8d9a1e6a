"""Claude Code session collector.

Reads the JSONL transcripts Claude Code keeps under
~/.claude/projects/<encoded-repo-path>/ and returns the records that belong
to one repository and one time window, sorted chronologically and grouped
by session.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Sequence, TextIO

logger = logging.getLogger(__name__)

# Internal bookkeeping records, never conversation content
SKIP_RECORD_TYPES: frozenset[str] = frozenset({
    "file-history-snapshot",
    "progress",
    "queue-operation",
    "system",
})


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive [start, end] interval between two commits."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(
                f"Time window start {self.start.isoformat()} is after end {self.end.isoformat()}"
            )

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


@dataclass(frozen=True)
class TranscriptRecord:
    """A single parsed line from a Claude Code session log."""

    uuid: str
    timestamp: datetime
    type: Optional[str] = None
    session_id: Optional[str] = None
    parent_uuid: Optional[str] = None
    cwd: Optional[str] = None
    is_meta: bool = False
    message: dict = field(default_factory=dict)
    raw: dict = field(default_factory=dict, repr=False, compare=False)

    @property
    def content(self) -> Any:
        return self.message.get("content")


@dataclass(frozen=True)
class RecordGroup:
    """Records of one session, chronological."""

    session_id: str
    records: tuple[TranscriptRecord, ...]


@dataclass(frozen=True)
class CollectedChat:
    """Everything the collector found for one window."""

    window: TimeWindow
    records: tuple[TranscriptRecord, ...] = ()
    sessions: tuple[RecordGroup, ...] = ()
    files_scanned: int = 0

    @property
    def message_count(self) -> int:
        return len(self.records)

    @property
    def session_count(self) -> int:
        return len(self.sessions)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def encode_project_path(repo_path: str | Path) -> str:
    """Encode a repository path the way Claude Code names project directories.

    Path separators and dots both become hyphens; the mapping is lossy.
    """
    text = str(repo_path).replace("\\", "/")
    if text.endswith("/") and len(text) > 1:
        text = text[:-1]
    return text.replace("/", "-").replace(".", "-")


def find_project_dir(repo_path: str | Path, projects_dir: Path) -> Optional[Path]:
    """Return the transcript directory for a repository, or None if absent."""
    if not projects_dir.is_dir():
        return None
    project_dir = projects_dir / encode_project_path(repo_path)
    if not project_dir.is_dir():
        return None
    return project_dir


def find_jsonl_files(project_dir: Path) -> list[Path]:
    """List *.jsonl files in a project directory, newest first."""
    if not project_dir.is_dir():
        return []
    files = [p for p in project_dir.iterdir() if p.is_file() and p.suffix == ".jsonl"]
    return sorted(files, key=lambda p: p.stat().st_mtime, reverse=True)


def parse_transcript_line(
    line: str, skip_types: Iterable[str] = SKIP_RECORD_TYPES
) -> Optional[TranscriptRecord]:
    """Parse a single JSONL line. Returns None for anything not worth keeping."""
    stripped = line.strip()
    if not stripped:
        return None

    try:
        data = json.loads(stripped)
    except json.JSONDecodeError as e:
        logger.debug("Malformed transcript line: %s (error: %s)", stripped[:200], e)
        return None

    if not isinstance(data, dict):
        return None
    if data.get("type") in skip_types:
        return None
    if not data.get("uuid") or not data.get("timestamp"):
        return None

    timestamp = parse_timestamp(data["timestamp"])
    if timestamp is None:
        logger.debug("Unparseable timestamp on record %s", data.get("uuid"))
        return None

    message = data.get("message")
    return TranscriptRecord(
        uuid=str(data["uuid"]),
        timestamp=timestamp,
        type=data.get("type"),
        session_id=data.get("sessionId"),
        parent_uuid=data.get("parentUuid"),
        cwd=data.get("cwd"),
        is_meta=data.get("isMeta") is True,
        message=message if isinstance(message, dict) else {},
        raw=data,
    )


def parse_transcript_stream(
    stream: TextIO, skip_types: Iterable[str] = SKIP_RECORD_TYPES
) -> Iterator[TranscriptRecord]:
    """Generator that yields records from a line-buffered text stream."""
    skip = frozenset(skip_types)
    for line in stream:
        record = parse_transcript_line(line, skip)
        if record:
            yield record


def parse_jsonl_file(
    file_path: Path, skip_types: Iterable[str] = SKIP_RECORD_TYPES
) -> list[TranscriptRecord]:
    """Parse a whole session file. Unreadable files yield no records."""
    try:
        with open(file_path, encoding="utf-8", errors="replace") as f:
            return list(parse_transcript_stream(f, skip_types))
    except FileNotFoundError:
        return []
    except OSError as e:
        logger.warning("Could not read transcript %s: %s", file_path, e)
        return []


def filter_records(
    records: Iterable[TranscriptRecord], repo_path: str | Path, window: TimeWindow
) -> list[TranscriptRecord]:
    """Keep records from this repository inside the window, chronological."""
    target = str(repo_path)
    kept = [r for r in records if r.cwd == target and window.contains(r.timestamp)]
    return sorted(kept, key=lambda r: r.timestamp)


def group_by_session(records: Sequence[TranscriptRecord]) -> tuple[RecordGroup, ...]:
    """Group records by session id, ordered by each session's first record."""
    grouped: dict[str, list[TranscriptRecord]] = {}
    order: list[str] = []
    for record in sorted(records, key=lambda r: r.timestamp):
        if not record.session_id:
            continue
        if record.session_id not in grouped:
            grouped[record.session_id] = []
            order.append(record.session_id)
        grouped[record.session_id].append(record)

    return tuple(RecordGroup(session_id=sid, records=tuple(grouped[sid])) for sid in order)


def collect_chat_messages(
    repo_path: str | Path,
    window: TimeWindow,
    projects_dir: Optional[Path] = None,
    skip_types: Iterable[str] = SKIP_RECORD_TYPES,
) -> CollectedChat:
    """Collect transcript records for a repository within a time window."""
    base = projects_dir or Path.home() / ".claude" / "projects"
    project_dir = find_project_dir(repo_path, base)
    if project_dir is None:
        logger.debug("No Claude project directory for %s under %s", repo_path, base)
        return CollectedChat(window=window)

    skip = frozenset(skip_types)
    files = find_jsonl_files(project_dir)
    collected: list[TranscriptRecord] = []
    for file_path in files:
        collected.extend(filter_records(parse_jsonl_file(file_path, skip), repo_path, window))

    collected.sort(key=lambda r: r.timestamp)
    logger.debug(
        "Collected %d records from %d session files in %s",
        len(collected), len(files), project_dir,
    )
    return CollectedChat(
        window=window,
        records=tuple(collected),
        sessions=group_by_session(collected),
        files_scanned=len(files),
    )
