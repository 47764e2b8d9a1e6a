"""Noise filter for collected transcript records.

Keeps human/assistant dialogue and drops tool calls, tool results, meta
records and empty content. Calls to the context-capture tool are dialogue,
not noise, and survive the tool-call check.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from session_collector import TranscriptRecord

logger = logging.getLogger(__name__)

DEFAULT_CAPTURE_TOOLS: tuple[str, ...] = ("journal_capture_context",)

# Transcript record type -> dialogue role
ROLES: dict[str, str] = {
    "user": "human",
    "assistant": "assistant",
}

NO_TYPE = "no_type"
WRONG_TYPE = "wrong_type"
IS_META = "is_meta"
EMPTY_CONTENT = "empty_content"
TOOL_USE = "tool_use"
TOOL_RESULT = "tool_result"


@dataclass(frozen=True)
class DialogueMessage:
    """A kept transcript record reduced to plain dialogue text."""

    uuid: str
    session_id: Optional[str]
    role: str  # human, assistant
    timestamp: datetime
    content: str
    is_context_capture: bool = False


@dataclass(frozen=True)
class SessionGroup:
    """Dialogue of one session, chronological."""

    session_id: str
    messages: tuple[DialogueMessage, ...]


@dataclass
class FilterStats:
    """Per-run counters. kept + dropped always equals total."""

    total: int = 0
    kept: int = 0
    dropped: int = 0
    by_reason: dict[str, int] = field(default_factory=lambda: {
        NO_TYPE: 0,
        WRONG_TYPE: 0,
        IS_META: 0,
        EMPTY_CONTENT: 0,
        TOOL_USE: 0,
        TOOL_RESULT: 0,
    })

    def record_drop(self, reason: str) -> None:
        self.total += 1
        self.dropped += 1
        self.by_reason[reason] = self.by_reason.get(reason, 0) + 1

    def record_keep(self) -> None:
        self.total += 1
        self.kept += 1


def _blocks_of(content: list, block_type: str) -> list[dict]:
    return [b for b in content if isinstance(b, dict) and b.get("type") == block_type]


def _is_exempt_tool_use(tool_blocks: list[dict], capture_tools: frozenset[str]) -> bool:
    return bool(tool_blocks) and all(b.get("name") in capture_tools for b in tool_blocks)


def classify_record(
    record: TranscriptRecord, capture_tools: Iterable[str] = DEFAULT_CAPTURE_TOOLS
) -> Optional[str]:
    """Return the drop reason for a record, or None if it is dialogue.

    Reasons are checked in a fixed order; the first one that applies wins.
    """
    if not record.type:
        return NO_TYPE
    if record.type not in ROLES:
        return WRONG_TYPE
    if record.is_meta:
        return IS_META

    content = record.content
    if content is None:
        return EMPTY_CONTENT
    if isinstance(content, str):
        return EMPTY_CONTENT if not content.strip() else None
    if not isinstance(content, list):
        return EMPTY_CONTENT

    tool_uses = _blocks_of(content, "tool_use")
    if tool_uses and not _is_exempt_tool_use(tool_uses, frozenset(capture_tools)):
        return TOOL_USE
    if _blocks_of(content, "tool_result"):
        return TOOL_RESULT

    has_text = any(
        isinstance(b.get("text"), str) and b["text"].strip()
        for b in _blocks_of(content, "text")
    )
    if not has_text:
        return EMPTY_CONTENT
    return None


def extract_text_content(content: Any) -> str:
    """Plain text of a message payload: strings as-is, text blocks newline-joined."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = [
            b.get("text") or ""
            for b in content
            if isinstance(b, dict) and b.get("type") == "text"
        ]
        return "\n".join(t for t in texts if isinstance(t, str)).strip()
    return ""


def filter_messages(
    records: Sequence[TranscriptRecord],
    capture_tools: Iterable[str] = DEFAULT_CAPTURE_TOOLS,
) -> tuple[list[DialogueMessage], FilterStats]:
    """Filter records down to dialogue messages and count why others were dropped."""
    allowed = frozenset(capture_tools)
    stats = FilterStats()
    messages: list[DialogueMessage] = []

    for record in records:
        reason = classify_record(record, allowed)
        if reason is not None:
            stats.record_drop(reason)
            continue

        stats.record_keep()
        content = record.content
        messages.append(DialogueMessage(
            uuid=record.uuid,
            session_id=record.session_id,
            role=ROLES[record.type],
            timestamp=record.timestamp,
            content=extract_text_content(content),
            is_context_capture=isinstance(content, list) and bool(_blocks_of(content, "tool_use")),
        ))

    logger.debug(
        "Message filter kept %d of %d records (%s)",
        stats.kept, stats.total, stats.by_reason,
    )
    return messages, stats


def group_messages_by_session(messages: Sequence[DialogueMessage]) -> list[SessionGroup]:
    """Group dialogue by session id, ordered by each session's first message."""
    grouped: dict[str, list[DialogueMessage]] = {}
    for message in sorted(messages, key=lambda m: m.timestamp):
        if not message.session_id:
            continue
        grouped.setdefault(message.session_id, []).append(message)
    return [SessionGroup(session_id=sid, messages=tuple(msgs)) for sid, msgs in grouped.items()]
