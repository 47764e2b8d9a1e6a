"""Data model for the assembled commit context."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional

from git_collector import CommitData
from message_filter import DialogueMessage, FilterStats, SessionGroup
from session_collector import TimeWindow


@dataclass(frozen=True)
class TokenBudgetReport:
    """What the budget enforcer did."""

    total_budget: int
    diff_budget: int
    chat_budget: int
    diff_truncated: bool = False
    diff_original_tokens: int = 0
    diff_shown_tokens: int = 0
    messages_truncated: bool = False
    messages_original_count: int = 0
    messages_preserved_count: int = 0
    exceeds_total_budget: bool = False


@dataclass(frozen=True)
class RedactionReport:
    """Redaction counts per site and per category. Never holds matched values."""

    diff_redactions: int = 0
    message_redactions: int = 0
    chat_redactions: int = 0
    redactions_by_type: dict[str, int] = field(default_factory=dict)
    diff_by_type: dict[str, int] = field(default_factory=dict)
    message_by_type: dict[str, int] = field(default_factory=dict)
    chat_by_type: dict[str, int] = field(default_factory=dict)

    @property
    def total_redactions(self) -> int:
        return self.diff_redactions + self.message_redactions + self.chat_redactions


@dataclass(frozen=True)
class ChatContext:
    messages: tuple[DialogueMessage, ...] = ()
    sessions: tuple[SessionGroup, ...] = ()

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def session_count(self) -> int:
        return len(self.sessions)


@dataclass(frozen=True)
class BundleMetadata:
    time_window: TimeWindow
    filter_stats: FilterStats
    previous_commit_time: Optional[datetime] = None
    token_estimate: int = 0
    token_budget: Optional[TokenBudgetReport] = None
    redaction: Optional[RedactionReport] = None
    degraded_stages: tuple[str, ...] = ()


@dataclass(frozen=True)
class ContextBundle:
    """Commit, dialogue and metadata handed to the generation stage."""

    commit: CommitData
    chat: ChatContext
    metadata: BundleMetadata


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def bundle_to_dict(bundle: ContextBundle) -> dict:
    """JSON-safe dict of a bundle (datetimes as ISO strings)."""
    data = asdict(bundle)
    data["chat"]["message_count"] = bundle.chat.message_count
    data["chat"]["session_count"] = bundle.chat.session_count
    if bundle.metadata.redaction is not None:
        data["metadata"]["redaction"]["total_redactions"] = bundle.metadata.redaction.total_redactions
    return _jsonable(data)


