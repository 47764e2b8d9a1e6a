"""Context assembler: gathers and cleans everything known about one commit.

Coordinates the git and Claude transcript collectors, then runs the
dialogue through the message filter, the token budget and the sensitive
data filter. Only git failures propagate; a failing clean-up stage passes
its input through and is listed in metadata.degraded_stages.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Protocol, Sequence

from context_models import BundleMetadata, ChatContext, ContextBundle
from git_collector import CommitData, GitCommitSource
from journal_config import StoryConfig
from message_filter import DialogueMessage, FilterStats, filter_messages, group_messages_by_session
from sensitive_filter import apply_sensitive_filter
from session_collector import CollectedChat, TimeWindow, collect_chat_messages
from token_budget import apply_token_budget

logger = logging.getLogger(__name__)


class CommitSource(Protocol):
    def get_commit_data(self, ref: str = "HEAD") -> CommitData: ...

    def get_previous_commit_time(self, ref: str = "HEAD") -> Optional[datetime]: ...


def resolve_time_window(
    commit_time: datetime,
    previous_commit_time: Optional[datetime],
    fallback_hours: int = 24,
) -> TimeWindow:
    """Window from the previous commit to this one, or a fixed look-back for root commits."""
    start = previous_commit_time or commit_time - timedelta(hours=fallback_hours)
    if start > commit_time:
        # Rebased/amended history can put the parent after the child
        logger.debug("Previous commit is newer than %s, using an empty window", commit_time)
        start = commit_time
    return TimeWindow(start=start, end=commit_time)


def _fetch_commit(source: CommitSource, ref: str) -> tuple[CommitData, Optional[datetime]]:
    with ThreadPoolExecutor(max_workers=2) as pool:
        commit = pool.submit(source.get_commit_data, ref)
        previous = pool.submit(source.get_previous_commit_time, ref)
        return commit.result(), previous.result()


def _degrade(bundle: ContextBundle, stage: str, error: Exception) -> ContextBundle:
    logger.warning("Context stage %s failed, passing input through: %s", stage, error)
    return replace(
        bundle,
        metadata=replace(
            bundle.metadata,
            degraded_stages=bundle.metadata.degraded_stages + (stage,),
        ),
    )


def gather_context_for_commit(
    commit_ref: str = "HEAD",
    config: Optional[StoryConfig] = None,
    commit_source: Optional[CommitSource] = None,
    projects_dir: Optional[Path] = None,
) -> ContextBundle:
    """Gather, filter, budget and redact the context for one commit."""
    config = config or StoryConfig()
    repo_path = config.resolved_repo_path()
    source = commit_source or GitCommitSource(repo_path, journal_dir=config.journal.journal_dir)

    commit, previous_commit_time = _fetch_commit(source, commit_ref)
    window = resolve_time_window(
        commit.timestamp, previous_commit_time, config.collector.fallback_window_hours
    )
    degraded: list[str] = []

    try:
        collected = collect_chat_messages(
            repo_path,
            window,
            projects_dir=projects_dir or config.collector.resolved_projects_dir(),
            skip_types=config.collector.skip_record_types,
        )
    except Exception as e:
        logger.warning("Chat collection failed, continuing without chat: %s", e)
        collected = CollectedChat(window=window)
        degraded.append("session_collector")

    try:
        messages, stats = filter_messages(collected.records, config.collector.capture_tool_names)
    except Exception as e:
        logger.warning("Message filter failed, continuing without chat: %s", e)
        messages, stats = [], FilterStats()
        degraded.append("message_filter")

    bundle = ContextBundle(
        commit=commit,
        chat=ChatContext(
            messages=tuple(messages),
            sessions=tuple(group_messages_by_session(messages)),
        ),
        metadata=BundleMetadata(
            time_window=window,
            filter_stats=stats,
            previous_commit_time=previous_commit_time,
            degraded_stages=tuple(degraded),
        ),
    )

    try:
        bundle = apply_token_budget(bundle, config.budget)
    except Exception as e:
        bundle = _degrade(bundle, "token_budget", e)

    try:
        bundle = apply_sensitive_filter(bundle, config.redaction)
    except Exception as e:
        bundle = _degrade(bundle, "sensitive_filter", e)

    logger.debug(
        "Context for %s: %d messages, %d sessions, ~%d tokens",
        commit.short_hash, bundle.chat.message_count,
        bundle.chat.session_count, bundle.metadata.token_estimate,
    )
    return bundle


def _local_time(moment: datetime) -> str:
    local = moment.astimezone()
    return f"{local.hour % 12 or 12}:{local:%M:%S} {'AM' if local.hour < 12 else 'PM'}"


def format_context_for_prompt(bundle: ContextBundle) -> str:
    """Render a bundle as markdown for a generation prompt."""
    commit = bundle.commit
    sections = [
        "## Commit Information",
        f"**Hash**: {commit.short_hash}",
        f"**Author**: {commit.author}",
        f"**Date**: {commit.timestamp.isoformat()}",
        f"**Message**: {commit.message}",
    ]
    if commit.is_merge:
        sections.append(f"**Merge Commit**: Yes ({commit.parent_count} parents)")
    sections.append("")

    sections.append("## Code Changes")
    if commit.diff:
        sections.extend(["```diff", commit.diff, "```"])
    else:
        sections.append("*No code changes in this commit*")
    sections.append("")

    sections.append("## Development Conversation")
    sections.append(format_chat_messages(bundle.chat.messages, bundle.chat.session_count))
    return "\n".join(sections)


def format_chat_messages(
    messages: Sequence[DialogueMessage], session_count: Optional[int] = None
) -> str:
    if not messages:
        return "*No conversation captured for this time window*"

    lines = []
    if session_count is not None:
        lines.extend([f"*{len(messages)} messages from {session_count} session(s)*", ""])
    for message in messages:
        role = "**Human**" if message.role == "human" else "**Assistant**"
        lines.append(f"{role} ({_local_time(message.timestamp)}):")
        lines.append(message.content)
        lines.append("")
    return "\n".join(lines).rstrip()


def get_context_summary(bundle: ContextBundle) -> dict:
    """Compact statistics for logging and --dry-run output."""
    meta = bundle.metadata
    budget = meta.token_budget
    redaction = meta.redaction
    return {
        "commit": {
            "hash": bundle.commit.short_hash,
            "author": bundle.commit.author,
            "timestamp": bundle.commit.timestamp.isoformat(),
            "is_merge": bundle.commit.is_merge,
            "diff_length": len(bundle.commit.diff or ""),
        },
        "chat": {
            "message_count": bundle.chat.message_count,
            "session_count": bundle.chat.session_count,
        },
        "metadata": {
            "time_window": {
                "start": meta.time_window.start.isoformat(),
                "end": meta.time_window.end.isoformat(),
            },
            "token_estimate": meta.token_estimate,
            "filter_stats": {
                "total": meta.filter_stats.total,
                "kept": meta.filter_stats.kept,
                "dropped": meta.filter_stats.dropped,
                "by_reason": dict(meta.filter_stats.by_reason),
            },
            "diff_truncated": bool(budget and budget.diff_truncated),
            "messages_truncated": bool(budget and budget.messages_truncated),
            "total_redactions": redaction.total_redactions if redaction else 0,
            "degraded_stages": list(meta.degraded_stages),
        },
    }
