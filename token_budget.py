"""Token budget enforcement for the assembled context.

Token counts are a character heuristic, not a tokenizer. Claude averages
about 4 characters per token; dividing by 3.5 overestimates on purpose.
Large diffs are cut first (at a file boundary when possible), then the
oldest dialogue messages are dropped.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, replace
from typing import Sequence

from context_models import ContextBundle, TokenBudgetReport
from journal_config import BudgetConfig
from message_filter import DialogueMessage, group_messages_by_session

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 3.5
FILE_BOUNDARY = "\ndiff --git "
# Room kept free for the truncation notice so the result stays inside the budget
NOTICE_RESERVE_CHARS = 100

ROLE_LABELS = {"human": "Human", "assistant": "Assistant"}


@dataclass(frozen=True)
class DiffTruncation:
    diff: str
    truncated: bool
    original_tokens: int
    shown_tokens: int


@dataclass(frozen=True)
class MessageTruncation:
    messages: tuple[DialogueMessage, ...]
    truncated: bool
    original_count: int
    preserved_count: int
    original_tokens: int
    final_tokens: int


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def format_messages_for_estimation(messages: Sequence[DialogueMessage]) -> str:
    return "\n\n".join(
        f"{ROLE_LABELS.get(m.role, 'Assistant')}: {m.content}" for m in messages
    )


def truncate_diff(diff: str, max_tokens: int) -> DiffTruncation:
    """Cut a diff down to max_tokens, preferring whole-file boundaries."""
    if not diff:
        return DiffTruncation(diff="", truncated=False, original_tokens=0, shown_tokens=0)

    original_tokens = estimate_tokens(diff)
    if original_tokens <= max_tokens:
        return DiffTruncation(
            diff=diff, truncated=False,
            original_tokens=original_tokens, shown_tokens=original_tokens,
        )

    target_chars = max(math.floor(max_tokens * CHARS_PER_TOKEN) - NOTICE_RESERVE_CHARS, 0)
    sliced = diff[:target_chars]
    last_file_start = sliced.rfind(FILE_BOUNDARY)
    if last_file_start > target_chars * 0.5:
        sliced = sliced[:last_file_start]

    shown_tokens = estimate_tokens(sliced)
    notice = (
        f"\n\n[DIFF TRUNCATED - Original: {original_tokens} tokens, "
        f"Shown: ~{shown_tokens} tokens]"
    )
    if estimate_tokens(sliced + notice) >= original_tokens:
        # Budget too small to hold the notice; truncating would only grow the diff
        return DiffTruncation(
            diff=diff, truncated=False,
            original_tokens=original_tokens, shown_tokens=original_tokens,
        )
    return DiffTruncation(
        diff=sliced + notice,
        truncated=True,
        original_tokens=original_tokens,
        shown_tokens=shown_tokens,
    )


def truncate_messages(messages: Sequence[DialogueMessage], max_tokens: int) -> MessageTruncation:
    """Drop the oldest messages until the dialogue fits. Never drops the last one."""
    kept = list(messages)
    original_count = len(kept)
    original_tokens = estimate_tokens(format_messages_for_estimation(kept))

    if not kept or original_tokens <= max_tokens:
        return MessageTruncation(
            messages=tuple(kept), truncated=False,
            original_count=original_count, preserved_count=original_count,
            original_tokens=original_tokens, final_tokens=original_tokens,
        )

    current_tokens = original_tokens
    while len(kept) > 1 and current_tokens > max_tokens:
        kept.pop(0)
        current_tokens = estimate_tokens(format_messages_for_estimation(kept))

    return MessageTruncation(
        messages=tuple(kept),
        truncated=True,
        original_count=original_count,
        preserved_count=len(kept),
        original_tokens=original_tokens,
        final_tokens=current_tokens,
    )


def estimate_commit_metadata_tokens(bundle: ContextBundle) -> int:
    commit = bundle.commit
    return estimate_tokens(json.dumps({
        "hash": commit.hash,
        "message": commit.message,
        "author": commit.author,
        "timestamp": commit.timestamp.isoformat(),
    }))


def apply_token_budget(bundle: ContextBundle, budget: BudgetConfig) -> ContextBundle:
    """Return a new bundle whose diff and dialogue fit their sub-budgets."""
    diff_result = truncate_diff(bundle.commit.diff, budget.diff_budget)
    message_result = truncate_messages(bundle.chat.messages, budget.chat_budget)

    token_estimate = (
        estimate_commit_metadata_tokens(bundle)
        + estimate_tokens(diff_result.diff)
        + estimate_tokens(format_messages_for_estimation(message_result.messages))
    )
    report = TokenBudgetReport(
        total_budget=budget.total_budget,
        diff_budget=budget.diff_budget,
        chat_budget=budget.chat_budget,
        diff_truncated=diff_result.truncated,
        diff_original_tokens=diff_result.original_tokens,
        diff_shown_tokens=diff_result.shown_tokens,
        messages_truncated=message_result.truncated,
        messages_original_count=message_result.original_count,
        messages_preserved_count=message_result.preserved_count,
        exceeds_total_budget=token_estimate > budget.total_budget,
    )

    if diff_result.truncated:
        logger.info(
            "Diff truncated: %d -> ~%d tokens",
            diff_result.original_tokens, diff_result.shown_tokens,
        )
    if message_result.truncated:
        logger.info(
            "Dialogue truncated: kept %d of %d messages",
            message_result.preserved_count, message_result.original_count,
        )

    chat = bundle.chat
    if message_result.truncated:
        chat = replace(
            chat,
            messages=message_result.messages,
            sessions=tuple(group_messages_by_session(message_result.messages)),
        )
    return replace(
        bundle,
        commit=replace(bundle.commit, diff=diff_result.diff),
        chat=chat,
        metadata=replace(bundle.metadata, token_budget=report, token_estimate=token_estimate),
    )
