"""Decides whether a commit is worth a journal entry."""

from __future__ import annotations

import logging

from context_models import ContextBundle
from git_collector import GitCommitSource, GitError, MergeInfo

logger = logging.getLogger(__name__)


def get_changed_files(source: GitCommitSource, ref: str) -> list[str]:
    try:
        return source.get_changed_files(ref)
    except GitError as e:
        logger.debug("Could not list changed files for %s: %s", ref, e)
        return []


def is_journal_entries_only_commit(source: GitCommitSource, ref: str) -> bool:
    """True when every changed file lives under <journal>/entries/.

    Stops the post-commit hook from journaling its own journal commits.
    Reflections and context captures are not excluded; they are worth a
    journal entry of their own.
    """
    files = get_changed_files(source, ref)
    if not files:
        return False
    prefix = f"{source.journal_dir}/entries/"
    return all(f.startswith(prefix) for f in files)


def is_merge_commit(source: GitCommitSource, ref: str) -> MergeInfo:
    try:
        return source.get_merge_info(ref)
    except GitError as e:
        logger.debug("Could not read parents of %s: %s", ref, e)
        return MergeInfo(is_merge=False, parent_count=1)


def should_skip_merge_commit(merge_info: MergeInfo, bundle: ContextBundle) -> bool:
    """Skip only mechanical merges: no dialogue and no diff.

    A merge with conflict resolutions (diff) or with discussion (chat) is kept.
    """
    if not merge_info.is_merge:
        return False
    has_chat = bundle.chat.message_count > 0
    has_diff = bool(bundle.commit.diff and bundle.commit.diff.strip())
    return not has_chat and not has_diff
