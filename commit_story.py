"""commit-story: automated engineering journal.

Generates a journal entry from a git commit and the Claude Code chat that
led to it. Runs from the git post-commit hook or by hand.

Exit codes:
    0  success (entry written, or nothing else to do)
    1  error
    2  skipped (journal-only commit or empty merge)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import stat
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from commit_analyzer import is_journal_entries_only_commit, is_merge_commit, should_skip_merge_commit
from context_assembler import format_context_for_prompt, gather_context_for_commit, get_context_summary
from context_models import bundle_to_dict
from git_collector import GitCommitSource, GitError, is_git_repository, is_valid_commit_ref
from journal_config import CONFIG_RELATIVE_PATH, StoryConfig, load_config
from journal_generator import JournalGenerator, create_client
from journal_manager import discover_reflections, save_context_capture, save_journal_entry, save_reflection
from sensitive_filter import RedactingFilter

logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_SKIPPED = 2

HOOK_MARKER = "# commit-story post-commit hook"
HOOK_SCRIPT = f"""#!/bin/sh
{HOOK_MARKER}
# Generates a journal entry for each commit, in the background so git is not blocked
commit-story >/dev/null 2>&1 &
"""


class JsonFormatter(logging.Formatter):
    """Structured JSON log formatter for machine-readable output."""

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps({
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
        })


def setup_logging(debug: bool = False, json_log: bool = False) -> None:
    """Configure root logging with secret redaction on every handler."""
    log_level = logging.DEBUG if debug else logging.INFO
    if json_log:
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
        logging.root.addHandler(handler)
        logging.root.setLevel(log_level)
    else:
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    for handler in logging.root.handlers:
        handler.addFilter(RedactingFilter())


def _hook_path(repo_path: Path) -> Path:
    return repo_path / ".git" / "hooks" / "post-commit"


def install_hook(repo_path: Path) -> int:
    """Install the post-commit hook, refusing to overwrite a foreign one."""
    if not (repo_path / ".git").is_dir():
        logger.error("Not a git repository: %s (run from the repository root)", repo_path)
        return EXIT_ERROR

    hook = _hook_path(repo_path)
    if hook.exists():
        if HOOK_MARKER in hook.read_text(encoding="utf-8", errors="replace"):
            logger.info("Hook already installed at %s", hook)
            return EXIT_SUCCESS
        logger.error(
            "%s already exists; add 'commit-story &' to it manually to avoid overwriting it",
            hook,
        )
        return EXIT_ERROR

    hook.parent.mkdir(parents=True, exist_ok=True)
    hook.write_text(HOOK_SCRIPT, encoding="utf-8")
    hook.chmod(hook.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    logger.info("Git hook installed at %s", hook)
    return EXIT_SUCCESS


def uninstall_hook(repo_path: Path) -> int:
    """Remove the post-commit hook, but only if commit-story installed it."""
    hook = _hook_path(repo_path)
    if not hook.exists():
        logger.info("No post-commit hook at %s", hook)
        return EXIT_SUCCESS
    if HOOK_MARKER not in hook.read_text(encoding="utf-8", errors="replace"):
        logger.error("%s was not installed by commit-story; leaving it alone", hook)
        return EXIT_ERROR
    hook.unlink()
    logger.info("Git hook removed from %s", hook)
    return EXIT_SUCCESS


def _reflection_window_start(source: GitCommitSource, ref: str, commit_time: datetime) -> datetime:
    try:
        previous = source.get_previous_commit_time(ref)
    except GitError:
        previous = None
    return previous or commit_time - timedelta(hours=24)


def run(
    args: argparse.Namespace,
    config: StoryConfig,
    client=None,
    projects_dir: Optional[Path] = None,
) -> int:
    """Generate the journal entry for args.commit_ref. Returns an exit code."""
    repo_path = config.resolved_repo_path()
    journal_dir = config.journal.journal_dir

    if args.reflect:
        path = save_reflection(args.reflect, base_path=repo_path, journal_dir=journal_dir)
        logger.info("Reflection saved to %s", path)
        return EXIT_SUCCESS
    if args.capture_context:
        path = save_context_capture(args.capture_context, base_path=repo_path, journal_dir=journal_dir)
        logger.info("Context saved to %s", path)
        return EXIT_SUCCESS

    if not is_git_repository(repo_path):
        logger.error("Not a git repository: %s", repo_path)
        return EXIT_ERROR
    if not is_valid_commit_ref(args.commit_ref, repo_path):
        logger.error("Invalid commit reference: %s (check it with: git log --oneline)", args.commit_ref)
        return EXIT_ERROR
    if not args.dry_run and client is None and not os.environ.get("ANTHROPIC_API_KEY"):
        logger.error("ANTHROPIC_API_KEY not set (export ANTHROPIC_API_KEY=your-key)")
        return EXIT_ERROR

    source = GitCommitSource(repo_path, journal_dir=journal_dir)
    if is_journal_entries_only_commit(source, args.commit_ref):
        logger.info("Skipping %s: only journal entries changed", args.commit_ref)
        return EXIT_SKIPPED

    merge_info = is_merge_commit(source, args.commit_ref)
    try:
        bundle = gather_context_for_commit(
            args.commit_ref, config, commit_source=source, projects_dir=projects_dir,
        )
    except GitError as e:
        logger.error("Could not read commit %s: %s", args.commit_ref, e)
        return EXIT_ERROR
    logger.debug("Context gathered: %s", json.dumps(get_context_summary(bundle)))

    if should_skip_merge_commit(merge_info, bundle):
        logger.info("Skipping %s: merge commit with no chat and no code changes", args.commit_ref)
        return EXIT_SKIPPED

    if args.dry_run:
        if args.json_log:
            print(json.dumps(bundle_to_dict(bundle), indent=2))
        else:
            print(format_context_for_prompt(bundle))
            print(json.dumps(get_context_summary(bundle), indent=2))
        return EXIT_SUCCESS

    generator = JournalGenerator(client or create_client(), config.generation)
    sections = generator.generate(bundle)

    commit_time = bundle.commit.timestamp
    reflections = discover_reflections(
        _reflection_window_start(source, args.commit_ref, commit_time),
        commit_time,
        base_path=repo_path,
        journal_dir=journal_dir,
    )
    path = save_journal_entry(
        sections, bundle.commit, reflections, base_path=repo_path, journal_dir=journal_dir,
    )
    logger.info("Journal entry saved: %s", path)
    for error in sections.errors:
        logger.warning("Section generation issue: %s", error)
    return EXIT_SUCCESS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="commit-story",
        description="Automated engineering journal from git commits and Claude Code chat",
    )
    parser.add_argument("commit_ref", nargs="?", default="HEAD", help="Commit reference (default: HEAD)")
    parser.add_argument("--repo", default=None, help="Repository path (default: current directory)")
    parser.add_argument("--config", default=None, help="Path to config.json")
    parser.add_argument("--dry-run", action="store_true", help="Print the gathered context instead of generating")
    parser.add_argument("--debug", "-d", action="store_true", help="Enable debug logging")
    parser.add_argument("--json-log", action="store_true", help="Output structured JSON logs")
    parser.add_argument("--reflect", default=None, metavar="TEXT", help="Save a developer reflection")
    parser.add_argument("--capture-context", default=None, metavar="TEXT", help="Save a context capture")
    parser.add_argument("--install-hook", action="store_true", help="Install the git post-commit hook")
    parser.add_argument("--uninstall-hook", action="store_true", help="Remove the git post-commit hook")
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug, json_log=args.json_log)

    repo_path = Path(args.repo or os.getcwd()).resolve()
    if args.install_hook:
        sys.exit(install_hook(repo_path))
    if args.uninstall_hook:
        sys.exit(uninstall_hook(repo_path))

    config_path = args.config or (repo_path / CONFIG_RELATIVE_PATH)
    config_result = load_config(config_path)
    if not config_result.success:
        logger.error("Config error: %s", config_result.error)
        sys.exit(EXIT_ERROR)
    config = config_result.data
    if args.repo or not config.repo_path:
        config.repo_path = str(repo_path)

    try:
        exit_code = run(args, config)
    except Exception as e:
        logger.error("Unexpected error: %s", e, exc_info=args.debug)
        exit_code = EXIT_ERROR
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
