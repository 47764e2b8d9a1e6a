"""commit-story MCP server.

Exposes journal capture tools to Claude Code over stdio so reflections and
context can be recorded mid-session.

Setup:
    claude mcp add --transport stdio commit-story -- commit-story-mcp

Tools write relative to the server's working directory, which Claude Code
sets to the project root.
"""

from __future__ import annotations

import logging
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from commit_story import setup_logging
from journal_config import CONFIG_RELATIVE_PATH, StoryConfig, load_config
from journal_manager import save_context_capture, save_reflection

logger = logging.getLogger(__name__)

REFLECTION_TOOL = "journal_add_reflection"
CONTEXT_CAPTURE_TOOL = "journal_capture_context"

server = FastMCP("commit-story")


def _load_project_config(project_path: Path) -> StoryConfig:
    result = load_config(project_path / CONFIG_RELATIVE_PATH)
    if not result.success:
        raise ValueError(result.error)
    return result.data


def _project_path() -> Path:
    return Path.cwd().resolve()


@server.tool(
    name=REFLECTION_TOOL,
    description="Capture a timestamped reflection or insight during development",
)
def journal_add_reflection(text: str) -> str:
    """Append text to today's reflections file."""
    project_path = _project_path()
    try:
        config = _load_project_config(project_path)
        path = save_reflection(text, base_path=project_path, journal_dir=config.journal.journal_dir)
    except (OSError, ValueError) as e:
        logger.error("Reflection not saved: %s", e)
        return f"Error saving reflection: {e}"
    logger.info("Reflection saved to %s", path)
    return f"Reflection saved to {path}"


@server.tool(
    name=CONTEXT_CAPTURE_TOOL,
    description=(
        "Capture development context. If the user requests specific context "
        "(e.g., 'capture why we chose X'), provide that specific content. Otherwise, "
        "provide a comprehensive context capture of your current understanding of "
        "this project, recent development insights, and key context that would help "
        "a fresh AI understand where we are and how we got here."
    ),
)
def journal_capture_context(text: str) -> str:
    """Append text to today's context file."""
    project_path = _project_path()
    try:
        config = _load_project_config(project_path)
        path = save_context_capture(text, base_path=project_path, journal_dir=config.journal.journal_dir)
    except (OSError, ValueError) as e:
        logger.error("Context not saved: %s", e)
        return f"Error saving context: {e}"
    logger.info("Context saved to %s", path)
    return f"Context saved to {path}"


def main() -> None:
    """Run the MCP server on stdio."""
    setup_logging()
    logger.info("commit-story MCP server running on stdio")
    server.run()


if __name__ == "__main__":
    main()
