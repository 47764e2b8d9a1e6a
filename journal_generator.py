"""Journal section generation via the Anthropic Messages API.

Summary and technical decisions are generated in parallel; the dialogue
section runs afterwards so it can avoid repeating the summary. A failing
section degrades to a placeholder and its error is collected.
"""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import anthropic

from context_assembler import format_chat_messages
from context_models import ContextBundle
from journal_config import GenerationConfig

logger = logging.getLogger(__name__)

RETRY_DELAY_SECONDS = 2.0

SUMMARY_PROMPT = """You have been given development context for a git commit.

Step 1: Analyze the git diff to understand what changed
Step 2: Review the chat messages for WHY these changes were made
Step 3: Identify the key narrative arc (problem -> solution)
Step 4: Write a 2-3 sentence summary focusing on the "why"

## Commit Information
**Hash**: {short_hash}
**Author**: {author}
**Message**: {message}

## Code Changes
```diff
{diff}
```

## Development Conversation
{chat}

Write your summary (2-3 sentences, focus on the "why"):"""

TECHNICAL_PROMPT = """You have been given development context including code changes and discussion.

Step 1: Identify decisions about architecture, libraries, or approaches
Step 2: Note whether each was made, discussed, or deferred
Step 3: Include brief rationale when available
Step 4: Format as bullet points with decision status

## Commit Information
**Hash**: {short_hash}
**Message**: {message}

## Code Changes
```diff
{diff}
```

## Development Conversation
{chat}

Extract technical decisions (bullet points with status - Made/Discussed/Deferred):"""

DIALOGUE_PROMPT = """You have been given chat messages from a development session.

The summary of this work is: {summary}

Step 1: Identify messages where the human explains their thinking
Step 2: Select 2-4 quotes that reveal intent, decisions, or insights
Step 3: Ensure quotes don't repeat what's in the summary
Step 4: Format as "Human:" followed by the quote

## Development Conversation
{chat}

Extract the dialogue (2-4 quotes, format as "Human: [quote]"):"""


@dataclass
class JournalSections:
    summary: str = ""
    dialogue: str = ""
    technical_decisions: str = ""
    errors: list[str] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def create_client(api_key: Optional[str] = None) -> anthropic.Anthropic:
    """Build the Anthropic client once, at the entry point."""
    key = api_key or os.environ.get("ANTHROPIC_API_KEY")
    if not key:
        raise ValueError("ANTHROPIC_API_KEY environment variable is required")
    return anthropic.Anthropic(api_key=key)


class JournalGenerator:
    """Turns a context bundle into summary, dialogue and technical sections."""

    def __init__(self, client: Any, config: Optional[GenerationConfig] = None) -> None:
        self.client = client
        self.config = config or GenerationConfig()

    def _complete(self, prompt: str) -> str:
        last_error: Optional[Exception] = None
        for attempt in range(1 + self.config.max_retries):
            try:
                response = self.client.messages.create(
                    model=self.config.model,
                    max_tokens=self.config.max_tokens,
                    temperature=self.config.temperature,
                    messages=[{"role": "user", "content": prompt}],
                    timeout=self.config.timeout_seconds,
                )
                text = "".join(
                    block.text for block in response.content if getattr(block, "type", "") == "text"
                )
                return text.strip()
            except Exception as e:
                last_error = e
                if attempt < self.config.max_retries:
                    logger.warning("Generation attempt %d failed: %s", attempt + 1, e)
                    time.sleep(RETRY_DELAY_SECONDS)
        raise RuntimeError(str(last_error)) from last_error

    def _prompt_fields(self, bundle: ContextBundle) -> dict[str, str]:
        commit = bundle.commit
        return {
            "short_hash": commit.short_hash,
            "author": commit.author,
            "message": commit.message,
            "diff": commit.diff or "No diff available",
            "chat": format_chat_messages(bundle.chat.messages),
        }

    def generate_summary(self, bundle: ContextBundle) -> tuple[str, Optional[str]]:
        try:
            return self._complete(SUMMARY_PROMPT.format(**self._prompt_fields(bundle))), None
        except Exception as e:
            return "[Summary generation failed]", f"Summary generation failed: {e}"

    def generate_technical_decisions(self, bundle: ContextBundle) -> tuple[str, Optional[str]]:
        try:
            return self._complete(TECHNICAL_PROMPT.format(**self._prompt_fields(bundle))), None
        except Exception as e:
            return (
                "[Technical decisions extraction failed]",
                f"Technical decisions extraction failed: {e}",
            )

    def generate_dialogue(self, bundle: ContextBundle, summary: str) -> tuple[str, Optional[str]]:
        try:
            prompt = DIALOGUE_PROMPT.format(
                summary=summary, chat=format_chat_messages(bundle.chat.messages)
            )
            return self._complete(prompt), None
        except Exception as e:
            return "[Dialogue extraction failed]", f"Dialogue extraction failed: {e}"

    def generate(self, bundle: ContextBundle) -> JournalSections:
        """Generate all journal sections for a bundle."""
        with ThreadPoolExecutor(max_workers=2) as pool:
            summary_future = pool.submit(self.generate_summary, bundle)
            technical_future = pool.submit(self.generate_technical_decisions, bundle)
            summary, summary_error = summary_future.result()
            technical, technical_error = technical_future.result()

        dialogue, dialogue_error = self.generate_dialogue(bundle, summary)
        errors = [e for e in (summary_error, technical_error, dialogue_error) if e]
        for error in errors:
            logger.warning(error)

        return JournalSections(
            summary=summary,
            dialogue=dialogue,
            technical_decisions=technical,
            errors=errors,
        )
