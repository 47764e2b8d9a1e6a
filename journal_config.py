"""Configuration validation for commit-story."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFIG_RELATIVE_PATH = Path(".commit-story") / "config.json"


@dataclass
class Result(Generic[T]):
    """Type-safe result wrapper for operations that can fail."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, data: T) -> Result[T]:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, code: str = "UNKNOWN") -> Result[T]:
        return cls(success=False, error=error, error_code=code)


class BudgetConfig(BaseModel):
    """Token budget ceilings for the assembled context."""

    total_budget: int = Field(default=150_000, ge=1)
    # Smallest budget that still fits the truncation notice
    diff_budget: int = Field(default=50_000, ge=30)
    chat_budget: int = Field(default=80_000, ge=1)


class RedactionConfig(BaseModel):
    """Secret redaction settings."""

    redact_emails: bool = Field(default=False)
    placeholder: str = Field(default="[REDACTED]", min_length=1)


class CollectorConfig(BaseModel):
    """Claude Code transcript collection settings."""

    projects_dir: Optional[str] = Field(
        default=None,
        description="Claude projects directory (defaults to ~/.claude/projects)",
    )
    fallback_window_hours: int = Field(
        default=24, ge=1, le=24 * 30,
        description="Window length used when the commit has no predecessor",
    )
    skip_record_types: list[str] = Field(
        default_factory=lambda: [
            "file-history-snapshot",
            "progress",
            "queue-operation",
            "system",
        ]
    )
    capture_tool_names: list[str] = Field(
        default_factory=lambda: ["journal_capture_context"],
        description="Tool calls kept as dialogue instead of being filtered as noise",
    )

    def resolved_projects_dir(self) -> Path:
        if self.projects_dir:
            return Path(self.projects_dir).expanduser()
        return Path.home() / ".claude" / "projects"


class GenerationConfig(BaseModel):
    """Anthropic generation settings."""

    model: str = Field(default="claude-3-5-haiku-latest")
    max_tokens: int = Field(default=2048, ge=64, le=32_000)
    temperature: float = Field(default=0.0, ge=0.0, le=1.0)
    timeout_seconds: int = Field(default=120, ge=10, le=900)
    max_retries: int = Field(default=2, ge=0, le=10)


class JournalSettings(BaseModel):
    """Where journal files are written."""

    journal_dir: str = Field(default="journal")


class StoryConfig(BaseModel):
    """Root configuration model for .commit-story/config.json."""

    repo_path: Optional[str] = Field(
        default=None,
        description="Repository path (defaults to the current working directory)",
    )
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    redaction: RedactionConfig = Field(default_factory=RedactionConfig)
    collector: CollectorConfig = Field(default_factory=CollectorConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    journal: JournalSettings = Field(default_factory=JournalSettings)

    def resolved_repo_path(self) -> Path:
        return Path(self.repo_path or os.getcwd()).resolve()


def apply_env_overrides(config: StoryConfig) -> StoryConfig:
    """Apply ANTHROPIC_MODEL / JOURNAL_DIR environment overrides."""
    model = os.environ.get("ANTHROPIC_MODEL")
    if model:
        config.generation.model = model
    journal_dir = os.environ.get("JOURNAL_DIR")
    if journal_dir:
        config.journal.journal_dir = journal_dir
    return config


def load_config(config_path: str | Path) -> Result[StoryConfig]:
    """Load and validate commit-story config from JSON file."""
    path = Path(config_path)
    if not path.exists():
        logger.debug("Config not found at %s, using defaults", path)
        return Result.ok(apply_env_overrides(StoryConfig()))

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        config = StoryConfig.model_validate(raw)
        return Result.ok(apply_env_overrides(config))
    except json.JSONDecodeError as e:
        return Result.fail(f"Invalid JSON in {path}: {e}", "JSON_ERROR")
    except Exception as e:
        return Result.fail(f"Config validation failed: {e}", "VALIDATION_ERROR")
