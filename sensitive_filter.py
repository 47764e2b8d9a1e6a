"""Sensitive data redaction: scrubs API keys, tokens and secrets.

Applied to the commit diff, the commit message and every dialogue message
before anything reaches the generation stage, and installed as a logging
filter so the tool's own log output is scrubbed the same way.
Pattern matching is best effort, not a security boundary.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Sequence

from context_models import ContextBundle, RedactionReport
from journal_config import RedactionConfig
from message_filter import DialogueMessage, group_messages_by_session

logger = logging.getLogger(__name__)

DEFAULT_PLACEHOLDER = "[REDACTED]"

# (name, regex template, flags). "{guard}" follows the keyword of key=value
# shapes; it rejects a keyword whose value is already the placeholder so
# redacted text is never matched again. Order matters: specific key=value
# shapes must consume their text before the broad generic-secret pattern.
_PATTERN_SPECS: tuple[tuple[str, str, int], ...] = (
    (
        "API Key",
        r"""(?:api[_-]?key|apikey|api_secret){guard}['":\s=]*['"]?[a-zA-Z0-9_-]{{20,}}['"]?""",
        re.IGNORECASE,
    ),
    ("AWS Access Key", r"AKIA[0-9A-Z]{{16}}", 0),
    (
        "AWS Secret Key",
        r"""(?:aws_secret|secret_access_key){guard}['":\s=]*['"]?[A-Za-z0-9/+=]{{40}}['"]?""",
        re.IGNORECASE,
    ),
    ("JWT Token", r"eyJ[a-zA-Z0-9_-]*\.eyJ[a-zA-Z0-9_-]*\.[a-zA-Z0-9_-]*", 0),
    (
        "Generic Secret",
        r"""(?:password|passwd|secret|token|credential){guard}['":\s=]*['"]?[^\s'"]{{8,64}}['"]?""",
        re.IGNORECASE,
    ),
    (
        "Private Key",
        r"-----BEGIN (?:RSA |EC |OPENSSH |PGP |DSA )?PRIVATE KEY-----[\s\S]*?"
        r"-----END (?:RSA |EC |OPENSSH |PGP |DSA )?PRIVATE KEY-----",
        0,
    ),
    ("GitHub Token", r"gh[pousr]_[A-Za-z0-9_]{{36,}}", 0),
    ("GitHub PAT", r"github_pat_[A-Za-z0-9_]{{22,}}", 0),
    ("Anthropic API Key", r"sk-ant-[a-zA-Z0-9_-]{{20,}}", 0),
    ("OpenAI API Key", r"sk-[a-zA-Z0-9]{{48,}}", 0),
    ("Datadog API Key", r"dd[a-z]*_[a-zA-Z0-9]{{32,}}", 0),
    ("Slack Token", r"xox[baprs]-[0-9]+-[0-9]+-[a-zA-Z0-9]+", 0),
    ("Bearer Token", r"(?:Bearer|bearer){guard}\s+[a-zA-Z0-9_-]{{20,}}", 0),
)

_EMAIL_SPEC = ("Email Address", r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{{2,}}", 0)


@dataclass(frozen=True)
class RedactionPattern:
    name: str
    regex: re.Pattern


@dataclass(frozen=True)
class RedactionRecord:
    """One redacted match. The matched value is deliberately not kept."""

    category: str
    match_length: int


@dataclass(frozen=True)
class RedactionResult:
    text: str
    redactions: tuple[RedactionRecord, ...] = ()

    @property
    def redaction_count(self) -> int:
        return len(self.redactions)

    def by_type(self) -> dict[str, int]:
        return dict(Counter(r.category for r in self.redactions))


@dataclass(frozen=True)
class MessageRedaction:
    messages: tuple[DialogueMessage, ...]
    total_redactions: int
    redactions_by_type: dict[str, int]


@lru_cache(maxsize=16)
def build_patterns(
    redact_emails: bool = False, placeholder: str = DEFAULT_PLACEHOLDER
) -> tuple[RedactionPattern, ...]:
    """Compile the ordered pattern list for a placeholder."""
    guard = rf"""(?!['":\s=]*['"]?{re.escape(placeholder)})"""
    specs = list(_PATTERN_SPECS)
    if redact_emails:
        specs.append(_EMAIL_SPEC)
    return tuple(
        RedactionPattern(name=name, regex=re.compile(template.format(guard=guard), flags))
        for name, template, flags in specs
    )


def redact_sensitive_data(
    text: str, redact_emails: bool = False, placeholder: str = DEFAULT_PLACEHOLDER
) -> RedactionResult:
    """Replace every sensitive match with the placeholder, category by category."""
    if not text:
        return RedactionResult(text="")

    redactions: list[RedactionRecord] = []
    for pattern in build_patterns(redact_emails, placeholder):
        matches = [m.group(0) for m in pattern.regex.finditer(text)]
        if not matches:
            continue
        redactions.extend(RedactionRecord(pattern.name, len(m)) for m in matches)
        text = pattern.regex.sub(placeholder, text)

    return RedactionResult(text=text, redactions=tuple(redactions))


def redact_string(text: str, patterns: Sequence[RedactionPattern]) -> str:
    """Replace all matches of the given patterns with [REDACTED]."""
    for pattern in patterns:
        text = pattern.regex.sub(DEFAULT_PLACEHOLDER, text)
    return text


def redact_messages(
    messages: Sequence[DialogueMessage],
    redact_emails: bool = False,
    placeholder: str = DEFAULT_PLACEHOLDER,
) -> MessageRedaction:
    """Redact each message's content, tallying categories across all of them."""
    redacted: list[DialogueMessage] = []
    by_type: Counter[str] = Counter()
    total = 0
    for message in messages:
        result = redact_sensitive_data(message.content, redact_emails, placeholder)
        redacted.append(replace(message, content=result.text))
        total += result.redaction_count
        by_type.update(r.category for r in result.redactions)

    return MessageRedaction(
        messages=tuple(redacted),
        total_redactions=total,
        redactions_by_type=dict(by_type),
    )


def apply_sensitive_filter(bundle: ContextBundle, config: RedactionConfig) -> ContextBundle:
    """Return a new bundle with diff, commit message and dialogue redacted."""
    opts = (config.redact_emails, config.placeholder)
    diff_result = redact_sensitive_data(bundle.commit.diff, *opts)
    message_result = redact_sensitive_data(bundle.commit.message, *opts)
    chat_result = redact_messages(bundle.chat.messages, *opts)

    diff_by_type = diff_result.by_type()
    message_by_type = message_result.by_type()
    combined = Counter(diff_by_type) + Counter(message_by_type) + Counter(chat_result.redactions_by_type)
    report = RedactionReport(
        diff_redactions=diff_result.redaction_count,
        message_redactions=message_result.redaction_count,
        chat_redactions=chat_result.total_redactions,
        redactions_by_type=dict(combined),
        diff_by_type=diff_by_type,
        message_by_type=message_by_type,
        chat_by_type=chat_result.redactions_by_type,
    )
    if report.total_redactions:
        logger.info("Redacted %d sensitive values (%s)", report.total_redactions, report.redactions_by_type)

    return replace(
        bundle,
        commit=replace(bundle.commit, diff=diff_result.text, message=message_result.text),
        chat=replace(
            bundle.chat,
            messages=chat_result.messages,
            sessions=tuple(group_messages_by_session(chat_result.messages)),
        ),
        metadata=replace(bundle.metadata, redaction=report),
    )


class RedactingFilter(logging.Filter):
    """Logging filter that redacts sensitive patterns from log records."""

    def __init__(self, patterns: Sequence[RedactionPattern] | None = None, name: str = "") -> None:
        super().__init__(name)
        self._patterns = list(build_patterns() if patterns is None else patterns)

    def filter(self, record: logging.LogRecord) -> bool:
        if self._patterns:
            record.msg = redact_string(str(record.msg), self._patterns)
            if record.args:
                record.args = tuple(
                    redact_string(a, self._patterns) if isinstance(a, str) else a
                    for a in record.args
                )
        return True
