"""Journal files: entries, reflections and context captures.

Layout under the repository: journal/{entries,reflections,context}/YYYY-MM/YYYY-MM-DD.md,
dated by local time. Entries are appended, never rewritten.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time as dtime
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence

from git_collector import CommitData

if TYPE_CHECKING:
    from journal_generator import JournalSections

logger = logging.getLogger(__name__)

JOURNAL_ROOT = "journal"
SEPARATOR = "═══════════════════════════════════════"

REFLECTION_HEADER_PATTERN = re.compile(
    r"^## (\d{1,2}):(\d{2}):(\d{2}) ([AP]M)(?: \S+)? - (.+?)$", re.MULTILINE
)
FILENAME_DATE_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})\.md$")


@dataclass(frozen=True)
class Reflection:
    timestamp: datetime
    title: str
    content: str
    file_path: Optional[Path] = None


def _local(moment: datetime) -> datetime:
    return moment.astimezone() if moment.tzinfo else moment


def get_year_month(moment: datetime | date) -> str:
    if isinstance(moment, datetime):
        moment = _local(moment)
    return f"{moment.year:04d}-{moment.month:02d}"


def get_date_string(moment: datetime | date) -> str:
    if isinstance(moment, datetime):
        moment = _local(moment)
    return f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"


def _dated_path(kind: str, moment: datetime, base_path: str | Path, journal_dir: str) -> Path:
    return Path(base_path) / journal_dir / kind / get_year_month(moment) / f"{get_date_string(moment)}.md"


def get_journal_entry_path(moment: datetime, base_path: str | Path = ".", journal_dir: str = JOURNAL_ROOT) -> Path:
    return _dated_path("entries", moment, base_path, journal_dir)


def get_reflection_path(moment: datetime, base_path: str | Path = ".", journal_dir: str = JOURNAL_ROOT) -> Path:
    return _dated_path("reflections", moment, base_path, journal_dir)


def get_context_path(moment: datetime, base_path: str | Path = ".", journal_dir: str = JOURNAL_ROOT) -> Path:
    return _dated_path("context", moment, base_path, journal_dir)


def parse_date_from_filename(filename: str) -> Optional[date]:
    match = FILENAME_DATE_PATTERN.match(filename)
    if not match:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def format_timestamp(moment: datetime) -> str:
    """Local wall-clock time like '10:15:32 AM CDT'."""
    local = _local(moment)
    suffix = "AM" if local.hour < 12 else "PM"
    text = f"{local.hour % 12 or 12}:{local:%M:%S} {suffix}"
    zone = local.tzname()
    if zone and " " not in zone:
        text += f" {zone}"
    return text


def _append(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(text)
    return path


def format_reflections_section(reflections: Sequence[Reflection]) -> str:
    if not reflections:
        return ""
    lines = ["### Developer Reflections", ""]
    for reflection in reflections:
        lines.append(f'> {format_timestamp(reflection.timestamp)} - "{reflection.content}"')
        lines.append("")
    return "\n".join(lines)


def format_journal_entry(
    sections: JournalSections,
    commit: CommitData,
    reflections: Sequence[Reflection] = (),
) -> str:
    """Markdown for one commit's journal entry."""
    lines = [
        f"## {format_timestamp(commit.timestamp)} - Commit: {commit.short_hash}",
        "",
        "### Summary",
        sections.summary or "[No summary generated]",
        "",
        "### Development Dialogue",
        sections.dialogue or "[No dialogue extracted]",
        "",
        "### Technical Decisions",
        sections.technical_decisions or "[No decisions identified]",
        "",
    ]
    reflections_section = format_reflections_section(reflections)
    if reflections_section:
        lines.append(reflections_section)

    lines.extend([
        "### Commit Details",
        f"- **Hash**: {commit.hash}",
        f"- **Author**: {commit.author}",
    ])
    if commit.is_merge:
        lines.append(f"- **Parents**: {commit.parent_count}")
    lines.extend(["", SEPARATOR])
    return "\n".join(lines)


def save_journal_entry(
    sections: JournalSections,
    commit: CommitData,
    reflections: Sequence[Reflection] = (),
    base_path: str | Path = ".",
    journal_dir: str = JOURNAL_ROOT,
) -> Path:
    """Append an entry to the day's journal file and return its path."""
    path = get_journal_entry_path(commit.timestamp, base_path, journal_dir)
    _append(path, format_journal_entry(sections, commit, reflections) + "\n\n")
    logger.info("Journal entry for %s appended to %s", commit.short_hash, path)
    return path


def _format_capture(text: str, title: str, moment: datetime) -> str:
    return f"## {format_timestamp(moment)} - {title}\n\n{text.strip()}\n\n{SEPARATOR}\n\n"


def save_reflection(
    text: str,
    base_path: str | Path = ".",
    journal_dir: str = JOURNAL_ROOT,
    now: Optional[datetime] = None,
) -> Path:
    """Record a timestamped developer reflection."""
    moment = _local(now or datetime.now().astimezone())
    return _append(
        get_reflection_path(moment, base_path, journal_dir),
        _format_capture(text, "Manual Reflection", moment),
    )


def save_context_capture(
    text: str,
    base_path: str | Path = ".",
    journal_dir: str = JOURNAL_ROOT,
    now: Optional[datetime] = None,
) -> Path:
    """Record captured working context for later sessions."""
    moment = _local(now or datetime.now().astimezone())
    return _append(
        get_context_path(moment, base_path, journal_dir),
        _format_capture(text, "Context Capture", moment),
    )


def parse_reflection_entry(content: str, base_date: date) -> Optional[Reflection]:
    match = REFLECTION_HEADER_PATTERN.search(content)
    if not match:
        return None
    hour, minute, second, ampm, title = match.groups()
    hour_24 = int(hour) % 12 + (12 if ampm == "PM" else 0)
    try:
        moment = datetime.combine(base_date, dtime(hour_24, int(minute), int(second))).astimezone()
    except ValueError:
        return None
    return Reflection(timestamp=moment, title=title.strip(), content=content[match.end():].strip())


def parse_reflections_file(content: str, base_date: date) -> list[Reflection]:
    reflections = []
    for part in content.split(SEPARATOR):
        if not part.strip():
            continue
        reflection = parse_reflection_entry(part.strip(), base_date)
        if reflection:
            reflections.append(reflection)
    return reflections


def get_year_month_range(start: datetime, end: datetime) -> list[str]:
    start, end = _local(start), _local(end)
    year, month = start.year, start.month
    months = []
    while (year, month) <= (end.year, end.month):
        months.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            month, year = 1, year + 1
    return months


def discover_reflections(
    start: datetime,
    end: datetime,
    base_path: str | Path = ".",
    journal_dir: str = JOURNAL_ROOT,
) -> list[Reflection]:
    """Reflections written between two moments, chronological."""
    found: list[Reflection] = []
    local_start, local_end = _local(start), _local(end)
    for year_month in get_year_month_range(start, end):
        directory = Path(base_path) / journal_dir / "reflections" / year_month
        if not directory.is_dir():
            continue

        for file_path in sorted(directory.glob("*.md")):
            file_date = parse_date_from_filename(file_path.name)
            if file_date is None:
                continue
            if file_date < local_start.date() or file_date > local_end.date():
                continue
            try:
                content = file_path.read_text(encoding="utf-8")
            except OSError as e:
                logger.warning("Could not read reflections %s: %s", file_path, e)
                continue
            for reflection in parse_reflections_file(content, file_date):
                if start <= reflection.timestamp <= end:
                    found.append(Reflection(
                        timestamp=reflection.timestamp,
                        title=reflection.title,
                        content=reflection.content,
                        file_path=file_path,
                    ))

    found.sort(key=lambda r: r.timestamp)
    return found
