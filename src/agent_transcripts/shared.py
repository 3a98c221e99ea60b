"""Helpers shared by the transcript adapters: text, stats, timestamps, paths."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union
import secrets
import time

from .models import AgentType, TimestampPolicy, TranscriptStats, UnifiedEntry
from .schema_logger import SchemaLogger


# Longest display name derived from message text or a summary record
NAME_MAX_LENGTH = 60

# (content-block type, key holding that block's text)
TextBlockRule = tuple[str, str]


@dataclass
class StatsAccumulator:
    """Running totals threaded through a summarizer pass."""
    tokens: dict[str, int] = field(default_factory=lambda: {
        'input': 0, 'output': 0, 'cached': 0, 'total': 0,
    })
    entry_types: dict[str, int] = field(default_factory=dict)
    tools: dict[str, int] = field(default_factory=dict)
    models: dict[str, int] = field(default_factory=dict)


def accumulate_entry_stats(acc: StatsAccumulator, entry: UnifiedEntry, include_tokens: bool = True) -> None:
    """
    Fold one entry into the accumulator.

    With include_tokens=False the entry is still counted by type, tool and
    model, but its token usage is not added.
    """
    if include_tokens and entry.tokens is not None:
        acc.tokens['input'] += entry.tokens.input or 0
        acc.tokens['output'] += entry.tokens.output or 0
        acc.tokens['cached'] += entry.tokens.cached or 0
        acc.tokens['total'] += entry.tokens.total or 0

    acc.entry_types[entry.type] = acc.entry_types.get(entry.type, 0) + 1
    if entry.tool_name:
        acc.tools[entry.tool_name] = acc.tools.get(entry.tool_name, 0) + 1
    if entry.model:
        acc.models[entry.model] = acc.models.get(entry.model, 0) + 1


def finalize_stats(
    acc: StatsAccumulator,
    start_time: Optional[datetime],
    end_time: Optional[datetime],
) -> TranscriptStats:
    duration_ms = None
    if start_time is not None and end_time is not None:
        duration_ms = int((end_time - start_time).total_seconds() * 1000)

    return TranscriptStats(
        tokens=dict(acc.tokens),
        entry_types=dict(acc.entry_types),
        tools=dict(acc.tools),
        models=dict(acc.models),
        duration_ms=duration_ms,
    )


def extract_text_content(content: Any, rules: list[TextBlockRule]) -> str:
    """
    Extract display text from a content field.

    A plain string is returned as-is. For a list of blocks, each dict block
    whose 'type' matches a rule contributes the string under that rule's key;
    contributions are joined with a blank line, in array order.
    """
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ''

    keys = dict(rules)
    texts = []
    for block in content:
        if not isinstance(block, dict):
            continue
        key = keys.get(block.get('type'))
        if key is None:
            continue
        value = block.get(key)
        if isinstance(value, str) and value:
            texts.append(value)
    return '\n\n'.join(texts)


def has_block_type(content: Any, block_type: str) -> bool:
    """Check if a content array contains a block of the given type."""
    if not isinstance(content, list):
        return False
    return any(isinstance(b, dict) and b.get('type') == block_type for b in content)


def find_block(content: Any, block_type: str) -> Optional[dict]:
    """Return the first block of the given type in a content array."""
    if not isinstance(content, list):
        return None
    for block in content:
        if isinstance(block, dict) and block.get('type') == block_type:
            return block
    return None


# =============================================================================
# Timestamps
# =============================================================================

def _to_iso(dt: datetime) -> str:
    return dt.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def now_iso() -> str:
    return _to_iso(datetime.now(timezone.utc))


def epoch_seconds_to_iso(seconds: Union[int, float]) -> str:
    """Convert Unix seconds to an ISO 8601 UTC string with millisecond precision."""
    return _to_iso(datetime.fromtimestamp(seconds, tz=timezone.utc))


def file_mtime(file_stat) -> datetime:
    return datetime.fromtimestamp(file_stat.st_mtime, tz=timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a record timestamp into an aware datetime.

    Handles ISO 8601 strings (with or without a Z suffix) and numeric Unix
    seconds. Naive values are taken as UTC. Returns None if unparseable.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def resolve_missing_timestamp(
    policy: TimestampPolicy,
    agent: AgentType,
    transcript_path: str,
    index: Optional[int],
    raw_entry: Any,
    schema_logger: Optional[SchemaLogger] = None,
) -> Optional[str]:
    """
    Apply a format's missing-timestamp policy.

    Logs missing_required_field either way. Returns the current time for the
    "default" policy and None for "drop", in which case the caller discards
    the record.
    """
    if schema_logger is not None:
        schema_logger.log(
            agent=agent,
            transcript_path=transcript_path,
            entry_index=index,
            issue_type='missing_required_field',
            description='Entry missing timestamp',
            raw_entry=raw_entry,
        )
    if policy == 'drop':
        return None
    return now_iso()


class TimeRange:
    """Running min/max over observed timestamps."""

    def __init__(self, start: Optional[datetime] = None, end: Optional[datetime] = None):
        self.start = start
        self.end = end

    def observe(self, moment: Optional[datetime]) -> None:
        if moment is None:
            return
        if self.start is None or moment < self.start:
            self.start = moment
        if self.end is None or moment > self.end:
            self.end = moment


# =============================================================================
# Paths and ids
# =============================================================================

def expand_home(path: Union[str, Path], home: Optional[Union[str, Path]] = None) -> str:
    """
    Expand a leading ~ using an explicitly supplied home directory.

    The path is returned unchanged when no home is given.
    """
    path = str(path)
    if home is not None and (path == '~' or path.startswith('~/') or path.startswith('~\\')):
        return f"{str(home).rstrip('/')}{path[1:]}"
    return path


def normalize_path_separators(value: str) -> str:
    """Convert Windows backslashes to forward slashes for matching."""
    return value.replace('\\', '/')


def create_id(prefix: str) -> str:
    """Generate a unique id: prefix, hex millisecond time, random suffix."""
    return f"{prefix}_{int(time.time() * 1000):x}_{secrets.token_hex(3)}"


def truncate_name(text: str) -> str:
    return text[:NAME_MAX_LENGTH]
