"""Data models for agent-transcripts."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional


AgentType = Literal["claude", "codex", "gemini", "custom"]

EntryType = Literal[
    "user",
    "assistant",
    "tool_call",
    "tool_result",
    "system",
    "summary",
    "thinking",
    "unknown",
]

IssueType = Literal[
    "unknown_entry_type",
    "missing_required_field",
    "invalid_timestamp",
    "malformed_content",
    "unexpected_structure",
    "parse_error",
]

# "default" substitutes the current time, "drop" discards the record
TimestampPolicy = Literal["default", "drop"]


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat().replace('+00:00', 'Z')


@dataclass
class TokenUsage:
    """Token accounting for one entry. Absent counts stay None, not 0."""
    input: Optional[int] = None
    output: Optional[int] = None
    cached: Optional[int] = None
    total: Optional[int] = None

    def to_dict(self) -> dict:
        return {k: v for k, v in (
            ('input', self.input),
            ('output', self.output),
            ('cached', self.cached),
            ('total', self.total),
        ) if v is not None}


@dataclass
class UnifiedEntry:
    """One normalized record of a transcript."""
    id: str
    timestamp: str
    type: EntryType
    agent: AgentType
    text: Optional[str] = None
    content: Any = None
    tool_name: Optional[str] = None
    tool_input: Any = None
    tool_call_id: Optional[str] = None
    model: Optional[str] = None
    tokens: Optional[TokenUsage] = None
    parent_id: Optional[str] = None
    session_id: Optional[str] = None
    is_sidechain: Optional[bool] = None
    subagent_id: Optional[str] = None
    raw: Any = None

    def to_dict(self) -> dict:
        """Serialize using the camelCase wire names, dropping absent fields."""
        data = {
            'id': self.id,
            'timestamp': self.timestamp,
            'type': self.type,
            'agent': self.agent,
        }
        optional = (
            ('text', self.text),
            ('content', self.content),
            ('toolName', self.tool_name),
            ('toolInput', self.tool_input),
            ('toolCallId', self.tool_call_id),
            ('model', self.model),
            ('tokens', self.tokens.to_dict() if self.tokens else None),
            ('parentId', self.parent_id),
            ('sessionId', self.session_id),
            ('isSidechain', self.is_sidechain),
            ('subagentId', self.subagent_id),
            ('_raw', self.raw),
        )
        for key, value in optional:
            if value is not None:
                data[key] = value
        return data


@dataclass
class TranscriptStats:
    """Aggregate statistics over all classified entries of a transcript."""
    tokens: dict[str, int] = field(default_factory=lambda: {
        'input': 0, 'output': 0, 'cached': 0, 'total': 0,
    })
    entry_types: dict[str, int] = field(default_factory=dict)
    tools: dict[str, int] = field(default_factory=dict)
    models: dict[str, int] = field(default_factory=dict)
    duration_ms: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            'tokens': dict(self.tokens),
            'entryTypes': dict(self.entry_types),
            'tools': dict(self.tools),
            'models': dict(self.models),
            'durationMs': self.duration_ms,
        }


@dataclass
class UnifiedTranscript:
    """Metadata for one transcript file."""
    id: str
    agent: AgentType
    path: str
    name: str
    project_dir: Optional[str]
    modified_at: datetime
    size_bytes: int
    entry_count: int
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    is_subagent: bool = False
    parent_transcript_id: Optional[str] = None
    subagents: Optional[list["UnifiedTranscript"]] = None
    stats: Optional[TranscriptStats] = None

    def to_dict(self) -> dict:
        data = {
            'id': self.id,
            'agent': self.agent,
            'path': self.path,
            'name': self.name,
            'projectDir': self.project_dir,
            'modifiedAt': _isoformat(self.modified_at),
            'sizeBytes': self.size_bytes,
            'entryCount': self.entry_count,
            'startTime': _isoformat(self.start_time),
            'endTime': _isoformat(self.end_time),
            'isSubagent': self.is_subagent,
        }
        if self.parent_transcript_id is not None:
            data['parentTranscriptId'] = self.parent_transcript_id
        if self.subagents:
            data['subagents'] = [s.to_dict() for s in self.subagents]
        if self.stats is not None:
            data['stats'] = self.stats.to_dict()
        return data


@dataclass
class SchemaIssue:
    """A non-fatal anomaly found while parsing a transcript."""
    id: str
    timestamp: str
    agent: AgentType
    transcript_path: str
    issue_type: IssueType
    description: str
    entry_index: Optional[int] = None
    raw_entry: Any = None

    def to_dict(self) -> dict:
        data = {
            'id': self.id,
            'timestamp': self.timestamp,
            'agent': self.agent,
            'transcriptPath': self.transcript_path,
            'issueType': self.issue_type,
            'description': self.description,
        }
        if self.entry_index is not None:
            data['entryIndex'] = self.entry_index
        if self.raw_entry is not None:
            data['rawEntry'] = self.raw_entry
        return data


@dataclass
class AgentInfo:
    """Static description of a supported transcript format."""
    id: AgentType
    name: str
    format: Literal["jsonl", "json"]
    default_path: str
    supports_subagents: bool


@dataclass
class ThinkingBlock:
    """A thinking content block pulled out of a Claude entry."""
    id: str
    entry_id: str
    transcript_id: str
    type: Literal["thinking", "reasoning", "thought"]
    text: Optional[str] = None
    sequence_index: Optional[int] = None
    timestamp: Optional[str] = None


@dataclass
class ToolCallRecord:
    """A tool invocation, linked to its result entry once one is seen."""
    id: str
    entry_id: str
    transcript_id: str
    name: str
    timestamp: str
    input: Any = None
    status: Literal["pending", "success", "error", "unknown"] = "unknown"
    result_entry_id: Optional[str] = None


@dataclass
class FullParseResult:
    """Everything extracted from one full pass over a transcript."""
    transcript_id: str
    entries: list[UnifiedEntry] = field(default_factory=list)
    thinking_blocks: list[ThinkingBlock] = field(default_factory=list)
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    schema_issues: list[SchemaIssue] = field(default_factory=list)
    stats: dict = field(default_factory=lambda: {
        'total_entries': 0,
        'parsed_entries': 0,
        'skipped_entries': 0,
        'thinking_block_count': 0,
        'tool_call_count': 0,
        'by_type': {},
    })
