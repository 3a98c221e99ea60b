"""
Claude Code transcript adapter.

Claude transcripts are JSONL files stored under ~/.claude/projects/{project}/,
where {project} is the working directory with '/' replaced by '-'. Each line
is a flat record whose 'type' is one of:
- user: user messages, and tool results riding inside user messages
- assistant: responses with text, tool_use and thinking blocks
- summary: session title
- system: metadata (turn duration, hook summaries)
- file-history-snapshot: file state snapshots

Subagent transcripts are stored in {session}/subagents/agent-{id}.jsonl.
"""

from pathlib import Path
from typing import Any, Optional, Union
import json

from .models import (
    AgentType,
    EntryType,
    FullParseResult,
    SchemaIssue,
    ThinkingBlock,
    TimestampPolicy,
    TokenUsage,
    ToolCallRecord,
    UnifiedEntry,
    UnifiedTranscript,
)
from .parser import (
    DEFAULT_PAGE_LIMIT,
    check_file_size,
    paginate_jsonl_entries,
    read_jsonl_lines,
)
from .schema_logger import SchemaLogger
from .shared import (
    StatsAccumulator,
    TimeRange,
    accumulate_entry_stats,
    create_id,
    epoch_seconds_to_iso,
    extract_text_content,
    file_mtime,
    finalize_stats,
    find_block,
    has_block_type,
    normalize_path_separators,
    now_iso,
    parse_timestamp,
    resolve_missing_timestamp,
    truncate_name,
)


AGENT: AgentType = 'claude'
MISSING_TIMESTAMP_POLICY: TimestampPolicy = 'default'

TEXT_RULES = [
    ('text', 'text'),
    ('thinking', 'thinking'),
]

# Record types classified without looking at message content
RECORD_TYPES: dict[str, EntryType] = {
    'system': 'system',
    'summary': 'summary',
    'file-history-snapshot': 'system',
}


def _message(obj: dict) -> Optional[dict]:
    message = obj.get('message')
    return message if isinstance(message, dict) else None


def _content(obj: dict) -> Any:
    message = _message(obj)
    if message is not None and message.get('content') is not None:
        return message['content']
    return obj.get('content')


def detect_entry_type(obj: dict) -> EntryType:
    """
    Classify a Claude record.

    User messages carrying a tool_result block become tool_result. Assistant
    messages carrying a tool_use block become tool_call; those made only of
    thinking blocks become thinking.
    """
    record_type = obj.get('type')
    message = _message(obj)
    role = obj.get('role') or (message.get('role') if message else None)

    if isinstance(record_type, str) and record_type in RECORD_TYPES:
        return RECORD_TYPES[record_type]

    if record_type == 'user' or role == 'user':
        if has_block_type(_content(obj), 'tool_result'):
            return 'tool_result'
        return 'user'

    if record_type == 'assistant' or role == 'assistant':
        content = _content(obj)
        if isinstance(content, list):
            if has_block_type(content, 'tool_use'):
                return 'tool_call'
            if all(isinstance(b, dict) and b.get('type') == 'thinking' for b in content):
                return 'thinking'
        return 'assistant'

    return 'unknown'


def extract_tool_info(content: Any) -> dict:
    """Pull name/input/id from a tool_use block, or the id from a tool_result block."""
    tool_use = find_block(content, 'tool_use')
    if tool_use is not None:
        return {
            'tool_name': tool_use.get('name'),
            'tool_input': tool_use.get('input'),
            'tool_call_id': tool_use.get('id'),
        }

    tool_result = find_block(content, 'tool_result')
    if tool_result is not None:
        return {'tool_call_id': tool_result.get('tool_use_id')}

    return {}


def extract_token_usage(message: Optional[dict]) -> Optional[TokenUsage]:
    """
    Read message.usage.

    cached is cache reads plus cache creation; total is input plus output.
    Either is None rather than 0 when there is nothing to report.
    """
    if message is None:
        return None
    usage = message.get('usage')
    if not isinstance(usage, dict):
        return None

    input_tokens = usage.get('input_tokens')
    output_tokens = usage.get('output_tokens')
    cached = (usage.get('cache_read_input_tokens') or 0) + (usage.get('cache_creation_input_tokens') or 0)
    total = (input_tokens or 0) + (output_tokens or 0)

    return TokenUsage(
        input=input_tokens,
        output=output_tokens,
        cached=cached or None,
        total=total or None,
    )


def _record_timestamp(obj: dict) -> Optional[str]:
    """ISO timestamp from 'timestamp', else from 'ts' (Unix seconds or a string)."""
    timestamp = obj.get('timestamp')
    if isinstance(timestamp, str) and timestamp:
        return timestamp

    ts = obj.get('ts')
    if isinstance(ts, (int, float)) and not isinstance(ts, bool):
        return epoch_seconds_to_iso(ts)
    if isinstance(ts, str) and ts:
        return ts
    return None


def parse_claude_entry_object(
    obj: Any,
    index: int,
    transcript_path: str,
    schema_logger: Optional[SchemaLogger] = None,
) -> Optional[UnifiedEntry]:
    """Normalize one decoded Claude record. Never raises; failures return None."""
    try:
        if not isinstance(obj, dict):
            if schema_logger is not None:
                schema_logger.log(
                    agent=AGENT,
                    transcript_path=transcript_path,
                    entry_index=index,
                    issue_type='unexpected_structure',
                    description=f'Expected a JSON object, got {type(obj).__name__}',
                    raw_entry=obj,
                )
            return None

        entry_type = detect_entry_type(obj)
        message = _message(obj)

        timestamp = _record_timestamp(obj)
        if timestamp is None:
            timestamp = resolve_missing_timestamp(
                MISSING_TIMESTAMP_POLICY, AGENT, transcript_path, index, obj, schema_logger
            )
            if timestamp is None:
                return None

        if obj.get('type') == 'summary':
            summary = obj.get('summary')
            text = summary if isinstance(summary, str) else None
            content = None
        else:
            content = _content(obj)
            text = extract_text_content(content, TEXT_RULES)

        model = message.get('model') if message else None
        uuid = obj.get('uuid')

        entry = UnifiedEntry(
            id=str(uuid) if uuid else f'claude-{index}',
            timestamp=timestamp,
            type=entry_type,
            agent=AGENT,
            text=text or None,
            content=content,
            model=model if isinstance(model, str) else None,
            tokens=extract_token_usage(message),
            parent_id=obj.get('parentUuid'),
            session_id=obj.get('sessionId'),
            is_sidechain=obj.get('isSidechain'),
            subagent_id=obj.get('agentId'),
            **extract_tool_info(content),
        )

        if entry_type == 'unknown' and schema_logger is not None:
            schema_logger.log(
                agent=AGENT,
                transcript_path=transcript_path,
                entry_index=index,
                issue_type='unknown_entry_type',
                description=f"Unknown entry type: {obj.get('type')}",
                raw_entry=obj,
            )

        return entry
    except Exception as e:
        if schema_logger is not None:
            schema_logger.log(
                agent=AGENT,
                transcript_path=transcript_path,
                entry_index=index,
                issue_type='parse_error',
                description=f'Failed to parse entry: {e}',
                raw_entry=obj,
            )
        return None


def parse_claude_entry(
    line: str,
    index: int,
    transcript_path: str,
    schema_logger: Optional[SchemaLogger] = None,
) -> Optional[UnifiedEntry]:
    """Decode and normalize one Claude JSONL line."""
    try:
        obj = json.loads(line)
    except ValueError as e:
        if schema_logger is not None:
            schema_logger.log(
                agent=AGENT,
                transcript_path=transcript_path,
                entry_index=index,
                issue_type='parse_error',
                description=f'Failed to parse JSONL line: {e}',
                raw_entry=line,
            )
        return None
    return parse_claude_entry_object(obj, index, transcript_path, schema_logger)


def parse_claude_entries(
    file_path: Union[str, Path],
    offset: int = 0,
    limit: Optional[int] = DEFAULT_PAGE_LIMIT,
    include_raw: bool = False,
    schema_logger: Optional[SchemaLogger] = None,
    max_file_size_bytes: Optional[int] = None,
) -> dict:
    """
    Parse a page of entries from a Claude transcript.

    Returns dict with 'entries' and 'total'. Raises on a missing or
    oversized file.
    """
    return paginate_jsonl_entries(
        file_path,
        parse_claude_entry,
        AGENT,
        offset=offset,
        limit=limit,
        include_raw=include_raw,
        schema_logger=schema_logger,
        max_file_size_bytes=max_file_size_bytes,
    )


# =============================================================================
# Transcript metadata
# =============================================================================

def _subagent_parent_name(path: Path) -> Optional[str]:
    """Session name a subagent transcript belongs to, from its .../{session}/subagents/ path."""
    parts = normalize_path_separators(str(path)).split('/')[:-1]
    if 'subagents' not in parts:
        return None
    position = len(parts) - 1 - parts[::-1].index('subagents')
    if position == 0:
        return None
    return parts[position - 1]


def infer_project_dir(path: Path, is_subagent: bool = False) -> Optional[str]:
    """
    Decode the dash-encoded project directory ("-Users-dev-app" -> "/Users/dev/app").

    Subagent transcripts sit two levels deeper than their session file.
    """
    project = path.parents[2] if is_subagent and len(path.parents) > 2 else path.parent
    if project.name.startswith('-'):
        return project.name.replace('-', '/')
    return None


def _scan_subagents(
    path: Path,
    session_name: str,
    schema_logger: Optional[SchemaLogger],
    max_file_size_bytes: Optional[int],
) -> list[UnifiedTranscript]:
    subagents_dir = path.parent / session_name / 'subagents'
    if not subagents_dir.is_dir():
        return []

    try:
        sub_paths = sorted(subagents_dir.iterdir())
    except OSError as e:
        if schema_logger is not None:
            schema_logger.log(
                agent=AGENT,
                transcript_path=str(subagents_dir),
                issue_type='parse_error',
                description=f'Failed to scan subagents: {e}',
            )
        return []

    subagents = []
    for sub_path in sub_paths:
        if sub_path.suffix != '.jsonl' or not sub_path.is_file():
            continue
        # Children never scan further; nesting stops at one level.
        sub = parse_claude_transcript(
            sub_path,
            schema_logger=schema_logger,
            scan_subagents=False,
            max_file_size_bytes=max_file_size_bytes,
        )
        if sub is not None:
            sub.parent_transcript_id = f'claude:{session_name}'
            subagents.append(sub)
    return subagents


def parse_claude_transcript(
    file_path: Union[str, Path],
    schema_logger: Optional[SchemaLogger] = None,
    scan_subagents: bool = True,
    max_file_size_bytes: Optional[int] = None,
) -> Optional[UnifiedTranscript]:
    """
    Summarize a Claude transcript in one streaming pass.

    The name is the last summary record, else the first user message, else
    the file name. Subagents in the sibling {session}/subagents/ directory
    are attached when scan_subagents is set and this file is not itself a
    subagent.

    Returns None (after logging parse_error) if the file cannot be read.
    """
    path = Path(file_path)
    transcript_path = str(path)

    try:
        file_stat = check_file_size(path, max_file_size_bytes, AGENT)
        session_name = path.stem

        parent_name = _subagent_parent_name(path)
        is_subagent = parent_name is not None

        acc = StatsAccumulator()
        time_range = TimeRange()
        summary_name: Optional[str] = None
        first_user_text: Optional[str] = None

        def handle_line(line: str, index: int) -> None:
            nonlocal summary_name, first_user_text

            try:
                obj = json.loads(line)
            except ValueError as e:
                if schema_logger is not None:
                    schema_logger.log(
                        agent=AGENT,
                        transcript_path=transcript_path,
                        entry_index=index,
                        issue_type='parse_error',
                        description=f'Failed to parse JSONL line: {e}',
                        raw_entry=line,
                    )
                return

            if isinstance(obj, dict):
                if obj.get('type') == 'summary' and obj.get('summary'):
                    summary_name = truncate_name(str(obj['summary']))

                raw_time = obj.get('timestamp') or obj.get('ts')
                if raw_time:
                    moment = parse_timestamp(raw_time)
                    if moment is None and schema_logger is not None:
                        schema_logger.log(
                            agent=AGENT,
                            transcript_path=transcript_path,
                            entry_index=index,
                            issue_type='invalid_timestamp',
                            description=f'Unparseable timestamp: {raw_time!r}',
                        )
                    time_range.observe(moment)

            entry = parse_claude_entry_object(obj, index, transcript_path, schema_logger)
            if entry is None:
                return
            accumulate_entry_stats(acc, entry)
            if first_user_text is None and entry.type == 'user' and entry.text:
                first_user_text = entry.text

        entry_count = read_jsonl_lines(path, handle_line)

        subagents = None
        if not is_subagent and scan_subagents:
            subagents = _scan_subagents(path, session_name, schema_logger, max_file_size_bytes) or None

        return UnifiedTranscript(
            id=f'claude:{session_name}',
            agent=AGENT,
            path=transcript_path,
            name=summary_name or (truncate_name(first_user_text) if first_user_text else session_name),
            project_dir=infer_project_dir(path, is_subagent),
            modified_at=file_mtime(file_stat),
            size_bytes=file_stat.st_size,
            entry_count=entry_count,
            start_time=time_range.start,
            end_time=time_range.end,
            is_subagent=is_subagent,
            parent_transcript_id=f'claude:{parent_name}' if is_subagent else None,
            subagents=subagents,
            stats=finalize_stats(acc, time_range.start, time_range.end),
        )
    except (OSError, ValueError) as e:
        if schema_logger is not None:
            schema_logger.log(
                agent=AGENT,
                transcript_path=transcript_path,
                issue_type='parse_error',
                description=f'Failed to parse transcript: {e}',
            )
        return None


# =============================================================================
# Full parsing
# =============================================================================

def parse_claude_transcript_full(
    file_path: Union[str, Path],
    schema_logger: Optional[SchemaLogger] = None,
) -> FullParseResult:
    """
    Parse every record of a Claude transcript.

    Collects entries plus one ThinkingBlock per thinking block and one
    ToolCallRecord per tool_use block, then links each tool call to the
    tool_result entry that answers it. A missing file produces an empty
    result with a parse_error in schema_issues instead of raising.
    """
    path = Path(file_path)
    transcript_path = str(path)
    transcript_id = f'claude:{path.stem}'
    result = FullParseResult(transcript_id=transcript_id)
    stats = result.stats
    calls_by_id: dict[str, ToolCallRecord] = {}

    def handle_line(line: str, index: int) -> None:
        entry = parse_claude_entry(line, index, transcript_path, schema_logger)
        if entry is None:
            stats['skipped_entries'] += 1
            return

        result.entries.append(entry)
        stats['parsed_entries'] += 1
        stats['by_type'][entry.type] = stats['by_type'].get(entry.type, 0) + 1

        if not isinstance(entry.content, list):
            return
        for position, block in enumerate(entry.content):
            if not isinstance(block, dict):
                continue
            if block.get('type') == 'thinking':
                result.thinking_blocks.append(ThinkingBlock(
                    id=f'{entry.id}-thinking-{position}',
                    entry_id=entry.id,
                    transcript_id=transcript_id,
                    type='thinking',
                    text=block.get('thinking'),
                    sequence_index=position,
                    timestamp=entry.timestamp,
                ))
            elif block.get('type') == 'tool_use':
                call = ToolCallRecord(
                    id=block.get('id') or f'{entry.id}-tool',
                    entry_id=entry.id,
                    transcript_id=transcript_id,
                    name=block.get('name') or 'unknown',
                    input=block.get('input'),
                    timestamp=entry.timestamp,
                )
                result.tool_calls.append(call)
                calls_by_id[call.id] = call

    try:
        stats['total_entries'] = read_jsonl_lines(path, handle_line)
    except OSError as e:
        result.schema_issues.append(SchemaIssue(
            id=create_id('parse-error'),
            timestamp=now_iso(),
            agent=AGENT,
            transcript_path=transcript_path,
            issue_type='parse_error',
            description=f'Failed to read transcript: {e}',
        ))
        return result

    for entry in result.entries:
        if entry.type != 'tool_result' or not entry.tool_call_id:
            continue
        call = calls_by_id.get(entry.tool_call_id)
        if call is None:
            continue
        call.result_entry_id = entry.id
        block = find_block(entry.content, 'tool_result')
        call.status = 'error' if block and block.get('is_error') else 'success'

    stats['thinking_block_count'] = len(result.thinking_blocks)
    stats['tool_call_count'] = len(result.tool_calls)
    return result
