"""
Codex CLI transcript adapter.

Codex transcripts are JSONL files stored at
~/.codex/sessions/{year}/{month}/{day}/rollout-{stamp}-{uuid}.jsonl. Every
line is an envelope {timestamp, type, payload}; the envelope type is one of
session_meta, turn_context, event_msg, response_item or compacted, and the
payload's own 'type' selects the shape underneath.

Tool arguments and tool output arrive as JSON-encoded strings and are
decoded a second time.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Union
import json
import re

from .models import AgentType, EntryType, TimestampPolicy, TokenUsage, UnifiedEntry, UnifiedTranscript
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
    epoch_seconds_to_iso,
    extract_text_content,
    file_mtime,
    finalize_stats,
    normalize_path_separators,
    parse_timestamp,
    resolve_missing_timestamp,
    truncate_name,
)


AGENT: AgentType = 'codex'
MISSING_TIMESTAMP_POLICY: TimestampPolicy = 'drop'

TEXT_RULES = [
    ('input_text', 'text'),
    ('output_text', 'text'),
]

# rollout-2025-01-15T10-30-00-<uuid>
ROLLOUT_STAMP = re.compile(r'rollout-(\d{4})-(\d{2})-(\d{2})T(\d{2})-(\d{2})-(\d{2})')

ENVELOPE_TYPES: dict[str, EntryType] = {
    'session_meta': 'system',
    'turn_context': 'system',
    'compacted': 'summary',
}

EVENT_MSG_TYPES: dict[str, EntryType] = {
    'user_message': 'user',
    'agent_message': 'assistant',
    'agent_reasoning': 'thinking',
    'token_count': 'system',
}

RESPONSE_ITEM_TYPES: dict[str, EntryType] = {
    'message': 'assistant',
    'function_call': 'tool_call',
    'function_call_output': 'tool_result',
    'custom_tool_call': 'tool_call',
    'custom_tool_call_output': 'tool_result',
    'local_shell_call': 'tool_call',
    'web_search_call': 'tool_call',
    'reasoning': 'thinking',
    'ghost_snapshot': 'system',
}

MESSAGE_ROLES: dict[str, EntryType] = {
    'user': 'user',
    'assistant': 'assistant',
    'system': 'system',
    'developer': 'system',
}


def _tag(value: Any) -> Optional[str]:
    """A discriminator value, or None when it is not a string."""
    return value if isinstance(value, str) else None


def detect_entry_type(envelope_type: Any, payload: dict) -> EntryType:
    """Classify a Codex envelope by its type and its payload's type."""
    envelope_type = _tag(envelope_type)
    if envelope_type in ENVELOPE_TYPES:
        return ENVELOPE_TYPES[envelope_type]

    payload_type = _tag(payload.get('type'))

    if envelope_type == 'event_msg':
        # Every other event is bookkeeping
        return EVENT_MSG_TYPES.get(payload_type, 'system')

    if envelope_type == 'response_item':
        if payload_type == 'message':
            return MESSAGE_ROLES.get(_tag(payload.get('role')), 'assistant')
        return RESPONSE_ITEM_TYPES.get(payload_type, 'unknown')

    return 'unknown'


class _Fields:
    """Mutable bag of the per-record fields the payload handlers fill in."""

    def __init__(self):
        self.text: Optional[str] = None
        self.content: Any = None
        self.tool_name: Optional[str] = None
        self.tool_input: Any = None
        self.tool_call_id: Optional[str] = None
        self.model: Optional[str] = None
        self.tokens: Optional[TokenUsage] = None


Logger = Callable[[str, str], None]


def _decode_output(payload: dict, fields: _Fields) -> None:
    """Decode a tool output string; plain-text output falls back to the raw string."""
    output = payload.get('output')
    fields.tool_call_id = payload.get('call_id')

    if isinstance(output, str):
        try:
            decoded = json.loads(output)
        except ValueError:
            fields.text = output
            fields.content = output
            return
    else:
        decoded = output

    fields.content = decoded
    if isinstance(decoded, dict) and isinstance(decoded.get('output'), str):
        fields.text = decoded['output']
    elif isinstance(output, str) and not isinstance(decoded, dict):
        fields.text = output


def _handle_message(payload: dict, fields: _Fields, log: Logger) -> None:
    fields.content = payload.get('content')
    fields.text = extract_text_content(fields.content, TEXT_RULES)


def _handle_function_call(payload: dict, fields: _Fields, log: Logger) -> None:
    arguments = payload.get('arguments')
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except ValueError as e:
            log('malformed_content', f'Tool arguments are not valid JSON: {e}')
            fields.text = arguments
    fields.tool_name = payload.get('name')
    fields.tool_input = arguments
    fields.tool_call_id = payload.get('call_id')


def _handle_custom_tool_call(payload: dict, fields: _Fields, log: Logger) -> None:
    fields.tool_name = payload.get('name')
    fields.tool_input = payload.get('input')
    fields.tool_call_id = payload.get('call_id')


def _handle_tool_output(payload: dict, fields: _Fields, log: Logger) -> None:
    _decode_output(payload, fields)


def _handle_builtin_call(payload: dict, fields: _Fields, log: Logger) -> None:
    fields.tool_name = payload.get('type')
    fields.tool_input = payload.get('action')
    fields.tool_call_id = payload.get('call_id') or payload.get('id')


def _handle_reasoning(payload: dict, fields: _Fields, log: Logger) -> None:
    summary = payload.get('summary')
    if isinstance(summary, list):
        fields.text = '\n'.join(
            s.get('text') or '' for s in summary if isinstance(s, dict)
        )
    fields.content = '[encrypted]' if payload.get('encrypted_content') else payload.get('content')


RESPONSE_ITEM_HANDLERS: dict[str, Callable[[dict, _Fields, Logger], None]] = {
    'message': _handle_message,
    'function_call': _handle_function_call,
    'function_call_output': _handle_tool_output,
    'custom_tool_call': _handle_custom_tool_call,
    'custom_tool_call_output': _handle_tool_output,
    'local_shell_call': _handle_builtin_call,
    'web_search_call': _handle_builtin_call,
    'reasoning': _handle_reasoning,
}


def extract_token_usage(payload: dict) -> Optional[TokenUsage]:
    """
    Token usage from a token_count event.

    Prefers the incremental last_token_usage snapshot and falls back to the
    running total_token_usage only when no incremental one is present.
    """
    info = payload.get('info')
    if not isinstance(info, dict):
        return None

    usage = info.get('last_token_usage')
    if not isinstance(usage, dict):
        usage = info.get('total_token_usage')
    if not isinstance(usage, dict):
        return None

    return TokenUsage(
        input=usage.get('input_tokens'),
        output=usage.get('output_tokens'),
        cached=usage.get('cached_input_tokens'),
        total=usage.get('total_tokens'),
    )


def running_token_total(obj: Any) -> Optional[int]:
    """The cumulative total_tokens carried by a token_count event, if any."""
    if not isinstance(obj, dict) or obj.get('type') != 'event_msg':
        return None
    payload = obj.get('payload')
    if not isinstance(payload, dict) or payload.get('type') != 'token_count':
        return None
    info = payload.get('info')
    if not isinstance(info, dict):
        return None
    usage = info.get('total_token_usage')
    if not isinstance(usage, dict):
        return None
    return usage.get('total_tokens')


def _fill_fields(envelope_type: Any, payload: dict, fields: _Fields, log: Logger) -> None:
    payload_type = _tag(payload.get('type'))

    if envelope_type == 'session_meta':
        fields.content = payload
    elif envelope_type == 'turn_context':
        model = payload.get('model')
        fields.model = model if isinstance(model, str) else None
    elif envelope_type == 'compacted':
        fields.text = payload.get('message')
    elif envelope_type == 'event_msg':
        if payload_type in ('user_message', 'agent_message'):
            fields.text = payload.get('message')
        elif payload_type == 'agent_reasoning':
            fields.text = payload.get('text')
        elif payload_type == 'token_count':
            fields.tokens = extract_token_usage(payload)
    elif envelope_type == 'response_item':
        handler = RESPONSE_ITEM_HANDLERS.get(payload_type)
        if handler is not None:
            handler(payload, fields, log)


def _record_timestamp(obj: dict) -> Optional[str]:
    timestamp = obj.get('timestamp')
    if isinstance(timestamp, str) and timestamp:
        return timestamp
    if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
        return epoch_seconds_to_iso(timestamp)
    return None


def parse_codex_entry_object(
    obj: Any,
    index: int,
    transcript_path: str,
    schema_logger: Optional[SchemaLogger] = None,
) -> Optional[UnifiedEntry]:
    """
    Normalize one decoded Codex envelope.

    Envelopes without a timestamp are dropped (and logged). Never raises.
    """
    def log(issue_type: str, description: str) -> None:
        if schema_logger is not None:
            schema_logger.log(
                agent=AGENT,
                transcript_path=transcript_path,
                entry_index=index,
                issue_type=issue_type,
                description=description,
                raw_entry=obj,
            )

    try:
        if not isinstance(obj, dict):
            log('unexpected_structure', f'Expected a JSON object, got {type(obj).__name__}')
            return None

        timestamp = _record_timestamp(obj)
        if timestamp is None:
            timestamp = resolve_missing_timestamp(
                MISSING_TIMESTAMP_POLICY, AGENT, transcript_path, index, obj, schema_logger
            )
            if timestamp is None:
                return None

        envelope_type = obj.get('type')
        payload = obj.get('payload')
        if not isinstance(payload, dict):
            payload = {}

        entry_type = detect_entry_type(envelope_type, payload)
        fields = _Fields()
        _fill_fields(envelope_type, payload, fields, log)

        if entry_type == 'unknown':
            log('unknown_entry_type', f"Unknown entry type: {envelope_type}/{payload.get('type')}")

        return UnifiedEntry(
            id=f'codex-{index}',
            timestamp=timestamp,
            type=entry_type,
            agent=AGENT,
            text=fields.text or None,
            content=fields.content,
            tool_name=fields.tool_name,
            tool_input=fields.tool_input,
            tool_call_id=fields.tool_call_id,
            model=fields.model,
            tokens=fields.tokens,
        )
    except Exception as e:
        log('parse_error', f'Failed to parse entry: {e}')
        return None


def parse_codex_entry(
    line: str,
    index: int,
    transcript_path: str,
    schema_logger: Optional[SchemaLogger] = None,
) -> Optional[UnifiedEntry]:
    """Decode and normalize one Codex JSONL line."""
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
    return parse_codex_entry_object(obj, index, transcript_path, schema_logger)


def parse_codex_entries(
    file_path: Union[str, Path],
    offset: int = 0,
    limit: Optional[int] = DEFAULT_PAGE_LIMIT,
    include_raw: bool = False,
    schema_logger: Optional[SchemaLogger] = None,
    max_file_size_bytes: Optional[int] = None,
) -> dict:
    """Parse a page of entries from a Codex transcript. Returns dict with 'entries' and 'total'."""
    return paginate_jsonl_entries(
        file_path,
        parse_codex_entry,
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

def parse_rollout_start(file_name: str) -> Optional[datetime]:
    """Start time encoded in a rollout-YYYY-MM-DDTHH-MM-SS file name, taken as UTC."""
    match = ROLLOUT_STAMP.search(file_name)
    if not match:
        return None
    try:
        return datetime(*(int(g) for g in match.groups()), tzinfo=timezone.utc)
    except ValueError:
        return None


def _basename(path: str) -> str:
    return normalize_path_separators(path).rstrip('/').split('/')[-1]


def parse_codex_transcript(
    file_path: Union[str, Path],
    schema_logger: Optional[SchemaLogger] = None,
    max_file_size_bytes: Optional[int] = None,
) -> Optional[UnifiedTranscript]:
    """
    Summarize a Codex transcript in one streaming pass.

    projectDir is the session_meta cwd and the name is its last path
    component, else the first user message, else the file name. Repeated
    token_count snapshots with an unchanged running total are counted once.

    Returns None (after logging parse_error) if the file cannot be read.
    """
    path = Path(file_path)
    transcript_path = str(path)

    try:
        file_stat = check_file_size(path, max_file_size_bytes, AGENT)
        file_name = path.stem

        acc = StatsAccumulator()
        time_range = TimeRange()
        project_dir: Optional[str] = None
        first_user_text: Optional[str] = None
        last_total: Optional[int] = None

        def handle_line(line: str, index: int) -> None:
            nonlocal project_dir, first_user_text, last_total

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
                payload = obj.get('payload')
                if obj.get('type') == 'session_meta' and isinstance(payload, dict):
                    cwd = payload.get('cwd')
                    if isinstance(cwd, str) and cwd and project_dir is None:
                        project_dir = cwd

                raw_time = obj.get('timestamp')
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

            entry = parse_codex_entry_object(obj, index, transcript_path, schema_logger)
            if entry is None:
                return

            running_total = running_token_total(obj)
            if running_total is None and entry.tokens is not None:
                running_total = entry.tokens.total
            repeated = running_total is not None and running_total == last_total
            accumulate_entry_stats(acc, entry, include_tokens=not repeated)
            if running_total is not None:
                last_total = running_total

            if first_user_text is None and entry.type == 'user' and entry.text:
                first_user_text = entry.text

        entry_count = read_jsonl_lines(path, handle_line)

        if time_range.start is None:
            time_range.start = parse_rollout_start(file_name)

        if project_dir:
            name = _basename(project_dir)
        elif first_user_text:
            name = truncate_name(first_user_text)
        else:
            name = file_name

        return UnifiedTranscript(
            id=f'codex:{file_name}',
            agent=AGENT,
            path=transcript_path,
            name=name or file_name,
            project_dir=project_dir,
            modified_at=file_mtime(file_stat),
            size_bytes=file_stat.st_size,
            entry_count=entry_count,
            start_time=time_range.start,
            end_time=time_range.end,
            is_subagent=False,
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
