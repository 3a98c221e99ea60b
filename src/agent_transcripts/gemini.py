"""
Gemini CLI transcript adapter.

Gemini transcripts are single JSON documents (not JSONL) stored at
~/.gemini/tmp/{project-hash}/chats/session-*.json:

    {
      "sessionId": "...", "projectHash": "...",
      "startTime": "...", "lastUpdated": "...", "summary": "...",
      "messages": [
        {"id", "timestamp", "type": "user" | "gemini" | "info" | ...,
         "content", "thoughts": [...], "toolCalls": [...], "model", "tokens"}
      ]
    }

One message expands into several entries: the message itself, one thinking
entry per thought, and a tool_call entry (plus a tool_result entry when a
result is present) per tool call. Pagination indexes the expanded entries.
"""

from pathlib import Path
from typing import Any, Optional, Union
import json

from .models import AgentType, EntryType, TimestampPolicy, TokenUsage, UnifiedEntry, UnifiedTranscript
from .parser import DEFAULT_PAGE_LIMIT, check_file_size
from .schema_logger import SchemaLogger
from .shared import (
    StatsAccumulator,
    TimeRange,
    accumulate_entry_stats,
    file_mtime,
    finalize_stats,
    normalize_path_separators,
    parse_timestamp,
    resolve_missing_timestamp,
    truncate_name,
)


AGENT: AgentType = 'gemini'
MISSING_TIMESTAMP_POLICY: TimestampPolicy = 'default'

# The whole document must be held in memory, so it is capped unless the caller says otherwise
DEFAULT_MAX_JSON_FILE_BYTES = 50 * 1024 * 1024  # 50 MiB

MESSAGE_TYPES: dict[str, EntryType] = {
    'user': 'user',
    'gemini': 'assistant',
    'info': 'system',
    'warning': 'system',
    'error': 'system',
}


def _message_text(content: Any) -> Optional[str]:
    """Text of a message: a plain string, or a list of {'text': ...} parts joined."""
    if isinstance(content, str):
        return content or None
    if not isinstance(content, list):
        return None
    texts = []
    for part in content:
        if isinstance(part, str) and part:
            texts.append(part)
        elif isinstance(part, dict) and isinstance(part.get('text'), str) and part['text']:
            texts.append(part['text'])
    return '\n\n'.join(texts) or None


def _token_usage(tokens: Any) -> Optional[TokenUsage]:
    if not isinstance(tokens, dict):
        return None
    return TokenUsage(
        input=tokens.get('input'),
        output=tokens.get('output'),
        cached=tokens.get('cached'),
        total=tokens.get('total'),
    )


def _result_text(result: Any) -> Optional[str]:
    if isinstance(result, str):
        return result
    if isinstance(result, (list, dict)):
        return json.dumps(result)
    return None


def _own_timestamp(part: dict, fallback: Optional[str]) -> Optional[str]:
    """A thought's or tool call's own timestamp, else the message's."""
    timestamp = part.get('timestamp')
    if isinstance(timestamp, str) and timestamp:
        return timestamp
    return fallback


def parse_gemini_message(
    message: Any,
    index: int,
    transcript_path: str,
    schema_logger: Optional[SchemaLogger] = None,
    include_raw: bool = False,
) -> list[UnifiedEntry]:
    """
    Expand one Gemini message into its entries.

    Never raises; a message that cannot be handled yields [] and a logged
    issue. With include_raw, every entry derived from the message carries
    the message object as raw.
    """
    def log(issue_type: str, description: str) -> None:
        if schema_logger is not None:
            schema_logger.log(
                agent=AGENT,
                transcript_path=transcript_path,
                entry_index=index,
                issue_type=issue_type,
                description=description,
                raw_entry=message,
            )

    try:
        if not isinstance(message, dict):
            log('unexpected_structure', f'Expected a message object, got {type(message).__name__}')
            return []

        base_id = str(message.get('id') or f'gemini-msg-{index}')
        raw = message if include_raw else None

        timestamp = message.get('timestamp')
        if not isinstance(timestamp, str) or not timestamp:
            timestamp = resolve_missing_timestamp(
                MISSING_TIMESTAMP_POLICY, AGENT, transcript_path, index, message, schema_logger
            )

        message_type = message.get('type')
        entry_type: EntryType = 'unknown'
        if isinstance(message_type, str):
            entry_type = MESSAGE_TYPES.get(message_type, 'unknown')
        if entry_type == 'unknown':
            log('unknown_entry_type', f'Unknown entry type: {message_type}')

        entries = []
        text = _message_text(message.get('content'))
        if text or entry_type != 'unknown':
            model = message.get('model')
            entries.append(UnifiedEntry(
                id=base_id,
                timestamp=timestamp,
                type=entry_type,
                agent=AGENT,
                text=text,
                content=message.get('content') if isinstance(message.get('content'), list) else None,
                model=model if isinstance(model, str) else None,
                tokens=_token_usage(message.get('tokens')),
                raw=raw,
            ))

        thoughts = message.get('thoughts')
        if isinstance(thoughts, list):
            for i, thought in enumerate(thoughts):
                if not isinstance(thought, dict):
                    continue
                parts = [thought.get('subject'), thought.get('description')]
                entries.append(UnifiedEntry(
                    id=f'{base_id}-thought-{i}',
                    timestamp=_own_timestamp(thought, timestamp),
                    type='thinking',
                    agent=AGENT,
                    text=': '.join(p for p in parts if isinstance(p, str) and p) or None,
                    raw=raw,
                ))

        tool_calls = message.get('toolCalls')
        if isinstance(tool_calls, list):
            for i, tool in enumerate(tool_calls):
                if not isinstance(tool, dict):
                    continue
                tool_call_id = str(tool.get('id') or f'{base_id}-tool-{i}')
                tool_timestamp = _own_timestamp(tool, timestamp)
                entries.append(UnifiedEntry(
                    id=tool_call_id,
                    timestamp=tool_timestamp,
                    type='tool_call',
                    agent=AGENT,
                    tool_name=tool.get('name') or tool.get('displayName'),
                    tool_input=tool.get('args'),
                    tool_call_id=tool_call_id,
                    raw=raw,
                ))
                if 'result' in tool:
                    entries.append(UnifiedEntry(
                        id=f'{tool_call_id}-result',
                        timestamp=tool_timestamp,
                        type='tool_result',
                        agent=AGENT,
                        text=_result_text(tool['result']),
                        content=tool['result'],
                        tool_call_id=tool_call_id,
                        raw=raw,
                    ))

        return entries
    except Exception as e:
        log('parse_error', f'Failed to parse message: {e}')
        return []


def load_gemini_session(
    file_path: Union[str, Path],
    schema_logger: Optional[SchemaLogger] = None,
    max_file_size_bytes: Optional[int] = None,
):
    """
    Read and decode a session document.

    Returns (stat, session); session is None when the document cannot be
    decoded (logged as parse_error). Raises on a missing or oversized file.
    """
    path = Path(file_path)
    max_bytes = DEFAULT_MAX_JSON_FILE_BYTES if max_file_size_bytes is None else max_file_size_bytes
    file_stat = check_file_size(path, max_bytes, AGENT)

    content = path.read_text(encoding='utf-8', errors='replace')
    try:
        session = json.loads(content)
    except ValueError as e:
        if schema_logger is not None:
            schema_logger.log(
                agent=AGENT,
                transcript_path=str(path),
                issue_type='parse_error',
                description=f'Failed to parse JSON: {e}',
            )
        return file_stat, None

    if not isinstance(session, dict):
        if schema_logger is not None:
            schema_logger.log(
                agent=AGENT,
                transcript_path=str(path),
                issue_type='unexpected_structure',
                description=f'Expected a session object, got {type(session).__name__}',
            )
        return file_stat, None

    return file_stat, session


def _messages(session: dict, transcript_path: str, schema_logger: Optional[SchemaLogger]) -> list:
    messages = session.get('messages', [])
    if isinstance(messages, list):
        return messages
    if schema_logger is not None:
        schema_logger.log(
            agent=AGENT,
            transcript_path=transcript_path,
            issue_type='unexpected_structure',
            description="Session 'messages' is not an array",
        )
    return []


def parse_gemini_entries(
    file_path: Union[str, Path],
    offset: int = 0,
    limit: Optional[int] = DEFAULT_PAGE_LIMIT,
    include_raw: bool = False,
    schema_logger: Optional[SchemaLogger] = None,
    max_file_size_bytes: Optional[int] = None,
) -> dict:
    """
    Parse a page of entries from a Gemini session.

    The window applies to the expanded entry list, and total counts every
    expanded entry. An undecodable document gives no entries and a total of 0.
    """
    transcript_path = str(file_path)
    _, session = load_gemini_session(file_path, schema_logger, max_file_size_bytes)
    if session is None:
        return {'entries': [], 'total': 0}

    all_entries: list[UnifiedEntry] = []
    for index, message in enumerate(_messages(session, transcript_path, schema_logger)):
        all_entries.extend(parse_gemini_message(
            message, index, transcript_path, schema_logger, include_raw=include_raw
        ))

    start = max(0, offset)
    end = None if limit is None else start + max(0, limit)
    return {'entries': all_entries[start:end], 'total': len(all_entries)}


# =============================================================================
# Transcript metadata
# =============================================================================

def infer_project_dir(transcript_path: str) -> Optional[str]:
    """The project hash: the path segment right after the last 'tmp'."""
    parts = normalize_path_separators(transcript_path).split('/')
    if 'tmp' not in parts:
        return None
    position = len(parts) - 1 - parts[::-1].index('tmp')
    if position < len(parts) - 2:
        return parts[position + 1]
    return None


def parse_gemini_transcript(
    file_path: Union[str, Path],
    schema_logger: Optional[SchemaLogger] = None,
    max_file_size_bytes: Optional[int] = None,
) -> Optional[UnifiedTranscript]:
    """
    Summarize a Gemini session.

    The name is the session summary, else the first user message, else the
    session id, else the file name. entry_count counts expanded entries.

    Returns None (after logging parse_error) if the file cannot be read or decoded.
    """
    path = Path(file_path)
    transcript_path = str(path)

    try:
        file_stat, session = load_gemini_session(path, schema_logger, max_file_size_bytes)
        if session is None:
            return None

        time_range = TimeRange()
        for key in ('startTime', 'lastUpdated'):
            time_range.observe(parse_timestamp(session.get(key)))

        acc = StatsAccumulator()
        entry_count = 0
        first_user_text: Optional[str] = None

        for index, message in enumerate(_messages(session, transcript_path, schema_logger)):
            if isinstance(message, dict) and message.get('timestamp'):
                moment = parse_timestamp(message['timestamp'])
                if moment is None and schema_logger is not None:
                    schema_logger.log(
                        agent=AGENT,
                        transcript_path=transcript_path,
                        entry_index=index,
                        issue_type='invalid_timestamp',
                        description=f"Unparseable timestamp: {message['timestamp']!r}",
                    )
                time_range.observe(moment)

            for entry in parse_gemini_message(message, index, transcript_path, schema_logger):
                accumulate_entry_stats(acc, entry)
                entry_count += 1
                if first_user_text is None and entry.type == 'user' and entry.text:
                    first_user_text = entry.text

        summary = session.get('summary')
        session_id = session.get('sessionId')
        if isinstance(summary, str) and summary:
            name = truncate_name(summary)
        elif first_user_text:
            name = truncate_name(first_user_text)
        elif isinstance(session_id, str) and session_id:
            name = session_id
        else:
            name = path.stem

        return UnifiedTranscript(
            id=f'gemini:{path.stem}',
            agent=AGENT,
            path=transcript_path,
            name=name,
            project_dir=infer_project_dir(transcript_path),
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
