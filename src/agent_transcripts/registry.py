"""Adapter registry, format detection, and the agent-agnostic entry points."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Union
import json
import os

from .claude import parse_claude_entries, parse_claude_entry, parse_claude_transcript
from .codex import parse_codex_entries, parse_codex_entry, parse_codex_transcript
from .gemini import parse_gemini_entries, parse_gemini_message, parse_gemini_transcript
from .models import AgentInfo, AgentType, UnifiedTranscript
from .parser import DEFAULT_PAGE_LIMIT, JSONL_STREAM_CHUNK_SIZE, SMALL_FILE_THRESHOLD, read_file_chunk
from .schema_logger import SchemaLogger
from .shared import normalize_path_separators


AGENT_INFO: dict[str, AgentInfo] = {
    'claude': AgentInfo(
        id='claude',
        name='Claude Code',
        format='jsonl',
        default_path='~/.claude/projects',
        supports_subagents=True,
    ),
    'codex': AgentInfo(
        id='codex',
        name='Codex CLI',
        format='jsonl',
        default_path='~/.codex/sessions',
        supports_subagents=False,
    ),
    'gemini': AgentInfo(
        id='gemini',
        name='Gemini CLI',
        format='json',
        default_path='~/.gemini/tmp',
        supports_subagents=False,
    ),
    'custom': AgentInfo(
        id='custom',
        name='Custom',
        format='jsonl',
        default_path='',
        supports_subagents=False,
    ),
}

SUPPORTED_AGENTS = ('claude', 'codex', 'gemini')

# Directory markers per agent, checked in this order against a lowercased path
PATH_MARKERS: tuple[tuple[AgentType, tuple[str, ...]], ...] = (
    ('claude', ('/.claude/', '/claude/projects/')),
    ('codex', ('/.codex/', '/codex/sessions/')),
    ('gemini', ('/.gemini/', '/gemini/tmp/')),
)


@dataclass
class Adapter:
    """
    The per-format functions behind the agent-agnostic API.

    parse_entry normalizes one record: a JSONL line for claude and codex,
    a decoded message object for gemini (which may expand to several entries).
    """
    parse_entry: Callable[..., Any]
    parse_entries: Callable[..., dict]
    parse_transcript: Callable[..., Optional[UnifiedTranscript]]


ADAPTERS: dict[str, Adapter] = {
    'claude': Adapter(parse_claude_entry, parse_claude_entries, parse_claude_transcript),
    'codex': Adapter(parse_codex_entry, parse_codex_entries, parse_codex_transcript),
    'gemini': Adapter(parse_gemini_message, parse_gemini_entries, parse_gemini_transcript),
}


# =============================================================================
# Detection
# =============================================================================

def detect_agent_from_path(file_path: Union[str, Path]) -> Optional[AgentType]:
    """Detect the agent from its conventional directory names in a path."""
    lower = normalize_path_separators(str(file_path)).lower()
    for agent, markers in PATH_MARKERS:
        if any(marker in lower for marker in markers):
            return agent
    return None


def detect_agent_from_id(transcript_id: str) -> Optional[AgentType]:
    """Detect the agent from a '{agent}:{id}' transcript id."""
    for agent in AGENT_INFO:
        if transcript_id.startswith(f'{agent}:'):
            return agent
    return None


def _fingerprint(obj) -> Optional[AgentType]:
    if not isinstance(obj, dict):
        return None
    if obj.get('uuid') and obj.get('type') and (obj.get('sessionId') or obj.get('message')):
        return 'claude'
    if obj.get('timestamp') and obj.get('type') and 'payload' in obj:
        return 'codex'
    if obj.get('sessionId') and isinstance(obj.get('messages'), list):
        return 'gemini'
    return None


def detect_agent_from_content(content: str) -> Optional[AgentType]:
    """
    Detect the agent by sniffing the first JSON record.

    Checks Claude, then Codex, then Gemini fingerprints on the first line.
    When the first line is not JSON on its own, the whole content is tried
    as a single Gemini document.
    """
    first_line = content.split('\n', 1)[0].strip()
    if not first_line:
        return None

    try:
        obj = json.loads(first_line)
    except ValueError:
        try:
            document = json.loads(content)
        except ValueError:
            return None
        if isinstance(document, dict) and document.get('sessionId') and document.get('messages'):
            return 'gemini'
        return None

    return _fingerprint(obj)


def detect_agent_from_file(file_path: Union[str, Path]) -> Optional[AgentType]:
    """
    Detect the agent for a file on disk: by path first, then by content.

    Small files are sniffed whole; larger ones by their first chunk.
    Raises OSError if the file cannot be read.
    """
    agent = detect_agent_from_path(file_path)
    if agent is not None:
        return agent

    size = os.stat(file_path).st_size
    if size < SMALL_FILE_THRESHOLD:
        content = Path(file_path).read_bytes().decode('utf-8', errors='replace')
    else:
        content = read_file_chunk(file_path, 0, JSONL_STREAM_CHUNK_SIZE)
    return detect_agent_from_content(content)


# =============================================================================
# Unified API
# =============================================================================

def _resolve_adapter(file_path: Union[str, Path], agent: Optional[str]) -> tuple[str, Adapter]:
    resolved = agent or detect_agent_from_path(file_path)
    if not resolved:
        raise ValueError(
            f"Could not detect agent type for: {file_path}. "
            f"Specify agent explicitly as one of: {', '.join(SUPPORTED_AGENTS)}"
        )
    adapter = ADAPTERS.get(resolved)
    if adapter is None:
        raise ValueError(
            f'Unsupported agent type: "{resolved}". '
            f"Supported agents: {', '.join(SUPPORTED_AGENTS)}"
        )
    return resolved, adapter


def parse_entries(
    file_path: Union[str, Path],
    agent: Optional[str] = None,
    offset: int = 0,
    limit: Optional[int] = DEFAULT_PAGE_LIMIT,
    include_raw: bool = False,
    schema_logger: Optional[SchemaLogger] = None,
    max_file_size_bytes: Optional[int] = None,
) -> dict:
    """
    Parse a page of entries, detecting the agent from the path when not given.

    Returns dict with 'entries', 'total' and 'agent'. Raises ValueError when
    the agent cannot be detected or is unsupported.
    """
    resolved, adapter = _resolve_adapter(file_path, agent)
    result = adapter.parse_entries(
        file_path,
        offset=offset,
        limit=limit,
        include_raw=include_raw,
        schema_logger=schema_logger,
        max_file_size_bytes=max_file_size_bytes,
    )
    return {'entries': result['entries'], 'total': result['total'], 'agent': resolved}


def parse_transcript(
    file_path: Union[str, Path],
    agent: Optional[str] = None,
    schema_logger: Optional[SchemaLogger] = None,
    scan_subagents: bool = True,
    max_file_size_bytes: Optional[int] = None,
) -> UnifiedTranscript:
    """
    Summarize one transcript, detecting the agent from the path when not given.

    Raises ValueError when the agent cannot be detected, is unsupported, or
    the file could not be summarized.
    """
    resolved, adapter = _resolve_adapter(file_path, agent)
    if resolved == 'claude':
        result = adapter.parse_transcript(
            file_path,
            schema_logger=schema_logger,
            scan_subagents=scan_subagents,
            max_file_size_bytes=max_file_size_bytes,
        )
    else:
        result = adapter.parse_transcript(
            file_path,
            schema_logger=schema_logger,
            max_file_size_bytes=max_file_size_bytes,
        )

    if result is None:
        raise ValueError(f'Failed to parse transcript: {file_path}')
    return result
