"""Schema drift analysis: find entry shapes the adapters do not recognize."""

import json
from pathlib import Path
from typing import Any, Optional, Union

from .models import UnifiedEntry
from .parser import DEFAULT_PAGE_LIMIT
from .registry import ADAPTERS, AGENT_INFO
from .schema_logger import SchemaLogger
from .sessions import scan_transcripts


DEFAULT_TRANSCRIPT_LIMIT = 50
MAX_EXAMPLES = 3
EXAMPLE_LENGTH = 200

# Source fields the adapters read or deliberately ignore
KNOWN_SOURCE_FIELDS = frozenset({
    'id', 'timestamp', 'type', 'text', 'content', 'model', 'tokens',
    'uuid', 'parentUuid', 'sessionId', 'isSidechain', 'agentId', 'message', 'summary', 'ts',
    'leafUuid', 'messageId', 'snapshot',
    'payload', 'messages', 'projectHash', 'startTime', 'lastUpdated',
    'thoughts', 'toolCalls', 'cwd', 'call_id', 'arguments', 'output', 'role', 'usage',
    'encrypted_content',
})


def _original_type(raw: Any) -> str:
    """The discriminator(s) that made a record unknown, e.g. 'response_item/new_thing'."""
    if not isinstance(raw, dict):
        return 'no-type'
    record_type = raw.get('type') or 'no-type'
    payload = raw.get('payload')
    if isinstance(payload, dict) and payload.get('type'):
        return f"{record_type}/{payload['type']}"
    return str(record_type)


def _track_entry(result: dict, entry: UnifiedEntry, agent: str) -> None:
    type_counts = result['entry_types'].setdefault(agent, {})
    type_counts[entry.type] = type_counts.get(entry.type, 0) + 1

    raw = entry.raw
    if entry.type == 'unknown':
        info = result['unknown_types'].setdefault(
            _original_type(raw), {'count': 0, 'agents': [], 'examples': []}
        )
        info['count'] += 1
        if agent not in info['agents']:
            info['agents'].append(agent)
        if raw is not None and len(info['examples']) < MAX_EXAMPLES:
            info['examples'].append(json.dumps(raw, default=str)[:EXAMPLE_LENGTH])

    if isinstance(raw, dict):
        for key in raw:
            if key.startswith('_') or key in KNOWN_SOURCE_FIELDS:
                continue
            info = result['unknown_fields'].setdefault(
                key, {'count': 0, 'agents': [], 'types': []}
            )
            info['count'] += 1
            if agent not in info['agents']:
                info['agents'].append(agent)
            if entry.type not in info['types']:
                info['types'].append(entry.type)


def analyze_transcripts(
    agent_paths: dict[str, Union[str, Path]],
    limit: int = DEFAULT_TRANSCRIPT_LIMIT,
    page_limit: Optional[int] = DEFAULT_PAGE_LIMIT,
    schema_logger: Optional[SchemaLogger] = None,
    home: Optional[Union[str, Path]] = None,
) -> dict:
    """
    Scan each agent's directory and page through up to `limit` transcripts.

    Returns dict with:
    - agents: per agent, transcripts found / analyzed, entries seen, issues logged
    - entry_types: per agent, count of each entry type
    - unknown_types: original discriminator -> count, agents, example records
    - unknown_fields: unrecognized top-level source field -> count, agents, entry types
    - errors: transcripts that could not be paged (agent, path, error)
    - issue_stats: the schema logger's stats()
    """
    logger = schema_logger if schema_logger is not None else SchemaLogger()
    result: dict = {
        'agents': {},
        'entry_types': {},
        'unknown_types': {},
        'unknown_fields': {},
        'errors': [],
        'issue_stats': {},
    }

    for agent, base_path in agent_paths.items():
        adapter = ADAPTERS.get(agent)
        if adapter is None or not base_path:
            continue

        transcripts = scan_transcripts(base_path, agent, schema_logger=logger, home=home)
        to_analyze = transcripts[:max(0, limit)]
        entry_total = 0

        for transcript in to_analyze:
            try:
                page = adapter.parse_entries(
                    transcript.path,
                    limit=page_limit,
                    include_raw=True,
                    schema_logger=logger,
                )
            except (OSError, ValueError) as e:
                result['errors'].append({
                    'agent': agent,
                    'path': transcript.path,
                    'error': str(e)[:100],
                })
                continue

            entry_total += len(page['entries'])
            for entry in page['entries']:
                _track_entry(result, entry, agent)

        result['agents'][agent] = {
            'transcripts': len(transcripts),
            'analyzed': len(to_analyze),
            'entries': entry_total,
            'issues': 0,
        }

    issue_stats = logger.stats()
    for agent, summary in result['agents'].items():
        summary['issues'] = issue_stats['by_agent'].get(agent, 0)
    result['issue_stats'] = issue_stats
    return result


def format_analysis_report(analysis: dict) -> str:
    """
    Format analysis results as a human-readable report.
    """
    lines = []

    lines.append("Transcript Schema Analysis Report")
    lines.append("=" * 50)
    lines.append("")

    if not analysis['agents']:
        lines.append("No agent directories were analyzed.")
        return '\n'.join(lines)

    for agent, summary in analysis['agents'].items():
        label = AGENT_INFO[agent].name if agent in AGENT_INFO else agent
        lines.append(
            f"{label}: {summary['analyzed']} of {summary['transcripts']} transcripts, "
            f"{summary['entries']} entries, {summary['issues']} issues"
        )
        type_counts = analysis['entry_types'].get(agent, {})
        for entry_type, count in sorted(type_counts.items(), key=lambda item: -item[1]):
            lines.append(f"  {entry_type}: {count}")
    lines.append("")

    unknown_types = analysis['unknown_types']
    unknown_fields = analysis['unknown_fields']
    errors = analysis['errors']
    by_type = analysis['issue_stats'].get('by_type', {})

    if not (unknown_types or unknown_fields or errors or by_type):
        lines.append("No schema drift detected!")
        return '\n'.join(lines)

    if unknown_types:
        lines.append(f"! Unknown Entry Types ({len(unknown_types)})")
        lines.append("-" * 40)
        for original_type, info in sorted(unknown_types.items(), key=lambda item: -item[1]['count']):
            lines.append(f"  {original_type}: {info['count']} ({', '.join(info['agents'])})")
            for example in info['examples']:
                lines.append(f"    {example}")
        lines.append("")

    if unknown_fields:
        lines.append(f"~ Unrecognized Fields ({len(unknown_fields)})")
        lines.append("-" * 40)
        for key, info in sorted(unknown_fields.items(), key=lambda item: -item[1]['count']):
            lines.append(
                f"  {key}: {info['count']} ({', '.join(info['agents'])}; "
                f"types: {', '.join(info['types'])})"
            )
        lines.append("")

    if by_type:
        lines.append(f"~ Logged Issues ({analysis['issue_stats']['total']})")
        lines.append("-" * 40)
        for issue_type, count in sorted(by_type.items()):
            lines.append(f"  {issue_type}: {count}")
        lines.append("")

    if errors:
        lines.append(f"! Unreadable Transcripts ({len(errors)})")
        lines.append("-" * 40)
        for error in errors:
            lines.append(f"  [{error['agent']}] {Path(error['path']).name}: {error['error']}")
        lines.append("")

    return '\n'.join(lines)
