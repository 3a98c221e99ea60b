"""Transcript discovery: walk each agent's directory layout and summarize what is found."""

from pathlib import Path
from typing import Optional, Union

from .claude import parse_claude_transcript
from .codex import parse_codex_transcript
from .gemini import parse_gemini_transcript
from .models import AgentType, UnifiedTranscript
from .schema_logger import SchemaLogger
from .shared import expand_home


# year/month/day
CODEX_MAX_DEPTH = 3

PathLike = Union[str, Path]


def _log_scan_failure(
    agent: AgentType,
    base_path: PathLike,
    error: Exception,
    schema_logger: Optional[SchemaLogger],
) -> None:
    if schema_logger is not None:
        schema_logger.log(
            agent=agent,
            transcript_path=str(base_path),
            issue_type='parse_error',
            description=f'Failed to scan directory: {error}',
        )


def _list_dir(path: Path) -> list[Path]:
    """Sorted directory listing; unreadable or missing directories list as empty."""
    try:
        return sorted(path.iterdir())
    except OSError:
        return []


def find_claude_files(base_dir: Path) -> list[Path]:
    """
    Find top-level Claude transcripts: {base}/{project}/*.jsonl.

    Subagent files are not listed; they are reached through their parent.
    Raises OSError if base_dir cannot be listed.
    """
    files = []
    for project in sorted(base_dir.iterdir()):
        if not project.is_dir():
            continue
        for f in _list_dir(project):
            if f.suffix == '.jsonl' and f.is_file():
                files.append(f)
    return files


def find_codex_files(base_dir: Path, max_depth: int = CODEX_MAX_DEPTH) -> list[Path]:
    """
    Find Codex rollouts under {base}/{year}/{month}/{day}/.

    Walks at most max_depth directory levels below base_dir. Raises OSError
    if base_dir cannot be listed.
    """
    files = []
    pending = [(0, sorted(base_dir.iterdir()))]
    while pending:
        depth, children = pending.pop(0)
        for child in children:
            if child.is_dir():
                if depth < max_depth:
                    pending.append((depth + 1, _list_dir(child)))
            elif child.suffix == '.jsonl' and child.is_file():
                files.append(child)
    return files


def find_gemini_files(base_dir: Path) -> list[Path]:
    """
    Find Gemini sessions: {base}/{project-hash}/chats/*.json.

    Projects without a chats directory are skipped. Raises OSError if
    base_dir cannot be listed.
    """
    files = []
    for project in sorted(base_dir.iterdir()):
        chats = project / 'chats'
        if not chats.is_dir():
            continue
        for f in _list_dir(chats):
            if f.suffix == '.json' and f.is_file():
                files.append(f)
    return files


def scan_claude_transcripts(
    base_path: PathLike,
    schema_logger: Optional[SchemaLogger] = None,
    scan_subagents: bool = True,
    max_file_size_bytes: Optional[int] = None,
    home: Optional[PathLike] = None,
) -> list[UnifiedTranscript]:
    """Summarize every Claude transcript; subagents follow their parent in the list."""
    base_dir = Path(expand_home(base_path, home))
    try:
        files = find_claude_files(base_dir)
    except OSError as e:
        _log_scan_failure('claude', base_path, e, schema_logger)
        return []

    transcripts = []
    for f in files:
        transcript = parse_claude_transcript(
            f,
            schema_logger=schema_logger,
            scan_subagents=scan_subagents,
            max_file_size_bytes=max_file_size_bytes,
        )
        if transcript is None:
            continue
        transcripts.append(transcript)
        if transcript.subagents:
            transcripts.extend(transcript.subagents)
    return transcripts


def scan_codex_transcripts(
    base_path: PathLike,
    schema_logger: Optional[SchemaLogger] = None,
    max_file_size_bytes: Optional[int] = None,
    home: Optional[PathLike] = None,
) -> list[UnifiedTranscript]:
    """Summarize every Codex rollout under the dated session tree."""
    base_dir = Path(expand_home(base_path, home))
    try:
        files = find_codex_files(base_dir)
    except OSError as e:
        _log_scan_failure('codex', base_path, e, schema_logger)
        return []

    transcripts = []
    for f in files:
        transcript = parse_codex_transcript(
            f, schema_logger=schema_logger, max_file_size_bytes=max_file_size_bytes
        )
        if transcript is not None:
            transcripts.append(transcript)
    return transcripts


def scan_gemini_transcripts(
    base_path: PathLike,
    schema_logger: Optional[SchemaLogger] = None,
    max_file_size_bytes: Optional[int] = None,
    home: Optional[PathLike] = None,
) -> list[UnifiedTranscript]:
    """Summarize every Gemini session under the per-project chats directories."""
    base_dir = Path(expand_home(base_path, home))
    try:
        files = find_gemini_files(base_dir)
    except OSError as e:
        _log_scan_failure('gemini', base_path, e, schema_logger)
        return []

    transcripts = []
    for f in files:
        transcript = parse_gemini_transcript(
            f, schema_logger=schema_logger, max_file_size_bytes=max_file_size_bytes
        )
        if transcript is not None:
            transcripts.append(transcript)
    return transcripts


def scan_transcripts(
    base_path: PathLike,
    agent: str,
    schema_logger: Optional[SchemaLogger] = None,
    scan_subagents: bool = True,
    max_file_size_bytes: Optional[int] = None,
    home: Optional[PathLike] = None,
) -> list[UnifiedTranscript]:
    """
    Scan a directory for transcripts of one agent type.

    'custom' has no directory layout and always yields []. Raises ValueError
    for an unsupported agent.
    """
    if agent == 'claude':
        return scan_claude_transcripts(
            base_path, schema_logger, scan_subagents, max_file_size_bytes, home
        )
    if agent == 'codex':
        return scan_codex_transcripts(base_path, schema_logger, max_file_size_bytes, home)
    if agent == 'gemini':
        return scan_gemini_transcripts(base_path, schema_logger, max_file_size_bytes, home)
    if agent == 'custom':
        return []
    raise ValueError(
        f'Unsupported agent type: "{agent}". Supported agents: claude, codex, gemini'
    )


def scan_all_transcripts(
    agent_paths: dict[str, PathLike],
    schema_logger: Optional[SchemaLogger] = None,
    scan_subagents: bool = True,
    max_file_size_bytes: Optional[int] = None,
    home: Optional[PathLike] = None,
) -> dict:
    """
    Scan several agents' directories.

    agent_paths maps agent type to base directory; empty paths are skipped.

    Returns dict with:
    - transcripts: every transcript found, grouped by agent in agent_paths order
    - stats: count per agent plus 'total'
    """
    transcripts: list[UnifiedTranscript] = []
    stats = {'claude': 0, 'codex': 0, 'gemini': 0, 'custom': 0, 'total': 0}

    for agent, base_path in agent_paths.items():
        if not base_path:
            continue
        found = scan_transcripts(
            base_path,
            agent,
            schema_logger=schema_logger,
            scan_subagents=scan_subagents,
            max_file_size_bytes=max_file_size_bytes,
            home=home,
        )
        transcripts.extend(found)
        stats[agent] = len(found)
        stats['total'] += len(found)

    return {'transcripts': transcripts, 'stats': stats}

