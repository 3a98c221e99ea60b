"""Pytest fixtures for agent-transcripts tests."""

import pytest
from pathlib import Path
import tempfile
import shutil
import json

from agent_transcripts.schema_logger import SchemaLogger


CLAUDE_PROJECT = '-home-dev-webapp'
CODEX_ROLLOUT = 'rollout-2025-01-15T10-30-00-0193f2a1.jsonl'
GEMINI_HASH = '9a8b7c6d5e4f'


@pytest.fixture
def fixtures_dir() -> Path:
    """Path to the test fixtures directory."""
    return Path(__file__).parent / 'fixtures'


@pytest.fixture
def claude_session_path(fixtures_dir) -> Path:
    """Path to the Claude Code session fixture."""
    return fixtures_dir / 'claude-session.jsonl'


@pytest.fixture
def codex_session_path(fixtures_dir) -> Path:
    """Path to the Codex CLI rollout fixture."""
    return fixtures_dir / 'codex-session.jsonl'


@pytest.fixture
def gemini_session_path(fixtures_dir) -> Path:
    """Path to the Gemini CLI session fixture."""
    return fixtures_dir / 'gemini-session.json'


@pytest.fixture
def malformed_path(fixtures_dir) -> Path:
    """Path to the malformed Claude JSONL file."""
    return fixtures_dir / 'malformed.jsonl'


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test outputs."""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir)


@pytest.fixture
def schema_logger() -> SchemaLogger:
    """Fresh schema logger."""
    return SchemaLogger()


@pytest.fixture
def write_jsonl(temp_dir):
    """
    Factory writing records to a JSONL file under temp_dir.

    Dicts are JSON-encoded; strings are written verbatim.
    """
    def _write(records, name='transcript.jsonl', trailing_newline=True) -> Path:
        path = temp_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
        content = '\n'.join(lines)
        if trailing_newline:
            content += '\n'
        path.write_text(content, encoding='utf-8')
        return path

    return _write


@pytest.fixture
def home_dir(temp_dir, claude_session_path, codex_session_path, gemini_session_path):
    """
    A home directory holding one transcript per agent in its default layout.

    The Claude session has one subagent transcript.
    """
    home = temp_dir / 'home'

    project = home / '.claude' / 'projects' / CLAUDE_PROJECT
    project.mkdir(parents=True)
    shutil.copy(claude_session_path, project / 'sess-1.jsonl')
    subagents = project / 'sess-1' / 'subagents'
    subagents.mkdir(parents=True)
    (subagents / 'agent-7f3a.jsonl').write_text(
        json.dumps({
            'uuid': 'sub-u1',
            'type': 'user',
            'timestamp': '2025-01-15T10:00:20.000Z',
            'sessionId': 'sess-1',
            'isSidechain': True,
            'agentId': '7f3a',
            'message': {'role': 'user', 'content': 'Search for login handlers'},
        }) + '\n',
        encoding='utf-8',
    )

    day = home / '.codex' / 'sessions' / '2025' / '01' / '15'
    day.mkdir(parents=True)
    shutil.copy(codex_session_path, day / CODEX_ROLLOUT)

    chats = home / '.gemini' / 'tmp' / GEMINI_HASH / 'chats'
    chats.mkdir(parents=True)
    shutil.copy(gemini_session_path, chats / 'session-2025-01-15T11-00-5f1c2d3e.json')

    return home


@pytest.fixture
def claude_projects_dir(home_dir) -> Path:
    return home_dir / '.claude' / 'projects'


@pytest.fixture
def codex_sessions_dir(home_dir) -> Path:
    return home_dir / '.codex' / 'sessions'


@pytest.fixture
def gemini_tmp_dir(home_dir) -> Path:
    return home_dir / '.gemini' / 'tmp'
