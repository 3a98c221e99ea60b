"""Tests for transcript discovery."""

import json

import pytest

from agent_transcripts.schema_logger import SchemaLogger
from agent_transcripts.sessions import (
    find_claude_files,
    find_codex_files,
    find_gemini_files,
    scan_all_transcripts,
    scan_claude_transcripts,
    scan_codex_transcripts,
    scan_gemini_transcripts,
    scan_transcripts,
)


DEFAULT_PATHS = {
    'claude': '~/.claude/projects',
    'codex': '~/.codex/sessions',
    'gemini': '~/.gemini/tmp',
}


class TestFindFiles:
    """Tests for the per-agent file finders."""

    def test_claude_skips_subagents(self, claude_projects_dir):
        """Only top-level session files are listed."""
        files = find_claude_files(claude_projects_dir)

        assert [f.name for f in files] == ['sess-1.jsonl']

    def test_claude_ignores_other_files(self, claude_projects_dir):
        project = claude_projects_dir / '-home-dev-webapp'
        (project / 'notes.txt').write_text('x')
        (claude_projects_dir / 'stray.jsonl').write_text('{}')

        assert [f.name for f in find_claude_files(claude_projects_dir)] == ['sess-1.jsonl']

    def test_codex_dated_tree(self, codex_sessions_dir):
        files = find_codex_files(codex_sessions_dir)

        assert [f.name for f in files] == ['rollout-2025-01-15T10-30-00-0193f2a1.jsonl']

    def test_codex_depth_limit(self, codex_sessions_dir):
        """Files nested deeper than year/month/day are not found."""
        deep = codex_sessions_dir / '2025' / '01' / '15' / 'extra'
        deep.mkdir()
        (deep / 'rollout-deep.jsonl').write_text('{}\n')

        names = [f.name for f in find_codex_files(codex_sessions_dir)]

        assert 'rollout-deep.jsonl' not in names
        assert len(names) == 1

    def test_gemini_chats(self, gemini_tmp_dir):
        (gemini_tmp_dir / 'nochats').mkdir()

        files = find_gemini_files(gemini_tmp_dir)

        assert [f.parent.parent.name for f in files] == ['9a8b7c6d5e4f']

    def test_missing_base_raises(self, temp_dir):
        with pytest.raises(OSError):
            find_gemini_files(temp_dir / 'missing')


class TestScanAgents:
    """Tests for the per-agent scanners."""

    def test_claude_subagent_follows_parent(self, claude_projects_dir):
        transcripts = scan_claude_transcripts(claude_projects_dir)

        assert [t.id for t in transcripts] == ['claude:sess-1', 'claude:agent-7f3a']
        parent, child = transcripts
        assert parent.project_dir == '/home/dev/webapp'
        assert child.is_subagent is True
        assert child.parent_transcript_id == 'claude:sess-1'
        assert child.project_dir == '/home/dev/webapp'
        assert child.name == 'Search for login handlers'

    def test_claude_without_subagents(self, claude_projects_dir):
        transcripts = scan_claude_transcripts(claude_projects_dir, scan_subagents=False)

        assert [t.id for t in transcripts] == ['claude:sess-1']

    def test_codex(self, codex_sessions_dir):
        transcripts = scan_codex_transcripts(codex_sessions_dir)

        assert len(transcripts) == 1
        assert transcripts[0].project_dir == '/home/dev/webapp'

    def test_gemini(self, gemini_tmp_dir):
        transcripts = scan_gemini_transcripts(gemini_tmp_dir)

        assert len(transcripts) == 1
        assert transcripts[0].project_dir == '9a8b7c6d5e4f'
        assert transcripts[0].entry_count == 7

    def test_home_expansion(self, home_dir):
        transcripts = scan_codex_transcripts('~/.codex/sessions', home=home_dir)

        assert len(transcripts) == 1

    def test_missing_base_logged(self, temp_dir):
        """A missing directory gives [] and one parse_error."""
        logger = SchemaLogger()

        assert scan_claude_transcripts(temp_dir / 'missing', schema_logger=logger) == []
        issue = logger.issues()[0]
        assert issue.issue_type == 'parse_error'
        assert issue.agent == 'claude'

    def test_unreadable_transcript_skipped(self, gemini_tmp_dir):
        """A broken file is logged and left out; the others still load."""
        logger = SchemaLogger()
        chats = gemini_tmp_dir / '9a8b7c6d5e4f' / 'chats'
        (chats / 'session-broken.json').write_text('{"sessionId": ')

        transcripts = scan_gemini_transcripts(gemini_tmp_dir, schema_logger=logger)

        assert len(transcripts) == 1
        assert logger.stats()['by_type'] == {'parse_error': 1}

    def test_size_cap_applies(self, codex_sessions_dir):
        logger = SchemaLogger()

        assert scan_codex_transcripts(codex_sessions_dir, schema_logger=logger, max_file_size_bytes=10) == []
        assert 'exceeds max_file_size_bytes' in logger.issues()[0].description


class TestScanTranscripts:
    """Tests for scan_transcripts dispatch."""

    def test_dispatch(self, home_dir):
        transcripts = scan_transcripts('~/.gemini/tmp', 'gemini', home=home_dir)

        assert [t.agent for t in transcripts] == ['gemini']

    def test_custom_is_empty(self, home_dir):
        assert scan_transcripts(home_dir, 'custom') == []

    def test_unsupported(self, home_dir):
        with pytest.raises(ValueError, match='Unsupported agent type'):
            scan_transcripts(home_dir, 'cursor')


class TestScanAllTranscripts:
    """Tests for scan_all_transcripts."""

    def test_all_agents(self, home_dir):
        result = scan_all_transcripts(DEFAULT_PATHS, home=home_dir)

        assert result['stats'] == {'claude': 2, 'codex': 1, 'gemini': 1, 'custom': 0, 'total': 4}
        assert [t.agent for t in result['transcripts']] == ['claude', 'claude', 'codex', 'gemini']

    def test_empty_path_skipped(self, home_dir):
        result = scan_all_transcripts({'claude': '', 'codex': '~/.codex/sessions'}, home=home_dir)

        assert result['stats']['total'] == 1
        assert result['stats']['claude'] == 0

    def test_missing_directories(self, temp_dir):
        logger = SchemaLogger()

        result = scan_all_transcripts(DEFAULT_PATHS, schema_logger=logger, home=temp_dir)

        assert result['transcripts'] == []
        assert logger.stats()['by_agent'] == {'claude': 1, 'codex': 1, 'gemini': 1}

    def test_transcripts_serialize(self, home_dir):
        result = scan_all_transcripts(DEFAULT_PATHS, home=home_dir)

        data = json.loads(json.dumps([t.to_dict() for t in result['transcripts']]))

        assert data[0]['subagents'][0]['parentTranscriptId'] == 'claude:sess-1'
