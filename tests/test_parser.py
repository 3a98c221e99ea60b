"""Tests for the chunked line reader and pagination."""

import pytest
import json

from agent_transcripts import parser
from agent_transcripts.claude import parse_claude_entry
from agent_transcripts.parser import (
    DEFAULT_PAGE_LIMIT,
    TranscriptTooLargeError,
    check_file_size,
    iter_jsonl_lines,
    paginate_jsonl_entries,
    read_file_chunk,
    read_jsonl_lines,
)


def make_record(i: int) -> dict:
    return {
        'uuid': f'u{i}',
        'type': 'user',
        'timestamp': '2025-01-15T10:00:00.000Z',
        'message': {'role': 'user', 'content': f'message number {i}'},
    }


class TestIterJsonlLines:
    """Tests for iter_jsonl_lines."""

    def test_yields_indexed_lines(self, write_jsonl):
        """Yield (index, line) for each line in order."""
        path = write_jsonl(['{"a":1}', '{"b":2}', '{"c":3}'])

        assert list(iter_jsonl_lines(path)) == [(0, '{"a":1}'), (1, '{"b":2}'), (2, '{"c":3}')]

    def test_blank_lines_do_not_consume_index(self, write_jsonl):
        """Consecutive blank and whitespace-only lines are skipped."""
        path = write_jsonl(['{"a":1}', '', '   ', '', '{"b":2}'])

        assert list(iter_jsonl_lines(path)) == [(0, '{"a":1}'), (1, '{"b":2}')]

    def test_final_line_without_newline(self, write_jsonl):
        """A last line with no trailing newline is still yielded."""
        path = write_jsonl(['{"a":1}', '{"b":2}'], trailing_newline=False)

        assert [line for _, line in iter_jsonl_lines(path)] == ['{"a":1}', '{"b":2}']

    def test_lines_are_stripped(self, write_jsonl):
        """Surrounding whitespace and CR are removed."""
        path = write_jsonl(['  {"a":1}  \r', '\t{"b":2}'])

        assert [line for _, line in iter_jsonl_lines(path)] == ['{"a":1}', '{"b":2}']

    def test_small_chunks_match_default(self, write_jsonl):
        """Records straddling 8-byte chunk boundaries come out whole."""
        path = write_jsonl([make_record(i) for i in range(20)])

        assert list(iter_jsonl_lines(path, chunk_size=8)) == list(iter_jsonl_lines(path))

    def test_multibyte_characters_across_chunks(self, write_jsonl):
        """Multibyte UTF-8 split by a chunk boundary decodes correctly."""
        path = write_jsonl(['{"text":"héllo wörld ✓"}', '{"text":"日本語"}'])

        lines = [line for _, line in iter_jsonl_lines(path, chunk_size=3)]
        assert json.loads(lines[0])['text'] == 'héllo wörld ✓'
        assert json.loads(lines[1])['text'] == '日本語'

    def test_empty_file(self, write_jsonl):
        """An empty file yields nothing."""
        path = write_jsonl([], trailing_newline=False)

        assert list(iter_jsonl_lines(path)) == []

    def test_invalid_chunk_size(self, write_jsonl):
        """Non-positive chunk size is rejected."""
        path = write_jsonl(['{}'])

        with pytest.raises(ValueError):
            list(iter_jsonl_lines(path, chunk_size=0))

    def test_missing_file(self, temp_dir):
        """Opening a missing file fails fast."""
        with pytest.raises(FileNotFoundError):
            list(iter_jsonl_lines(temp_dir / 'missing.jsonl'))


class TestReadJsonlLines:
    """Tests for read_jsonl_lines."""

    def test_callback_order_and_count(self, write_jsonl):
        """Invoke callback sequentially and return the non-blank count."""
        path = write_jsonl(['{"a":1}', '', '{"b":2}', '{"c":3}'])
        seen = []

        total = read_jsonl_lines(path, lambda line, index: seen.append((index, line)))

        assert total == 3
        assert [index for index, _ in seen] == [0, 1, 2]

    def test_callback_exception_propagates(self, write_jsonl):
        """An exception raised by the callback reaches the caller."""
        path = write_jsonl(['{"a":1}', '{"b":2}'])

        def explode(line, index):
            raise RuntimeError('stop')

        with pytest.raises(RuntimeError, match='stop'):
            read_jsonl_lines(path, explode)

    def test_chunk_size_passed_through(self, write_jsonl):
        """Small chunk size gives the same lines as the default."""
        path = write_jsonl([make_record(i) for i in range(5)])
        small, large = [], []

        read_jsonl_lines(path, lambda line, index: small.append(line), chunk_size=8)
        read_jsonl_lines(path, lambda line, index: large.append(line))

        assert small == large


class TestFileHelpers:
    """Tests for read_file_chunk and check_file_size."""

    def test_read_file_chunk(self, write_jsonl):
        """Read a byte range from the middle of a file."""
        path = write_jsonl(['0123456789'], trailing_newline=False)

        assert read_file_chunk(path, 2, 4) == '2345'
        assert read_file_chunk(path, 8, 100) == '89'
        assert read_file_chunk(path, 0, 0) == ''

    def test_check_file_size_under_limit(self, write_jsonl):
        """Return the stat result when within the limit."""
        path = write_jsonl(['{"a":1}'])

        assert check_file_size(path, 1000).st_size == path.stat().st_size
        assert check_file_size(path, None).st_size == path.stat().st_size

    def test_check_file_size_over_limit(self, write_jsonl):
        """Raise naming the path and both byte counts."""
        path = write_jsonl(['{"a":1}'])
        size = path.stat().st_size

        with pytest.raises(TranscriptTooLargeError) as exc_info:
            check_file_size(path, 3, 'claude')

        message = str(exc_info.value)
        assert f'({size} > 3)' in message
        assert str(path) in message
        assert message.startswith('Claude transcript')
        assert isinstance(exc_info.value, ValueError)


class TestPaginateJsonlEntries:
    """Tests for paginate_jsonl_entries."""

    def test_default_limit(self, write_jsonl):
        """Default page is 500 entries."""
        path = write_jsonl([make_record(i) for i in range(DEFAULT_PAGE_LIMIT + 20)])

        result = paginate_jsonl_entries(path, parse_claude_entry, 'claude')

        assert len(result['entries']) == DEFAULT_PAGE_LIMIT
        assert result['total'] == DEFAULT_PAGE_LIMIT + 20

    def test_window(self, write_jsonl):
        """Return the half-open window [offset, offset + limit)."""
        path = write_jsonl([make_record(i) for i in range(10)])

        result = paginate_jsonl_entries(path, parse_claude_entry, 'claude', offset=3, limit=4)

        assert [e.id for e in result['entries']] == ['u3', 'u4', 'u5', 'u6']
        assert result['total'] == 10

    def test_limit_zero(self, write_jsonl):
        """limit=0 returns no entries but the full total."""
        path = write_jsonl([make_record(i) for i in range(5)])

        result = paginate_jsonl_entries(path, parse_claude_entry, 'claude', limit=0)

        assert result == {'entries': [], 'total': 5}

    def test_offset_past_end(self, write_jsonl):
        """offset >= total returns no entries."""
        path = write_jsonl([make_record(i) for i in range(5)])

        result = paginate_jsonl_entries(path, parse_claude_entry, 'claude', offset=5)

        assert result == {'entries': [], 'total': 5}

    def test_negative_values_clamped(self, write_jsonl):
        """Negative offset is treated as 0 and negative limit as 0."""
        path = write_jsonl([make_record(i) for i in range(5)])

        from_start = paginate_jsonl_entries(path, parse_claude_entry, 'claude', offset=-3, limit=2)
        empty = paginate_jsonl_entries(path, parse_claude_entry, 'claude', limit=-1)

        assert [e.id for e in from_start['entries']] == ['u0', 'u1']
        assert empty['entries'] == []
        assert empty['total'] == 5

    def test_unbounded_limit(self, write_jsonl):
        """limit=None returns everything from offset on."""
        path = write_jsonl([make_record(i) for i in range(DEFAULT_PAGE_LIMIT + 5)])

        result = paginate_jsonl_entries(path, parse_claude_entry, 'claude', offset=2, limit=None)

        assert len(result['entries']) == DEFAULT_PAGE_LIMIT + 3

    def test_raw_stripped_by_default(self, write_jsonl):
        """_raw is absent unless requested."""
        path = write_jsonl([make_record(0)])

        plain = paginate_jsonl_entries(path, parse_claude_entry, 'claude')
        with_raw = paginate_jsonl_entries(path, parse_claude_entry, 'claude', include_raw=True)

        assert plain['entries'][0].raw is None
        assert '_raw' not in plain['entries'][0].to_dict()
        assert with_raw['entries'][0].raw == make_record(0)

    def test_size_limit_checked_before_parsing(self, write_jsonl):
        """An oversized file fails before any line is parsed."""
        path = write_jsonl([make_record(i) for i in range(3)])
        calls = []

        def parse_line(line, index, transcript_path, schema_logger):
            calls.append(index)
            return parse_claude_entry(line, index, transcript_path, schema_logger)

        with pytest.raises(TranscriptTooLargeError):
            paginate_jsonl_entries(path, parse_line, 'claude', max_file_size_bytes=10)
        assert calls == []

    def test_missing_file_raises(self, temp_dir):
        """A missing file propagates FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            paginate_jsonl_entries(temp_dir / 'missing.jsonl', parse_claude_entry, 'claude')

    def test_pages_concatenate_to_full_result(self, write_jsonl):
        """Non-overlapping windows reassemble the unwindowed result."""
        path = write_jsonl([make_record(i) for i in range(23)])

        full = paginate_jsonl_entries(path, parse_claude_entry, 'claude', limit=None)
        pages = []
        for offset in range(0, full['total'], 5):
            pages.extend(paginate_jsonl_entries(path, parse_claude_entry, 'claude', offset=offset, limit=5)['entries'])

        assert [e.id for e in pages] == [e.id for e in full['entries']]

    def test_idempotent(self, claude_session_path):
        """Parsing the same file twice gives identical results."""
        first = paginate_jsonl_entries(claude_session_path, parse_claude_entry, 'claude')
        second = paginate_jsonl_entries(claude_session_path, parse_claude_entry, 'claude')

        assert first['total'] == second['total']
        # Records without a timestamp get the current time, so compare the rest
        assert [(e.id, e.type, e.text) for e in first['entries']] == \
            [(e.id, e.type, e.text) for e in second['entries']]


class TestStreamingPath:
    """Pagination over files at or above the small-file threshold."""

    def test_streaming_only_parses_window(self, write_jsonl, monkeypatch):
        """The classifier never runs on lines outside the window."""
        monkeypatch.setattr(parser, 'SMALL_FILE_THRESHOLD', 0)
        path = write_jsonl([make_record(i) for i in range(50)])
        calls = []

        def parse_line(line, index, transcript_path, schema_logger):
            calls.append(index)
            return parse_claude_entry(line, index, transcript_path, schema_logger)

        result = paginate_jsonl_entries(path, parse_line, 'claude', offset=10, limit=5)

        assert calls == [10, 11, 12, 13, 14]
        assert [e.id for e in result['entries']] == ['u10', 'u11', 'u12', 'u13', 'u14']
        assert result['total'] == 50

    def test_streaming_matches_whole_file_read(self, write_jsonl, monkeypatch):
        """Both read paths return the same page."""
        path = write_jsonl([make_record(i) for i in range(30)] + ['', 'garbage'])

        small = paginate_jsonl_entries(path, parse_claude_entry, 'claude', offset=25, limit=10)
        monkeypatch.setattr(parser, 'SMALL_FILE_THRESHOLD', 0)
        streamed = paginate_jsonl_entries(path, parse_claude_entry, 'claude', offset=25, limit=10)

        assert [e.id for e in small['entries']] == [e.id for e in streamed['entries']]
        assert small['total'] == streamed['total'] == 31

    def test_bare_carriage_return_is_not_a_line_break(self, temp_dir, monkeypatch):
        """Only \\n separates lines, on both read paths."""
        path = temp_dir / 'cr.jsonl'
        path.write_bytes(
            json.dumps(make_record(0)).encode() + b'\r' + json.dumps(make_record(1)).encode() + b'\n'
        )

        small = paginate_jsonl_entries(path, parse_claude_entry, 'claude')
        monkeypatch.setattr(parser, 'SMALL_FILE_THRESHOLD', 0)
        streamed = paginate_jsonl_entries(path, parse_claude_entry, 'claude')

        assert small['total'] == streamed['total'] == 1
        assert small['entries'] == streamed['entries'] == []

    def test_large_file(self, write_jsonl):
        """A real file over 1 MiB is paged by streaming."""
        padding = 'x' * 400
        records = []
        for i in range(3000):
            record = make_record(i)
            record['message']['content'] = f'{i} {padding}'
            records.append(record)
        path = write_jsonl(records)
        assert path.stat().st_size >= parser.SMALL_FILE_THRESHOLD

        result = paginate_jsonl_entries(path, parse_claude_entry, 'claude', offset=2990, limit=20)

        assert result['total'] == 3000
        assert [e.id for e in result['entries']] == [f'u{i}' for i in range(2990, 3000)]
