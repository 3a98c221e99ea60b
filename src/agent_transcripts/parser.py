"""JSONL line reading and windowed entry parsing."""

from contextlib import closing
from pathlib import Path
from typing import Callable, Iterator, Optional, Union
import json
import os

from .models import AgentType, UnifiedEntry
from .schema_logger import SchemaLogger


# Files smaller than this are read whole; larger ones are streamed.
SMALL_FILE_THRESHOLD = 1024 * 1024  # 1 MiB
JSONL_STREAM_CHUNK_SIZE = 64 * 1024  # 64 KiB

DEFAULT_PAGE_LIMIT = 500

PathLike = Union[str, Path]

# (line, zero-based index of the non-blank line, transcript path, logger)
LineParser = Callable[[str, int, str, Optional[SchemaLogger]], Optional[UnifiedEntry]]


class TranscriptTooLargeError(ValueError):
    """Raised when a transcript exceeds the caller's size limit."""

    def __init__(self, path: PathLike, size: int, max_bytes: int, agent: str = 'transcript'):
        self.path = str(path)
        self.size = size
        self.max_bytes = max_bytes
        super().__init__(
            f"{agent.capitalize()} transcript exceeds max_file_size_bytes "
            f"({size} > {max_bytes}): {path}"
        )


def iter_jsonl_lines(path: PathLike, chunk_size: int = JSONL_STREAM_CHUNK_SIZE) -> Iterator[tuple[int, str]]:
    """
    Stream the non-blank lines of a file, yielding (index, line) pairs.

    Reads fixed-size byte chunks and carries the unterminated tail of each
    chunk into the next, so lines split across chunk boundaries come out
    whole. Lines are stripped; blank lines are skipped and do not consume an
    index. A final line without a trailing newline is still yielded.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    with open(path, 'rb') as f:
        leftover = b''
        index = 0
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break

            pieces = (leftover + chunk).split(b'\n')
            leftover = pieces.pop()

            for piece in pieces:
                line = piece.decode('utf-8', errors='replace').strip()
                if not line:
                    continue
                yield index, line
                index += 1

        line = leftover.decode('utf-8', errors='replace').strip()
        if line:
            yield index, line


def read_jsonl_lines(
    path: PathLike,
    on_line: Callable[[str, int], None],
    chunk_size: int = JSONL_STREAM_CHUNK_SIZE,
) -> int:
    """
    Call on_line(line, index) for every non-blank line, in order.

    Returns the number of non-blank lines. The file handle is closed on every
    exit path, including an exception raised by on_line.
    """
    total = 0
    with closing(iter_jsonl_lines(path, chunk_size)) as lines:
        for index, line in lines:
            on_line(line, index)
            total += 1
    return total


def read_file_chunk(path: PathLike, start: int, length: int) -> str:
    """Read up to length bytes from start without loading the whole file."""
    if length <= 0:
        return ''
    with open(path, 'rb') as f:
        f.seek(start)
        return f.read(length).decode('utf-8', errors='replace')


def check_file_size(path: PathLike, max_file_size_bytes: Optional[int], agent: str = 'transcript') -> os.stat_result:
    """
    Stat a transcript and enforce an optional size cap.

    Raises FileNotFoundError if the file is missing, and
    TranscriptTooLargeError if it is larger than max_file_size_bytes.
    """
    file_stat = os.stat(path)
    if max_file_size_bytes is not None and file_stat.st_size > max_file_size_bytes:
        raise TranscriptTooLargeError(path, file_stat.st_size, max_file_size_bytes, agent)
    return file_stat


def _attach_raw(entry: UnifiedEntry, line: str) -> None:
    try:
        entry.raw = json.loads(line)
    except ValueError:
        # The entry already parsed; a missing raw copy is not worth reporting.
        pass


def paginate_jsonl_entries(
    path: PathLike,
    parse_line: LineParser,
    agent: AgentType,
    offset: int = 0,
    limit: Optional[int] = DEFAULT_PAGE_LIMIT,
    include_raw: bool = False,
    schema_logger: Optional[SchemaLogger] = None,
    max_file_size_bytes: Optional[int] = None,
) -> dict:
    """
    Parse a window of entries from a JSONL transcript.

    The window is [offset, offset + limit) over non-blank lines; offset and
    limit are clamped to >= 0 and limit=None means no upper bound. Lines
    outside the window are counted but never parsed. Files under
    SMALL_FILE_THRESHOLD are read whole; larger files are streamed.

    Returns dict with:
    - entries: parsed UnifiedEntry objects in the window (unparseable lines omitted)
    - total: count of all non-blank lines in the file
    """
    file_stat = check_file_size(path, max_file_size_bytes, agent)
    transcript_path = str(path)

    start = max(0, offset)
    end = None if limit is None else start + max(0, limit)
    entries: list[UnifiedEntry] = []

    def handle_line(line: str, index: int) -> None:
        if index < start or (end is not None and index >= end):
            return
        entry = parse_line(line, index, transcript_path, schema_logger)
        if entry is None:
            return
        if include_raw:
            _attach_raw(entry, line)
        else:
            entry.raw = None
        entries.append(entry)

    if file_stat.st_size < SMALL_FILE_THRESHOLD:
        content = Path(path).read_bytes().decode('utf-8', errors='replace')
        lines = [line.strip() for line in content.split('\n')]
        lines = [line for line in lines if line]
        for index, line in enumerate(lines[start:end], start=start):
            handle_line(line, index)
        total = len(lines)
    else:
        total = read_jsonl_lines(path, handle_line)

    return {'entries': entries, 'total': total}
