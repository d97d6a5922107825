"""
Input sources.

Every source is a lazy generator so arbitrarily large input is never
fully buffered:
- read_records: delimiter-separated records from a text stream
- numeric_range: inclusive integer range
- iter_file_paths: glob-expanded file paths
- argument_product: cartesian product of ':::' argument lists
"""

import glob
import itertools
import logging
import os
from typing import Iterable, Iterator, Sequence, TextIO

from jobfan.config import DEFAULT_DELIMITER, READ_CHUNK_SIZE
from jobfan.scheduler.errors import MalformedInputError

logger = logging.getLogger(__name__)


def read_records(
    stream: TextIO,
    delimiter: str = DEFAULT_DELIMITER,
    chunk_size: int = READ_CHUNK_SIZE,
) -> Iterator[str]:
    """
    Split a text stream into records.

    A trailing delimiter does not produce an empty record; empty records
    between two delimiters are kept.

    Args:
        stream: Text stream (stdin, an open file, io.StringIO)
        delimiter: Record delimiter, e.g. "\\n" or "\\0"
        chunk_size: Characters read per call

    Yields:
        Records without their delimiter
    """
    if not delimiter:
        raise MalformedInputError("Record delimiter must not be empty")

    pending = ""
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        # pending holds no complete delimiter, so only its last few
        # characters can start one
        search_from = max(0, len(pending) - len(delimiter) + 1)
        pending += chunk

        start = 0
        while True:
            end = pending.find(delimiter, max(start, search_from))
            if end < 0:
                break
            yield pending[start:end]
            start = end + len(delimiter)
        pending = pending[start:]

    if pending:
        yield pending


def parse_range(text: str) -> tuple[int, int, int]:
    """
    Parse "START:END[:STEP]".

    Raises:
        MalformedInputError: If the range cannot be parsed
    """
    parts = text.split(":")
    if len(parts) not in (2, 3):
        raise MalformedInputError(f"Invalid range (expected START:END[:STEP]): {text}")
    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        raise MalformedInputError(f"Invalid range (not integers): {text}") from None

    start, end = numbers[0], numbers[1]
    step = numbers[2] if len(numbers) == 3 else (1 if end >= start else -1)
    return start, end, step


def numeric_range(start: int, end: int, step: int = 1) -> Iterator[str]:
    """
    Yield integers from start to end inclusive, as strings.

    Raises:
        MalformedInputError: If step is zero
    """
    if step == 0:
        raise MalformedInputError("Range step must not be zero")

    value = start
    if step > 0:
        while value <= end:
            yield str(value)
            value += step
    else:
        while value >= end:
            yield str(value)
            value += step


def iter_file_paths(patterns: Iterable[str]) -> Iterator[str]:
    """
    Expand glob patterns into file paths.

    Directories expand to every file below them. Matches for each pattern
    are sorted; patterns matching nothing are logged and skipped.
    """
    for pattern in patterns:
        matches = sorted(glob.glob(pattern, recursive=True))
        if not matches:
            logger.warning(f"No files match: {pattern}")
            continue

        for match in matches:
            if os.path.isdir(match):
                for root, dirs, files in os.walk(match):
                    dirs.sort()
                    for name in sorted(files):
                        yield os.path.join(root, name)
            else:
                yield match


def argument_product(lists: Sequence[Sequence[str]]) -> Iterator[tuple]:
    """
    Cartesian product of argument lists.

    The first list varies slowest:
    [["a", "b"], ["1", "2"]] -> (a,1) (a,2) (b,1) (b,2)
    """
    if not lists:
        return iter(())
    return itertools.product(*lists)
