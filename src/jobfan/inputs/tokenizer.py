"""
Input Tokenizer.

Turns raw input items into numbered argument groups:

    items ("a.txt,b.txt", ...) -> Record(text, fields)
    records                    -> ArgumentGroup (group_size records each)

An item is either a string (a line of input) or a tuple of strings (one
combination of ':::' argument lists, already split into fields).

Malformed records do not stop the run: the group containing them is
emitted as a RejectedGroup in place of an ArgumentGroup. Only a header
that cannot be interpreted at all raises.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Union

from jobfan.scheduler.errors import MalformedInputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Record:
    """One input item and its fields."""

    text: str
    fields: tuple


@dataclass(frozen=True)
class ArgumentGroup:
    """
    The arguments of one job.

    `records` holds group_size records (fewer for the final group, none
    when group_size is 0). `header` names the columns when header mode
    is on.
    """

    records: tuple = ()
    header: Optional[tuple] = None

    @property
    def texts(self) -> tuple:
        return tuple(record.text for record in self.records)

    @property
    def fields(self) -> tuple:
        """Fields of all records, flattened in order."""
        return tuple(f for record in self.records for f in record.fields)

    def named(self, name: str) -> Optional[list]:
        """Values of column `name` across the group, or None if unknown."""
        if self.header is None or name not in self.header:
            return None
        column = self.header.index(name)
        return [record.fields[column] for record in self.records]

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class RejectedGroup:
    """A group that could not be tokenized; its job fails without running."""

    error: MalformedInputError
    texts: tuple = ()


TokenizedGroup = Union[ArgumentGroup, RejectedGroup]


class Tokenizer:
    """
    Groups input items into ArgumentGroups.

    Args:
        group_size: Records per job; 0 replays the command once per record
            without inserting it
        column_separator: Split each line record into fields on this string
        header: Treat the first record as column names
    """

    def __init__(
        self,
        group_size: int = 1,
        column_separator: Optional[str] = None,
        header: bool = False,
    ):
        if group_size < 0:
            raise ValueError(f"group_size must be >= 0, got {group_size}")
        self.group_size = group_size
        self.column_separator = column_separator
        self.header = header
        self._columns: Optional[tuple] = None

    @property
    def columns(self) -> Optional[tuple]:
        """Column names once the header record has been read."""
        return self._columns

    def split_fields(self, item: Union[str, tuple]) -> Record:
        """
        Turn one item into a Record.

        Raises:
            MalformedInputError: If the record's field count differs from
                the header's
        """
        if isinstance(item, tuple):
            fields = tuple(str(v) for v in item)
            text = " ".join(fields)
        else:
            text = item
            if self.column_separator:
                fields = tuple(item.split(self.column_separator))
            else:
                fields = (item,)

        if self._columns is not None and len(fields) != len(self._columns):
            raise MalformedInputError(
                f"Record has {len(fields)} field(s), header has {len(self._columns)}: {text!r}",
                record=text,
            )
        return Record(text=text, fields=fields)

    def _read_header(self, item: Union[str, tuple]) -> None:
        names = self.split_fields(item).fields
        stripped = tuple(name.strip() for name in names)
        if any(not name for name in stripped):
            raise MalformedInputError(f"Header has an empty column name: {item!r}")
        if len(set(stripped)) != len(stripped):
            raise MalformedInputError(f"Header has duplicated column names: {item!r}")
        self._columns = stripped
        logger.debug(f"Header columns: {', '.join(stripped)}")

    def groups(self, items: Iterable[Union[str, tuple]]) -> Iterator[tuple[int, TokenizedGroup]]:
        """
        Yield (sequence_index, group) pairs with consecutive indices from 0.

        Raises:
            MalformedInputError: If header mode is on and the header is unusable
        """
        iterator = iter(items)

        if self.header:
            first = next(iterator, None)
            if first is None:
                return
            self._read_header(first)

        sequence_index = 0

        if self.group_size == 0:
            for item in iterator:
                try:
                    self.split_fields(item)
                except MalformedInputError as e:
                    yield sequence_index, RejectedGroup(error=e, texts=(e.record or "",))
                else:
                    yield sequence_index, ArgumentGroup(header=self._columns)
                sequence_index += 1
            return

        batch: list = []
        error: Optional[MalformedInputError] = None
        for item in iterator:
            try:
                batch.append(self.split_fields(item))
            except MalformedInputError as e:
                batch.append(Record(text=e.record or "", fields=()))
                error = error or e

            if len(batch) == self.group_size:
                yield sequence_index, self._finish(batch, error)
                sequence_index += 1
                batch = []
                error = None

        # Final partial group still forms one job
        if batch:
            yield sequence_index, self._finish(batch, error)

    def _finish(self, batch: list, error: Optional[MalformedInputError]) -> TokenizedGroup:
        if error is not None:
            return RejectedGroup(error=error, texts=tuple(record.text for record in batch))
        return ArgumentGroup(records=tuple(batch), header=self._columns)
