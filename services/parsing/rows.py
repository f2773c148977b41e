"""Row reassembly for wrapped table lines.

PDF text extraction often wraps one logical invoice row across several
physical lines. ``RowAssembler`` is a small state machine that glues
continuation lines onto the row that precedes them:

    IDLE          --row start-->      ACCUMULATING (buffer = line)
    IDLE          --continuation-->   IDLE (line ignored)
    ACCUMULATING  --row start-->      ACCUMULATING (buffer = line)
    ACCUMULATING  --continuation-->   ACCUMULATING (buffer += line)
    ACCUMULATING  --buffer parses-->  IDLE (record emitted)

In eager mode the buffer is parsed after every line so a short row is
emitted as soon as it becomes valid. In deferred mode a buffer is only
parsed when the next row starts or the table ends, which lets trailing
continuation lines still contribute to the description.

The assembler knows nothing about tokenization; templates supply the
``is_row_start`` and ``parse_row`` callables.
"""

import logging
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

RowStartPredicate = Callable[[str], bool]
RowParser = Callable[[str, int], T | None]


class RowState(str, Enum):
    """Assembler states."""

    IDLE = "idle"
    ACCUMULATING = "accumulating"


class RowAssembler(Generic[T]):
    """Accumulates physical lines into logical rows and parses them.

    Attributes:
        state: Current state
        buffer: Text accumulated for the row under construction
        next_line_no: Sequence number handed to the next parsed record
    """

    def __init__(
        self,
        is_row_start: RowStartPredicate,
        parse_row: RowParser[T],
        *,
        eager: bool = True,
    ) -> None:
        self._is_row_start = is_row_start
        self._parse_row = parse_row
        self.eager = eager
        self.state = RowState.IDLE
        self.buffer: str | None = None
        self.next_line_no = 1

    def feed(self, line: str) -> T | None:
        """Consume one physical line.

        Returns:
            A parsed record if this line completed one, otherwise None
        """
        emitted: T | None = None

        if self._is_row_start(line):
            if not self.eager and self.buffer is not None:
                emitted = self._try_emit()
            elif self.buffer is not None:
                logger.debug(f"Discarding unparsed row buffer: {self.buffer!r}")
            self.buffer = line
            self.state = RowState.ACCUMULATING
        elif self.state is RowState.ACCUMULATING and self.buffer is not None:
            self.buffer = f"{self.buffer} {line}"
        else:
            return None

        if self.eager:
            emitted = self._try_emit()
        return emitted

    def finish(self) -> T | None:
        """Flush the pending buffer at the end of the table."""
        if self.buffer is None:
            return None
        record = self._try_emit()
        self.buffer = None
        self.state = RowState.IDLE
        return record

    def _try_emit(self) -> T | None:
        if self.buffer is None:
            return None
        record = self._parse_row(self.buffer, self.next_line_no)
        if record is None:
            return None
        self.next_line_no += 1
        self.buffer = None
        self.state = RowState.IDLE
        return record


def assemble_rows(
    lines: Iterable[str],
    is_row_start: RowStartPredicate,
    parse_row: RowParser[T],
    *,
    eager: bool = True,
) -> list[T]:
    """Run a RowAssembler over ``lines`` and collect every parsed record."""
    assembler: RowAssembler[T] = RowAssembler(is_row_start, parse_row, eager=eager)
    records: list[T] = []
    for line in lines:
        record = assembler.feed(line)
        if record is not None:
            records.append(record)
    tail = assembler.finish()
    if tail is not None:
        records.append(tail)
    return records
