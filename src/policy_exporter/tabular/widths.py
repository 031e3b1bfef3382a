from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence

MAX_COLUMN_WIDTH = 255
WIDTH_PADDING = 2


@dataclass(frozen=True)
class Cell:
    """Rendered cell text; width is the longest line since cells may wrap."""

    value: str = ""

    @property
    def width(self) -> int:
        if not self.value:
            return 0
        return max(len(line) for line in self.value.split("\n"))


def cell_of_lines(lines: Iterable[str]) -> Cell:
    return Cell("\n".join(lines))


class ColumnWidths:
    def __init__(self, headers: Sequence[str]) -> None:
        self._widths: List[int] = [len(h) for h in headers]

    def observe(self, row: Sequence[Cell]) -> None:
        for i, cell in enumerate(row):
            if i < len(self._widths) and cell.width > self._widths[i]:
                self._widths[i] = cell.width

    def fitted(self) -> List[float]:
        return [float(min(w + WIDTH_PADDING, MAX_COLUMN_WIDTH)) for w in self._widths]
