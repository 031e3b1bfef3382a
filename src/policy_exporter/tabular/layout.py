from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Sequence, Tuple

from ..util.errors import LayoutError


@dataclass(frozen=True)
class ColumnLayout:
    """
    Concrete header order of one sheet: the static columns with the dynamic
    (per group) block inserted after the anchor column.
    """

    headers: Tuple[str, ...]
    dynamic_start: int
    dynamic_end: int
    index: Mapping[str, int] = field(compare=False, repr=False, hash=False, default_factory=dict)

    @property
    def dynamic_columns(self) -> Tuple[str, ...]:
        return self.headers[self.dynamic_start : self.dynamic_end]

    @property
    def root_group(self) -> Optional[str]:
        if self.dynamic_start == self.dynamic_end:
            return None
        return self.headers[self.dynamic_start]

    def __len__(self) -> int:
        return len(self.headers)

    def is_dynamic(self, position: int) -> bool:
        return self.dynamic_start <= position < self.dynamic_end


def build_layout(static: Sequence[str], dynamic: Sequence[str], insert_after: str) -> ColumnLayout:
    try:
        anchor = list(static).index(insert_after)
    except ValueError:
        raise LayoutError(f"insertion anchor column '{insert_after}' is not a static column") from None
    insert_at = anchor + 1
    headers = tuple(static[:insert_at]) + tuple(dynamic) + tuple(static[insert_at:])

    seen = set()
    duplicates = []
    for header in headers:
        if header in seen:
            duplicates.append(header)
        seen.add(header)
    if duplicates:
        raise LayoutError(f"duplicate column names: {', '.join(sorted(set(duplicates)))}")

    index = MappingProxyType({header: i for i, header in enumerate(headers)})
    return ColumnLayout(
        headers=headers,
        dynamic_start=insert_at,
        dynamic_end=insert_at + len(dynamic),
        index=index,
    )
