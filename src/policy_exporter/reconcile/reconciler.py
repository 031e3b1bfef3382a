from __future__ import annotations

import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Generic, Iterable, List, Sequence, TypeVar

from ..logging import get_logger
from ..model.records import Reconcilable
from ..util.errors import EmptyIdentityWarning

LOG = get_logger(__name__)

R = TypeVar("R", bound=Reconcilable)


class SourceMode(str, Enum):
    # insert new identities and fill blanks of existing ones
    MERGE = "merge"
    # insert new identities, never touch existing ones
    NEW_ONLY = "new-only"
    # fill blanks of existing identities, never insert
    FILL_ONLY = "fill-only"

    @classmethod
    def parse(cls, raw: str) -> SourceMode:
        text = (raw or "").strip().lower().replace("_", "-")
        for mode in cls:
            if mode.value == text:
                return mode
        raise ValueError(f"Unknown source mode '{raw}' (expected one of: {', '.join(m.value for m in cls)})")


@dataclass(frozen=True)
class SourceBatch(Generic[R]):
    """Records of one kind read from one source, merged in list order."""

    source: str
    records: Sequence[R]
    mode: SourceMode = SourceMode.MERGE


def reconcile(batches: Iterable[SourceBatch[R]], kind: str = "record") -> List[R]:
    """
    Merge same-identity records across batches into one record per identity.

    Batches are applied strictly in the given order and merging is fill-only,
    so the first non-empty value of a field wins. The result keeps first-seen
    order; callers sort before rendering. Records with an empty identity key
    are dropped with an EmptyIdentityWarning.
    """
    merged: Dict[str, R] = {}
    counts = {"inserted": 0, "merged": 0, "skipped": 0, "dropped": 0}

    for batch in batches:
        for record in batch.records:
            key = record.identity_key
            if not key:
                counts["dropped"] += 1
                warnings.warn(
                    f"Dropping {kind} without identity key from source '{batch.source}'",
                    EmptyIdentityWarning,
                    stacklevel=2,
                )
                continue
            existing = merged.get(key)
            if existing is None:
                if batch.mode is SourceMode.FILL_ONLY:
                    counts["skipped"] += 1
                    continue
                merged[key] = record
                counts["inserted"] += 1
                continue
            if batch.mode is SourceMode.NEW_ONLY:
                counts["skipped"] += 1
                continue
            merged[key] = existing.merge(record)
            counts["merged"] += 1

    LOG.info(
        "Reconciled %s records",
        kind,
        extra={"step": "reconcile", "phase": kind, "records": len(merged), **counts},
    )
    return list(merged.values())
