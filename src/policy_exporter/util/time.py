from __future__ import annotations

from datetime import datetime
from typing import Optional


def date_stamp(now: Optional[datetime] = None) -> str:
    """YYYYMMDD of the local date, used in dated file names."""
    return (now or datetime.now()).strftime("%Y%m%d")


def doc_timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
