from dataclasses import dataclass
from datetime import MINYEAR, datetime
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class MonthWindow:
    """Calendar month as the half-open interval ``[start, end)``."""

    year: int
    month: int
    start: datetime
    end: datetime

    @property
    def slug(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


def is_representable_year(year: int) -> bool:
    return year >= MINYEAR


def month_window(year: int, month: int) -> MonthWindow:
    if not 1 <= month <= 12:
        raise ValueError(f"month must be in 1..12, got {month}")
    start = datetime(year, month, 1)
    if month == 12:
        end = datetime(year + 1, 1, 1)
    else:
        end = datetime(year, month + 1, 1)
    return MonthWindow(year, month, start, end)


def window_for(moment: datetime) -> MonthWindow:
    return month_window(moment.year, moment.month)


def local_now(timezone: str) -> datetime:
    return datetime.now(ZoneInfo(timezone)).replace(tzinfo=None)


def to_local_naive(moment: datetime, timezone: str) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(ZoneInfo(timezone)).replace(tzinfo=None)
