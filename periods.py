from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


@dataclass(frozen=True)
class BudgetMonth:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError("Month must be between 1 and 12")

    @property
    def slug(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return self.next().start - date.resolution

    def next(self) -> "BudgetMonth":
        if self.month == 12:
            return BudgetMonth(self.year + 1, 1)
        return BudgetMonth(self.year, self.month + 1)

    def previous(self) -> "BudgetMonth":
        if self.month == 1:
            return BudgetMonth(self.year - 1, 12)
        return BudgetMonth(self.year, self.month - 1)


def resolve_month(value: Optional[str], *, today: Optional[date] = None) -> BudgetMonth:
    if not value:
        today = today or local_today()
        return BudgetMonth(today.year, today.month)
    try:
        parsed = datetime.strptime(value.strip(), "%Y-%m")
    except ValueError as exc:
        raise ValueError("Month must be formatted as YYYY-MM") from exc
    return BudgetMonth(parsed.year, parsed.month)
