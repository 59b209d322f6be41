"""
Tariff duration parsing.

Tariffs store their validity as a single human string: "3 месяца",
"1 месяц", "30 дней", "14 days". Parsing is deliberately permissive:
anything without a recognisable unit counts as one month.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from dateutil.relativedelta import relativedelta

MONTH = "month"
DAY = "day"

DEFAULT_MONTHS = 1
DEFAULT_DAYS = 30

# Compiled patterns (reused across all calls)
MONTH_UNIT_RE = re.compile(r"мес|month", re.IGNORECASE)
DAY_UNIT_RE = re.compile(r"ден|дн|day", re.IGNORECASE)
LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


@dataclass(frozen=True)
class TariffDuration:
    count: int
    unit: str

    def advance(self, start: datetime) -> datetime:
        """Return ``start`` moved forward by this duration.

        Months follow relativedelta: the day is clamped to the end of the
        target month, so Jan 31 + 1 month is the last day of February.
        """
        if self.unit == DAY:
            return start + relativedelta(days=self.count)
        return start + relativedelta(months=self.count)


def _leading_count(text: str, default: int) -> int:
    match = LEADING_INT_RE.match(text)
    if not match:
        return default
    value = int(match.group(1))
    return value if value > 0 else default


def parse_duration(text: Optional[str]) -> TariffDuration:
    """Parse a tariff duration string such as "3 месяца" into count + unit.

    Month units win over day units. A missing, zero or negative count
    falls back to the unit default (1 month / 30 days).
    """
    raw = text or ""
    if MONTH_UNIT_RE.search(raw):
        return TariffDuration(_leading_count(raw, DEFAULT_MONTHS), MONTH)
    if DAY_UNIT_RE.search(raw):
        return TariffDuration(_leading_count(raw, DEFAULT_DAYS), DAY)
    return TariffDuration(DEFAULT_MONTHS, MONTH)


def compute_end_date(start: datetime, duration_text: Optional[str]) -> datetime:
    return parse_duration(duration_text).advance(start)
