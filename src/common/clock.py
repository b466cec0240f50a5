# src/common/clock.py
"""
Время в UTC и календарная арифметика.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Текущий момент в UTC (aware datetime)."""
    return datetime.now(timezone.utc)


def add_months(moment: datetime, months: int = 1) -> datetime:
    """
    Сдвигает дату на N месяцев, прижимая день к концу месяца
    (31 января + 1 месяц = 28/29 февраля), как INTERVAL '1 month' в PostgreSQL.
    """
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)
