"""England and Wales bank holidays, used to pre-deselect days when a week is opened."""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Tuple

from dateutil.easter import easter
from dateutil.relativedelta import FR, MO, relativedelta


@dataclass(frozen=True)
class BankHoliday:
    title: str
    date: datetime.date


def _substitute(day: datetime.date) -> datetime.date:
    if day.weekday() == 5:
        return day + datetime.timedelta(days=2)
    if day.weekday() == 6:
        return day + datetime.timedelta(days=1)
    return day


def _christmas_pair(year: int) -> Tuple[datetime.date, datetime.date]:
    christmas = datetime.date(year, 12, 25)
    boxing = datetime.date(year, 12, 26)
    if christmas.weekday() == 5:  # Sat/Sun -> Mon/Tue
        return christmas + datetime.timedelta(days=2), boxing + datetime.timedelta(days=2)
    if christmas.weekday() == 6:  # Sun/Mon -> Tue/Mon
        return christmas + datetime.timedelta(days=2), boxing
    if christmas.weekday() == 4:  # Fri/Sat -> Fri/Mon
        return christmas, boxing + datetime.timedelta(days=2)
    return christmas, boxing


def _observed(title: str, actual: datetime.date, observed: datetime.date) -> BankHoliday:
    if observed != actual:
        return BankHoliday(f"{title} (substitute)", observed)
    return BankHoliday(title, observed)


@lru_cache(maxsize=32)
def _holidays_for(year: int) -> Tuple[BankHoliday, ...]:
    easter_sunday = easter(year)
    may_first = datetime.date(year, 5, 1)
    new_year = datetime.date(year, 1, 1)
    christmas, boxing = _christmas_pair(year)
    holidays = [
        _observed("New Year's Day", new_year, _substitute(new_year)),
        BankHoliday("Good Friday", easter_sunday + relativedelta(weekday=FR(-1))),
        BankHoliday("Easter Monday", easter_sunday + relativedelta(weekday=MO(+1))),
        BankHoliday("Early May bank holiday", may_first + relativedelta(weekday=MO(+1))),
        BankHoliday("Spring bank holiday", datetime.date(year, 5, 31) + relativedelta(weekday=MO(-1))),
        BankHoliday("Summer bank holiday", datetime.date(year, 8, 31) + relativedelta(weekday=MO(-1))),
        _observed("Christmas Day", datetime.date(year, 12, 25), christmas),
        _observed("Boxing Day", datetime.date(year, 12, 26), boxing),
    ]
    return tuple(sorted(holidays, key=lambda item: item.date))


def english_bank_holidays(year: int) -> List[BankHoliday]:
    return list(_holidays_for(year))


def bank_holidays_in_range(start: datetime.date, end: datetime.date) -> List[BankHoliday]:
    """Holidays falling on or between ``start`` and ``end``."""
    found: List[BankHoliday] = []
    for year in range(start.year, end.year + 1):
        found.extend(item for item in _holidays_for(year) if start <= item.date <= end)
    return found


def bank_holiday_for(day: datetime.date) -> Optional[BankHoliday]:
    for item in _holidays_for(day.year):
        if item.date == day:
            return item
    return None
