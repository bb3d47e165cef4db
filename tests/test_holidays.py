from __future__ import annotations

import datetime

from pharmrota.holidays import bank_holiday_for, bank_holidays_in_range, english_bank_holidays


def test_2024_bank_holidays():
    dates = [holiday.date for holiday in english_bank_holidays(2024)]
    assert dates == [
        datetime.date(2024, 1, 1),
        datetime.date(2024, 3, 29),
        datetime.date(2024, 4, 1),
        datetime.date(2024, 5, 6),
        datetime.date(2024, 5, 27),
        datetime.date(2024, 8, 26),
        datetime.date(2024, 12, 25),
        datetime.date(2024, 12, 26),
    ]


def test_weekend_holidays_move_to_substitute_days():
    assert bank_holiday_for(datetime.date(2022, 1, 3)).title == "New Year's Day (substitute)"
    christmas_2021 = {h.title: h.date for h in english_bank_holidays(2021)}
    assert christmas_2021["Christmas Day (substitute)"] == datetime.date(2021, 12, 27)
    assert christmas_2021["Boxing Day (substitute)"] == datetime.date(2021, 12, 28)
    christmas_2022 = {h.title: h.date for h in english_bank_holidays(2022)}
    assert christmas_2022["Boxing Day"] == datetime.date(2022, 12, 26)
    assert christmas_2022["Christmas Day (substitute)"] == datetime.date(2022, 12, 27)


def test_holidays_on_their_own_date_keep_the_plain_title():
    titles = [holiday.title for holiday in english_bank_holidays(2024)]
    assert not any(title.endswith("(substitute)") for title in titles)
    assert bank_holiday_for(datetime.date(2026, 12, 28)).title == "Boxing Day (substitute)"
    assert bank_holiday_for(datetime.date(2026, 12, 25)).title == "Christmas Day"


def test_range_spans_year_boundary():
    found = bank_holidays_in_range(datetime.date(2024, 12, 23), datetime.date(2025, 1, 3))
    assert [holiday.title for holiday in found] == ["Christmas Day", "Boxing Day", "New Year's Day"]


def test_ordinary_day_is_not_a_holiday():
    assert bank_holiday_for(datetime.date(2024, 6, 4)) is None
