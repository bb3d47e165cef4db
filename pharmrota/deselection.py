from __future__ import annotations

import datetime
import logging
from typing import Dict, Iterable, List, Optional

from .models import DEFAULT_WEEKDAYS, WEEKEND_NAMES, Rota, weekday_name

logger = logging.getLogger(__name__)


class DeselectionResolver:
    """Decides whether a calendar day is shown as part of the rota.

    Published metadata wins once it exists, so a published week keeps the
    days it was published with whatever the live weekday toggles say.
    Precedence:

    1. ``pinned_weekdays``: the included weekdays of the published rota being
       edited.
    2. The rota stored for the date, using its own ``included_weekdays`` or,
       when it has none, those of the rota it was copied from.
    3. No rota for the date: weekends are off. Weekdays are on, except inside
       a live editing session where the session toggle decides.
    4. The session's weekday selection.
    """

    def __init__(
        self,
        rotas: Iterable[Rota],
        *,
        pinned_weekdays: Optional[Iterable[str]] = None,
        selected_weekdays: Optional[Iterable[str]] = None,
        live_edit: bool = False,
        all_rotas: Optional[Iterable[Rota]] = None,
    ) -> None:
        self._by_date: Dict[datetime.date, Rota] = {}
        for rota in rotas:
            self._by_date.setdefault(rota.date, rota)
        self._by_id: Dict[int, Rota] = {rota.id: rota for rota in (all_rotas if all_rotas is not None else self._by_date.values())}
        self.pinned_weekdays = set(pinned_weekdays) if pinned_weekdays else None
        self.selected_weekdays = set(selected_weekdays if selected_weekdays is not None else DEFAULT_WEEKDAYS)
        self.live_edit = live_edit

    def _stored_weekdays(self, rota: Rota) -> Optional[List[str]]:
        if rota.included_weekdays is not None:
            return rota.included_weekdays
        if rota.original_rota_id is not None:
            original = self._by_id.get(rota.original_rota_id)
            if original is not None and original.included_weekdays is not None:
                return original.included_weekdays
        return None

    def is_day_active(self, date: datetime.date) -> bool:
        day = weekday_name(date)
        if self.pinned_weekdays is not None:
            return day in self.pinned_weekdays
        rota = self._by_date.get(date)
        if rota is not None:
            stored = self._stored_weekdays(rota)
            if stored is not None:
                return day in stored
            logger.debug("Rota %s carries no included weekdays; using session selection", rota.id)
            return day in self.selected_weekdays
        if day in WEEKEND_NAMES:
            return False
        if self.live_edit:
            return day in self.selected_weekdays
        return True

    def is_day_deselected(self, date: datetime.date) -> bool:
        return not self.is_day_active(date)

    def active_days(self, dates: Iterable[datetime.date]) -> List[datetime.date]:
        return [date for date in dates if self.is_day_active(date)]
