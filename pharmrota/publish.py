from __future__ import annotations

import datetime
import logging
import re
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Tuple

from .exceptions import AssignmentValidationError, RotaError
from .models import AssignmentType, location_type

if TYPE_CHECKING:
    from .backend import RotaBackend

logger = logging.getLogger(__name__)

_PLAIN_PREFIXES = ("unavailable-", "management-")
_PLAIN_KEY = re.compile(r"^(?:unavailable|management)-(\d{4}-\d{2}-\d{2})-")
_LOCATED_KEY = re.compile(r"-(\d{4}-\d{2}-\d{2})-\d{2}:\d{2}-\d{2}:\d{2}$")


def free_text_key(
    location: str,
    date: datetime.date,
    start: str,
    end: str,
    kind: Optional[AssignmentType] = None,
) -> str:
    """Structured key of a free-text cell.

    Unavailable and management rows carry no location part, dispensary
    cells are keyed by type alone, and clinics carry their name. Any other
    location must be named as a clinic through ``kind``; ward cells hold
    pharmacists only and have no free text.
    """
    kind = location_type(location) or kind
    stamp = f"{date.isoformat()}-{start}-{end}"
    if kind is AssignmentType.UNAVAILABLE:
        return f"unavailable-{stamp}"
    if kind is AssignmentType.MANAGEMENT:
        return f"management-{stamp}"
    if kind is AssignmentType.DISPENSARY:
        return f"dispensary-{stamp}"
    if kind is AssignmentType.CLINIC:
        return f"clinic-{location}-{stamp}"
    raise AssignmentValidationError(f"{location} has no free-text cells")


def cell_key_date(key: str) -> Optional[datetime.date]:
    """Date embedded in a free-text key, or None when the key has no recognisable date."""
    pattern = _PLAIN_KEY if key.startswith(_PLAIN_PREFIXES) else _LOCATED_KEY
    match = pattern.search(key)
    if not match:
        return None
    try:
        return datetime.date.fromisoformat(match.group(1))
    except ValueError:
        return None


def partition_free_text(
    free_cell_text: Mapping[str, str],
) -> Tuple[Dict[datetime.date, Dict[str, str]], Dict[str, str]]:
    """Split overrides by the date in their key; returns (by_date, unparseable)."""
    by_date: Dict[datetime.date, Dict[str, str]] = {}
    unparsed: Dict[str, str] = {}
    for key, value in free_cell_text.items():
        date = cell_key_date(key)
        if date is None:
            logger.error("Could not extract date from free-text key %r", key)
            unparsed[key] = value
            continue
        by_date.setdefault(date, {})[key] = value
    return by_date, unparsed


class PublishWorkflow:
    """Stores a week's free-text overrides on their rotas, then publishes the week.

    The backend's publish call copies every draft of the week; the workflow
    does not check each date individually.
    """

    def __init__(self, backend: "RotaBackend") -> None:
        self.backend = backend

    async def save_free_text(
        self, rota_ids_by_date: Mapping[datetime.date, int], free_cell_text: Mapping[str, str]
    ) -> Dict[int, Dict[str, str]]:
        by_date, _unparsed = partition_free_text(free_cell_text)
        saved: Dict[int, Dict[str, str]] = {}
        for date in sorted(by_date):
            rota_id = rota_ids_by_date.get(date)
            if rota_id is None:
                logger.warning("Dropping %d free-text entries for %s: no rota", len(by_date[date]), date)
                continue
            await self.backend.save_free_cell_text(rota_id, by_date[date])
            saved[rota_id] = by_date[date]
        return saved

    async def publish(
        self,
        rota_ids_by_date: Mapping[datetime.date, int],
        actor: Optional[str],
        week_start: datetime.date,
        free_cell_text: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        if not rota_ids_by_date:
            raise RotaError(f"No rotas to publish for the week starting {week_start.isoformat()}.")
        await self.save_free_text(rota_ids_by_date, free_cell_text or {})
        first_rota_id = rota_ids_by_date[min(rota_ids_by_date)]
        result = await self.backend.publish_rota(first_rota_id, actor or "Unknown User", week_start)
        logger.info("Published week %s as set %s", week_start, result.get("published_set_id"))
        return result
