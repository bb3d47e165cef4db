from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from .models import AvailabilityRule, Pharmacist, TimeSlot

logger = logging.getLogger(__name__)

RuleKey = Tuple


def effective_rules(
    pharmacist: Pharmacist,
    ad_hoc_rules: Optional[Iterable[AvailabilityRule]] = None,
    ignored: Optional[Iterable[RuleKey]] = None,
) -> List[AvailabilityRule]:
    """Permanent rules minus the ignored ones, followed by the session's ad-hoc rules."""
    ignored_keys = set(ignored or ())
    permanent = [rule for rule in pharmacist.not_available_rules or [] if rule.key not in ignored_keys]
    return permanent + list(ad_hoc_rules or [])


class RuleOverrides(BaseModel):
    """Session-local availability overrides, keyed by pharmacist id.

    Ignored permanent rules are remembered by rule identity (database id when
    the rule has one, otherwise its day and time range) so that reordering a
    pharmacist's permanent rules does not shift which rule is ignored.
    """

    ad_hoc: Dict[int, List[AvailabilityRule]] = Field(default_factory=dict)
    ignored: Dict[int, Set[RuleKey]] = Field(default_factory=dict)

    def add_ad_hoc(self, pharmacist_id: int, rule: AvailabilityRule) -> None:
        self.ad_hoc.setdefault(pharmacist_id, []).append(rule)

    def remove_ad_hoc(self, pharmacist_id: int, position: int) -> None:
        rules = self.ad_hoc.get(pharmacist_id) or []
        if 0 <= position < len(rules):
            rules.pop(position)
        if not rules:
            self.ad_hoc.pop(pharmacist_id, None)

    def toggle_ignored(self, pharmacist: Pharmacist, index: int, ignore: bool) -> None:
        """Ignore or restore the permanent rule currently at ``index``.

        Ignoring twice is a no-op, and restoring an index that is not ignored
        leaves the overrides untouched.
        """
        rules = pharmacist.not_available_rules or []
        if not 0 <= index < len(rules):
            logger.warning("Pharmacist %s has no permanent rule at index %s", pharmacist.id, index)
            return
        key = rules[index].key
        keys = self.ignored.setdefault(pharmacist.id, set())
        if ignore:
            keys.add(key)
        else:
            keys.discard(key)
        if not keys:
            self.ignored.pop(pharmacist.id, None)

    def ignored_indices(self, pharmacist: Pharmacist) -> List[int]:
        keys = self.ignored.get(pharmacist.id) or set()
        return [index for index, rule in enumerate(pharmacist.not_available_rules or []) if rule.key in keys]

    def rules_for(self, pharmacist: Pharmacist) -> List[AvailabilityRule]:
        return effective_rules(
            pharmacist,
            self.ad_hoc.get(pharmacist.id),
            self.ignored.get(pharmacist.id),
        )

    def clear(self) -> None:
        self.ad_hoc.clear()
        self.ignored.clear()

    def to_payload(self) -> Dict[str, Dict]:
        """Plain JSON shape stored on the weekly rota configuration."""
        return {
            "adHocRules": {
                str(pid): [rule.model_dump(by_alias=True) for rule in rules]
                for pid, rules in self.ad_hoc.items()
            },
            "ignoredRules": {str(pid): sorted([list(key) for key in keys], key=str) for pid, keys in self.ignored.items()},
        }

    @classmethod
    def from_payload(cls, payload: Optional[Dict]) -> "RuleOverrides":
        payload = payload or {}
        overrides = cls()
        for pid, rules in (payload.get("adHocRules") or {}).items():
            overrides.ad_hoc[int(pid)] = [AvailabilityRule.model_validate(rule) for rule in rules or []]
        for pid, keys in (payload.get("ignoredRules") or {}).items():
            overrides.ignored[int(pid)] = {tuple(key) for key in keys or []}
        return overrides


def is_unavailable(
    pharmacist: Pharmacist,
    day: str,
    slot: TimeSlot,
    overrides: Optional[RuleOverrides] = None,
) -> bool:
    rules = overrides.rules_for(pharmacist) if overrides else effective_rules(pharmacist)
    return any(rule.blocks(day, slot) for rule in rules)


def effective_rules_by_pharmacist(
    pharmacists: Iterable[Pharmacist],
    overrides: Optional[RuleOverrides] = None,
) -> Dict[int, List[AvailabilityRule]]:
    overrides = overrides or RuleOverrides()
    return {pharmacist.id: overrides.rules_for(pharmacist) for pharmacist in pharmacists}
