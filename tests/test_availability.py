from __future__ import annotations

from pharmrota.availability import (
    RuleOverrides,
    effective_rules,
    effective_rules_by_pharmacist,
    is_unavailable,
)
from pharmrota.models import AvailabilityRule, Pharmacist, TimeSlot


def _pharmacist(*rules: AvailabilityRule) -> Pharmacist:
    return Pharmacist(id=7, name="Priya", not_available_rules=list(rules))


MONDAY_MORNING = AvailabilityRule(id=11, day_of_week="Monday", start_time="09:00", end_time="11:00")
FRIDAY_AFTERNOON = AvailabilityRule(id=12, day_of_week="Friday", start_time="13:00", end_time="17:00")


def test_overlap_blocks_and_adjacent_does_not():
    pharmacist = _pharmacist(MONDAY_MORNING)
    assert is_unavailable(pharmacist, "Monday", TimeSlot(start="10:00", end="12:00"))
    assert not is_unavailable(pharmacist, "Monday", TimeSlot(start="11:00", end="13:00"))
    assert not is_unavailable(pharmacist, "Tuesday", TimeSlot(start="09:00", end="11:00"))


def test_effective_rules_appends_ad_hoc_after_permanent():
    ad_hoc = AvailabilityRule(day_of_week="Wednesday", start_time="15:00", end_time="17:00")
    rules = effective_rules(_pharmacist(MONDAY_MORNING), [ad_hoc])
    assert rules == [MONDAY_MORNING, ad_hoc]


def test_missing_rule_lists_are_empty():
    pharmacist = Pharmacist(id=1, name="Lee", not_available_rules=None)
    assert effective_rules(pharmacist) == []
    assert not is_unavailable(pharmacist, "Monday", TimeSlot(start="09:00", end="11:00"))


def test_ad_hoc_order_does_not_change_matching():
    pharmacist = _pharmacist()
    first = AvailabilityRule(day_of_week="Tuesday", start_time="09:00", end_time="10:00")
    second = AvailabilityRule(day_of_week="Thursday", start_time="14:00", end_time="16:00")
    forward, backward = RuleOverrides(), RuleOverrides()
    forward.add_ad_hoc(7, first)
    forward.add_ad_hoc(7, second)
    backward.add_ad_hoc(7, second)
    backward.add_ad_hoc(7, first)
    for day in ("Tuesday", "Thursday", "Friday"):
        for slot in (TimeSlot(start="09:00", end="11:00"), TimeSlot(start="15:00", end="17:00")):
            assert is_unavailable(pharmacist, day, slot, forward) == is_unavailable(pharmacist, day, slot, backward)


def test_toggle_ignored_is_idempotent_and_restorable():
    pharmacist = _pharmacist(MONDAY_MORNING, FRIDAY_AFTERNOON)
    overrides = RuleOverrides()
    original = overrides.rules_for(pharmacist)

    overrides.toggle_ignored(pharmacist, 0, True)
    overrides.toggle_ignored(pharmacist, 0, True)
    assert overrides.rules_for(pharmacist) == [FRIDAY_AFTERNOON]
    assert overrides.ignored_indices(pharmacist) == [0]
    assert not is_unavailable(pharmacist, "Monday", TimeSlot(start="09:00", end="11:00"), overrides)

    overrides.toggle_ignored(pharmacist, 0, False)
    assert overrides.rules_for(pharmacist) == original
    assert overrides.ignored == {}


def test_ignored_rule_survives_reordering_of_permanent_rules():
    overrides = RuleOverrides()
    overrides.toggle_ignored(_pharmacist(MONDAY_MORNING, FRIDAY_AFTERNOON), 1, True)
    reordered = _pharmacist(FRIDAY_AFTERNOON, MONDAY_MORNING)
    assert overrides.rules_for(reordered) == [MONDAY_MORNING]
    assert overrides.ignored_indices(reordered) == [0]


def test_out_of_range_toggle_is_ignored():
    overrides = RuleOverrides()
    overrides.toggle_ignored(_pharmacist(MONDAY_MORNING), 5, True)
    assert overrides.ignored == {}


def test_remove_ad_hoc_drops_empty_entries():
    overrides = RuleOverrides()
    overrides.add_ad_hoc(7, MONDAY_MORNING)
    overrides.remove_ad_hoc(7, 0)
    assert overrides.ad_hoc == {}


def test_payload_keeps_ad_hoc_and_ignored_rules():
    pharmacist = _pharmacist(MONDAY_MORNING, FRIDAY_AFTERNOON)
    overrides = RuleOverrides()
    overrides.toggle_ignored(pharmacist, 1, True)
    overrides.add_ad_hoc(7, AvailabilityRule(day_of_week="Tuesday", start_time="09:00", end_time="13:00"))

    restored = RuleOverrides.from_payload(overrides.to_payload())

    assert restored.rules_for(pharmacist) == overrides.rules_for(pharmacist)


def test_effective_rules_by_pharmacist_uses_overrides():
    first = _pharmacist(MONDAY_MORNING)
    second = Pharmacist(id=8, name="Tom")
    overrides = RuleOverrides()
    overrides.add_ad_hoc(8, FRIDAY_AFTERNOON)
    rules = effective_rules_by_pharmacist([first, second], overrides)
    assert rules == {7: [MONDAY_MORNING], 8: [FRIDAY_AFTERNOON]}
