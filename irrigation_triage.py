"""
irrigation_triage.py — Irrigation urgency of active plantings.

This module implements:
- Urgency tiers from the days since the last watering, with thresholds that
  shrink as the species' water need grows
- Young-plant flag (planted or sown less than YOUNG_THRESHOLD_DAYS ago)
- Weekly water consumption estimate from the planting surface
- Count of scheduled, not-done irrigations in the next 7 days
- Aggregation by bed, irrigation type or urgency tier, with global totals
- Watering change sets (one planting or a whole bed at once)
- Irrigation schedule generation at a fixed cadence

Tier thresholds (days without water, per water need level 1-5):
    level   critique  haute  moyenne
      5        3        2       1
      4        4        3       2
      3        5        4       2
      2        7        5       3
      1       10        7       4
Below the "moyenne" threshold the tier is "faible". A planting never
watered is "never", whatever its species; an unknown water need gives
"faible" plus the unclassified flag.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple

from models import GroupSummary, IrrigationClassification, IrrigationEvent
from utils.logger import log_event
from yield_estimator import surface_m2

logger = logging.getLogger(__name__)

NEVER = 'never'
CRITIQUE = 'critique'
HAUTE = 'haute'
MOYENNE = 'moyenne'
FAIBLE = 'faible'

# Sort order: never watered first, then most to least urgent
URGENCY_ORDER = {NEVER: 0, CRITIQUE: 1, HAUTE: 2, MOYENNE: 3, FAIBLE: 4}

TIER_THRESHOLDS = {
    5: (3, 2, 1),
    4: (4, 3, 2),
    3: (5, 4, 2),
    2: (7, 5, 3),
    1: (10, 7, 4),
}

YOUNG_THRESHOLD_DAYS = 14
UPCOMING_WINDOW_DAYS = 7
DEFAULT_WATER_NEED = 3

GROUP_KEYS = ('bed', 'irrigation_type', 'urgency_tier')
UNDEFINED_GROUP = 'Non défini'


def _to_datetime(value, name='value') -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    raise TypeError(f"{name} must be a date or datetime, got {type(value).__name__}")


def _whole_days(later: datetime, earlier: datetime) -> int:
    return math.floor((later - earlier).total_seconds() / 86400)


def water_rate_l_m2(water_need_level) -> float:
    """Litres per m² per week: 15 for high need, 10 for medium, 5 for low."""
    if water_need_level not in TIER_THRESHOLDS:
        water_need_level = DEFAULT_WATER_NEED
    if water_need_level >= 4:
        return 15.0
    if water_need_level >= 3:
        return 10.0
    return 5.0


def urgency_tier(days_since_watered, water_need_level) -> Tuple[str, bool]:
    """Return (tier, unclassified) for a number of days without water."""
    thresholds = TIER_THRESHOLDS.get(water_need_level)
    unclassified = thresholds is None
    if days_since_watered is None:
        return NEVER, unclassified
    if unclassified:
        return FAIBLE, True

    critique, haute, moyenne = thresholds
    if days_since_watered >= critique:
        return CRITIQUE, False
    if days_since_watered >= haute:
        return HAUTE, False
    if days_since_watered >= moyenne:
        return MOYENNE, False
    return FAIBLE, False


def classify_irrigation(planting, now, species=None, bed=None, events=(),
                        young_threshold_days=YOUNG_THRESHOLD_DAYS,
                        window_days=UPCOMING_WINDOW_DAYS) -> IrrigationClassification:
    """Classify one planting by irrigation urgency.

    Args:
        planting: Planting snapshot (last_watered_at None = never watered).
        now: Reference instant (date or datetime).
        species: Species of the planting; gives the water need level.
        bed: Bed of the planting; gives the width for the surface.
        events: Irrigation events of the planting.

    Returns:
        IrrigationClassification.
    """
    now = _to_datetime(now, 'now')

    days_since_watered = None
    if planting.last_watered_at is not None:
        last = _to_datetime(planting.last_watered_at, 'last_watered_at')
        days_since_watered = max(0, _whole_days(now, last))

    age_days = None
    is_young = False
    reference = planting.transplant_date or planting.sow_date
    if reference is not None:
        age_days = _whole_days(now, _to_datetime(reference, 'planting date'))
        is_young = 0 <= age_days < young_threshold_days

    level = species.water_need_level if species is not None else None
    tier, unclassified = urgency_tier(days_since_watered, level)

    consumption = 0.0
    if bed is not None:
        length = planting.length_m if planting.length_m is not None else bed.length_m
        consumption = round(surface_m2(length, bed.width_m) * water_rate_l_m2(level), 1)

    today = now.date()
    horizon = (now + timedelta(days=window_days)).date()
    upcoming = sum(
        1 for e in events
        if e.planting_id in (None, planting.id)
        and not e.done
        and e.planned_date is not None
        and today <= e.planned_date <= horizon
    )

    irrigation_type = species.irrigation_type if species is not None else None
    if not irrigation_type and bed is not None:
        irrigation_type = bed.irrigation_type

    return IrrigationClassification(
        planting_id=planting.id,
        bed_id=planting.bed_id,
        irrigation_type=irrigation_type,
        tier=tier,
        days_since_watered=days_since_watered,
        age_days=age_days,
        is_young=is_young,
        weekly_consumption_l=consumption,
        upcoming_count=upcoming,
        unclassified=unclassified,
    )


def sort_by_urgency(classifications) -> List[IrrigationClassification]:
    """Never-watered first, then critique to faible (stable)."""
    return sorted(classifications, key=lambda c: URGENCY_ORDER.get(c.tier, len(URGENCY_ORDER)))


# ========================================
# Aggregation
# ========================================

@dataclass
class TriageTotals:
    count: int = 0
    count_by_tier: Dict[str, int] = field(default_factory=dict)
    never_watered: int = 0
    young: int = 0
    unclassified: int = 0
    upcoming_7d: int = 0
    total_consumption_l: float = 0.0


@dataclass
class TriageSummary:
    group_key: str = 'bed'
    groups: List[GroupSummary] = field(default_factory=list)
    totals: TriageTotals = field(default_factory=TriageTotals)


def _group_value(classification, group_key) -> str:
    if group_key == 'bed':
        value = classification.bed_id
    elif group_key == 'irrigation_type':
        value = classification.irrigation_type
    else:
        value = classification.tier
    return UNDEFINED_GROUP if value is None or value == '' else str(value)


def _group_sort_key(group):
    # Bed ids sort numerically (2 before 10), names alphabetically, undefined last
    if group.key.isdigit():
        return (group.key == UNDEFINED_GROUP, 0, int(group.key), '')
    return (group.key == UNDEFINED_GROUP, 1, 0, group.key)


def aggregate_by_group(classifications, group_key='bed') -> TriageSummary:
    """Sum consumption and upcoming irrigations per group, plus global totals.

    Groups by urgency tier come out in urgency order; other groupings are
    sorted by key with the undefined group last.
    """
    if group_key not in GROUP_KEYS:
        raise ValueError(f"Unsupported group key: {group_key}")

    groups: Dict[str, GroupSummary] = {}
    totals = TriageTotals(count_by_tier={tier: 0 for tier in URGENCY_ORDER})

    for c in classifications:
        key = _group_value(c, group_key)
        group = groups.setdefault(key, GroupSummary(key=key))
        group.count += 1
        group.weekly_consumption_l += c.weekly_consumption_l
        group.upcoming_count += c.upcoming_count
        group.planting_ids.append(c.planting_id)

        totals.count += 1
        totals.count_by_tier[c.tier] = totals.count_by_tier.get(c.tier, 0) + 1
        totals.upcoming_7d += c.upcoming_count
        totals.total_consumption_l += c.weekly_consumption_l
        if c.days_since_watered is None:
            totals.never_watered += 1
        if c.is_young:
            totals.young += 1
        if c.unclassified:
            totals.unclassified += 1

    for group in groups.values():
        group.weekly_consumption_l = round(group.weekly_consumption_l, 1)
    totals.total_consumption_l = round(totals.total_consumption_l, 1)

    if group_key == 'urgency_tier':
        ordered = sorted(groups.values(), key=lambda g: URGENCY_ORDER.get(g.key, len(URGENCY_ORDER)))
    else:
        ordered = sorted(groups.values(), key=_group_sort_key)

    return TriageSummary(group_key=group_key, groups=ordered, totals=totals)


# ========================================
# Watering
# ========================================

@dataclass(frozen=True)
class WateringChangeSet:
    """Watering to record: one baseline reset per planting, applied as one batch."""
    planting_ids: Tuple[int, ...]
    watered_at: datetime
    event_updates: Tuple[IrrigationEvent, ...] = ()

    @property
    def is_bulk(self) -> bool:
        return len(self.planting_ids) > 1

    def apply(self, plantings) -> list:
        """Copies of *plantings* with the new watering baseline."""
        ids = set(self.planting_ids)
        return [
            replace(p, last_watered_at=self.watered_at) if p.id in ids else p
            for p in plantings
        ]


def mark_watered(planting_ids, timestamp, events=()) -> WateringChangeSet:
    """Describe a watering of one planting or a list of plantings.

    Pending events of those plantings planned up to the watering day are
    confirmed (done, actual date = watering day) in the same change set.
    """
    if isinstance(planting_ids, (int, str)):
        planting_ids = (planting_ids,)
    ids = tuple(dict.fromkeys(planting_ids))
    if not ids:
        raise ValueError("At least one planting id is required")
    if not isinstance(timestamp, datetime):
        raise TypeError(f"timestamp must be a datetime, got {type(timestamp).__name__}")

    watering_day = timestamp.date()
    confirmed = tuple(
        replace(e, done=True, actual_date=watering_day)
        for e in events
        if e.planting_id in ids
        and not e.done
        and e.planned_date is not None
        and e.planned_date <= watering_day
    )

    log_event(logger, 'info', "Arrosage préparé",
              plantings=len(ids), events=len(confirmed), at=timestamp.isoformat())
    return WateringChangeSet(planting_ids=ids, watered_at=timestamp, event_updates=confirmed)


def irrigation_frequency_days(water_need_level) -> int:
    """Every 2 days for high water need (>= 4), every 3 days otherwise."""
    if water_need_level is not None and water_need_level >= 4:
        return 2
    return 3


def generate_irrigation_schedule(planting, species=None, end_date: Optional[date] = None) -> List[IrrigationEvent]:
    """Planned irrigations from the planting start to the end of the cycle.

    Starts one interval after the transplant date (or sow date) and runs up
    to *end_date*, else the harvest date, else December 31st of the start year.
    """
    start = planting.transplant_date or planting.sow_date
    if start is None:
        return []

    end = end_date or planting.harvest_date or date(start.year, 12, 31)
    level = species.water_need_level if species is not None else None
    frequency = irrigation_frequency_days(level)

    events = []
    current = start + timedelta(days=frequency)
    while current <= end:
        events.append(IrrigationEvent(planting_id=planting.id, planned_date=current))
        current += timedelta(days=frequency)
    return events
