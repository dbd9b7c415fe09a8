"""
cultivation_scheduler.py — Sow/transplant/harvest dates from a cultivation plan.

This module implements:
- Date derivation: each week milestone of a plan (sow, transplant, harvest)
  plus a uniform week shift, converted with week_to_date()
- Shift bounds: the shift is clamped to [-max_week_shift, +max_week_shift]
- Schedule modes: DateSchedule keeps the three dates derived from the plan
  ("scheduled") or frozen with independent overrides ("manual")
- Field provenance: PlantingDraft tags each value "user" or "derived" so a
  re-derivation never overwrites an explicit user entry
- Date checks: chronological order and distance from the plan's milestones

Milestone rules:
- Absent (None or 0) week fields give absent dates, they are never guessed
- Milestones are read in order sow -> transplant -> harvest; a week smaller
  than the previous present milestone belongs to the following year
  (e.g. garlic sown S42, harvested S28)
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from models import CultivationPlan, Planting, ScheduledDates
from week_dates import week_to_date, date_to_week

logger = logging.getLogger(__name__)

DEFAULT_MAX_WEEK_SHIFT = 4

# Tolerance between an entered date and the plan's milestone (±4 weeks)
DATE_TOLERANCE_DAYS = 28

MILESTONES = (
    ('sow_date', 'sow_week'),
    ('transplant_date', 'transplant_week'),
    ('harvest_date', 'harvest_week'),
)


def clamp_week_shift(week_shift, max_week_shift) -> int:
    """Bring a week shift back into [-max_week_shift, +max_week_shift]."""
    if max_week_shift is None:
        max_week_shift = DEFAULT_MAX_WEEK_SHIFT
    bound = max(0, int(max_week_shift))
    shift = int(week_shift or 0)
    clamped = min(max(shift, -bound), bound)
    if clamped != shift:
        logger.debug("Décalage %s ramené à %s (max %s)", shift, clamped, bound)
    return clamped


def compute_dates(plan: CultivationPlan, year: int, week_shift: int = 0) -> ScheduledDates:
    """Derive the calendar dates of a plan for a given year and week shift.

    All dates are recomputed together from the same shift value, so the
    trio can never be left half-updated.

    Args:
        plan: CultivationPlan with optional sow/transplant/harvest weeks.
        year: Calendar year of the first present milestone.
        week_shift: Signed number of weeks (earlier < 0 < later).

    Returns:
        ScheduledDates; fields whose week is absent stay None.
    """
    shift = clamp_week_shift(week_shift, plan.max_week_shift)
    dates = {}
    year_offset = 0
    previous_week = None

    for date_field, week_field in MILESTONES:
        week = getattr(plan, week_field)
        if not week:
            dates[date_field] = None
            continue
        if previous_week is not None and week < previous_week:
            year_offset += 1
        previous_week = week
        dates[date_field] = week_to_date(year + year_offset, week + shift)

    harvest_end = None
    if dates['harvest_date'] is not None and plan.harvest_duration_weeks:
        harvest_end = dates['harvest_date'] + timedelta(weeks=plan.harvest_duration_weeks)

    return ScheduledDates(
        sow_date=dates['sow_date'],
        transplant_date=dates['transplant_date'],
        harvest_date=dates['harvest_date'],
        harvest_end_date=harvest_end,
        week_shift=shift,
    )


# ========================================
# Scheduled / manual mode
# ========================================

class DateSchedule:
    """Dates of one planting, either derived from the plan or frozen.

    In scheduled mode the dates always equal compute_dates(plan, year,
    week_shift). freeze() switches to manual mode, where each date can be
    overridden on its own; resume_schedule() drops every manual edit and
    derives the dates again.
    """

    SCHEDULED = 'scheduled'
    MANUAL = 'manual'

    def __init__(self, plan: CultivationPlan, year: int, week_shift: int = 0):
        self.plan = plan
        self.year = year
        self.mode = self.SCHEDULED
        self._week_shift = clamp_week_shift(week_shift, plan.max_week_shift)
        self._dates = compute_dates(plan, year, self._week_shift)

    @property
    def week_shift(self) -> int:
        return self._week_shift

    @property
    def dates(self) -> ScheduledDates:
        return replace(self._dates)

    def set_week_shift(self, week_shift: int) -> ScheduledDates:
        """Apply a new shift and re-derive all dates (scheduled mode only)."""
        self._require_mode(self.SCHEDULED, "changer le décalage")
        self._week_shift = clamp_week_shift(week_shift, self.plan.max_week_shift)
        self._dates = compute_dates(self.plan, self.year, self._week_shift)
        return self.dates

    def set_year(self, year: int) -> ScheduledDates:
        self._require_mode(self.SCHEDULED, "changer l'année")
        self.year = year
        self._dates = compute_dates(self.plan, self.year, self._week_shift)
        return self.dates

    def freeze(self) -> ScheduledDates:
        """Switch to manual mode, keeping the current dates as a starting point."""
        self.mode = self.MANUAL
        return self.dates

    def override(self, date_field: str, value: Optional[date]) -> ScheduledDates:
        """Set one date by hand (manual mode only)."""
        self._require_mode(self.MANUAL, "modifier une date")
        if date_field not in dict(MILESTONES):
            raise ValueError(f"Unknown date field: {date_field}")
        if value is not None and not isinstance(value, date):
            raise TypeError(f"{date_field} must be a date, got {type(value).__name__}")
        self._dates = replace(self._dates, **{date_field: value})
        return self.dates

    def resume_schedule(self) -> ScheduledDates:
        """Discard manual edits and derive the dates from the plan again."""
        self.mode = self.SCHEDULED
        self._dates = compute_dates(self.plan, self.year, self._week_shift)
        return self.dates

    def _require_mode(self, mode, action):
        if self.mode != mode:
            raise ValueError(f"Impossible de {action} en mode {self.mode}")


# ========================================
# Field provenance
# ========================================

USER = 'user'
DERIVED = 'derived'


@dataclass
class TrackedField:
    """A draft value with the origin of its last write."""
    value: Any = None
    source: str = DERIVED


class PlantingDraft:
    """Planting form values with user/derived provenance.

    Engine outputs go through derive(), which only writes fields still
    tagged DERIVED. Any set_user() call re-tags the field USER, so later
    plan or date re-derivations leave it alone until reset() is called.
    """

    FIELDS = (
        'row_count', 'row_spacing_cm', 'plant_spacing_cm', 'length_m',
        'sow_date', 'transplant_date', 'harvest_date',
    )

    def __init__(self, **initial):
        self._fields: Dict[str, TrackedField] = {name: TrackedField() for name in self.FIELDS}
        for name, value in initial.items():
            self.set_user(name, value)

    def _field(self, name) -> TrackedField:
        if name not in self._fields:
            raise KeyError(f"Unknown draft field: {name}")
        return self._fields[name]

    def get(self, name):
        return self._field(name).value

    def source(self, name) -> str:
        return self._field(name).source

    def set_user(self, name, value):
        """Record an explicit user entry."""
        tracked = self._field(name)
        tracked.value = value
        tracked.source = USER

    def derive(self, name, value) -> bool:
        """Write an engine value unless the user has set this field.

        Returns True when the value was written.
        """
        tracked = self._field(name)
        if tracked.source == USER:
            return False
        tracked.value = value
        return True

    def reset(self, name):
        """Hand a field back to the engine (next derive() will overwrite it)."""
        self._field(name).source = DERIVED

    def apply_plan(self, plan: CultivationPlan, bed=None):
        """Fill row geometry defaults from the plan (and length from the bed)."""
        if plan.row_count_default is not None:
            self.derive('row_count', plan.row_count_default)
        if plan.row_spacing_default_cm is not None:
            self.derive('row_spacing_cm', plan.row_spacing_default_cm)
        if plan.plant_spacing_default_cm is not None:
            self.derive('plant_spacing_cm', plan.plant_spacing_default_cm)
        if bed is not None:
            self.derive('length_m', bed.length_m)

    def apply_dates(self, dates: ScheduledDates):
        for date_field, _ in MILESTONES:
            self.derive(date_field, getattr(dates, date_field))

    def apply_suggestion(self, suggestion) -> bool:
        """Apply a capacity suggestion (ReduceRowCount, ReduceSpacing, ReduceLength)."""
        return self.derive(suggestion.field_name, suggestion.value)

    def values(self) -> Dict[str, Any]:
        return {name: tracked.value for name, tracked in self._fields.items()}

    def to_planting(self, **extra) -> Planting:
        values = {k: v for k, v in self.values().items() if v is not None}
        values.update(extra)
        return Planting(**values)


# ========================================
# Date checks
# ========================================

@dataclass
class DateValidation:
    valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def validate_culture_dates(sow_date=None, transplant_date=None, harvest_date=None,
                           plan=None, year=None, today=None) -> DateValidation:
    """Check chronological order and distance from the plan's milestones.

    Order problems are errors; a date more than DATE_TOLERANCE_DAYS away
    from the (unshifted) plan milestone is only a warning.
    """
    errors = []
    warnings = []

    if sow_date and transplant_date and sow_date > transplant_date:
        errors.append("La date de semis doit être avant la date de plantation")
    if transplant_date and harvest_date and transplant_date > harvest_date:
        errors.append("La date de plantation doit être avant la date de récolte")
    if sow_date and harvest_date and not transplant_date and sow_date > harvest_date:
        errors.append("La date de semis doit être avant la date de récolte")

    if plan is not None and year is not None:
        reference = compute_dates(plan, year, 0)
        labels = {
            'sow_date': 'semis',
            'transplant_date': 'plantation',
            'harvest_date': 'récolte',
        }
        entered = {
            'sow_date': sow_date,
            'transplant_date': transplant_date,
            'harvest_date': harvest_date,
        }
        for date_field, label in labels.items():
            actual = entered[date_field]
            expected = getattr(reference, date_field)
            if actual and expected and abs((actual - expected).days) > DATE_TOLERANCE_DAYS:
                warnings.append(
                    f"Date de {label} éloignée de la période ITP recommandée "
                    f"(±{DATE_TOLERANCE_DAYS} jours)"
                )

    today = today or date.today()
    if sow_date and sow_date < date(today.year - 1, 1, 1):
        warnings.append("Date de semis très ancienne, vérifiez l'année")

    return DateValidation(valid=not errors, errors=errors, warnings=warnings)


def plans_in_season(plans, current_week=None, tolerance=4):
    """Plans whose sow or transplant week is within ±tolerance of now.

    Distances wrap around the year end, so S51 is close to S02.
    """
    if current_week is None:
        current_week = date_to_week(date.today())

    def is_close(week):
        if not week:
            return False
        diff = abs(week - current_week)
        return diff <= tolerance or diff >= 52 - tolerance

    return [p for p in plans if is_close(p.sow_week) or is_close(p.transplant_week)]
