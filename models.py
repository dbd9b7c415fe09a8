"""
models.py — Python dataclasses for the cultivation planning engine.

Maps to the SQLite tables created in database.py (beds, species,
cultivation_plans, plantings, irrigation_events) plus the result types
returned by the planning, capacity and irrigation modules.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple
from datetime import date, datetime


# Working margin kept free on every bed (10 cm on each side)
BED_MARGIN_M = 0.2


@dataclass
class Bed:
    """Cultivation bed (planche) with fixed geometry."""
    id: Optional[int] = None
    name: str = ""
    width_m: float = 0.0
    length_m: float = 0.0
    group: Optional[str] = None
    irrigation_type: Optional[str] = None

    def usable_width_m(self, margin_m: float = BED_MARGIN_M) -> float:
        """Width budget available for rows once the working margin is removed."""
        return self.width_m - margin_m


@dataclass
class Species:
    """Species reference data used for irrigation and yield estimates."""
    id: Optional[int] = None
    name: str = ""
    water_need_level: Optional[int] = None
    irrigation_type: Optional[str] = None
    yield_kg_m2: Optional[float] = None
    seeds_per_plant: Optional[float] = None


@dataclass
class CultivationPlan:
    """Week-numbered cultivation template (ITP) for a species."""
    id: Optional[int] = None
    species_id: Optional[int] = None
    name: str = ""
    sow_week: Optional[int] = None
    transplant_week: Optional[int] = None
    harvest_week: Optional[int] = None
    harvest_duration_weeks: Optional[int] = None
    nursery_duration_days: Optional[int] = None
    total_duration_days: Optional[int] = None
    row_count_default: Optional[int] = None
    row_spacing_default_cm: Optional[float] = None
    plant_spacing_default_cm: Optional[float] = None
    min_row_spacing_cm: Optional[float] = None
    max_week_shift: int = 4


@dataclass
class Planting:
    """One crop instance occupying rows on a bed for one growing cycle."""
    id: Optional[int] = None
    bed_id: Optional[int] = None
    species_id: Optional[int] = None
    cultivation_plan_id: Optional[int] = None
    row_count: int = 1
    row_spacing_cm: float = 0.0
    plant_spacing_cm: Optional[float] = None
    length_m: Optional[float] = None
    sow_date: Optional[date] = None
    transplant_date: Optional[date] = None
    harvest_date: Optional[date] = None
    last_watered_at: Optional[datetime] = None
    finished_at: Optional[date] = None

    @property
    def active(self) -> bool:
        """A planting stays active until it is marked finished."""
        return self.finished_at is None

    @property
    def required_width_m(self) -> float:
        """Width taken by the rows: (rows - 1) x spacing, never negative."""
        return max(0, self.row_count - 1) * self.row_spacing_cm / 100


@dataclass
class IrrigationEvent:
    """Scheduled irrigation for a planting; flipped to done on confirmation."""
    id: Optional[int] = None
    planting_id: Optional[int] = None
    planned_date: Optional[date] = None
    actual_date: Optional[date] = None
    done: bool = False


# ========================================
# Result types
# ========================================

@dataclass
class ScheduledDates:
    """Calendar dates derived from a cultivation plan."""
    sow_date: Optional[date] = None
    transplant_date: Optional[date] = None
    harvest_date: Optional[date] = None
    harvest_end_date: Optional[date] = None
    week_shift: int = 0


@dataclass
class CapacityResult:
    """Outcome of a bed capacity check."""
    possible: bool = True
    available_width_m: float = 0.0
    required_width_m: float = 0.0
    occupied_width_m: float = 0.0
    message: Optional[str] = None
    failed_axes: Tuple[str, ...] = ()


@dataclass
class IrrigationClassification:
    """Urgency classification of one active planting."""
    planting_id: Optional[int] = None
    bed_id: Optional[int] = None
    irrigation_type: Optional[str] = None
    tier: str = "never"
    days_since_watered: Optional[int] = None
    age_days: Optional[int] = None
    is_young: bool = False
    weekly_consumption_l: float = 0.0
    upcoming_count: int = 0
    unclassified: bool = False


@dataclass
class GroupSummary:
    """Aggregated irrigation figures for one group of plantings."""
    key: str = ""
    count: int = 0
    weekly_consumption_l: float = 0.0
    upcoming_count: int = 0
    planting_ids: list = field(default_factory=list)
