"""
tests/test_cultivation_scheduler.py — Tests for plan date derivation.

Tests cover:
- Dates from week milestones, with and without a week shift
- Shift clamping to the plan's max_week_shift
- Absent milestones and year rollover (autumn sowing)
- Scheduled vs manual mode (DateSchedule)
- User/derived provenance of planting form values (PlantingDraft)
- Date consistency checks and in-season plan filtering
"""

import random
from datetime import date, timedelta

import pytest

from bed_capacity import ReduceLength, ReduceRowCount, ReduceSpacing
from cultivation_scheduler import (
    DERIVED, USER, DateSchedule, PlantingDraft, clamp_week_shift, compute_dates,
    plans_in_season, validate_culture_dates
)
from models import Bed, CultivationPlan
from week_dates import week_to_date


@pytest.fixture
def plan():
    return CultivationPlan(
        id=1, name='Tomate plein champ', sow_week=10, transplant_week=15, harvest_week=25,
        harvest_duration_weeks=3, row_count_default=2, row_spacing_default_cm=60,
        plant_spacing_default_cm=50, min_row_spacing_cm=40, max_week_shift=4
    )


# ========================================
# compute_dates
# ========================================

class TestComputeDates:

    def test_shifted_dates(self, plan):
        dates = compute_dates(plan, 2025, 2)
        assert dates.sow_date == date(2025, 3, 17)
        assert dates.transplant_date == date(2025, 4, 21)
        assert dates.harvest_date == date(2025, 6, 30)
        assert dates.week_shift == 2

    def test_unshifted_dates(self, plan):
        dates = compute_dates(plan, 2025)
        assert dates.sow_date == week_to_date(2025, 10)
        assert dates.transplant_date == week_to_date(2025, 15)
        assert dates.harvest_date == week_to_date(2025, 25)

    def test_harvest_end(self, plan):
        dates = compute_dates(plan, 2025)
        assert dates.harvest_end_date == dates.harvest_date + timedelta(weeks=3)

    def test_shift_moves_every_date_by_whole_weeks(self, plan):
        for s1 in range(-4, 5):
            for s2 in range(-4, 5):
                d1 = compute_dates(plan, 2025, s1)
                d2 = compute_dates(plan, 2025, s2)
                delta = timedelta(weeks=s2 - s1)
                assert d2.sow_date - d1.sow_date == delta
                assert d2.transplant_date - d1.transplant_date == delta
                assert d2.harvest_date - d1.harvest_date == delta

    def test_shift_is_clamped(self, plan):
        assert compute_dates(plan, 2025, 10) == compute_dates(plan, 2025, 4)
        assert compute_dates(plan, 2025, -10) == compute_dates(plan, 2025, -4)
        assert compute_dates(plan, 2025, 10).week_shift == 4

    def test_clamp_week_shift(self):
        assert clamp_week_shift(3, 4) == 3
        assert clamp_week_shift(-6, 4) == -4
        assert clamp_week_shift(6, None) == 4
        assert clamp_week_shift(None, 4) == 0
        assert clamp_week_shift(2, 0) == 0

    def test_absent_milestones_stay_absent(self):
        plan = CultivationPlan(transplant_week=15)
        dates = compute_dates(plan, 2025, 1)
        assert dates.sow_date is None
        assert dates.harvest_date is None
        assert dates.harvest_end_date is None
        assert dates.transplant_date == week_to_date(2025, 16)

    def test_week_zero_is_absent(self):
        plan = CultivationPlan(sow_week=0, transplant_week=15, harvest_week=0)
        dates = compute_dates(plan, 2025)
        assert dates.sow_date is None
        assert dates.harvest_date is None
        assert dates.transplant_date == week_to_date(2025, 15)

    def test_empty_plan(self):
        dates = compute_dates(CultivationPlan(), 2025, 3)
        assert dates.sow_date is None
        assert dates.transplant_date is None
        assert dates.harvest_date is None

    def test_autumn_sowing_harvested_next_year(self):
        garlic = CultivationPlan(sow_week=42, harvest_week=28)
        dates = compute_dates(garlic, 2025)
        assert dates.sow_date == week_to_date(2025, 42)
        assert dates.harvest_date == week_to_date(2026, 28)

    def test_dates_stay_in_order(self):
        rng = random.Random(7)
        for _ in range(500):
            plan = CultivationPlan(
                sow_week=rng.randint(1, 52),
                transplant_week=rng.randint(1, 52),
                harvest_week=rng.randint(1, 52),
            )
            dates = compute_dates(plan, rng.randint(2000, 2040), rng.randint(-4, 4))
            assert dates.sow_date <= dates.transplant_date <= dates.harvest_date


# ========================================
# DateSchedule
# ========================================

class TestDateSchedule:

    def test_scheduled_mode_follows_shift(self, plan):
        schedule = DateSchedule(plan, 2025)
        assert schedule.mode == DateSchedule.SCHEDULED
        dates = schedule.set_week_shift(2)
        assert dates == compute_dates(plan, 2025, 2)
        assert schedule.week_shift == 2

    def test_set_year(self, plan):
        schedule = DateSchedule(plan, 2025, 1)
        assert schedule.set_year(2026) == compute_dates(plan, 2026, 1)

    def test_override_requires_manual_mode(self, plan):
        schedule = DateSchedule(plan, 2025)
        with pytest.raises(ValueError):
            schedule.override('sow_date', date(2025, 3, 1))

    def test_manual_override_keeps_other_dates(self, plan):
        schedule = DateSchedule(plan, 2025)
        before = schedule.freeze()
        after = schedule.override('sow_date', date(2025, 3, 1))
        assert after.sow_date == date(2025, 3, 1)
        assert after.transplant_date == before.transplant_date
        assert after.harvest_date == before.harvest_date

    def test_shift_refused_in_manual_mode(self, plan):
        schedule = DateSchedule(plan, 2025)
        schedule.freeze()
        with pytest.raises(ValueError):
            schedule.set_week_shift(1)

    def test_override_checks_field_and_type(self, plan):
        schedule = DateSchedule(plan, 2025)
        schedule.freeze()
        with pytest.raises(ValueError):
            schedule.override('planted_on', date(2025, 3, 1))
        with pytest.raises(TypeError):
            schedule.override('sow_date', '2025-03-01')

    def test_resume_discards_manual_edits(self, plan):
        schedule = DateSchedule(plan, 2025, 2)
        schedule.freeze()
        schedule.override('harvest_date', date(2025, 9, 1))
        dates = schedule.resume_schedule()
        assert schedule.mode == DateSchedule.SCHEDULED
        assert dates == compute_dates(plan, 2025, 2)

    def test_dates_property_is_a_copy(self, plan):
        schedule = DateSchedule(plan, 2025)
        dates = schedule.dates
        dates.sow_date = None
        assert schedule.dates.sow_date is not None


# ========================================
# PlantingDraft
# ========================================

class TestPlantingDraft:

    def test_plan_fills_derived_fields(self, plan):
        draft = PlantingDraft()
        draft.apply_plan(plan, Bed(width_m=0.8, length_m=20))
        assert draft.get('row_count') == 2
        assert draft.get('row_spacing_cm') == 60
        assert draft.get('length_m') == 20
        assert draft.source('row_count') == DERIVED

    def test_user_value_survives_rederivation(self, plan):
        draft = PlantingDraft(row_count=3)
        assert draft.source('row_count') == USER
        draft.apply_plan(plan)
        assert draft.get('row_count') == 3
        assert draft.derive('row_count', 5) is False
        assert draft.get('row_count') == 3

    def test_user_date_survives_shift(self, plan):
        draft = PlantingDraft()
        draft.set_user('sow_date', date(2025, 3, 1))
        draft.apply_dates(compute_dates(plan, 2025, 3))
        assert draft.get('sow_date') == date(2025, 3, 1)
        assert draft.get('transplant_date') == compute_dates(plan, 2025, 3).transplant_date

    def test_reset_hands_field_back(self, plan):
        draft = PlantingDraft(row_count=3)
        draft.reset('row_count')
        draft.apply_plan(plan)
        assert draft.get('row_count') == 2
        assert draft.source('row_count') == DERIVED

    def test_suggestion_does_not_override_user_rows(self, plan):
        draft = PlantingDraft(row_count=3)
        draft.apply_plan(plan)
        assert draft.apply_suggestion(ReduceRowCount(value=2, message='')) is False
        assert draft.get('row_count') == 3
        assert draft.source('row_count') == USER

    def test_suggestion_updates_derived_field(self, plan):
        draft = PlantingDraft()
        draft.apply_plan(plan)
        assert draft.apply_suggestion(ReduceSpacing(value=45, message='')) is True
        assert draft.get('row_spacing_cm') == 45
        assert draft.apply_suggestion(ReduceLength(value=15, message='')) is True
        assert draft.get('length_m') == 15

    def test_unknown_field(self):
        with pytest.raises(KeyError):
            PlantingDraft().get('colour')

    def test_to_planting(self, plan):
        draft = PlantingDraft(length_m=12.5)
        draft.apply_plan(plan)
        planting = draft.to_planting(bed_id=4)
        assert planting.bed_id == 4
        assert planting.row_count == 2
        assert planting.length_m == 12.5
        assert planting.sow_date is None


# ========================================
# Date checks
# ========================================

class TestValidateCultureDates:

    def test_ordered_dates(self, plan):
        dates = compute_dates(plan, 2025)
        result = validate_culture_dates(
            dates.sow_date, dates.transplant_date, dates.harvest_date,
            plan=plan, year=2025, today=date(2025, 1, 1)
        )
        assert result.valid
        assert result.errors == []
        assert result.warnings == []

    def test_sow_after_transplant(self):
        result = validate_culture_dates(date(2025, 5, 1), date(2025, 4, 1), date(2025, 7, 1),
                                        today=date(2025, 1, 1))
        assert not result.valid
        assert any('semis' in e for e in result.errors)

    def test_transplant_after_harvest(self):
        result = validate_culture_dates(None, date(2025, 8, 1), date(2025, 7, 1),
                                        today=date(2025, 1, 1))
        assert not result.valid

    def test_sow_after_harvest_without_transplant(self):
        result = validate_culture_dates(date(2025, 8, 1), None, date(2025, 7, 1),
                                        today=date(2025, 1, 1))
        assert not result.valid

    def test_far_from_plan_is_only_a_warning(self, plan):
        dates = compute_dates(plan, 2025)
        result = validate_culture_dates(
            dates.sow_date - timedelta(days=40), dates.transplant_date, dates.harvest_date,
            plan=plan, year=2025, today=date(2025, 1, 1)
        )
        assert result.valid
        assert len(result.warnings) == 1

    def test_old_sowing_warning(self):
        result = validate_culture_dates(date(2020, 3, 1), today=date(2025, 6, 1))
        assert result.valid
        assert result.warnings


class TestPlansInSeason:

    def test_filters_by_week(self, plan):
        late = CultivationPlan(name='late', sow_week=30)
        assert plans_in_season([plan, late], current_week=12) == [plan]

    def test_wraps_around_year_end(self):
        winter = CultivationPlan(name='winter', sow_week=51)
        assert plans_in_season([winter], current_week=2) == [winter]

    def test_transplant_week_counts(self):
        leeks = CultivationPlan(name='leeks', sow_week=5, transplant_week=20)
        assert plans_in_season([leeks], current_week=22) == [leeks]
