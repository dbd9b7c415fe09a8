"""
tests/test_bed_capacity.py — Tests for bed capacity checks and repair suggestions.

Tests cover:
- Width budget (bed width - margin) against the sum of row widths
- Retired plantings not counting toward capacity
- Length overflow
- Suggestions: row count, spacing floor, length, recommended flag
- Randomized property checks against brute-force sums
- Fresh checks through a data source, and the "unavailable" status
"""

import random
import sqlite3
from datetime import date

import pytest

from bed_capacity import (
    MAX_SUGGESTIONS, STATUS_INFEASIBLE, STATUS_OK, STATUS_UNAVAILABLE,
    ReduceLength, ReduceRowCount, ReduceSpacing,
    check_planting_fit, required_width_m, suggest_adjustments, validate_capacity
)
from models import Bed, Planting


@pytest.fixture
def bed():
    return Bed(id=1, name='P01', width_m=0.8, length_m=20)


@pytest.fixture
def existing():
    return [Planting(id=1, bed_id=1, row_count=2, row_spacing_cm=30)]


class FakeSource:
    """In-memory stand-in for the database module."""

    def __init__(self, beds=None, plantings=None, error=None):
        self.beds = beds or {}
        self.plantings = plantings or []
        self.error = error
        self.calls = 0

    def get_bed(self, bed_id):
        self.calls += 1
        if self.error:
            raise self.error
        return self.beds.get(bed_id)

    def list_active_plantings(self, bed_id=None):
        return [p for p in self.plantings if p.bed_id == bed_id and p.active]


# ========================================
# validate_capacity
# ========================================

class TestValidateCapacity:

    def test_row_overflow(self, bed, existing):
        candidate = Planting(bed_id=1, row_count=3, row_spacing_cm=30)
        result = validate_capacity(bed, existing, candidate)
        assert not result.possible
        assert result.required_width_m == pytest.approx(0.6)
        assert result.occupied_width_m == pytest.approx(0.3)
        assert result.available_width_m == pytest.approx(0.3)
        assert result.failed_axes == ('width',)
        assert 'Largeur insuffisante' in result.message
        assert 'manque 0.30m' in result.message

    def test_fits(self, bed, existing):
        candidate = Planting(bed_id=1, row_count=2, row_spacing_cm=30)
        result = validate_capacity(bed, existing, candidate)
        assert result.possible
        assert result.message is None
        assert result.failed_axes == ()

    def test_single_row_takes_no_width(self, bed):
        assert required_width_m(Planting(row_count=1, row_spacing_cm=80)) == 0
        assert required_width_m(Planting(row_count=0, row_spacing_cm=80)) == 0
        assert validate_capacity(bed, [], Planting(row_count=1, row_spacing_cm=500)).possible

    def test_exact_fit(self, bed):
        # 0.8 - 0.2 is not exactly 0.6 in floating point
        candidate = Planting(row_count=3, row_spacing_cm=30)
        assert validate_capacity(bed, [], candidate).possible

    def test_retired_plantings_ignored(self, bed):
        retired = Planting(id=2, bed_id=1, row_count=3, row_spacing_cm=30,
                           finished_at=date(2025, 6, 1))
        candidate = Planting(row_count=3, row_spacing_cm=30)
        result = validate_capacity(bed, [retired], candidate)
        assert result.possible
        assert result.occupied_width_m == 0

    def test_length_overflow(self, bed):
        candidate = Planting(row_count=1, length_m=25)
        result = validate_capacity(bed, [], candidate)
        assert not result.possible
        assert result.failed_axes == ('length',)
        assert 'Longueur' in result.message

    def test_both_axes(self, bed, existing):
        candidate = Planting(row_count=3, row_spacing_cm=30, length_m=25)
        result = validate_capacity(bed, existing, candidate)
        assert result.failed_axes == ('width', 'length')
        assert ' ; ' in result.message

    def test_invalid_geometry_raises(self, bed):
        with pytest.raises(ValueError):
            validate_capacity(Bed(width_m=-1, length_m=10), [], Planting())
        with pytest.raises(ValueError):
            validate_capacity(bed, [], Planting(row_count=-1))
        with pytest.raises(ValueError):
            validate_capacity(bed, [], Planting(row_count=2, row_spacing_cm=-5))

    def test_repeatable(self, bed, existing):
        candidate = Planting(row_count=4, row_spacing_cm=25, length_m=22)
        assert validate_capacity(bed, existing, candidate) == validate_capacity(bed, existing, candidate)


# ========================================
# suggest_adjustments
# ========================================

class TestSuggestAdjustments:

    def test_reduce_rows(self, bed, existing):
        candidate = Planting(bed_id=1, row_count=3, row_spacing_cm=30)
        suggestions = suggest_adjustments(bed, existing, candidate)
        assert len(suggestions) == 1
        first = suggestions[0]
        assert isinstance(first, ReduceRowCount)
        assert first.value == 2
        assert first.recommended
        assert 'au lieu de 3' in first.message
        assert validate_capacity(bed, existing, first.apply_to(candidate)).possible

    def test_nothing_when_it_fits(self, bed):
        assert suggest_adjustments(bed, [], Planting(row_count=2, row_spacing_cm=30)) == []

    def test_spacing_needs_a_floor(self):
        bed = Bed(width_m=1.2, length_m=15)
        candidate = Planting(row_count=5, row_spacing_cm=30)
        suggestions = suggest_adjustments(bed, [], candidate)
        assert [type(s) for s in suggestions] == [ReduceRowCount]
        assert suggestions[0].value == 4

    def test_spacing_with_floor(self):
        bed = Bed(width_m=1.2, length_m=15)
        candidate = Planting(row_count=5, row_spacing_cm=30)
        suggestions = suggest_adjustments(bed, [], candidate, min_row_spacing_cm=20)
        assert [type(s) for s in suggestions] == [ReduceRowCount, ReduceSpacing]
        spacing = suggestions[1]
        assert spacing.value == 25
        assert not spacing.recommended
        assert validate_capacity(bed, [], spacing.apply_to(candidate)).possible

    def test_fractional_floor_is_suggested(self):
        bed = Bed(width_m=1.222, length_m=15)
        candidate = Planting(row_count=5, row_spacing_cm=30)
        suggestions = suggest_adjustments(bed, [], candidate, min_row_spacing_cm=25.5)
        assert [type(s) for s in suggestions] == [ReduceRowCount, ReduceSpacing]
        assert suggestions[1].value == 25.5
        assert validate_capacity(bed, [], suggestions[1].apply_to(candidate)).possible

    def test_spacing_floor_too_high(self):
        bed = Bed(width_m=1.2, length_m=15)
        candidate = Planting(row_count=5, row_spacing_cm=30)
        suggestions = suggest_adjustments(bed, [], candidate, min_row_spacing_cm=26)
        assert not any(isinstance(s, ReduceSpacing) for s in suggestions)

    def test_length_suggestion(self, bed):
        candidate = Planting(row_count=1, length_m=25)
        suggestions = suggest_adjustments(bed, [], candidate)
        assert len(suggestions) == 1
        assert isinstance(suggestions[0], ReduceLength)
        assert suggestions[0].value == 20
        assert suggestions[0].recommended

    def test_no_single_fix_for_two_axes(self, bed, existing):
        candidate = Planting(row_count=3, row_spacing_cm=30, length_m=25)
        suggestions = suggest_adjustments(bed, existing, candidate)
        assert {s.kind for s in suggestions} == {'reduce_row_count', 'reduce_length'}
        assert not any(s.recommended for s in suggestions)

    def test_no_row_count_fits(self, bed):
        full = [Planting(id=1, row_count=3, row_spacing_cm=30)]
        candidate = Planting(row_count=2, row_spacing_cm=30)
        suggestions = suggest_adjustments(bed, full, candidate)
        assert [s.value for s in suggestions] == [1]

    def test_to_dict(self, bed, existing):
        candidate = Planting(row_count=3, row_spacing_cm=30)
        data = suggest_adjustments(bed, existing, candidate)[0].to_dict()
        assert data['kind'] == 'reduce_row_count'
        assert data['axis'] == 'width'
        assert data['field'] == 'row_count'
        assert data['value'] == 2


# ========================================
# Randomized properties
# ========================================

class TestCapacityProperties:

    def _random_case(self, rng):
        bed = Bed(width_m=round(rng.uniform(0.3, 2.0), 2), length_m=rng.choice([10, 15, 20]))
        existing = [
            Planting(id=i, row_count=rng.randint(1, 4), row_spacing_cm=rng.choice([10, 20, 25, 30]))
            for i in range(rng.randint(0, 3))
        ]
        candidate = Planting(
            row_count=rng.randint(1, 6),
            row_spacing_cm=rng.choice([15, 20, 30, 45, 60]),
            length_m=rng.choice([None, 5, 15, 25]),
        )
        return bed, existing, candidate

    def test_width_matches_brute_force_sum(self):
        rng = random.Random(42)
        for _ in range(500):
            bed, existing, candidate = self._random_case(rng)
            total = sum((p.row_count - 1) * p.row_spacing_cm / 100 for p in existing)
            total += (candidate.row_count - 1) * candidate.row_spacing_cm / 100
            result = validate_capacity(bed, existing, candidate)
            if total > bed.width_m - 0.2 + 1e-6:
                assert 'width' in result.failed_axes
            elif total < bed.width_m - 0.2 - 1e-6:
                assert 'width' not in result.failed_axes

    def test_suggestions_fix_their_axis(self):
        rng = random.Random(1234)
        for _ in range(500):
            bed, existing, candidate = self._random_case(rng)
            floor = rng.choice([None, 10, 20])
            suggestions = suggest_adjustments(bed, existing, candidate, floor)
            assert suggestions == suggest_adjustments(bed, existing, candidate, floor)
            assert len(suggestions) <= MAX_SUGGESTIONS
            assert sum(1 for s in suggestions if s.recommended) <= 1
            for s in suggestions:
                result = validate_capacity(bed, existing, s.apply_to(candidate))
                assert s.axis not in result.failed_axes
                if s.recommended:
                    assert result.possible


# ========================================
# check_planting_fit
# ========================================

class TestCheckPlantingFit:

    def test_ok(self, bed):
        source = FakeSource(beds={1: bed})
        check = check_planting_fit(source, 1, Planting(bed_id=1, row_count=2, row_spacing_cm=30))
        assert check.status == STATUS_OK
        assert check.result.possible
        assert check.suggestions == []

    def test_infeasible(self, bed, existing):
        source = FakeSource(beds={1: bed}, plantings=existing)
        check = check_planting_fit(source, 1, Planting(bed_id=1, row_count=3, row_spacing_cm=30))
        assert check.status == STATUS_INFEASIBLE
        assert not check.result.possible
        assert check.suggestions[0].value == 2

    def test_reads_fresh_on_every_call(self, bed, existing):
        source = FakeSource(beds={1: bed})
        candidate = Planting(bed_id=1, row_count=3, row_spacing_cm=30)
        assert check_planting_fit(source, 1, candidate).status == STATUS_OK
        source.plantings = existing
        assert check_planting_fit(source, 1, candidate).status == STATUS_INFEASIBLE
        assert source.calls == 2

    def test_missing_bed_is_unavailable(self):
        check = check_planting_fit(FakeSource(), 9, Planting(row_count=1))
        assert check.status == STATUS_UNAVAILABLE
        assert check.result is None

    def test_lookup_failure_is_unavailable(self):
        source = FakeSource(error=sqlite3.OperationalError('database is locked'))
        check = check_planting_fit(source, 1, Planting(row_count=1))
        assert check.status == STATUS_UNAVAILABLE
        assert check.result is None
        assert 'database is locked' in check.error

    def test_malformed_existing_row_is_unavailable(self, bed):
        broken = Planting(id=5, bed_id=1, row_count=None, row_spacing_cm=30)
        source = FakeSource(beds={1: bed}, plantings=[broken])
        check = check_planting_fit(source, 1, Planting(row_count=1))
        assert check.status == STATUS_UNAVAILABLE

    def test_invalid_candidate_raises(self, bed):
        with pytest.raises(ValueError):
            check_planting_fit(FakeSource(beds={1: bed}), 1, Planting(row_count=-2))
