"""
bed_capacity.py — Does a candidate planting fit on a bed?

This module implements:
- Width budget: usable width = bed width - working margin (0.2 m)
- Row width: (rows - 1) x row spacing, summed over the active plantings
- Capacity check: width and length axes, with a French message giving the
  deficit of each failing axis
- Repair suggestions: tagged variants (ReduceRowCount, ReduceSpacing,
  ReduceLength) ranked in a fixed order, capped at MAX_SUGGESTIONS
- Fresh check against the data collaborator, keeping "could not check"
  (unavailable) apart from "does not fit" (infeasible)

Suggestion algorithm (greedy, one axis at a time, not a joint optimizer):
1. Remove rows one by one, stop at the first count whose width fits
2. With a spacing floor, the widest whole-cm spacing >= floor that fits
   (or the floor itself when it is fractional and fits)
3. On a length overflow, shorten the planting to the bed length
A suggestion that fixes its axis may still leave the other axis failing;
only the first one restoring full feasibility is flagged recommended.

Every function is pure and cheap (linear in the existing plantings), so the
UI can call it on each edit of row count, spacing or length.
"""

import logging
import math
import sqlite3
from dataclasses import dataclass, field, replace, asdict
from typing import ClassVar, List, Optional

from models import BED_MARGIN_M, CapacityResult, Planting

logger = logging.getLogger(__name__)

EPSILON = 1e-9
MAX_SUGGESTIONS = 5

STATUS_OK = 'ok'
STATUS_INFEASIBLE = 'infeasible'
STATUS_UNAVAILABLE = 'unavailable'

# Errors a collaborator may raise on a failed lookup or a malformed row
UPSTREAM_ERRORS = (sqlite3.Error, OSError, LookupError, TypeError, ValueError, AttributeError)


# ========================================
# Geometry
# ========================================

def usable_width_m(bed, margin_m=BED_MARGIN_M) -> float:
    if bed.width_m is None or bed.width_m < 0:
        raise ValueError(f"Bed width must be >= 0, got {bed.width_m}")
    if bed.length_m is not None and bed.length_m < 0:
        raise ValueError(f"Bed length must be >= 0, got {bed.length_m}")
    return bed.usable_width_m(margin_m)


def required_width_m(planting: Planting) -> float:
    """Width a planting's rows occupy on the bed, in metres."""
    if planting.row_count is None or planting.row_count < 0:
        raise ValueError(f"Row count must be >= 0, got {planting.row_count}")
    if planting.row_spacing_cm is None or planting.row_spacing_cm < 0:
        raise ValueError(f"Row spacing must be >= 0, got {planting.row_spacing_cm}")
    if planting.length_m is not None and planting.length_m < 0:
        raise ValueError(f"Planting length must be >= 0, got {planting.length_m}")
    return planting.required_width_m


def validate_capacity(bed, existing_plantings, candidate, margin_m=BED_MARGIN_M) -> CapacityResult:
    """Check whether *candidate* fits next to *existing_plantings*.

    Retired plantings (finished) are ignored. The width axis compares the
    candidate's row width with what is left of the usable width; the
    length axis only applies when the candidate has a length.
    """
    usable = usable_width_m(bed, margin_m)
    occupied = sum(required_width_m(p) for p in existing_plantings if p.active)
    required = required_width_m(candidate)
    available = usable - occupied

    width_ok = required <= available + EPSILON
    length_ok = (candidate.length_m is None or bed.length_m is None
                 or candidate.length_m <= bed.length_m + EPSILON)

    messages = []
    if not width_ok:
        deficit = required - available
        messages.append(
            f"Largeur insuffisante : besoin de {required:.2f}m, "
            f"disponible {available:.2f}m (manque {deficit:.2f}m)"
        )
    if not length_ok:
        excess = candidate.length_m - bed.length_m
        messages.append(
            f"Longueur de culture ({candidate.length_m:.2f}m) supérieure à la "
            f"longueur de la planche ({bed.length_m:.2f}m, dépassement {excess:.2f}m)"
        )

    failed = tuple(axis for axis, ok in (('width', width_ok), ('length', length_ok)) if not ok)
    return CapacityResult(
        possible=not failed,
        available_width_m=available,
        required_width_m=required,
        occupied_width_m=occupied,
        message=' ; '.join(messages) or None,
        failed_axes=failed,
    )


# ========================================
# Suggestions
# ========================================

@dataclass(frozen=True)
class Suggestion:
    """One repair of the candidate: set *field_name* to *value*."""
    value: float
    message: str
    recommended: bool = False

    kind: ClassVar[str] = ''
    axis: ClassVar[str] = ''
    field_name: ClassVar[str] = ''

    def apply_to(self, candidate: Planting) -> Planting:
        return replace(candidate, **{self.field_name: self.value})

    def to_dict(self) -> dict:
        data = asdict(self)
        data.update(kind=self.kind, axis=self.axis, field=self.field_name)
        return data


@dataclass(frozen=True)
class ReduceRowCount(Suggestion):
    kind: ClassVar[str] = 'reduce_row_count'
    axis: ClassVar[str] = 'width'
    field_name: ClassVar[str] = 'row_count'


@dataclass(frozen=True)
class ReduceSpacing(Suggestion):
    kind: ClassVar[str] = 'reduce_spacing'
    axis: ClassVar[str] = 'width'
    field_name: ClassVar[str] = 'row_spacing_cm'


@dataclass(frozen=True)
class ReduceLength(Suggestion):
    kind: ClassVar[str] = 'reduce_length'
    axis: ClassVar[str] = 'length'
    field_name: ClassVar[str] = 'length_m'


def _width_fits(bed, existing_plantings, candidate, margin_m) -> bool:
    result = validate_capacity(bed, existing_plantings, candidate, margin_m)
    return 'width' not in result.failed_axes


def suggest_adjustments(bed, existing_plantings, candidate, min_row_spacing_cm=None,
                        margin_m=BED_MARGIN_M) -> List[Suggestion]:
    """Ranked repairs for a candidate that does not fit (empty list if it does).

    Args:
        bed: Bed receiving the candidate.
        existing_plantings: Active plantings already on the bed.
        candidate: Planting being planned.
        min_row_spacing_cm: Agronomic spacing floor; no spacing suggestion
            is made without it.

    Returns:
        At most MAX_SUGGESTIONS suggestions, the first one that alone makes
        the candidate fit flagged recommended.
    """
    check = validate_capacity(bed, existing_plantings, candidate, margin_m)
    if check.possible:
        return []

    suggestions: List[Suggestion] = []

    if 'width' in check.failed_axes:
        for rows in range(candidate.row_count - 1, 0, -1):
            if _width_fits(bed, existing_plantings, replace(candidate, row_count=rows), margin_m):
                suggestions.append(ReduceRowCount(
                    value=rows,
                    message=f"Réduire à {rows} rang{'s' if rows > 1 else ''} "
                            f"(au lieu de {candidate.row_count})",
                ))
                break

        if (min_row_spacing_cm is not None and candidate.row_count > 1
                and min_row_spacing_cm < candidate.row_spacing_cm):
            widest = check.available_width_m * 100 / (candidate.row_count - 1)
            spacing = math.floor(widest + EPSILON)
            # A fractional floor can fit where no whole cm above it does
            if spacing < min_row_spacing_cm <= widest + EPSILON:
                spacing = min_row_spacing_cm
            if spacing >= min_row_spacing_cm and spacing >= 0:
                trial = replace(candidate, row_spacing_cm=spacing)
                if _width_fits(bed, existing_plantings, trial, margin_m):
                    suggestions.append(ReduceSpacing(
                        value=spacing,
                        message=f"Réduire l'espacement à {spacing}cm "
                                f"(au lieu de {candidate.row_spacing_cm:g}cm)",
                    ))

    if 'length' in check.failed_axes:
        suggestions.append(ReduceLength(
            value=bed.length_m,
            message=f"Réduire la longueur à {bed.length_m:g}m "
                    f"(au lieu de {candidate.length_m:g}m)",
        ))

    suggestions = suggestions[:MAX_SUGGESTIONS]
    for i, suggestion in enumerate(suggestions):
        if validate_capacity(bed, existing_plantings, suggestion.apply_to(candidate), margin_m).possible:
            suggestions[i] = replace(suggestion, recommended=True)
            break

    return suggestions


# ========================================
# Check against the data collaborator
# ========================================

@dataclass
class CapacityCheck:
    """Capacity check with its data-access status.

    status is 'ok', 'infeasible' or 'unavailable'; result is None when the
    bed or its plantings could not be read.
    """
    status: str = STATUS_OK
    result: Optional[CapacityResult] = None
    suggestions: List[Suggestion] = field(default_factory=list)
    error: Optional[str] = None


def check_planting_fit(source, bed_id, candidate, min_row_spacing_cm=None,
                       margin_m=BED_MARGIN_M) -> CapacityCheck:
    """Fetch the bed and its active plantings fresh, then validate.

    *source* provides get_bed(id) and list_active_plantings(bed_id) (the
    database module does). Nothing is cached between calls.
    """
    required_width_m(candidate)

    try:
        bed = source.get_bed(bed_id)
        if bed is None:
            return CapacityCheck(status=STATUS_UNAVAILABLE, error="Planche introuvable.")
        existing = list(source.list_active_plantings(bed_id))
        usable_width_m(bed, margin_m)
        for planting in existing:
            required_width_m(planting)
    except UPSTREAM_ERRORS as e:
        logger.exception("Lecture de la planche %s impossible", bed_id)
        return CapacityCheck(
            status=STATUS_UNAVAILABLE,
            error=f"Vérification impossible : {e}",
        )

    result = validate_capacity(bed, existing, candidate, margin_m)
    if result.possible:
        return CapacityCheck(status=STATUS_OK, result=result)

    suggestions = suggest_adjustments(bed, existing, candidate, min_row_spacing_cm, margin_m)
    logger.info("Culture refusée sur la planche %s : %s", bed_id, result.message)
    return CapacityCheck(status=STATUS_INFEASIBLE, result=result, suggestions=suggestions)
