"""
routes/planning.py — Cultivation dates, bed capacity and planting creation.

Provides:
- GET  /api/plans                        — JSON: plans (optionally those in season)
- GET  /api/plans/<plan_id>/dates        — JSON: dates for ?year=&shift=
- POST /api/beds/<bed_id>/capacity       — JSON: fit check, suggestions, estimate
- POST /api/plantings                    — Create a planting (409 if it no longer fits)
- POST /api/plantings/<id>/finish        — Retire a planting

The capacity route is meant to be called on every edit of row count,
spacing or length; it always reads the bed's plantings fresh.
"""

import logging
import sqlite3
from dataclasses import replace
from datetime import date

from flask import Blueprint, request, jsonify

import database
from database import (
    get_bed, get_cultivation_plan, get_cultivation_plans, get_species,
    list_active_plantings, create_planting, create_irrigation_events,
    finish_planting, get_float_setting, CapacityConflictError
)
from bed_capacity import (
    check_planting_fit, required_width_m, suggest_adjustments, STATUS_UNAVAILABLE
)
from cultivation_scheduler import (
    DERIVED, PlantingDraft, compute_dates, plans_in_season, validate_culture_dates
)
from irrigation_triage import generate_irrigation_schedule
from models import Planting
from utils.serializers import to_json
from week_dates import date_to_week, format_week
from yield_estimator import estimate_planting

logger = logging.getLogger(__name__)

planning_bp = Blueprint('planning', __name__)

DATE_FIELDS = ('sow_date', 'transplant_date', 'harvest_date')
INT_FIELDS = ('row_count',)


# ========================================
# Helpers
# ========================================

def _optional_number(data, key, cast=float):
    value = data.get(key)
    if value is None or value == '':
        return None
    return cast(value)


def _parse_field(name, value):
    if name in DATE_FIELDS:
        return date.fromisoformat(value)
    if name in INT_FIELDS:
        return int(value)
    return float(value)


def _parse_candidate(data, bed_id):
    """Build the candidate Planting from a capacity request body."""
    return Planting(
        bed_id=bed_id,
        species_id=_optional_number(data, 'species_id', int),
        cultivation_plan_id=_optional_number(data, 'cultivation_plan_id', int),
        row_count=int(data.get('row_count', 1)),
        row_spacing_cm=float(data.get('row_spacing_cm', 0)),
        plant_spacing_cm=_optional_number(data, 'plant_spacing_cm'),
        length_m=_optional_number(data, 'length_m'),
    )


def _unavailable(message):
    return jsonify({'status': STATUS_UNAVAILABLE, 'error': message}), 503


def _week_label(d):
    return format_week(date_to_week(d)) if d else format_week(None)


# ========================================
# Cultivation plans
# ========================================

@planning_bp.route('/api/plans')
def list_plans():
    """All plans, or only those whose sow/transplant week is near ?week=."""
    plans = get_cultivation_plans()
    week = request.args.get('week', type=int)
    if week is not None:
        tolerance = request.args.get('tolerance', 4, type=int)
        plans = plans_in_season(plans, week, tolerance)
    return jsonify([to_json(p) for p in plans])


@planning_bp.route('/api/plans/<int:plan_id>/dates')
def plan_dates(plan_id):
    """Dates of a plan for a year and a week shift (clamped to the plan's bounds)."""
    plan = get_cultivation_plan(plan_id)
    if not plan:
        return jsonify({'error': "ITP introuvable."}), 404

    year = request.args.get('year', type=int) or date.today().year
    shift = request.args.get('shift', 0, type=int)
    dates = compute_dates(plan, year, shift)

    payload = to_json(dates)
    payload.update({
        'plan_id': plan.id,
        'year': year,
        'max_week_shift': plan.max_week_shift,
        'weeks': {
            'sow': _week_label(dates.sow_date),
            'transplant': _week_label(dates.transplant_date),
            'harvest': _week_label(dates.harvest_date),
        },
    })
    return jsonify(payload)


# ========================================
# Bed capacity
# ========================================

@planning_bp.route('/api/beds/<int:bed_id>/capacity', methods=['POST'])
def bed_capacity(bed_id):
    """Can this candidate be planted on this bed right now?"""
    data = request.get_json(silent=True) or {}
    try:
        candidate = _parse_candidate(data, bed_id)
        required_width_m(candidate)
        spacing_floor = _optional_number(data, 'min_row_spacing_cm')
        seed_stock_g = _optional_number(data, 'seed_stock_g')
    except (TypeError, ValueError) as e:
        return jsonify({'error': f"Données invalides : {e}"}), 400

    try:
        bed = get_bed(bed_id)
        if not bed:
            return jsonify({'error': "Planche introuvable."}), 404
        if spacing_floor is None and candidate.cultivation_plan_id:
            plan = get_cultivation_plan(candidate.cultivation_plan_id)
            spacing_floor = plan.min_row_spacing_cm if plan else None
        species = get_species(candidate.species_id) if candidate.species_id else None
        margin = get_float_setting('bed_margin_m')
    except sqlite3.Error:
        logger.exception("Lecture impossible pour la planche %s", bed_id)
        return _unavailable("Vérification impossible pour le moment.")

    check = check_planting_fit(database, bed_id, candidate, spacing_floor, margin)
    if check.status == STATUS_UNAVAILABLE:
        return _unavailable(check.error)

    payload = {'status': check.status}
    payload.update(to_json(check.result))
    payload['suggestions'] = to_json(check.suggestions)
    payload['estimate'] = to_json(estimate_planting(bed, candidate, species, seed_stock_g))
    return jsonify(payload)


# ========================================
# Plantings
# ========================================

@planning_bp.route('/api/plantings', methods=['POST'])
def create_planting_route():
    """Create a planting from a plan, keeping every value the user typed.

    Body: bed_id, cultivation_plan_id?, species_id?, year?, week_shift?,
    any of row_count, row_spacing_cm, plant_spacing_cm, length_m,
    sow_date, transplant_date, harvest_date, and schedule_irrigation.
    """
    data = request.get_json(silent=True) or {}

    bed = get_bed(data.get('bed_id'))
    if not bed:
        return jsonify({'error': "Planche introuvable."}), 404

    plan = None
    if data.get('cultivation_plan_id'):
        plan = get_cultivation_plan(data['cultivation_plan_id'])
        if not plan:
            return jsonify({'error': "ITP introuvable."}), 404

    draft = PlantingDraft()
    try:
        for name in PlantingDraft.FIELDS:
            if data.get(name) not in (None, ''):
                draft.set_user(name, _parse_field(name, data[name]))
        year = int(data.get('year') or date.today().year)
        week_shift = int(data.get('week_shift') or 0)
    except (TypeError, ValueError) as e:
        return jsonify({'error': f"Données invalides : {e}"}), 400

    dates = None
    if plan:
        draft.apply_plan(plan, bed)
        dates = compute_dates(plan, year, week_shift)
        draft.apply_dates(dates)
    else:
        draft.derive('length_m', bed.length_m)
    if draft.get('row_count') is None:
        draft.derive('row_count', 1)
    if draft.get('row_spacing_cm') is None:
        draft.derive('row_spacing_cm', 0.0)

    date_check = validate_culture_dates(
        draft.get('sow_date'), draft.get('transplant_date'), draft.get('harvest_date'),
        plan=plan, year=year
    )
    if not date_check.valid:
        return jsonify({'error': "Dates incohérentes.", 'errors': date_check.errors}), 400

    species_id = data.get('species_id') or (plan.species_id if plan else None)
    planting = draft.to_planting(
        bed_id=bed.id,
        species_id=species_id,
        cultivation_plan_id=plan.id if plan else None,
    )

    margin = get_float_setting('bed_margin_m')
    try:
        planting_id = create_planting(planting, margin)
    except CapacityConflictError as e:
        floor = plan.min_row_spacing_cm if plan else None
        suggestions = suggest_adjustments(bed, list_active_plantings(bed.id), planting, floor, margin)
        return jsonify({
            'error': str(e),
            'capacity': to_json(e.result),
            'suggestions': to_json(suggestions),
        }), 409
    except ValueError as e:
        return jsonify({'error': f"Données invalides : {e}"}), 400

    events = []
    if data.get('schedule_irrigation', True):
        species = get_species(species_id) if species_id else None
        end = None
        if dates is not None and draft.source('harvest_date') == DERIVED:
            end = dates.harvest_end_date
        events = generate_irrigation_schedule(replace(planting, id=planting_id), species, end)
        if events:
            create_irrigation_events(events)

    logger.info("Culture %s créée sur la planche %s (%s irrigations planifiées)",
                planting_id, bed.name, len(events))
    return jsonify({
        'id': planting_id,
        'planting': to_json(replace(planting, id=planting_id)),
        'sources': {name: draft.source(name) for name in PlantingDraft.FIELDS},
        'warnings': date_check.warnings,
        'irrigation_events': len(events),
    }), 201


@planning_bp.route('/api/plantings/<int:planting_id>/finish', methods=['POST'])
def finish_planting_route(planting_id):
    """Mark a planting finished; it no longer counts toward bed capacity."""
    if not finish_planting(planting_id):
        return jsonify({'error': "Culture introuvable ou déjà terminée."}), 404
    return jsonify({'success': True, 'id': planting_id})
