"""
routes/irrigation.py — Irrigation triage and watering confirmation routes.

Provides:
- GET  /api/irrigation          — JSON: active plantings sorted by urgency,
                                  grouped by ?group=bed|irrigation_type|urgency_tier
- POST /api/irrigation/water    — Record a watering for planting_id or planting_ids
"""

import logging
import sqlite3
from datetime import datetime, timedelta

from flask import Blueprint, request, jsonify

from bed_capacity import STATUS_UNAVAILABLE
from database import (
    get_bed, get_species, list_active_plantings, list_irrigation_events,
    apply_watering, get_float_setting, UnknownPlantingError
)
from irrigation_triage import (
    GROUP_KEYS, aggregate_by_group, classify_irrigation, mark_watered, sort_by_urgency
)
from utils.serializers import to_json

logger = logging.getLogger(__name__)

irrigation_bp = Blueprint('irrigation', __name__, url_prefix='/api/irrigation')


def _parse_now(raw):
    return datetime.fromisoformat(raw) if raw else datetime.now()


def _classify_active_plantings(now):
    """Classify every active planting against fresh bed, species and event data."""
    window_days = int(get_float_setting('irrigation_window_days'))
    young_days = int(get_float_setting('young_threshold_days'))

    beds = {}
    species_cache = {}
    classifications = []
    for planting in list_active_plantings():
        if planting.bed_id not in beds:
            beds[planting.bed_id] = get_bed(planting.bed_id)
        if planting.species_id not in species_cache:
            species_cache[planting.species_id] = (
                get_species(planting.species_id) if planting.species_id else None
            )
        events = list_irrigation_events(
            planting_id=planting.id,
            start=now.date(),
            end=(now + timedelta(days=window_days)).date(),
        )
        classifications.append(classify_irrigation(
            planting, now,
            species=species_cache[planting.species_id],
            bed=beds[planting.bed_id],
            events=events,
            young_threshold_days=young_days,
            window_days=window_days,
        ))
    return classifications


@irrigation_bp.route('')
def triage():
    """Urgency list and per-group totals for every active planting."""
    group_key = request.args.get('group', 'bed')
    if group_key not in GROUP_KEYS:
        return jsonify({'error': f"Regroupement inconnu : {group_key}"}), 400
    try:
        now = _parse_now(request.args.get('now'))
    except ValueError:
        return jsonify({'error': "Date invalide."}), 400

    try:
        classifications = _classify_active_plantings(now)
    except sqlite3.Error:
        logger.exception("Lecture des cultures impossible pour le tri d'irrigation")
        return jsonify({
            'status': STATUS_UNAVAILABLE,
            'error': "Tri d'irrigation impossible pour le moment.",
        }), 503

    ordered = sort_by_urgency(classifications)
    summary = aggregate_by_group(ordered, group_key)
    return jsonify({
        'now': now.isoformat(timespec='seconds'),
        'data': to_json(ordered),
        'group_key': summary.group_key,
        'groups': to_json(summary.groups),
        'stats': to_json(summary.totals),
    })


@irrigation_bp.route('/water', methods=['POST'])
def water():
    """Record a watering for one planting or a whole group at once.

    The batch is all-or-nothing: one unknown id and nothing is recorded.
    """
    data = request.get_json(silent=True) or {}
    ids = data.get('planting_ids')
    if ids is None and data.get('planting_id') is not None:
        ids = [data['planting_id']]
    if not isinstance(ids, list) or not ids:
        return jsonify({'error': "ID de culture requis"}), 400
    try:
        ids = [int(i) for i in ids]
        timestamp = _parse_now(data.get('timestamp'))
    except (TypeError, ValueError):
        return jsonify({'error': "Données invalides."}), 400

    events = []
    for planting_id in ids:
        events.extend(list_irrigation_events(planting_id=planting_id, end=timestamp.date()))

    change_set = mark_watered(ids, timestamp, events)
    try:
        updated = apply_watering(change_set)
    except UnknownPlantingError as e:
        return jsonify({'error': "Culture non trouvée", 'missing_ids': e.missing_ids}), 404

    return jsonify({
        'success': True,
        'date': timestamp.isoformat(timespec='seconds'),
        'updated': updated,
        'events_confirmed': len(change_set.event_updates),
    })
