"""
routes/main.py — Service summary and CSRF token routes.

Provides:
- GET /                — JSON summary: beds, active plantings, engine settings
- GET /api/csrf-token  — Token to send in the X-CSRFToken header of POST calls
"""

from flask import Blueprint, jsonify
from flask_wtf.csrf import generate_csrf

from database import get_beds, list_active_plantings, get_float_setting, DEFAULT_SETTINGS

main_bp = Blueprint('main', __name__)


@main_bp.route('/')
def index():
    """Homepage — what the planning engine currently sees."""
    beds = get_beds()
    plantings = list_active_plantings()

    return jsonify({
        'service': 'cultivation-planner',
        'beds': len(beds),
        'active_plantings': len(plantings),
        'settings': {key: get_float_setting(key) for key in DEFAULT_SETTINGS},
    })


@main_bp.route('/api/csrf-token')
def csrf_token():
    return jsonify({'csrf_token': generate_csrf()})
