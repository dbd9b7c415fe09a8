"""
app.py — Flask entry point for the cultivation planning engine.

Initializes the Flask app, registers the route blueprints, sets up
logging, and calls init_db() and seed_defaults() on startup.

Run: python app.py → localhost:5000
"""

import os
import logging
from flask import Flask
from flask_wtf.csrf import CSRFProtect

from database import init_db, seed_defaults
from routes.main import main_bp
from routes.planning import planning_bp
from routes.irrigation import irrigation_bp
from utils.logger import setup_logger

csrf = CSRFProtect()


def create_app(test_config=None):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.secret_key = os.environ.get('GARDEN_SECRET_KEY', 'garden-planner-local-app-secret-key')
    app.config['WTF_CSRF_CHECK_DEFAULT'] = True
    app.config['JSON_SORT_KEYS'] = False
    app.config['LOG_LEVEL'] = os.environ.get('GARDEN_LOG_LEVEL', 'INFO')

    if test_config:
        app.config.update(test_config)

    csrf.init_app(app)

    base_dir = os.path.dirname(os.path.abspath(__file__))
    os.makedirs(os.path.join(base_dir, 'data'), exist_ok=True)

    if not app.config.get('TESTING'):
        setup_logger(None, 'garden.log', getattr(logging, app.config['LOG_LEVEL'].upper(), logging.INFO))

    # Initialize database and seed defaults
    with app.app_context():
        init_db()
        seed_defaults()

    app.register_blueprint(main_bp)
    app.register_blueprint(planning_bp)
    app.register_blueprint(irrigation_bp)

    return app


if __name__ == '__main__':
    app = create_app()
    # Debug mode: enabled by default for development (auto-reload on file changes)
    # Set FLASK_DEBUG=0 to disable for production
    debug = os.environ.get('FLASK_DEBUG', '1') != '0'
    app.run(host='localhost', port=5000, debug=debug)
