"""
Timesheet Planner API - Flask application for project cost planning

This is the main entry point for the Timesheet Planner backend. It serves
the project cost-planning engine: a per-week, per-role allocation grid that
is turned into internal cost, customer amount, gross/current margin and a
red/yellow/green margin status, plus the draft -> ready finalization flow.

Features:
- JWT-based authentication with organization-scoped roles
- Project setup lazy-creation, batch save-draft and per-row editing
- Margin engine with configurable thresholds
- Finalization with best-effort member and draft timesheet bootstrap
- Cost summary and planned vs actual reports
- Rate limiting and Alembic migrations

Environment Variables:
- FLASK_ENV: development/production
- DATABASE_URL: Database connection string
- SECRET_KEY: Flask secret key
- JWT_SECRET_KEY: JWT signing key
- CORS_ORIGINS: Allowed CORS origins
- SEED_DATABASE: load demo data on startup

Usage:
    python app.py

Or with Gunicorn (production):
    gunicorn "app:create_app('production')" --bind 0.0.0.0:8000
"""

from flask import Flask, jsonify, current_app, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from config import config
from db import db
import logging
from errors import register_error_handlers
from auth import init_auth
from flask_migrate import Migrate


def configure_logging(app, config_name='development'):
    """Configure logging for the application"""
    # Clear existing handlers
    for handler in app.logger.handlers[:]:
        app.logger.removeHandler(handler)

    log_level = logging.INFO if app.config.get('DEBUG', False) else logging.WARNING
    app.logger.setLevel(log_level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    app.logger.addHandler(console_handler)

    # Module loggers (engine, planning, errors, auth) share the same handler
    for name in ('engine', 'planning', 'errors', 'auth'):
        module_logger = logging.getLogger(name)
        module_logger.setLevel(log_level)
        if not module_logger.handlers:
            module_logger.addHandler(console_handler)

    app.logger.info(f"Timesheet Planner API starting in {config_name} mode")


def create_app(config_name='development'):
    """Application factory pattern"""
    app = Flask(__name__)

    app.config.from_object(config[config_name])

    configure_logging(app, config_name)

    # Initialize extensions
    db.init_app(app)
    CORS(app, origins=app.config['CORS_ORIGINS'])

    Limiter(
        app=app,
        key_func=get_remote_address,
        default_limits=["200 per day", "50 per hour"]
    )

    init_auth(app)

    Migrate(app, db)

    register_error_handlers(app)

    # Request logging middleware
    @app.before_request
    def log_request_info():
        current_app.logger.info(f'{request.method} {request.url} - {request.remote_addr}')

    @app.after_request
    def log_response_info(response):
        current_app.logger.info(f'Response: {response.status_code}')
        return response

    @app.route('/api/health', methods=['GET'])
    def health_check():
        """Health check endpoint to verify API is running"""
        return jsonify({
            'status': 'healthy',
            'message': 'Timesheet Planner API is running'
        })

    with app.app_context():
        from database import init_db, seed_database
        init_db()
        if app.config.get('SEED_DATABASE'):
            seed_database()

    from routes import api
    app.register_blueprint(api, url_prefix='/api')

    return app


if __name__ == '__main__':
    app = create_app()
    app.run(host='0.0.0.0', port=5002, debug=True)
