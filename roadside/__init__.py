from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
import logging
import os

import click

db = SQLAlchemy()

logger = logging.getLogger(__name__)


def _configure_logging(app):
    level = app.config.get('LOG_LEVEL', 'INFO')
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )
    logging.getLogger('roadside').setLevel(level)


def _init_sentry(app):
    """Sentry error monitoring (optional -- only active when SENTRY_DSN is set)"""
    dsn = app.config.get('SENTRY_DSN')
    if not dsn:
        return
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.1,
    )


def create_app(config_name=None, scheduler=None):
    """Flask application factory

    Args:
        config_name: key into config.config; defaults to FLASK_ENV
        scheduler: APScheduler-compatible scheduler hosting the acceptance
            timers. A UTC BackgroundScheduler is created when omitted.
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    from config import config
    app.config.from_object(config[config_name])

    _configure_logging(app)
    _init_sentry(app)

    # Initialize extensions
    from roadside.extensions import limiter, socketio

    db.init_app(app)
    CORS(app, resources={r'/api/*': {'origins': app.config['CORS_ORIGINS']}}, supports_credentials=True)
    limiter.init_app(app)
    socketio.init_app(
        app,
        cors_allowed_origins=app.config['CORS_ORIGINS'],
        async_mode=app.config['SOCKETIO_ASYNC_MODE'],
    )
    # Registers the connect/disconnect handlers on the shared SocketIO object
    from roadside import socket_events  # noqa: F401

    # Dispatch core collaborators
    from roadside.services.notifier import Notifier
    from roadside.services.acceptance import AcceptanceCoordinator

    if scheduler is None:
        from apscheduler.schedulers.background import BackgroundScheduler
        scheduler = BackgroundScheduler(timezone='UTC', daemon=True)

    app.extensions['notifier'] = Notifier(socketio)
    coordinator = AcceptanceCoordinator(app, scheduler)
    app.extensions['acceptance'] = coordinator

    from roadside.errors import register_error_handlers
    register_error_handlers(app)

    # Register blueprints
    from roadside.blueprints.jobs import jobs_bp
    app.register_blueprint(jobs_bp, url_prefix='/api/jobs')

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy', 'service': 'roadside-dispatch'}, 200

    @app.cli.command('sweep-acceptance')
    def cli_sweep_acceptance():
        """Re-arm pending acceptance timers and expire overdue ones."""
        count = coordinator.recover()
        click.echo('Recovered {} pending acceptance timer(s).'.format(count))

    with app.app_context():
        if app.config.get('AUTO_CREATE_TABLES'):
            db.create_all()

    if app.config.get('START_SCHEDULER'):
        coordinator.start()
        if app.config.get('RECOVER_ACCEPTANCE_TIMERS'):
            with app.app_context():
                coordinator.recover()

    return app
