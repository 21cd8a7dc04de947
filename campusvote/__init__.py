# campusvote/__init__.py
from flask import Flask, jsonify
from sqlalchemy import text
from config import Config
from .extensions import db, limiter, cache
# Import logging configuration
from .logging_config import setup_logging


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Setup logging (do this early, after config is loaded)
    setup_logging(app)

    # Initialize extensions
    db.init_app(app)
    limiter.init_app(app)
    cache.init_app(app)

    # Make sure models are registered before any create_all()
    from campusvote import models  # noqa: F401

    from campusvote.api import bp as api_bp
    app.register_blueprint(api_bp)

    # Register CLI commands
    from campusvote.cli import register_cli_commands
    register_cli_commands(app)

    # Register error handlers
    from campusvote.error_handlers import register_error_handlers
    register_error_handlers(app)

    @app.route('/health')
    @limiter.exempt
    def health():
        """Liveness probe; also checks the database connection."""
        try:
            db.session.execute(text('SELECT 1'))
            database = 'ok'
        except Exception as e:
            app.logger.error(f"Health check database error: {e}")
            database = 'error'
        status = 200 if database == 'ok' else 503
        return jsonify({
            'status': 'ok' if status == 200 else 'degraded',
            'database': database,
            'chainId': app.config.get('CHAIN_ID'),
        }), status

    return app
