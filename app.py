import os
import time
import logging
from dotenv import load_dotenv

# Load environment variables before config.py reads them
load_dotenv()

from flask import Flask
from flask_restful import Api
from flask_jwt_extended import JWTManager
from flask_migrate import Migrate
from flask_cors import CORS
from sqlalchemy import text

# Config and models
from config import Config, config
from model import db

# Blueprints and modules
from auth import auth_bp
from oauth_config import init_oauth
from event import register_event_resources
from ticket import register_ticket_resources
from scan import register_ticket_validation_resources, limiter
from email_utils import mail

logger = logging.getLogger(__name__)


def test_database_connection(max_retries=3, retry_delay=2):
    """Ping the database, retrying with exponential backoff."""
    for attempt in range(max_retries):
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            return True
        except Exception as e:
            logger.warning(f"Database connection attempt {attempt + 1} failed: {e}")
            if attempt < max_retries - 1:
                time.sleep(retry_delay)
                retry_delay *= 2
    return False


def initialize_database(app):
    """Check connectivity and create any missing tables."""
    with app.app_context():
        if not test_database_connection():
            logger.error("Database connection failed after retries")
            return False
        db.create_all()
        logger.info("Database tables created/verified")
        return True


def create_app(config_name=None):
    config_name = config_name or os.getenv('FLASK_ENV', 'production')
    config_class = config.get(config_name, Config)

    app = Flask(__name__)
    app.config.from_object(config_class)
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = config_class.get_database_engine_options()

    logging.basicConfig(
        level=getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO),
        format=app.config["LOG_FORMAT"]
    )

    if not app.config["TESTING"]:
        try:
            config_class.validate_config()
            logger.info("Configuration validation passed")
        except ValueError as e:
            # Keep serving in production, but make the problem visible
            logger.warning(f"Configuration validation failed: {e}")

    CORS(app,
         origins=app.config.get('CORS_ORIGINS'),
         supports_credentials=True,
         expose_headers=["Set-Cookie"],
         methods=["GET", "POST", "PUT", "OPTIONS"],
         allow_headers=["Content-Type", "Authorization"])

    # Initialize extensions
    db.init_app(app)
    JWTManager(app)
    Migrate(app, db)
    mail.init_app(app)
    init_oauth(app)
    limiter.init_app(app)

    api = Api(app)

    # Register all routes
    app.register_blueprint(auth_bp, url_prefix="/auth")
    register_event_resources(api)
    register_ticket_resources(api)
    register_ticket_validation_resources(api)

    @app.route('/health')
    def health_check():
        """Liveness with a database ping"""
        health_info = {"status": "ok", "timestamp": time.time()}
        try:
            db.session.execute(text("SELECT 1"))
            health_info["database"] = "connected"
        except Exception as e:
            db.session.rollback()
            logger.error(f"Health check database ping failed: {e}")
            health_info["database"] = "connection failed"
            health_info["status"] = "degraded"

        status_code = 200 if health_info["status"] == "ok" else 503
        return health_info, status_code

    @app.errorhandler(500)
    def internal_error(error):
        return {"error": "Internal server error", "status": 500}, 500

    @app.errorhandler(404)
    def not_found(error):
        return {"error": "Resource not found", "status": 404}, 404

    logger.info(f"Application created with '{config_name}' configuration")
    return app


if __name__ == "__main__":
    app = create_app(os.getenv('FLASK_ENV', 'development'))
    if not initialize_database(app):
        logger.warning("Application started with degraded functionality")
    app.run(debug=app.config["DEBUG"], host='0.0.0.0', port=int(os.getenv('PORT', 5000)))
