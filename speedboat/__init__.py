import logging

from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_jwt_extended import JWTManager
from flask_migrate import Migrate
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from config import config

db = SQLAlchemy()
jwt = JWTManager()
migrate = Migrate()
limiter = Limiter(key_func=get_remote_address)


def configure_logging(app):
    """Attach a stream handler to the package logger at the configured level"""
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    logger = logging.getLogger('speedboat')
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s [%(name)s] %(message)s'
        ))
        logger.addHandler(handler)
    app.logger.setLevel(level)


def create_app(config_name='default', overrides=None):
    """Application factory pattern"""
    app = Flask(__name__)
    app.config.from_object(config[config_name])
    if overrides:
        app.config.update(overrides)

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    jwt.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    from speedboat.services.gateway import midtrans
    midtrans.init_app(app)

    CORS(app, resources={
        r"/api/*": {
            "origins": app.config['CORS_ORIGINS'],
            "methods": ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "Idempotency-Key"],
            "expose_headers": ["Content-Type", "Authorization"],
            "supports_credentials": True,
            "max_age": 3600
        }
    })

    # JWT error handlers
    from speedboat.utils.jwt_handlers import register_jwt_handlers
    register_jwt_handlers(jwt)

    # Register blueprints
    from speedboat.routes import (auth_bp, profile_bp, ports_bp, ships_bp, sea_routes_bp,
                                  schedules_bp, bookings_bp, payments_bp, tickets_bp,
                                  admin_users_bp, admin_analytics_bp, admin_payments_bp,
                                  health_bp)

    # Disable strict slashes globally for all blueprints to avoid 308 redirects on OPTIONS
    app.url_map.strict_slashes = False

    app.register_blueprint(health_bp, url_prefix='/api')
    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(profile_bp, url_prefix='/api/users')
    app.register_blueprint(ports_bp, url_prefix='/api/ports')
    app.register_blueprint(ships_bp, url_prefix='/api/ships')
    app.register_blueprint(sea_routes_bp, url_prefix='/api/routes')
    app.register_blueprint(schedules_bp, url_prefix='/api/schedules')
    app.register_blueprint(bookings_bp, url_prefix='/api/bookings')
    app.register_blueprint(payments_bp, url_prefix='/api/payments')
    app.register_blueprint(tickets_bp, url_prefix='/api/tickets')

    # Admin blueprints
    app.register_blueprint(admin_users_bp, url_prefix='/api/admin/users')
    app.register_blueprint(admin_analytics_bp, url_prefix='/api/admin')
    app.register_blueprint(admin_payments_bp, url_prefix='/api/admin')

    # Error handlers
    from speedboat.utils.error_handlers import register_error_handlers
    register_error_handlers(app)

    return app
