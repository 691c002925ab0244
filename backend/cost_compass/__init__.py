# backend/cost_compass/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate, notification_bus, permission_cache



def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    permission_cache.init_app(app)
    notification_bus.init_app(app)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.permissions import permissions_bp
    from .routes.notifications import notifications_bp  # permission-update stream
    from .routes.role_permissions import role_permissions_bp
    from .routes.property_access import property_access_bp
    from .routes.properties import properties_bp  # property-scoped data reads
    from .routes.cache_admin import cache_bp
    from .routes.users import users_bp
    from .routes.templates import templates_bp
    from .routes.delegations import delegations_bp
    from .routes.compliance import compliance_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(permissions_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(role_permissions_bp)
    app.register_blueprint(property_access_bp)
    app.register_blueprint(properties_bp)
    app.register_blueprint(cache_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(templates_bp)
    app.register_blueprint(delegations_bp)
    app.register_blueprint(compliance_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config["CORS_ALLOWED_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
