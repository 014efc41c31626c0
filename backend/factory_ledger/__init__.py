# backend/factory_ledger/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.inventory import inventory_bp
    from .routes.prices import prices_bp
    from .routes.sales import sales_bp
    from .routes.sync import sync_bp
    from .routes.production import production_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(prices_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(production_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
