# backend/pharmapos/__init__.py
from decimal import Decimal

from flask import Flask, jsonify
from flask.json.provider import DefaultJSONProvider

from .config import Config
from .errors import CoreError
from .extensions import db, migrate


class DecimalJSONProvider(DefaultJSONProvider):
    """Parse JSON numbers with a fraction as Decimal so money never passes through float."""

    def loads(self, s, **kwargs):
        kwargs.setdefault("parse_float", Decimal)
        return super().loads(s, **kwargs)


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.json = DecimalJSONProvider(app)
    app.config.from_object(config_object or Config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so metadata is complete before create_all / migrations
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.inventory import inventory_bp
    from .routes.sales import sales_bp
    from .routes.purchases import purchases_bp
    from .routes.cash_shifts import cash_shifts_bp
    from .routes.clients import clients_bp

    app.register_blueprint(inventory_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(purchases_bp)
    app.register_blueprint(cash_shifts_bp)
    app.register_blueprint(clients_bp)

    @app.errorhandler(CoreError)
    def handle_core_error(error: CoreError):
        return jsonify(error.to_dict()), error.status_code

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
