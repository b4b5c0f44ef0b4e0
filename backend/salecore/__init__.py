# backend/salecore/__init__.py
import logging

from flask import Flask, jsonify

from .config import Config
from .extensions import db, migrate



def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("salecore").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.sales import sales_bp
    from .routes.returns import returns_bp
    from .routes.shifts import shifts_bp

    app.register_blueprint(sales_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(shifts_bp)

    @app.get("/health")
    def health():
        return jsonify({"status": "ok"}), 200

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
