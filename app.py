import atexit
import logging

import click
from flask import Flask, jsonify
from flask_migrate import Migrate

from config import Config
from models import db
from models.user import User, Role, ADMIN
from routes import (
    health_bp,
    auth_bp,
    slots_bp,
    booking_bp,
    payments_bp,
    callback_bp,
    pay_pages_bp,
    audit_bp,
)
from security.csrf import csrf_protect
from services.cmi import CMIConfig
from services.errors import BookingError
from services.notifications import NotificationDispatcher
from utils.auth_context import load_current_user
from utils.seed import seed_roles, seed_centers

logger = logging.getLogger(__name__)


def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(slots_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(callback_bp)
    app.register_blueprint(pay_pages_bp)
    app.register_blueprint(audit_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Gateway settings are frozen once; services receive them explicitly
    app.extensions["cmi"] = CMIConfig.from_mapping(app.config)
    if not app.extensions["cmi"].is_configured():
        logger.warning("CMI gateway is not configured; payment initiation will be refused")

    notifier = NotificationDispatcher(app)
    atexit.register(notifier.shutdown)

    # Seed default roles at startup (safe & idempotent)
    with app.app_context():
        if app.config.get("CREATE_ALL"):
            db.create_all()
        seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    app.before_request(csrf_protect)

    @app.errorhandler(BookingError)
    def _booking_error(exc):
        db.session.rollback()
        payload = {"error": exc.message, "code": exc.code}
        payload.update(exc.details)
        return jsonify(payload), exc.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        if resp.mimetype == "text/html":
            # the payment form auto-submits to the gateway
            resp.headers["Content-Security-Policy"] = "default-src 'none'; script-src 'unsafe-inline'; style-src 'unsafe-inline'; form-action https:; frame-ancestors 'none';"
        else:
            resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app


#-------------------------

def register_cli(app):
    @app.cli.command("grant-role")
    @click.argument("email")
    @click.argument("role", default=ADMIN)
    def grant_role(email, role):
        """Give a user a role by email (bootstrap admins)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        role = role.strip().upper()
        role_row = Role.query.filter_by(name=role).first()
        if not role_row:
            click.echo(f"Unknown role {role}")
            return

        if role_row not in user.roles:
            user.roles.append(role_row)
            db.session.commit()

        click.echo(f"{user.email} granted {role}")

    @app.cli.command("seed-centers")
    def seed_centers_command():
        """Insert the default inspection centers (idempotent)."""
        created = seed_centers()
        click.echo(f"{created} inspection centers created")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
