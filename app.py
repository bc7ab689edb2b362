import click
import sqlalchemy as sa
from flask import Flask, g, jsonify
from flask_migrate import Migrate

from config import Config
from models import db
from models.user import User
from routes import (
    health_bp,
    auth_bp,
    slots_bp,
    reservations_bp,
    notifications_bp,
    admin_bp,
)
from security.csrf import require_csrf
from security.rbac import ROLE_ADMIN
from services import engine
from services.errors import SchedulingError
from services.notifier import init_notifier
from services.observers import register_default_observers
from utils.auth_context import load_current_user
from utils.seed import seed_roles, get_role


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(slots_bp)
    app.register_blueprint(reservations_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(admin_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Change notifier + built-in observers
    notifier = init_notifier(app)
    register_default_observers(notifier)

    # Seed default roles at startup (safe & idempotent); skipped until migrated
    with app.app_context():
        if sa.inspect(db.engine).has_table("roles"):
            seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    @app.before_request
    def _csrf_protect():
        # only cookie-authenticated writes are checked
        require_csrf(getattr(g, "user", None))

    @app.errorhandler(SchedulingError)
    def _scheduling_error(exc):
        return jsonify(error=exc.message), exc.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app


def register_cli(app):
    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to ADMIN by email (bootstrap)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        admin_role = get_role(ROLE_ADMIN)
        if admin_role not in user.roles:
            user.roles.append(admin_role)
        db.session.commit()

        click.echo(f"{user.email} promoted to ADMIN")

    @app.cli.command("reconcile-slots")
    def reconcile_slots():
        """Recompute every slot's is_booked flag from reservation rows."""
        fixed = engine.reconcile_booked_flags()
        click.echo(f"{fixed} slot(s) corrected")


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
