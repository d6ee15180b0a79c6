"""Flask application factory for the application tracking portal."""
import os
from typing import Optional

import click
from dotenv import load_dotenv
from flask import Flask, jsonify, request
from sqlalchemy.engine.url import make_url
from werkzeug.exceptions import HTTPException

from extensions import csrf, db, login_manager, migrate
from storage import store
from storage.repository import Repository
from utils.errors import PortalError
from utils.logger import init_logging
from utils.security import apply_security_headers, bearer_token, decode_access_token

DEFAULT_DEPARTMENTS: tuple[tuple[str, str], ...] = (
    ("Aadhaar", "Unique Identification Authority of India (UIDAI)"),
    ("Agriculture", "Ministry of Agriculture and Farmers Welfare"),
    ("Education", "Ministry of Education"),
    ("Electricity", "Ministry of Power"),
    ("Finance", "Ministry of Finance"),
    ("Health", "Ministry of Health and Family Welfare"),
    ("Home Affairs", "Ministry of Home Affairs"),
    ("Labour", "Ministry of Labour and Employment"),
    ("Passport", "Ministry of External Affairs (Passport Seva)"),
    ("Police", "State Police Department"),
)

HTTP_ERROR_MESSAGES = {
    400: "Bad request",
    401: "Authentication required",
    403: "Insufficient permissions",
    404: "Not found",
    405: "Method not allowed",
    413: "Request body too large",
}


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(PortalError)
    def portal_error(error):
        app.logger.warning(
            "Request rejected",
            extra={"path": request.path, "method": request.method, "status": error.status_code, "reason": error.message},
        )
        return jsonify({"error": error.message}), error.status_code

    @app.errorhandler(HTTPException)
    def http_error(error):
        app.logger.warning(
            f"{error.code} {error.name}",
            extra={"path": request.path, "method": request.method},
        )
        message = HTTP_ERROR_MESSAGES.get(error.code, error.name)
        return jsonify({"error": message}), error.code

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.exception("500 Internal Server Error")
        return jsonify({"error": "Internal server error"}), 500


def ensure_default_admin_and_departments(app: Flask) -> None:
    """Ensure a default admin can log in without registering and departments exist to choose from."""
    from utils.security import hash_password

    username = (app.config.get("DEFAULT_ADMIN_USERNAME") or "").strip()
    password = app.config.get("DEFAULT_ADMIN_PASSWORD") or ""
    if username and password:
        admin_user = store.get_user_by_username(username)
        if admin_user is None:
            admin_user = store.create_user(
                username=username,
                password=hash_password(password),
                full_name="System Administrator",
                role="admin",
                email=(app.config.get("DEFAULT_ADMIN_EMAIL") or "").lower().strip() or None,
            )
            app.logger.info("Default admin created", extra={"user_id": admin_user.id})
        elif admin_user.role != "admin" or not admin_user.is_active:
            admin_user.role = "admin"
            admin_user.is_active = True
            store.save_user(admin_user)

    if app.config.get("SEED_DEPARTMENTS") and not store.list_departments():
        for name, description in DEFAULT_DEPARTMENTS:
            store.create_department(name=name, description=description)
        app.logger.info("Default departments seeded", extra={"count": len(DEFAULT_DEPARTMENTS)})


def ensure_database_exists(database_uri: str) -> None:
    """Make sure the parent directory of a file-backed SQLite database exists."""
    url = make_url(database_uri)
    if url.drivername.startswith("sqlite") and url.database and url.database != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(url.database)) or ".", exist_ok=True)


def create_app(config_name: Optional[str] = None, repository: Optional[Repository] = None) -> Flask:
    """Application factory with environment-aware configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    # Resolve configuration
    from config import DevelopmentConfig, ProductionConfig, TestingConfig

    config_key = (config_name or os.getenv("FLASK_CONFIG") or os.getenv("FLASK_ENV") or "production").lower()
    config_map = {
        "development": DevelopmentConfig,
        "dev": DevelopmentConfig,
        "production": ProductionConfig,
        "prod": ProductionConfig,
        "testing": TestingConfig,
        "test": TestingConfig,
    }
    config_class = config_map.get(config_key, ProductionConfig)
    app.config.from_object(config_class())

    # Optional instance-specific overrides
    app.config.from_pyfile("config.py", silent=True)
    os.makedirs(app.instance_path, exist_ok=True)

    # Initialize logging early
    logger = init_logging(app)
    app.logger = logger

    # Initialize extensions
    csrf.init_app(app)
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        return store.get_user(user_id)

    @login_manager.request_loader
    def load_user_from_request(req):
        token = bearer_token(req.headers.get("Authorization"))
        if not token:
            return None
        claims = decode_access_token(token)
        if not claims:
            return None
        user = store.get_user(claims.get("sub"))
        if user is None or not user.is_active:
            return None
        return user

    # Blueprints
    from routes import API_BLUEPRINTS
    from utils.delay_monitor import DelayMonitor, run_monitor_cycle

    for blueprint in API_BLUEPRINTS:
        csrf.exempt(blueprint)
        app.register_blueprint(blueprint, url_prefix="/api")

    @app.cli.command("monitor-run")
    def monitor_run():
        """Execute one delay sweep (schedule this via cron)."""
        # A memory store belongs to the serving process; a sweep here would be overwritten by it.
        if app.config.get("STORAGE_BACKEND") != "sql":
            raise click.ClickException(
                "monitor-run needs STORAGE_BACKEND=sql; with the memory backend the server's own monitor thread runs the sweep"
            )
        summary = run_monitor_cycle(app)
        click.echo(", ".join(f"{key}={value}" for key, value in summary.items()))

    # Error handlers
    register_error_handlers(app)

    @app.after_request
    def _after_request(response):
        return apply_security_headers(response, force_https=app.config.get("PREFERRED_URL_SCHEME") == "https")

    with app.app_context():
        if app.config.get("STORAGE_BACKEND") == "sql":
            ensure_database_exists(app.config["SQLALCHEMY_DATABASE_URI"])
            db.create_all()
        store.init_app(app, repository=repository)
        ensure_default_admin_and_departments(app)

    if app.config.get("MONITOR_ENABLED"):
        monitor = DelayMonitor(app)
        monitor.start()
        app.extensions["delay_monitor"] = monitor

    return app


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port, use_reloader=False)
