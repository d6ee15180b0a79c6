"""Blueprint registration and service health."""
from flask import Blueprint, current_app, jsonify

from models import Application
from storage import store
from .admin import admin_bp
from .applications import applications_bp
from .auth import auth_bp
from .notifications import notifications_bp

main_bp = Blueprint("main", __name__)


@main_bp.route("/health", methods=["GET"])
def health():
    return jsonify(
        {
            "status": "ok",
            "storage": (current_app.config.get("STORAGE_BACKEND") or "memory").lower(),
            "applications": store.repository.count(Application.kind),
        }
    )


API_BLUEPRINTS = (main_bp, auth_bp, applications_bp, admin_bp, notifications_bp)

__all__ = ["main_bp", "auth_bp", "applications_bp", "admin_bp", "notifications_bp", "API_BLUEPRINTS"]
