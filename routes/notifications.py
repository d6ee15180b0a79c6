"""In-app notification feed; clients poll."""
from flask import Blueprint, jsonify
from flask_login import current_user

from storage import store
from utils.alert_engine import unread_count
from utils.decorators import token_required
from utils.errors import NotFound

notifications_bp = Blueprint("notifications", __name__)


@notifications_bp.route("/notifications", methods=["GET"])
@token_required
def list_notifications():
    items = store.list_user_notifications(current_user.id)
    response = jsonify([item.public_payload() for item in items])
    response.headers["X-Unread-Count"] = str(unread_count(current_user.id))
    return response


@notifications_bp.route("/notifications/<notification_id>/read", methods=["POST"])
@token_required
def mark_read(notification_id):
    notification = store.get_notification(notification_id)
    if notification is None or notification.user_id != current_user.id:
        raise NotFound("Notification not found")
    store.mark_notification_read(notification_id)
    return jsonify({"message": "Notification marked as read"})
