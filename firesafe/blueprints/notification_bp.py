"""
Notification inbox Blueprint.

Endpoints:
    GET    /api/v1/notifications               ?unread_only=true&limit=50&offset=0
    GET    /api/v1/notifications/unread-count
    PATCH  /api/v1/notifications/<nid>/read
    POST   /api/v1/notifications/read-all

Every endpoint works on the calling user's own notifications.
"""

from flask import Blueprint, jsonify, request

from firesafe.auth import current_actor
from firesafe.blueprints import pagination_args
from firesafe.services.notification import NotificationService
from firesafe.utils.errors import register_error_handlers

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    actor = current_actor()
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    limit, offset = pagination_args()
    items, total = NotificationService.list_for_user(
        actor.user_id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(actor.user_id),
    }), 200


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    actor = current_actor()
    return jsonify({"unread_count": NotificationService.unread_count(actor.user_id)}), 200


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["PATCH"])
def mark_read(notification_id):
    actor = current_actor()
    notif = NotificationService.mark_read(notification_id, actor.user_id)
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    actor = current_actor()
    count = NotificationService.mark_all_read(actor.user_id)
    return jsonify({"marked_read": count}), 200
