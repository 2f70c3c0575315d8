"""
Fire-safety contract management
Notification Service.

Central service for creating and querying in-app notifications.

Notifications are written inside the caller's transaction: they commit
together with the state change that triggered them.  Recipients are resolved
by role query at send time (contractor-side users of the branch's contractor,
client users of the branch's client); nothing caches user lists.
"""

import logging
from datetime import datetime, timedelta, timezone

from firesafe.core.actor import CLIENT, CONTRACTOR_SIDE
from firesafe.core.exceptions import NotFoundError
from firesafe.models import db
from firesafe.models.notification import Notification
from firesafe.models.party import Branch, Client, User
from firesafe.services.unit_of_work import transaction
from firesafe.utils.helpers import start_of_day

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Recipients ────────────────────────────────────────────────────────

    @staticmethod
    def contractor_user_ids(branch_id):
        """Active contractor-side users of the contractor serving this branch."""
        rows = (
            db.session.query(User.id)
            .join(Client, Client.contractor_id == User.contractor_id)
            .join(Branch, Branch.client_id == Client.id)
            .filter(
                Branch.id == branch_id,
                User.role.in_(CONTRACTOR_SIDE),
                User.is_active.is_(True),
            )
            .order_by(User.id)
            .all()
        )
        return [r[0] for r in rows]

    @staticmethod
    def client_user_ids(branch_id):
        """Active client users of the company owning this branch."""
        rows = (
            db.session.query(User.id)
            .join(Branch, Branch.client_id == User.client_id)
            .filter(
                Branch.id == branch_id,
                User.role == CLIENT,
                User.is_active.is_(True),
            )
            .order_by(User.id)
            .all()
        )
        return [r[0] for r in rows]

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def notify(user_id, type, title, message="", link=None, *,
               related_id=None, related_type="", created_at=None):
        """Add a single notification to the current session."""
        notif = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            link=link,
            related_id=related_id,
            related_type=related_type,
        )
        if created_at is not None:
            notif.created_at = created_at
        db.session.add(notif)
        return notif

    @staticmethod
    def notify_many(user_ids, type, title, message="", link=None, **kwargs):
        return [
            NotificationService.notify(uid, type, title, message, link, **kwargs)
            for uid in user_ids
        ]

    @staticmethod
    def exists_on_day(user_id, related_id, type, day):
        """True if (user, related entity, type) was already notified on ``day``."""
        start = start_of_day(day)
        return db.session.query(
            Notification.query.filter(
                Notification.user_id == user_id,
                Notification.related_id == related_id,
                Notification.type == type,
                Notification.created_at >= start,
                Notification.created_at < start + timedelta(days=1),
            ).exists()
        ).scalar()

    @staticmethod
    def notify_once(user_id, type, title, message="", link=None, *,
                    related_id=None, related_type="", now=None):
        """Create the notification unless an identical one exists the same day.

        Returns:
            The new Notification, or None when deduplicated.
        """
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        db.session.flush()
        if NotificationService.exists_on_day(user_id, related_id, type, now):
            return None
        return NotificationService.notify(
            user_id, type, title, message, link,
            related_id=related_id, related_type=related_type, created_at=now,
        )

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """Retrieve notifications for a user, newest first."""
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id):
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark one of the user's notifications as read."""
        with transaction():
            notif = db.session.get(Notification, notification_id)
            if notif is None or notif.user_id != user_id:
                raise NotFoundError(resource="Notification", resource_id=notification_id)
            notif.mark_read()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all of the user's notifications as read; returns the count."""
        with transaction():
            now = datetime.now(timezone.utc)
            count = (
                Notification.query.filter_by(user_id=user_id, is_read=False)
                .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
            )
        logger.info("Marked %d notifications read", count, extra={"user_id": user_id})
        return count
