"""Append-only project activity trail."""

import logging

from firesafe.models import db
from firesafe.models.project import Activity

logger = logging.getLogger(__name__)


def record_activity(project_id, activity_type, content, actor):
    """Insert one Activity row in the current transaction."""
    entry = Activity(
        project_id=project_id,
        type=activity_type,
        content=content,
        created_by_id=actor.user_id,
        created_by_role=actor.role,
    )
    db.session.add(entry)
    logger.debug("Activity %s on project %s: %s", activity_type, project_id, content)
    return entry


def list_activities(project_id, *, limit=100):
    return (
        Activity.query.filter_by(project_id=project_id)
        .order_by(Activity.id.desc())
        .limit(limit)
        .all()
    )
