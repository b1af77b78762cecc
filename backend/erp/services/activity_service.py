# Overview: User activity log written after business operations commit.

import json
import logging

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import UserActivity

logger = logging.getLogger(__name__)


def add_user_activity(
    user_id: int | None,
    action: str,
    target: str | None = None,
    description=None,
) -> UserActivity | None:
    """
    Record who did what, in its own commit.

    Runs after the business operation has committed. A storage failure here is
    logged and swallowed: the operation it describes has already happened.
    """
    if description is not None and not isinstance(description, str):
        description = json.dumps(description, default=str, ensure_ascii=False)

    try:
        activity = UserActivity(
            user_id=user_id,
            action=action,
            target=target,
            description=description,
        )
        db.session.add(activity)
        db.session.commit()
        return activity
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to record user activity: user=%s action=%s target=%s", user_id, action, target)
        return None


def list_user_activities(*, user_id: int | None = None, limit: int = 100) -> list[UserActivity]:
    query = db.session.query(UserActivity)
    if user_id is not None:
        query = query.filter_by(user_id=user_id)
    return query.order_by(UserActivity.created_at.desc(), UserActivity.id.desc()).limit(limit).all()
