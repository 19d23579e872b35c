"""Helper functions for managing push notification tokens."""
from __future__ import annotations

from typing import Callable, Iterable, List
from uuid import UUID

from sqlalchemy.orm import Session

from reminder_service.db.models.notification_token import NotificationToken
from reminder_service.db.models.user import User


def register_token(
    db: Session,
    *,
    user_id: UUID,
    token: str,
    platform: str | None = None,
    device_name: str | None = None,
) -> NotificationToken:
    user = db.get(User, user_id)
    if not user:
        raise ValueError("User not found")

    model = (
        db.query(NotificationToken)
        .filter(NotificationToken.token == token)
        .one_or_none()
    )
    if model:
        model.user_id = user_id
        model.platform = platform
        model.device_name = device_name
        model.active = True
    else:
        model = NotificationToken(
            user_id=user_id,
            token=token,
            platform=platform,
            device_name=device_name,
            active=True,
        )
        db.add(model)
    db.commit()
    db.refresh(model)
    return model


def deactivate_tokens(db: Session, *, user_id: UUID, tokens: Iterable[str]) -> int:
    count = (
        db.query(NotificationToken)
        .filter(
            NotificationToken.user_id == user_id,
            NotificationToken.token.in_(list(tokens)),
            NotificationToken.active.is_(True),
        )
        .update({NotificationToken.active: False}, synchronize_session=False)
    )
    if count:
        db.commit()
    return count


def fetch_user_tokens(db: Session, user_id: UUID) -> list[NotificationToken]:
    return (
        db.query(NotificationToken)
        .filter(NotificationToken.user_id == user_id, NotificationToken.active.is_(True))
        .all()
    )


def active_token_lookup(session_factory: Callable[[], Session]) -> Callable[[UUID], List[str]]:
    """Build the token lookup the push notifier calls from dispatch threads."""

    def _lookup(user_id: UUID) -> List[str]:
        db = session_factory()
        try:
            return [row.token for row in fetch_user_tokens(db, user_id)]
        finally:
            db.close()

    return _lookup
