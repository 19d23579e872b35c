"""ORM models exposed for metadata discovery."""
from reminder_service.db.models.notification_token import NotificationToken
from reminder_service.db.models.task import Task
from reminder_service.db.models.user import User
from reminder_service.db.models.user_preferences import UserPreferences

__all__ = [
    "NotificationToken",
    "Task",
    "User",
    "UserPreferences",
]
