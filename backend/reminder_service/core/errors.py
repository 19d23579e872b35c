"""Error taxonomy for the reminder subsystem."""
from __future__ import annotations


class ReminderServiceError(Exception):
    """Base class for reminder service errors."""


class StoreUnavailable(ReminderServiceError):
    """The task store could not be queried; retry on the next cycle."""


class OwnerNotFound(ReminderServiceError):
    """A task references a user that no longer exists."""

    def __init__(self, user_id) -> None:
        super().__init__(f"Owner {user_id} not found")
        self.user_id = user_id


class TaskNotFound(ReminderServiceError):
    """A task id given to a reminder operation does not exist."""

    def __init__(self, task_id) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class DeliveryFailed(ReminderServiceError):
    """The notifier could not deliver a notification."""


class RecipientUnreachable(ReminderServiceError):
    """The recipient has no delivery target on the channel (e.g. no active push tokens)."""
