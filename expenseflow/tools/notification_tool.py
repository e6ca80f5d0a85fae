import logging
from typing import Iterable, Sequence

from expenseflow.models.user import User

logger = logging.getLogger(__name__)

class NotificationTool:
    def __init__(self):
        pass

    async def send_notification(self, users: Iterable[User], subject: str, message: str, channels: Sequence[str] = ("email", "push")):
        """
        Routes notifications to users over the channels they have not opted out of.
        """
        for user in users:
            if user is None:
                continue
            prefs = user.preferences.notifications
            for channel in channels:
                if channel == "push" and prefs.push:
                    await self._send_push(user, message)
                elif channel == "email" and prefs.email:
                    await self._send_email(user, subject, message)

    async def _send_push(self, user: User, message: str):
        # No push provider is wired in; delivery is logged only
        logger.info(f"[PUSH] To {user.id}: {message[:50]}...")

    async def _send_email(self, user: User, subject: str, body: str):
        # No SMTP relay is wired in; delivery is logged only
        logger.info(f"[EMAIL] To {user.email} | Subject: {subject}")

notification_tool = NotificationTool()
