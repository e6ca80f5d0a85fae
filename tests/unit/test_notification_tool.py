import pytest
from unittest.mock import AsyncMock, patch

from expenseflow.models.user import NotificationPreferences, UserPreferences
from expenseflow.tools.notification_tool import NotificationTool


@pytest.mark.asyncio
async def test_default_channels_follow_user_preferences(employee, manager):
    manager.preferences = UserPreferences(notifications=NotificationPreferences(email=True, push=False))
    tool = NotificationTool()

    with patch.object(tool, "_send_email", new_callable=AsyncMock) as email, \
         patch.object(tool, "_send_push", new_callable=AsyncMock) as push:
        await tool.send_notification([employee, manager], "Expense approved", "'Taxi' was approved")
        await tool.send_notification([employee], "Expense approved", "'Lunch' was approved")

    assert email.await_count == 3
    assert push.await_count == 2
    pushed_to = [call.args[0] for call in push.await_args_list]
    assert manager not in pushed_to


@pytest.mark.asyncio
async def test_single_channel_and_missing_recipients():
    tool = NotificationTool()

    with patch.object(tool, "_send_email", new_callable=AsyncMock) as email, \
         patch.object(tool, "_send_push", new_callable=AsyncMock) as push:
        await tool.send_notification([None], "Reminder", "Pending approval", channels=("email",))

    email.assert_not_awaited()
    push.assert_not_awaited()
