# /chathub/services/notification_service.py

import asyncio
import logging
from enum import Enum
from typing import Optional, Set

import httpx
from pydantic import BaseModel

from chathub.config.settings import settings
from chathub.models.conversation import Chat
from chathub.models.tenant import TenantContext
from chathub.utils.metrics import notifications_counter

# Side channel that alerts the website owner and staff (via the Telegram bot
# webhook) when a chat needs human attention. Delivery is fire-and-forget:
# failures are logged and never reach the conversation turn.

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    WORKFLOW_COMPLETED = "workflow_completed"
    AI_HANDOFF = "ai_handoff"
    UNHANDLED_MESSAGE = "unhandled_message"


class HumanNotification(BaseModel):
    kind: NotificationKind
    text: str
    tenant_id: str
    notify_owner: bool
    owner_id: Optional[str] = None
    notify_all_staff: bool = True
    chat_id: str

    def to_payload(self) -> dict:
        return {
            "message": self.text,
            "websiteId": self.tenant_id,
            "notifyOwner": self.notify_owner,
            "ownerId": self.owner_id,
            "notifyAllStaff": self.notify_all_staff,
            "chatId": self.chat_id,
        }


def build_notification(
    kind: NotificationKind,
    tenant: TenantContext,
    chat: Chat,
    visitor_text: str = "",
) -> HumanNotification:
    site = tenant.name or tenant.link or tenant.id
    if kind == NotificationKind.WORKFLOW_COMPLETED:
        text = (
            f"Client {chat.name} on {site} has completed a workflow path ({chat.id}). "
            f"Now transitioning to AI."
        )
    elif kind == NotificationKind.AI_HANDOFF:
        text = f"Client {chat.name} on {site} ({chat.id}) needs human assistance (AI handover)."
    else:
        text = f'New message from user {chat.name} on {site} ({chat.id}): "{visitor_text}". Workflow has ended.'
    return HumanNotification(
        kind=kind,
        text=text,
        tenant_id=tenant.id,
        notify_owner=tenant.owner_notify_telegram,
        owner_id=tenant.owner_id,
        notify_all_staff=True,
        chat_id=chat.id,
    )


class NotificationService:
    def __init__(self, webhook_url: Optional[str]):
        self.webhook_url = webhook_url
        self.client = httpx.AsyncClient(timeout=5.0) if webhook_url else None
        self._pending: Set[asyncio.Task] = set()

    async def send(self, notification: HumanNotification) -> bool:
        """Deliver one notification; returns False (after logging) on failure."""
        if not self.client:
            notifications_counter.labels(kind=notification.kind.value, status="not_configured").inc()
            logger.warning(f"TELEGRAM_BOT_URL is not set; dropping {notification.kind.value} notification for chat {notification.chat_id}")
            return False
        try:
            response = await self.client.post(self.webhook_url, json=notification.to_payload())
            response.raise_for_status()
        except httpx.HTTPError as e:
            notifications_counter.labels(kind=notification.kind.value, status="error").inc()
            logger.error(f"Failed to send {notification.kind.value} notification for chat {notification.chat_id}: {e}")
            return False
        notifications_counter.labels(kind=notification.kind.value, status="success").inc()
        return True

    def notify_humans(self, notification: HumanNotification) -> asyncio.Task:
        """Schedule delivery in the background and return immediately."""
        task = asyncio.create_task(self.send(notification))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self):
        """Wait for in-flight notifications (used at shutdown)."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def cleanup(self):
        await self.drain()
        if self.client:
            await self.client.aclose()


# Globally accessible instance
notification_service = NotificationService(settings.telegram_bot_url)
