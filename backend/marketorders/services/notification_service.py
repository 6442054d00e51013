"""
Notification Service - customer email and admin webhook delivery.

Supports:
- Email via Resend API (order confirmation and status updates, en/fr)
- Webhook HTTP POST with HMAC signature (every order event, admin channel)

`NotificationDispatcher` adapts this to the engine's publisher protocol:
each event is delivered from a background task so the engine never waits
on the network.
"""
import asyncio
import hashlib
import hmac
import json
from html import escape
from typing import Any, Optional

import httpx

from marketorders.core.config import settings
from marketorders.core.logging import get_logger
from marketorders.services.events import EventType, OrderEvent

logger = get_logger(__name__)

# Events the customer hears about by email
CUSTOMER_EVENTS = frozenset({
    EventType.NEW_ORDER,
    EventType.ORDER_STATUS_CHANGED,
    EventType.ORDER_CANCELLED,
})

SUBJECTS = {
    "confirmation": {
        "en": "Order Confirmation - #{order_number}",
        "fr": "Confirmation de commande - #{order_number}",
    },
    "status": {
        "en": "Order Status Update - #{order_number}",
        "fr": "Mise à jour du statut - #{order_number}",
    },
}


class NotificationService:
    """
    Multi-channel notification service.

    Channels:
    - Email: Uses Resend API for transactional emails
    - Webhook: HTTP POST with HMAC signature
    """

    RESEND_API_URL = "https://api.resend.com/emails"

    def __init__(
        self,
        *,
        resend_api_key: Optional[str] = None,
        webhook_url: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.resend_api_key = resend_api_key or settings.resend_api_key
        self.webhook_url = webhook_url or settings.admin_webhook_url
        self.webhook_secret = webhook_secret or settings.admin_webhook_secret
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport)

    async def send_email(
        self,
        to: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
    ) -> bool:
        """
        Send email via Resend API.

        Returns:
            True if sent successfully
        """
        if not self.resend_api_key:
            logger.debug("Resend API key not configured, skipping email", to=to)
            return False

        try:
            async with self._client() as client:
                response = await client.post(
                    self.RESEND_API_URL,
                    headers={
                        "Authorization": f"Bearer {self.resend_api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "from": settings.notification_from_email,
                        "to": [to],
                        "subject": subject,
                        "html": html_content,
                        "text": text_content or subject,
                    },
                    timeout=10.0,
                )
        except httpx.HTTPError as e:
            logger.error("Email send error", to=to, error=str(e))
            return False

        if response.status_code == 200:
            logger.info("Email sent", to=to, subject=subject)
            return True
        logger.error(
            "Email send failed",
            status=response.status_code,
            response=response.text,
        )
        return False

    async def send_webhook(
        self,
        url: str,
        payload: dict[str, Any],
        secret: Optional[str] = None,
    ) -> bool:
        """
        Send webhook HTTP POST with optional HMAC signature.

        Returns:
            True if delivered successfully
        """
        headers = {"Content-Type": "application/json"}
        body = json.dumps(payload, default=str)

        if secret:
            headers["X-Webhook-Signature"] = f"sha256={sign_payload(body, secret)}"

        try:
            async with self._client() as client:
                response = await client.post(
                    url,
                    headers=headers,
                    content=body,
                    timeout=30.0,
                )
        except httpx.HTTPError as e:
            logger.error("Webhook error", url=url, error=str(e))
            return False

        success = 200 <= response.status_code < 300
        if success:
            logger.info("Webhook delivered", url=url)
        else:
            logger.warning(
                "Webhook delivery failed",
                url=url,
                status=response.status_code,
            )
        return success

    def format_order_email(self, event: OrderEvent) -> tuple[str, str, str]:
        """
        Format an order event as a customer email.

        Returns:
            Tuple of (subject, html_content, text_content)
        """
        language = event.payload.get("language", "en")
        if language not in ("en", "fr"):
            language = "en"
        kind = "confirmation" if event.type == EventType.NEW_ORDER else "status"
        subject = SUBJECTS[kind][language].replace("{order_number}", event.order_number)

        status = event.payload.get("status", "")
        total = event.payload.get("total", "")
        currency = event.payload.get("currency", settings.currency)
        track_url = f"{settings.app_url}/orders/track/{event.order_number}"

        html = f"""
<!DOCTYPE html>
<html>
<body style="font-family: system-ui, sans-serif; color: #1f2937;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
        <h1>{escape(subject)}</h1>
        <p>{escape(event.message)}</p>
        <p><strong>Status:</strong> {escape(str(status))}</p>
        <p><strong>Total:</strong> {escape(str(total))} {escape(str(currency))}</p>
        <a href="{escape(track_url)}">Track your order</a>
    </div>
</body>
</html>
"""
        text = f"""
{subject}

{event.message}

Status: {status}
Total: {total} {currency}

Track your order: {track_url}
"""
        return subject, html, text


def sign_payload(body: str, secret: str) -> str:
    """HMAC-SHA256 hex digest the webhook receiver can verify."""
    return hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()


class NotificationDispatcher:
    """
    Event publisher that hands each order event to the notification
    channels on a background task.
    """

    def __init__(self, service: Optional[NotificationService] = None) -> None:
        self.service = service or NotificationService()
        self._tasks: set[asyncio.Task] = set()

    def publish(self, event: OrderEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "No running event loop, order event dropped",
                event_type=event.type.value,
                order_number=event.order_number,
            )
            return

        task = loop.create_task(self.deliver(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def deliver(self, event: OrderEvent) -> None:
        """Deliver one event to every configured channel."""
        logger.info(
            "Dispatching order event",
            event_type=event.type.value,
            order_number=event.order_number,
        )

        if self.service.webhook_url:
            await self.service.send_webhook(
                self.service.webhook_url,
                event.to_dict(),
                secret=self.service.webhook_secret,
            )

        email = event.payload.get("customer_email")
        if event.type in CUSTOMER_EVENTS and email:
            subject, html, text = self.service.format_order_email(event)
            await self.service.send_email(email, subject, html, text)

    async def drain(self) -> None:
        """Wait for in-flight deliveries, e.g. on shutdown."""
        if not self._tasks:
            return
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error("Order event delivery crashed", error=str(result))
