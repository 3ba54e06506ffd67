"""Transactional email over an HTTP email API (Resend-compatible).

Best-effort: callers decide what a failure means. Sending is disabled when
no API key is configured.
"""

import logging
from typing import Optional

import httpx

from sharetips.config import settings
from sharetips.monitoring.engine_metrics import METRIC_EMAILS
from sharetips.providers.http_client import ResilientClient

logger = logging.getLogger("sharetips.email")

TEMPLATE_SUBSCRIPTION_EXPIRING = "subscription_expiring"


class EmailDeliveryError(Exception):
    """The email API rejected the message or could not be reached."""


def render_subscription_expiring(username: str, tipster_name: str, days_remaining: int) -> tuple[str, str]:
    when = "tomorrow" if days_remaining == 1 else f"in {days_remaining} days"
    subject = f"Your subscription to {tipster_name} expires {when}"
    html = (
        f"<p>Hi {username},</p>"
        f"<p>Your subscription to <strong>{tipster_name}</strong> expires {when}.</p>"
        "<p>Renew it from the app to keep access to their tickets.</p>"
    )
    return subject, html


class EmailService:
    def __init__(
        self,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key if api_key is not None else settings.EMAIL_API_KEY
        self._client = ResilientClient(
            "email", timeout=settings.EMAIL_TIMEOUT_SECONDS, max_retries=1, transport=transport,
        )

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def send_subscription_expiring_email(
        self, email: str, username: str, tipster_name: str, days_remaining: int,
    ) -> bool:
        """Send the J-3/J-1 reminder. Returns False when sending is disabled.

        Raises EmailDeliveryError when the API refuses or is unreachable.
        """
        subject, html = render_subscription_expiring(username, tipster_name, days_remaining)
        return await self._send(TEMPLATE_SUBSCRIPTION_EXPIRING, email, subject, html)

    async def _send(self, template: str, to: str, subject: str, html: str) -> bool:
        if not self.enabled:
            logger.info("Email disabled (no EMAIL_API_KEY), not sending %s to %s", template, to)
            METRIC_EMAILS.labels(template=template, outcome="disabled").inc()
            return False

        try:
            resp = await self._client.post(
                settings.EMAIL_API_URL,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={"from": settings.EMAIL_FROM, "to": [to], "subject": subject, "html": html},
            )
        except httpx.HTTPError as exc:
            METRIC_EMAILS.labels(template=template, outcome="failed").inc()
            raise EmailDeliveryError(f"email API unreachable: {exc}") from exc

        if resp.status_code >= 400:
            METRIC_EMAILS.labels(template=template, outcome="failed").inc()
            raise EmailDeliveryError(f"email API returned HTTP {resp.status_code}")

        METRIC_EMAILS.labels(template=template, outcome="sent").inc()
        return True

    async def aclose(self) -> None:
        await self._client.aclose()


email_service = EmailService()
