"""Notification email dispatch (best-effort; never raises into the scheduler)."""

from __future__ import annotations

import html
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from robojs.core.config import get_settings

logger = logging.getLogger(__name__)

_EMAIL_TEMPLATE = """<!doctype html>
<html>
  <head><meta charset="utf-8"><title>{title}</title></head>
  <body>
    <span style="display:none">{preheader}</span>
    <h1>{title}</h1>
    {content}
    <p style="color:#888">&copy; {year} robojs</p>
  </body>
</html>
"""


def build_email(title: str, content_html: str, preheader: str) -> str:
    return _EMAIL_TEMPLATE.format(
        title=html.escape(title or ""),
        content=content_html,
        preheader=html.escape((preheader or "")[:200]),
        year=datetime.now(timezone.utc).year,
    )


def notification_email(task_name: str, notification: str) -> tuple[str, str]:
    subject = f"{task_name} notification"
    body = build_email(task_name, f"<pre>{html.escape(notification)}</pre>", notification)
    return subject, body


def failure_email(task_name: str, message: str) -> tuple[str, str]:
    subject = f"Error in task {task_name}"
    body = build_email(
        task_name,
        "<p>Your task encountered an error and was disabled.</p>"
        f'<pre class="error">{html.escape(message)}</pre>',
        message,
    )
    return subject, body


class Mailer:
    """
    Thin client for a SparkPost-style transmissions API:
      POST {url}  Authorization: <api key>
      {content: {from, subject, html}, recipients: [{address}], options: {inline_css}}
    """

    def __init__(
        self,
        *,
        api_url: str = "",
        api_key: str = "",
        from_addr: str = "",
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.from_addr = from_addr
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    @classmethod
    def from_settings(cls) -> "Mailer":
        settings = get_settings()
        return cls(
            api_url=settings.MAIL_API_URL,
            api_key=settings.MAIL_API_KEY,
            from_addr=settings.MAIL_FROM,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_url and self.api_key)

    def send(self, *, to: str, subject: str, html_body: str) -> bool:
        """Send one email. Returns True on success; failures are logged, not raised."""
        if not to:
            logger.warning("No recipient for notification email (subject=%r)", subject)
            return False
        if not self.enabled:
            logger.warning("Mailer not configured; dropping email to %s (subject=%r)", to, subject)
            return False

        body: Dict[str, Any] = {
            "content": {"from": self.from_addr, "subject": subject, "html": html_body},
            "recipients": [{"address": to}],
            "options": {"inline_css": True},
        }
        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
                resp = client.post(self.api_url, json=body, headers={"Authorization": self.api_key})
        except httpx.HTTPError as exc:
            logger.error("Failed to send notification email to %s: %s", to, exc)
            return False

        if resp.status_code >= 400:
            logger.error(
                "Mail API rejected email to %s: HTTP %s %s", to, resp.status_code, resp.text[:300]
            )
            return False
        return True
