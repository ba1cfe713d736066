"""Email dispatchers for account notifications."""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from html import escape
from typing import Protocol

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail as SendGridMail

from gatekeeper.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Placeholder in a message body marking where the action button is rendered.
ACTION_MARKER = "{{ACTION_BUTTON}}"


class NotificationError(RuntimeError):
    """Raised when a notification attempt fails."""


@dataclass(slots=True)
class NotificationMessage:
    recipient: str
    subject: str
    body: str
    action_title: str | None = None
    action_url: str | None = None


class NotificationProvider(Protocol):
    async def send(self, message: NotificationMessage) -> None:
        ...


def _greeting(message: NotificationMessage) -> str:
    return f"Hello {message.recipient.split('@')[0]},"


def render_text(message: NotificationMessage) -> str:
    body = re.sub(r"\n*" + re.escape(ACTION_MARKER) + r"\n*", "\n\n", message.body).strip()
    parts = [_greeting(message), "", body]
    if message.action_url:
        parts += ["", f"{message.action_title or 'Open'}: {message.action_url}"]
    return "\n".join(parts)


def _paragraphs(text: str) -> str:
    text = text.replace("\r\n", "\n").strip()
    html = []
    for block in text.split("\n\n"):
        if block.strip():
            lines = "<br/>".join(escape(line) for line in block.strip().split("\n"))
            html.append(f'<p class="p">{lines}</p>')
    return "\n".join(html)


def _action_button(title: str, url: str) -> str:
    return f"""
      <div class="cta-container">
        <table role="presentation" border="0" cellspacing="0" cellpadding="0" align="center">
          <tr>
            <td align="center" bgcolor="#22a85f" style="border-radius: 10px;">
              <a class="cta-button" href="{escape(url)}" target="_blank" rel="noopener noreferrer"
                 style="display:inline-block;background:#22a85f;color:#ffffff;padding:14px 32px;border-radius:10px;text-decoration:none;font-weight:600;font-size:15px;">{escape(title)}</a>
            </td>
          </tr>
        </table>
      </div>"""


def render_html(message: NotificationMessage, app_name: str = "Gatekeeper") -> str:
    """Render ``message`` into the branded HTML layout.

    The body is plain text; blank lines separate paragraphs. When the message
    carries an action, a button is placed at ``{{ACTION_BUTTON}}`` in the body,
    or after the last paragraph when the marker is absent.
    """
    action_title = (message.action_title or "").strip()
    action_url = (message.action_url or "").strip()
    button = _action_button(action_title, action_url) if action_title and action_url else ""

    if button and ACTION_MARKER in message.body:
        before, after = message.body.split(ACTION_MARKER, 1)
        content = "\n".join(part for part in (_paragraphs(before), button, _paragraphs(after)) if part)
    else:
        content = "\n".join(
            part for part in (_paragraphs(message.body.replace(ACTION_MARKER, "")), button) if part
        )

    subject = escape(message.subject)
    year = datetime.now(timezone.utc).year
    return f"""<!doctype html>
<html lang="en">
  <head>
    <meta http-equiv="Content-Type" content="text/html; charset=UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>{subject}</title>
    <style>
      body {{ margin: 0; padding: 0; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; }}
      .wrapper {{ background: #f7f8fa; padding: 32px 16px; }}
      .container {{ width: 100%; max-width: 600px; margin: 0 auto; }}
      .card {{ background: #ffffff; border: 1px solid #e5e7eb; border-radius: 16px; overflow: hidden; }}
      .hero {{ background: #0f2320; padding: 36px 32px; text-align: center; }}
      .brand {{ margin: 0; font-size: 22px; font-weight: 700; color: #ffffff; letter-spacing: 0.5px; text-transform: uppercase; }}
      .body {{ padding: 32px; }}
      .h1 {{ margin: 0 0 8px 0; font-size: 26px; font-weight: 800; color: #111827; }}
      .greeting {{ margin: 0 0 24px 0; font-size: 15px; color: #6b7280; }}
      .p {{ margin: 0 0 16px 0; font-size: 15px; line-height: 1.7; color: #111827; overflow-wrap: anywhere; }}
      .cta-container {{ text-align: center; margin: 28px 0; }}
      .footer {{ padding: 24px 32px; background: #1a2332; }}
      .footer-text {{ margin: 0; font-size: 12px; color: rgba(255,255,255,0.7); text-align: center; }}
      .preheader {{ display: none !important; visibility: hidden; font-size: 1px; max-height: 0; overflow: hidden; }}
    </style>
  </head>
  <body>
    <span class="preheader">{escape(message.subject[:90])}</span>
    <table role="presentation" border="0" cellpadding="0" cellspacing="0" width="100%">
      <tr>
        <td class="wrapper" align="center">
          <table role="presentation" border="0" cellpadding="0" cellspacing="0" class="container">
            <tr>
              <td class="card">
                <div class="hero"><p class="brand">{escape(app_name)}</p></div>
                <div class="body">
                  <h1 class="h1">{subject}</h1>
                  <p class="greeting">{escape(_greeting(message))}</p>
                  {content}
                </div>
                <div class="footer">
                  <p class="footer-text">&copy; {year} {escape(app_name)}. This is an automated message, please do not reply.</p>
                </div>
              </td>
            </tr>
          </table>
        </td>
      </tr>
    </table>
  </body>
</html>
"""


class SendGridEmailProvider:
    """Deliver templated email through the SendGrid API."""

    def __init__(self, settings: Settings) -> None:
        if not settings.sendgrid_api_key:
            raise ValueError("SendGrid API key is not configured")
        self._settings = settings
        self._client = SendGridAPIClient(settings.sendgrid_api_key)

    def build(self, message: NotificationMessage) -> SendGridMail:
        settings = self._settings
        return SendGridMail(
            from_email=(settings.mail_from, settings.mail_from_name or settings.app_name),
            to_emails=message.recipient,
            subject=message.subject,
            plain_text_content=render_text(message),
            html_content=render_html(message, settings.app_name),
        )

    async def send(self, message: NotificationMessage) -> None:
        # The SendGrid client is synchronous; keep it off the event loop.
        response = await asyncio.to_thread(self._client.send, self.build(message))
        if response.status_code >= 400:
            raise NotificationError(f"SendGrid rejected the message with status {response.status_code}")
        logger.info("Email sent to %s, status: %s", message.recipient, response.status_code)


class LoggingEmailProvider:
    """Development fallback that writes messages to the log instead of sending them."""

    async def send(self, message: NotificationMessage) -> None:
        logger.info("Email to %s: %s\n%s", message.recipient, message.subject, render_text(message))


def build_provider(settings: Settings | None = None) -> NotificationProvider:
    settings = settings or get_settings()
    if settings.sendgrid_api_key:
        return SendGridEmailProvider(settings)
    logger.warning("SendGrid is not configured; emails will only be logged")
    return LoggingEmailProvider()


async def notify(provider: NotificationProvider, message: NotificationMessage) -> None:
    try:
        await provider.send(message)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to deliver notification to %s: %s", message.recipient, exc)
        raise NotificationError(str(exc)) from exc
