from __future__ import annotations

import html as html_lib
import logging
from typing import Any, Dict

import requests

from feedloop.core import config

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
TIMEOUT = (5, 10)  # connect, read


class EmailSendError(RuntimeError):
    pass


def email_enabled() -> bool:
    return bool(config.RESEND_API_KEY)


def invitation_email(project_name: str, inviter: str, link: str, *, pending: bool) -> tuple[str, str]:
    """(subject, html) for a project invitation."""
    action = "Create your account to join" if pending else "Open the project"
    safe_link = html_lib.escape(link, quote=True)
    subject = f"You've been invited to {project_name} on Feedloop"
    body = f"""
    <div style="font-family:Arial, sans-serif; line-height:1.5">
      <h2>Feedloop invitation</h2>
      <p><b>{html_lib.escape(inviter)}</b> invited you to the project <b>{html_lib.escape(project_name)}</b>.</p>
      <p>{action}: <a href="{safe_link}">{safe_link}</a></p>
    </div>
    """
    return subject, body


def send_email(to_email: str, subject: str, html: str) -> Dict[str, Any]:
    """Send one transactional email through Resend; returns Resend's JSON reply."""
    if not email_enabled():
        raise EmailSendError("RESEND_API_KEY is missing")

    fields = {"to_email": to_email, "subject": subject, "html": html}
    for name, value in fields.items():
        if not (value or "").strip():
            raise EmailSendError(f"{name} is empty")

    try:
        resp = requests.post(
            RESEND_API_URL,
            json={
                "from": config.RESEND_FROM_EMAIL,
                "to": [to_email.strip()],
                "subject": subject.strip(),
                "html": html.strip(),
            },
            headers={
                "Authorization": f"Bearer {config.RESEND_API_KEY}",
                "Accept": "application/json",
                "User-Agent": "feedloop/1.0",
            },
            timeout=TIMEOUT,
        )
    except requests.RequestException as e:
        raise EmailSendError(f"Resend request failed: {e}") from e

    if resp.status_code == 403:
        # Resend answers 403 for unverified sender domains
        raise EmailSendError(f"Resend rejected sender {config.RESEND_FROM_EMAIL!r}: {resp.text[:500]}")
    if not resp.ok:
        raise EmailSendError(f"Resend API error {resp.status_code}: {resp.text[:500]}")

    try:
        reply = resp.json()
    except ValueError as e:
        raise EmailSendError("Resend returned non-JSON response") from e

    logger.info("Sent email %r to %s (id=%s)", subject, to_email, reply.get("id"))
    return reply
