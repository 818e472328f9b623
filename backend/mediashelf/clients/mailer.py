"""SMTP mailer for import notifications.

Notifications are best effort: send failures are logged and reported as
False, never raised to the caller.
"""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from html import escape

from mediashelf.clients.base import IMailer, ImportSummaryMail

logger = logging.getLogger(__name__)

MAX_LISTED_FAILURES = 20


class SmtpMailer(IMailer):
    """IMailer over smtplib. Blocking SMTP calls run in a worker thread."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str | None,
        password: str | None,
        sender: str,
        frontend_url: str = "",
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.frontend_url = frontend_url.rstrip("/")
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.user and self.password)

    async def send_import_summary_email(
        self, recipient: str, username: str, summary: ImportSummaryMail,
    ) -> bool:
        html = render_summary(username, summary, f"{self.frontend_url}/profile")
        return await self._send(recipient, "MyAnimeList import finished", html)

    async def send_import_failure_email(
        self, recipient: str, username: str, error_message: str,
    ) -> bool:
        html = render_failure(username, error_message, f"{self.frontend_url}/profile/import")
        return await self._send(recipient, "MyAnimeList import failed", html)

    async def _send(self, recipient: str, subject: str, html: str) -> bool:
        if not self.enabled:
            logger.warning(f"SMTP not configured - skipping '{subject}' email to {recipient}")
            return False

        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = recipient
        msg["Subject"] = subject
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(html, subtype="html")

        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send '{subject}' email to {recipient}: {e}")
            return False
        logger.info(f"Sent '{subject}' email to {recipient}")
        return True

    def _deliver(self, msg: EmailMessage) -> None:
        if self.port == 465:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.login(self.user, self.password)
                smtp.send_message(msg)
        else:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.starttls()
                smtp.login(self.user, self.password)
                smtp.send_message(msg)


# ── Templates ────────────────────────────────────────────────────

def render_summary(username: str, summary: ImportSummaryMail, profile_url: str) -> str:
    success_rate = round(summary.imported / summary.total * 100) if summary.total else 0
    failed_rows = "".join(
        f"<li>{escape(item.get('title', ''))}"
        f"{' (' + escape(item['reason']) + ')' if item.get('reason') else ''}</li>"
        for item in summary.failed_items[:MAX_LISTED_FAILURES]
    )
    more = len(summary.failed_items) - MAX_LISTED_FAILURES
    if more > 0:
        failed_rows += f"<li>... and {more} more</li>"
    failed_block = (
        f"<h3>Titles not imported ({len(summary.failed_items)})</h3><ul>{failed_rows}</ul>"
        if summary.failed_items else ""
    )
    return (
        f"<h1>Import finished</h1>"
        f"<p>Hello {escape(username)}, your MyAnimeList import is complete.</p>"
        f"<table>"
        f"<tr><td>Imported</td><td>{summary.imported}</td></tr>"
        f"<tr><td>Not found</td><td>{summary.not_found}</td></tr>"
        f"<tr><td>Failed</td><td>{summary.failed}</td></tr>"
        f"<tr><td>Total</td><td>{summary.total}</td></tr>"
        f"<tr><td>Success rate</td><td>{success_rate}%</td></tr>"
        f"</table>"
        f"{failed_block}"
        f'<p><a href="{escape(profile_url)}">View your collection</a></p>'
    )


def render_failure(username: str, error_message: str, import_url: str) -> str:
    return (
        f"<h1>Import failed</h1>"
        f"<p>Hello {escape(username)}, your MyAnimeList import could not be completed.</p>"
        f"<p><code>{escape(error_message)}</code></p>"
        f'<p><a href="{escape(import_url)}">Try again</a></p>'
    )
