import logging
import os
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import Settings, settings as default_settings
from tasks.email_tasks import send_email_task

logger = logging.getLogger(__name__)

TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")

# Jinja2 environment for email templates
_templates_env = Environment(
    loader=FileSystemLoader(searchpath=TEMPLATES_DIR),
    autoescape=select_autoescape(["html", "xml"]),
)


@dataclass
class EmailResult:
    status: str  # queued, sent, skipped, failed
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in ("queued", "sent", "skipped")


def render_template(template_path: str, context: Dict[str, Any]) -> str:
    """Render a template from the templates/ directory with the provided context."""
    template = _templates_env.get_template(template_path)
    return template.render(**context)


def build_message(settings: Settings, to_email: str, subject: str, html_body: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.SMTP_FROM or settings.SMTP_USERNAME
    msg["To"] = to_email
    msg.set_content("This message requires an HTML capable mail client.")
    msg.add_alternative(html_body, subtype="html")
    return msg


def deliver_smtp(settings: Settings, to_email: str, subject: str, html_body: str) -> None:
    """Hand one message to the SMTP relay. Raises on any transport error."""
    msg = build_message(settings, to_email, subject, html_body)
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT_SECONDS) as server:
        server.starttls()
        server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(msg)


class EmailService:
    def __init__(self, settings: Settings):
        self.settings = settings

    def send(self, to_email: str, subject: str, html_body: str) -> EmailResult:
        """
        Queue the message on Celery when a worker setup is available,
        otherwise deliver it directly. Never blocks on a missing SMTP setup:
        that is reported as a skipped result.
        """
        if not self.settings.smtp_configured:
            logger.info("SMTP not configured, skipping email to %s (%s)", to_email, subject)
            return EmailResult("skipped", "SMTP not configured")

        if self.settings.EMAIL_USE_CELERY and not self.settings.TESTING:
            try:
                send_email_task.delay(to_email, subject, html_body)
                logger.debug("Email to %s queued on Celery", to_email)
                return EmailResult("queued")
            except Exception as e:
                logger.warning("Celery not available, falling back to direct email sending: %s", e)

        return self._send_direct(to_email, subject, html_body)

    def send_templated(self, to_email: str, subject: str, template_path: str, context: Dict[str, Any]) -> EmailResult:
        body = render_template(template_path, context)
        return self.send(to_email, subject, body)

    def _send_direct(self, to_email: str, subject: str, html_body: str) -> EmailResult:
        try:
            deliver_smtp(self.settings, to_email, subject, html_body)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email sending to %s failed: %s", to_email, e)
            return EmailResult("failed", str(e))
        logger.info("Email sent to %s (%s)", to_email, subject)
        return EmailResult("sent")


# Global instance
email_service = EmailService(default_settings)
