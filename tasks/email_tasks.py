import logging
import smtplib

from core.celery import celery_app
from core.config import settings

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def send_email_task(self, to_email: str, subject: str, html_body: str):
    """
    Send an HTML email asynchronously with Celery.
    Retries up to 3 times with exponential backoff on transport failure.
    """
    # Imported here so the worker does not pull the service module at registration time
    from services.email import deliver_smtp

    if not settings.smtp_configured:
        logger.info("SMTP not configured, dropping email to %s (%s)", to_email, subject)
        return {"status": "skipped", "to": to_email}

    try:
        deliver_smtp(settings, to_email, subject, html_body)
        return {"status": "sent", "to": to_email, "subject": subject}
    except (smtplib.SMTPException, OSError) as exc:
        countdown = min(2 ** self.request.retries, 60)  # Max 60 seconds
        logger.warning(
            "Email to %s failed (attempt %d), retrying in %ds: %s",
            to_email,
            self.request.retries + 1,
            countdown,
            exc,
        )
        raise self.retry(exc=exc, countdown=countdown)
