"""Transactional e-mail rendering and delivery.

Subjects and HTML bodies are rendered with Jinja2 from
`studyabroad/templates/email/<type>.html`. Delivery goes through one of
three backends selected by `EMAIL_BACKEND`:

- `smtp`: smtplib with STARTTLS,
- `console`: logs the rendered message,
- `memory`: appends to `outbox` (tests assert on it).

`send_email` never raises into callers; failures are logged and
reported as False.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from pathlib import Path
from typing import List, Optional

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from ..config import settings, smtp_config

logger = logging.getLogger("studyabroad.email")

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)


class EmailType(str, Enum):
    WELCOME = "WELCOME"
    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"
    PASSWORD_RESET = "PASSWORD_RESET"
    COURSE_ENROLLMENT = "COURSE_ENROLLMENT"
    COURSE_COMPLETION = "COURSE_COMPLETION"
    APPOINTMENT_CONFIRMATION = "APPOINTMENT_CONFIRMATION"
    APPOINTMENT_REMINDER = "APPOINTMENT_REMINDER"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    TEST_COMPLETED = "TEST_COMPLETED"
    NEWSLETTER = "NEWSLETTER"


SUBJECTS = {
    EmailType.WELCOME: "Welcome to {{ site_name }}",
    EmailType.EMAIL_VERIFICATION: "Verify your e-mail address",
    EmailType.PASSWORD_RESET: "Reset your password",
    EmailType.COURSE_ENROLLMENT: "You're enrolled in {{ course_title }}",
    EmailType.COURSE_COMPLETION: "Congratulations on completing {{ course_title }}",
    EmailType.APPOINTMENT_CONFIRMATION: "Your consultation on {{ scheduled_at }} is booked",
    EmailType.APPOINTMENT_REMINDER: "Reminder: consultation on {{ scheduled_at }}",
    EmailType.PAYMENT_SUCCESS: "Payment received: {{ amount }} {{ currency }}",
    EmailType.PAYMENT_FAILED: "Your payment could not be completed",
    EmailType.TEST_COMPLETED: "Your {{ test_title }} results",
    EmailType.NEWSLETTER: "{{ title }}",
}

# Messages captured by the `memory` backend.
outbox: List[dict] = []


def render_email(email_type: EmailType, context: dict) -> tuple:
    """Return `(subject, html)` for `email_type` rendered with `context`."""
    ctx = {"site_name": smtp_config()["from_name"], "app_url": settings.APP_URL, **context}
    subject = _env.from_string(SUBJECTS[email_type]).render(**ctx)
    html = _env.get_template(f"{email_type.value.lower()}.html").render(**ctx)
    return subject, html


def _send_smtp(to: str, subject: str, html: str) -> None:
    cfg = smtp_config()
    if not cfg["host"]:
        raise RuntimeError("SMTP_HOST is not configured")
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f'{cfg["from_name"]} <{cfg["from_email"]}>'
    msg["To"] = to
    msg.attach(MIMEText(html, "html"))
    with smtplib.SMTP(cfg["host"], cfg["port"], timeout=15) as server:
        server.starttls()
        if cfg["username"]:
            server.login(cfg["username"], cfg["password"])
        server.send_message(msg)


def send_email(email_type: EmailType, to: Optional[str], context: Optional[dict] = None) -> bool:
    """Render and deliver one e-mail; returns True when handed to the backend."""
    if not to:
        return False
    try:
        subject, html = render_email(email_type, context or {})
    except TemplateError:
        logger.exception("email_render_failed type=%s to=%s", email_type.value, to)
        return False
    backend = settings.EMAIL_BACKEND
    try:
        if backend == "memory":
            outbox.append({"type": email_type.value, "to": to, "subject": subject, "html": html})
        elif backend == "smtp":
            _send_smtp(to, subject, html)
        else:
            logger.info("email_console type=%s to=%s subject=%s", email_type.value, to, subject)
    except (smtplib.SMTPException, OSError, RuntimeError):
        logger.exception("email_send_failed type=%s to=%s backend=%s", email_type.value, to, backend)
        return False
    logger.info("email_sent type=%s to=%s backend=%s", email_type.value, to, backend)
    return True
