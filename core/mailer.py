"""
core/mailer.py -- Outbound email for the password reset flow.

Two transports share one interface:

  SmtpMailer -- stdlib smtplib, optional STARTTLS. Used when SMTP_HOST is set.
  LogMailer  -- writes the rendered message to the log. Used in development
                and whenever no SMTP host is configured.

Bodies are rendered from Jinja2 templates in core/templates/email/. Autoescape
is on: user names end up in HTML.

send() never raises. A failed delivery is logged and reported as False; the
HTTP request that triggered it still succeeds.

Layer rule: core/ is the kernel. No imports from api/, auth/, or documents/.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import Settings

logger = logging.getLogger("agentpro.mailer")

_TEMPLATE_DIR = Path(__file__).parent / "templates" / "email"

_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)


def render(template_name: str, **context) -> str:
    """Render an email template with context. Raises jinja2 errors on a bad name."""
    return _env.get_template(template_name).render(**context)


class Mailer:
    """Base transport. Subclasses implement deliver()."""

    def __init__(self, from_address: str, from_name: str) -> None:
        self.from_address = from_address
        self.from_name = from_name

    def send(self, to: str, subject: str, template_name: str, **context) -> bool:
        """Render template_name and deliver it to `to`. Returns True on success."""
        try:
            html = render(template_name, **context)
            message = EmailMessage()
            message["Subject"] = subject
            message["From"] = formataddr((self.from_name, self.from_address))
            message["To"] = to
            message.set_content(html, subtype="html")
            self.deliver(message)
        except Exception:
            logger.exception("Email delivery failed (template=%s)", template_name)
            return False
        logger.info("Email sent (template=%s)", template_name)
        return True

    def deliver(self, message: EmailMessage) -> None:
        raise NotImplementedError


class SmtpMailer(Mailer):
    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        use_tls: bool,
        from_address: str,
        from_name: str,
    ) -> None:
        super().__init__(from_address, from_name)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls

    def deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(message)


class LogMailer(Mailer):
    """Development transport: logs the envelope instead of sending it."""

    def deliver(self, message: EmailMessage) -> None:
        logger.info("Email (not sent, no SMTP host): to=%s subject=%s", message["To"], message["Subject"])
        logger.debug("Email body:\n%s", message.get_content())


def build_mailer(settings: Settings) -> Mailer:
    """Return the transport matching the configured SMTP host."""
    if settings.smtp_host:
        return SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_address=settings.mail_from_address,
            from_name=settings.mail_from_name,
        )
    return LogMailer(settings.mail_from_address, settings.mail_from_name)
