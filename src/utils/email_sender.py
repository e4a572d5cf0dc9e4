"""Outgoing email.

The sender is built once at startup (``build_email_sender``) and handed to
the managers that need it. Delivery is best effort: callers commit their
state first and report a failed send separately.
"""

import logging
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Optional, Tuple

import config

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """Raised when a message could not be handed to the mail server."""

    pass


class EmailSender:
    """Interface: send one message and return its delivery-attempt id."""

    def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> str:
        raise NotImplementedError


class SmtpEmailSender(EmailSender):
    """Sends through an SMTP relay (STARTTLS + login when configured)."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        sender: str = "",
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender or username
        self.timeout = timeout

    def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> str:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        message_id = make_msgid()
        msg["Message-ID"] = message_id
        msg.set_content(text)
        if html:
            msg.add_alternative(html, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP delivery to %s failed: %s", to, e.__class__.__name__)
            raise EmailDeliveryError(str(e)) from e

        logger.info("Sent '%s' to %s (%s)", subject, to, message_id)
        return message_id


def build_email_sender() -> EmailSender:
    return SmtpEmailSender(
        host=config.SMTP_HOST,
        port=config.SMTP_PORT,
        username=config.SMTP_USER,
        password=config.SMTP_PASSWORD,
        use_tls=config.SMTP_USE_TLS,
        sender=config.MAIL_FROM,
        timeout=config.SMTP_TIMEOUT_SECONDS,
    )


def build_code_email(
    prenom: str, code: str, purpose: str = "signup"
) -> Tuple[str, str, str]:
    """Subject, plain text and HTML for a verification/reset code."""
    app_name = config.APP_DISPLAY_NAME
    minutes = config.VERIFICATION_CODE_TTL_MINUTES
    if purpose == "reset":
        subject = f"{app_name} - Réinitialisation du mot de passe"
    else:
        subject = f"Inscription {app_name} - Vérification de l’email"
    greeting = f"Bonjour {prenom}," if prenom else "Bonjour,"
    text = (
        f"{greeting}\n\nVotre code de vérification est : {code}\n"
        f"Ce code expire dans {minutes} minutes."
    )
    html = (
        '<div style="font-family: Arial, sans-serif; font-size:16px; line-height:1.6;">'
        f"<p>{greeting}</p>"
        "<p>Votre code de vérification est :</p>"
        f'<div style="font-size:28px; font-weight:bold; letter-spacing:3px;">{code}</div>'
        f"<p>Ce code expire dans {minutes} minutes.</p>"
        "</div>"
    )
    return subject, text, html
