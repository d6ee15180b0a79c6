"""SMTP-backed email dispatcher for one-time passcodes."""
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import List

from flask import current_app


class EmailDeliveryError(Exception):
    """Raised when email dispatch fails."""


PURPOSE_LABELS = {
    "register": "complete your registration",
    "login": "sign in",
    "reset-password": "reset your password",
}


def _resolve_sender(fallback: str | None = None) -> str:
    return current_app.config.get("MAIL_DEFAULT_SENDER") or (fallback or "")


def _dispatch_email(subject: str, text_body: str, sender: str, recipients: List[str]) -> None:
    if not recipients:
        raise EmailDeliveryError("No recipients resolved for email dispatch")

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = ", ".join(recipients)
    msg["Reply-To"] = sender
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid()
    msg.set_content(text_body)

    host = current_app.config.get("MAIL_SERVER")
    port = int(current_app.config.get("MAIL_PORT", 25))
    username = current_app.config.get("MAIL_USERNAME")
    password = current_app.config.get("MAIL_PASSWORD")
    use_tls = bool(current_app.config.get("MAIL_USE_TLS"))
    use_ssl = bool(current_app.config.get("MAIL_USE_SSL"))

    if not host:
        raise EmailDeliveryError("MAIL_SERVER is not configured")

    try:
        if use_ssl:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(host, port, context=context) as server:
                if username and password:
                    server.login(username, password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(host, port) as server:
                server.ehlo()
                if use_tls:
                    server.starttls(context=ssl.create_default_context())
                if username and password:
                    server.login(username, password)
                server.send_message(msg)
    except Exception as exc:  # pragma: no cover - external I/O
        raise EmailDeliveryError(str(exc)) from exc


def build_otp_message(otp: str, purpose: str) -> tuple[str, str]:
    ttl = int(current_app.config.get("OTP_TTL_MINUTES", 10))
    action = PURPOSE_LABELS.get(purpose, "continue")
    subject = "Your OTP Code"
    body = (
        f"Your one-time passcode is {otp}.\n\n"
        f"Use it to {action}. The code expires in {ttl} minutes.\n"
        "If you did not request this code you can ignore this message."
    )
    return subject, body


def send_otp_email(recipient: str, otp: str, purpose: str) -> None:
    subject, body = build_otp_message(otp, purpose)
    _dispatch_email(subject, body, _resolve_sender(recipient), [recipient])
    current_app.logger.info("OTP email dispatched", extra={"recipient": recipient, "purpose": purpose})
