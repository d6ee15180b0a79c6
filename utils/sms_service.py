"""HTTP SMS gateway client; logs the message when no gateway is configured."""
import requests
from flask import current_app

from utils.email_service import PURPOSE_LABELS


class SmsDeliveryError(Exception):
    """Raised when the SMS gateway rejects or cannot receive a message."""


def send_sms(phone: str, message: str) -> None:
    gateway = current_app.config.get("SMS_GATEWAY_URL")
    if not gateway:
        current_app.logger.info("SMS gateway not configured; message logged", extra={"phone": phone})
        return

    payload = {"to": phone, "message": message}
    sender = current_app.config.get("SMS_SENDER_ID")
    if sender:
        payload["from"] = sender
    headers = {}
    token = current_app.config.get("SMS_GATEWAY_TOKEN")
    if token:
        headers["Authorization"] = f"Bearer {token}"

    try:
        resp = requests.post(
            gateway,
            json=payload,
            headers=headers,
            timeout=int(current_app.config.get("SMS_GATEWAY_TIMEOUT", 10)),
        )
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise SmsDeliveryError(str(exc)) from exc


def send_otp_sms(phone: str, otp: str, purpose: str) -> None:
    action = PURPOSE_LABELS.get(purpose, "continue")
    send_sms(phone, f"Your OTP is {otp}. Use it to {action}. Valid for 10 minutes.")
    current_app.logger.info("OTP SMS dispatched", extra={"phone": phone, "purpose": purpose})
