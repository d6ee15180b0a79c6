"""One-time passcode issue and verification.

The most recently issued record for an identifier and purpose is the only one
that counts; older codes for the same pair are ignored. Delivery problems are
logged and never surface to the caller.
"""
from typing import Optional, Tuple

from flask import current_app

from models import OTP_PURPOSES, OTPRecord, utcnow
from storage import store
from utils.email_service import EmailDeliveryError, send_otp_email
from utils.errors import AuthenticationRequired, ValidationError
from utils.security import generate_otp
from utils.sms_service import SmsDeliveryError, send_otp_sms


def resolve_identifier(phone: Optional[str] = None, email: Optional[str] = None) -> Tuple[str, str]:
    if phone:
        return phone, "phone"
    if email:
        return email, "email"
    raise ValidationError("Phone or email is required")


def _check_purpose(purpose: str) -> str:
    if purpose not in OTP_PURPOSES:
        raise ValidationError("Invalid OTP purpose")
    return purpose


def issue_otp(identifier: str, channel: str, purpose: str) -> OTPRecord:
    _check_purpose(purpose)
    code = generate_otp()
    record = store.create_otp(
        identifier,
        channel,
        code,
        purpose,
        ttl_minutes=int(current_app.config.get("OTP_TTL_MINUTES", 10)),
    )
    try:
        if channel == "email":
            send_otp_email(identifier, code, purpose)
        else:
            send_otp_sms(identifier, code, purpose)
    except (EmailDeliveryError, SmsDeliveryError) as exc:
        current_app.logger.warning(
            "OTP delivery failed",
            extra={"channel": channel, "purpose": purpose, "error": str(exc)},
        )
    return record


def verify_otp(identifier: str, channel: str, otp: str, purpose: str) -> OTPRecord:
    _check_purpose(purpose)
    record = store.latest_otp(identifier, channel, purpose)
    if record is None:
        raise ValidationError("No OTP found")
    if record.is_expired(utcnow()):
        raise ValidationError("OTP expired")
    if record.otp != (otp or "").strip():
        raise ValidationError("Invalid OTP")
    store.mark_otp_verified(record.id)
    current_app.logger.info("OTP verified", extra={"record_id": record.id, "purpose": purpose})
    return record


def require_verified(identifier: str, channel: str, purpose: str, message: str = "OTP not verified") -> OTPRecord:
    """Spend a verified code. Each verification unlocks exactly one token or reset."""
    record = store.latest_otp(identifier, channel, purpose)
    if record is None or not record.verified:
        raise AuthenticationRequired(message)
    if record.is_expired(utcnow()):
        store.purge_otps(identifier, channel, purpose)
        raise AuthenticationRequired("OTP expired")
    if not store.delete_otp(record.id):
        # Another request spent it first.
        raise AuthenticationRequired(message)
    store.purge_otps(identifier, channel, purpose)
    current_app.logger.info("OTP consumed", extra={"record_id": record.id, "purpose": purpose})
    return record


def otp_response(record: OTPRecord, channel: str) -> dict:
    """Response fields announcing an issued code; the code itself only when exposure is enabled."""
    payload = {"otp_method": channel, channel: record.identifier}
    if current_app.config.get("OTP_EXPOSE_IN_RESPONSE"):
        payload["otp"] = record.otp
    return payload
