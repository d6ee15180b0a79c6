"""Registration, OTP verification and token issue."""
from flask import Blueprint, current_app, jsonify
from flask_login import current_user
from wtforms import PasswordField, SelectField, StringField
from wtforms.validators import DataRequired, Email, Length, Optional, ValidationError

from models import OTP_PURPOSES, USER_ROLES
from routes.forms import ApiForm, validated_form
from storage import store
from utils.decorators import token_required
from utils.errors import AuthenticationRequired, Conflict, NotFound
from utils.errors import ValidationError as RequestInvalid
from utils.otp_service import issue_otp, otp_response, require_verified, resolve_identifier, verify_otp
from utils.security import (
    create_access_token,
    hash_password,
    password_meets_policy,
    verify_password,
)

auth_bp = Blueprint("auth", __name__)

ROLE_CHOICES: list[tuple[str, str]] = [(role, role.title()) for role in USER_ROLES]
PURPOSE_CHOICES: list[tuple[str, str]] = [(purpose, purpose) for purpose in OTP_PURPOSES]


class RegistrationForm(ApiForm):
    username = StringField("Username", validators=[DataRequired(), Length(max=80)])
    password = PasswordField("Password", validators=[DataRequired()])
    full_name = StringField("Full Name", validators=[DataRequired(), Length(max=150)])
    role = StringField("Role", default="citizen")
    email = StringField("Email", validators=[Optional(), Email(), Length(max=255)])
    phone = StringField("Phone", validators=[Optional(), Length(max=20)])
    aadhar_number = StringField("Aadhar Number", validators=[Optional(), Length(max=20)])
    department = StringField("Department", validators=[Optional(), Length(max=255)])

    def validate_role(self, field):
        field.data = (field.data or "citizen").strip().lower()
        if field.data not in USER_ROLES:
            raise ValidationError("Invalid role selected")

    def validate_password(self, field):
        password_ok, reason = password_meets_policy(field.data)
        if not password_ok:
            raise ValidationError(reason)


class LoginForm(ApiForm):
    username = StringField("Username", validators=[Optional()])
    email = StringField("Email", validators=[Optional(), Email()])
    phone = StringField("Phone", validators=[Optional()])
    password = PasswordField("Password", validators=[Optional()])


class OtpGenerateForm(ApiForm):
    email = StringField("Email", validators=[Optional(), Email()])
    phone = StringField("Phone", validators=[Optional()])
    purpose = SelectField("Purpose", choices=PURPOSE_CHOICES, default="login")


class VerifyOtpForm(OtpGenerateForm):
    otp = StringField("OTP", validators=[DataRequired(), Length(min=6, max=6)])


class TokenForm(ApiForm):
    username = StringField("Username", validators=[Optional()])
    email = StringField("Email", validators=[Optional()])
    phone = StringField("Phone", validators=[Optional()])
    purpose = SelectField("Purpose", choices=PURPOSE_CHOICES, default="login")


class ResetPasswordForm(ApiForm):
    email = StringField("Email", validators=[Optional()])
    phone = StringField("Phone", validators=[Optional()])
    new_password = PasswordField("New Password", validators=[Optional()])


def _clean(value):
    value = (value or "").strip()
    return value or None


def _ensure_unique(form: RegistrationForm) -> None:
    if store.get_user_by_username(form.username.data.strip()):
        raise Conflict("Username already exists")
    if _clean(form.email.data) and store.get_user_by_email(form.email.data):
        raise Conflict("This email is already registered. Please use a different email or mobile number.")
    if _clean(form.phone.data) and store.get_user_by_phone(form.phone.data.strip()):
        raise Conflict("This mobile number is already registered. Please use a different email or mobile number.")
    if _clean(form.aadhar_number.data) and store.get_user_by_aadhar(form.aadhar_number.data.strip()):
        raise Conflict("This Aadhar number is already used. Please use a different Aadhar number.")


def _session_payload(user) -> dict:
    return {"user": user.public_payload(), "token": create_access_token(user)}


@auth_bp.route("/auth/register", methods=["POST"])
def register():
    form = validated_form(RegistrationForm)
    with store.state.sequence_lock:
        _ensure_unique(form)
        email = _clean(form.email.data)
        user = store.create_user(
            username=form.username.data.strip(),
            password=hash_password(form.password.data),
            full_name=form.full_name.data.strip(),
            role=form.role.data,
            email=email.lower() if email else None,
            phone=_clean(form.phone.data),
            aadhar_number=_clean(form.aadhar_number.data),
            department=_clean(form.department.data),
        )
    current_app.logger.info("User registered", extra={"user_id": user.id, "role": user.role})

    if user.email or user.phone:
        identifier, channel = resolve_identifier(email=user.email) if user.email else resolve_identifier(phone=user.phone)
        record = issue_otp(identifier, channel, "register")
        return jsonify({"user": user.public_payload(), **otp_response(record, channel)})

    return jsonify(_session_payload(user))


@auth_bp.route("/auth/login", methods=["POST"])
def login():
    form = validated_form(LoginForm)
    phone = _clean(form.phone.data)
    if phone:
        user = store.get_user_by_phone(phone)
        if not user:
            raise AuthenticationRequired("Invalid credentials")
        if form.password.data and not verify_password(form.password.data, user.password):
            raise AuthenticationRequired("Invalid credentials")
        record = issue_otp(user.phone, "phone", "login")
        return jsonify({"user": user.public_payload(), **otp_response(record, "phone")})

    username, email = _clean(form.username.data), _clean(form.email.data)
    if not (username or email):
        raise RequestInvalid("Missing credentials")

    user = store.get_user_by_username(username) if username else store.get_user_by_email(email)
    if not user:
        raise AuthenticationRequired("Invalid credentials")
    if not form.password.data:
        raise RequestInvalid("Password is required")
    if not verify_password(form.password.data, user.password):
        current_app.logger.warning("Login failed", extra={"user_id": user.id})
        raise AuthenticationRequired("Invalid credentials")
    if not user.email:
        raise RequestInvalid("User has no email for verification")

    record = issue_otp(user.email, "email", "login")
    return jsonify({"user": user.public_payload(), **otp_response(record, "email")})


@auth_bp.route("/otp/generate", methods=["POST"])
@token_required
def generate_otp():
    form = validated_form(OtpGenerateForm)
    identifier, channel = resolve_identifier(phone=_clean(form.phone.data), email=_clean(form.email.data))
    record = issue_otp(identifier, channel, form.purpose.data)
    payload = {"message": f"OTP sent to {channel}"}
    if current_app.config.get("OTP_EXPOSE_IN_RESPONSE"):
        payload["otp"] = record.otp
    return jsonify(payload)


@auth_bp.route("/auth/verify-otp", methods=["POST"])
def verify():
    form = validated_form(VerifyOtpForm)
    identifier, channel = resolve_identifier(phone=_clean(form.phone.data), email=_clean(form.email.data))
    verify_otp(identifier, channel, form.otp.data, form.purpose.data)
    return jsonify({"message": "OTP verified successfully"})


@auth_bp.route("/auth/token", methods=["POST"])
def issue_token():
    form = validated_form(TokenForm)
    username, email, phone = _clean(form.username.data), _clean(form.email.data), _clean(form.phone.data)
    if username:
        user = store.get_user_by_username(username)
    elif email:
        user = store.get_user_by_email(email)
    elif phone:
        user = store.get_user_by_phone(phone)
    else:
        user = None
    if not user:
        raise NotFound("User not found")

    if phone:
        identifier, channel = phone, "phone"
    else:
        # Username and email sign-ins are verified through the account email.
        identifier, channel = user.email, "email"
    if not identifier:
        raise RequestInvalid("No verification identifier found")

    require_verified(identifier, channel, form.purpose.data)
    current_app.logger.info("Access token issued", extra={"user_id": user.id, "purpose": form.purpose.data})
    return jsonify(_session_payload(user))


@auth_bp.route("/auth/reset-password", methods=["POST"])
def reset_password():
    form = validated_form(ResetPasswordForm)
    password_ok, reason = password_meets_policy(form.new_password.data)
    if not password_ok:
        raise RequestInvalid(reason)

    email, phone = _clean(form.email.data), _clean(form.phone.data)
    if email:
        user, identifier, channel = store.get_user_by_email(email), email, "email"
    elif phone:
        user, identifier, channel = store.get_user_by_phone(phone), phone, "phone"
    else:
        user, identifier, channel = None, None, None
    if not user:
        raise NotFound("User not found")

    require_verified(identifier, channel, "reset-password", message="Please verify OTP first")
    store.update_user_password(user.id, hash_password(form.new_password.data))
    current_app.logger.info("Password reset", extra={"user_id": user.id})
    return jsonify({"message": "Password reset successful"})


@auth_bp.route("/auth/me", methods=["GET"])
@token_required
def me():
    return jsonify(current_user.public_payload())
