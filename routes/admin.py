"""Departments, official oversight and user lookups."""
from flask import Blueprint, current_app, jsonify
from flask_login import current_user
from wtforms import StringField, TextAreaField
from wtforms.validators import DataRequired, Length, Optional

from routes.forms import ApiForm, validated_form
from storage import store
from utils.alert_engine import notify
from utils.decorators import roles_required, token_required
from utils.errors import NotFound, ValidationError
from utils.rating import rating_summary

admin_bp = Blueprint("admin", __name__)


class DepartmentForm(ApiForm):
    name = StringField("Name", validators=[DataRequired(), Length(max=150)])
    description = TextAreaField("Description", validators=[Optional(), Length(max=1000)])
    image = StringField("Image", validators=[Optional()])


class WarningForm(ApiForm):
    official_id = StringField("Official", validators=[DataRequired()])
    message = TextAreaField("Message", validators=[DataRequired(), Length(max=2000)])


@admin_bp.route("/departments", methods=["GET"])
def list_departments():
    return jsonify([item.public_payload() for item in store.list_departments()])


@admin_bp.route("/departments", methods=["POST"])
@roles_required("admin")
def create_department():
    form = validated_form(DepartmentForm)
    department = store.create_department(
        name=form.name.data.strip(),
        description=form.description.data or None,
        image=form.image.data or None,
    )
    current_app.logger.info("Department created", extra={"department_id": department.id, "department_name": department.name})
    return jsonify(department.public_payload()), 201


@admin_bp.route("/departments/<department_id>/officials", methods=["GET"])
@roles_required("admin")
def department_officials(department_id):
    department = store.get_department(department_id)
    if department is None:
        raise NotFound("Department not found")
    return jsonify([official.public_payload() for official in store.list_officials(department.name)])


@admin_bp.route("/warnings", methods=["POST"])
@roles_required("admin")
def send_warning():
    form = validated_form(WarningForm)
    official = store.get_user(form.official_id.data)
    if official is None:
        raise NotFound("Official not found")
    if not official.is_official:
        raise ValidationError("Warnings can only be sent to officials")

    warning = store.create_warning(official.id, form.message.data, admin_id=current_user.id)
    notify(official.id, "warning", "Performance Warning", form.message.data)
    current_app.logger.warning(
        "Official warned",
        extra={"official_id": official.id, "admin_id": current_user.id, "warning_id": warning.id},
    )
    return jsonify(warning.public_payload()), 201


@admin_bp.route("/warnings", methods=["GET"])
@roles_required("official")
def my_warnings():
    return jsonify([item.public_payload() for item in store.list_warnings(current_user.id)])


@admin_bp.route("/users/officials", methods=["GET"])
@roles_required("admin")
def list_officials():
    return jsonify([official.public_payload() for official in store.list_officials()])


@admin_bp.route("/users/<user_id>", methods=["GET"])
@token_required
def get_user(user_id):
    return jsonify(store.require_user(user_id).public_payload())


@admin_bp.route("/officials/<official_id>/rating", methods=["GET"])
@token_required
def official_rating(official_id):
    return jsonify(rating_summary(official_id))
