"""Application intake, tracking, status changes, assignment and feedback."""
from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user
from wtforms import BooleanField, IntegerField, SelectField, StringField, TextAreaField
from wtforms.validators import AnyOf, DataRequired, Length, NumberRange, Optional, ValidationError

from models import PRIORITY_VALUES, utcnow
from routes.forms import ApiForm, validated_form
from storage import store
from utils import assignment
from utils.decorators import roles_required, token_required
from utils.errors import Forbidden, NotFound
from utils.rating import refresh_official_rating
from utils.security import sanitize_input
from utils.state_machine import transition

applications_bp = Blueprint("applications", __name__)

PRIORITY_CHOICES: list[tuple[str, str]] = [(value, value) for value in PRIORITY_VALUES]


class ApplicationForm(ApiForm):
    application_type = StringField("Application Type", validators=[DataRequired(), Length(max=255)])
    title = StringField("Title", validators=[Optional(), Length(max=255)])
    description = TextAreaField("Description", validators=[Optional(), Length(max=5000)])
    priority = SelectField("Priority", choices=PRIORITY_CHOICES, default="Normal")
    image = StringField("Image", validators=[Optional()])


class StatusForm(ApiForm):
    status = StringField("Status", validators=[DataRequired()])
    comment = TextAreaField("Comment", validators=[Optional(), Length(max=2000)])


class DetailsForm(ApiForm):
    priority = StringField("Priority", validators=[Optional(), AnyOf(PRIORITY_VALUES)])
    remarks = TextAreaField("Remarks", validators=[Optional(), Length(max=2000)])


class AssignForm(ApiForm):
    official_id = StringField("Official", validators=[DataRequired(message="officialId is required")])


class SolveForm(ApiForm):
    is_solved = BooleanField("Solved")
    rating = IntegerField("Rating", validators=[Optional(), NumberRange(min=1, max=5)])
    comment = TextAreaField("Comment", validators=[Optional(), Length(max=2000)])

    def validate_is_solved(self, field):
        if not field.raw_data:
            raise ValidationError("This field is required.")


class FeedbackForm(ApiForm):
    rating = IntegerField("Rating", validators=[DataRequired(), NumberRange(min=1, max=5)])
    comment = TextAreaField("Comment", validators=[Optional(), Length(max=2000)])


class GeneralFeedbackForm(FeedbackForm):
    application_id = StringField("Application", validators=[DataRequired(message="Application ID is required")])


def _visible_application(application_id: str):
    """Citizens only see their own applications; staff see all."""
    application = store.require_application(application_id)
    if current_user.role == "citizen" and application.citizen_id != current_user.id:
        raise Forbidden("Unauthorized")
    return application


def _record_feedback(application, rating: int, comment):
    if application.citizen_id != current_user.id:
        raise Forbidden("You can only rate your own applications")
    feedback = store.create_feedback(
        application_id=application.id,
        citizen_id=current_user.id,
        official_id=application.official_id,
        rating=rating,
        comment=comment,
    )
    if application.official_id:
        refresh_official_rating(application.official_id)
    current_app.logger.info("Feedback recorded", extra={"application_id": application.id, "rating": rating})
    return feedback


@applications_bp.route("/applications", methods=["POST"])
@roles_required("citizen")
def create_application():
    form = validated_form(ApplicationForm)
    body = request.get_json(silent=True) or {}
    payload = body.get("payload") if isinstance(body.get("payload"), dict) else {}

    application = store.create_application(
        citizen_id=current_user.id,
        application_type=form.application_type.data.strip(),
        title=form.title.data or None,
        description=form.description.data or None,
        priority=form.priority.data,
        image=form.image.data or None,
        payload=sanitize_input(payload),
    )
    current_app.logger.info(
        "Application submitted",
        extra={"application_id": application.id, "tracking_id": application.tracking_id},
    )

    if application.department:
        official = assignment.auto_assign(application.id, application.department, 0)
        if official is None:
            current_app.logger.info("Application awaiting manual assignment", extra={"application_id": application.id})

    return jsonify(store.require_application(application.id).public_payload()), 201


@applications_bp.route("/applications/my", methods=["GET"])
@token_required
def my_applications():
    return jsonify([item.public_payload() for item in store.list_citizen_applications(current_user.id)])


@applications_bp.route("/applications", methods=["GET"])
@roles_required("official", "admin")
def list_applications():
    if current_user.is_admin:
        items = store.list_applications()
    else:
        items = store.list_official_applications(current_user)
    return jsonify([item.public_payload() for item in items])


@applications_bp.route("/applications/track/<tracking_id>", methods=["GET"])
def track_application(tracking_id):
    application = store.get_application_by_tracking_id(tracking_id)
    if application is None:
        raise NotFound("Application not found")
    return jsonify(application.public_payload())


@applications_bp.route("/applications/<application_id>", methods=["GET"])
@token_required
def get_application(application_id):
    return jsonify(_visible_application(application_id).public_payload())


@applications_bp.route("/applications/<application_id>/history", methods=["GET"])
@token_required
def application_history(application_id):
    _visible_application(application_id)
    entries = sorted(store.get_history(application_id), key=lambda entry: entry.updated_at)
    return jsonify([entry.public_payload() for entry in entries])


@applications_bp.route("/applications/<application_id>/status", methods=["PATCH"])
@roles_required("official", "admin")
def update_status(application_id):
    form = validated_form(StatusForm)
    application = transition(application_id, form.status.data, current_user.id, form.comment.data or None)
    return jsonify(application.public_payload())


@applications_bp.route("/applications/<application_id>", methods=["PATCH"])
@roles_required("official", "admin")
def update_details(application_id):
    form = validated_form(DetailsForm)
    with store.application_lock(application_id):
        application = store.require_application(application_id)
        if form.priority.raw_data:
            application.priority = form.priority.data
        if form.remarks.raw_data:
            application.remarks = form.remarks.data
        application.last_updated_at = utcnow()
        store.save_application(application)
    return jsonify(application.public_payload())


@applications_bp.route("/applications/<application_id>/accept", methods=["POST"])
@roles_required("official", "admin")
def accept_application(application_id):
    application = assignment.accept(application_id, current_user)
    return jsonify(application.public_payload())


@applications_bp.route("/applications/<application_id>/assign", methods=["POST"])
@roles_required("admin")
def assign_application(application_id):
    form = validated_form(AssignForm)
    application = assignment.force_assign(application_id, form.official_id.data, current_user)
    return jsonify(application.public_payload())


@applications_bp.route("/applications/<application_id>/solve", methods=["POST"])
@token_required
def solve_application(application_id):
    form = validated_form(SolveForm)
    if form.is_solved.data:
        application = assignment.resolve(application_id, current_user.id, form.rating.data, form.comment.data or None)
        return jsonify({"message": "Application marked as solved", "application": application.public_payload()})

    application, official = assignment.escalate(application_id, current_user.id)
    if official is not None:
        return jsonify(
            {
                "message": "Application escalated and reassigned",
                "official": official.username,
                "application": application.public_payload(),
            }
        )
    return jsonify(
        {
            "message": "Application escalated but no new official found. Pending assignment.",
            "application": application.public_payload(),
        }
    )


@applications_bp.route("/applications/<application_id>/feedback", methods=["POST"])
@token_required
def application_feedback(application_id):
    application = store.require_application(application_id)
    form = validated_form(FeedbackForm)
    feedback = _record_feedback(application, form.rating.data, form.comment.data or None)
    return jsonify(feedback.public_payload())


@applications_bp.route("/feedback", methods=["POST"])
@token_required
def submit_feedback():
    form = validated_form(GeneralFeedbackForm)
    application = store.require_application(form.application_id.data)
    feedback = _record_feedback(application, form.rating.data, form.comment.data or None)
    return jsonify(feedback.public_payload())


@applications_bp.route("/applications/<application_id>/feedback", methods=["GET"])
def get_feedback(application_id):
    feedback = store.get_feedback_for_application(application_id)
    return jsonify(feedback.public_payload() if feedback else None)


@applications_bp.route("/applications/<application_id>/blockchain", methods=["GET"])
@token_required
def get_blockchain_hash(application_id):
    record = store.get_blockchain_hash(application_id)
    return jsonify(record.public_payload() if record else None)
