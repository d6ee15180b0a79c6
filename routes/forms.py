"""WTForms base for JSON request bodies."""
from flask import request
from flask_wtf import FlaskForm
from werkzeug.datastructures import ImmutableMultiDict

from utils.errors import ValidationError


class ApiForm(FlaskForm):
    """Bearer-token requests carry no CSRF token."""

    class Meta:
        csrf = False


def json_formdata() -> ImmutableMultiDict:
    body = request.get_json(silent=True)
    if body is None:
        body = {}
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    # JSON null means "not provided" for optional fields.
    return ImmutableMultiDict({key: value for key, value in body.items() if value is not None})


def first_error(form: FlaskForm) -> str:
    for field_name, messages in form.errors.items():
        if messages:
            field = getattr(form, field_name, None)
            label = field.label.text if field is not None else field_name
            return f"{label}: {messages[0]}"
    return "Invalid request"


def validated_form(form_cls):
    form = form_cls(formdata=json_formdata())
    if not form.validate():
        raise ValidationError(first_error(form))
    return form
