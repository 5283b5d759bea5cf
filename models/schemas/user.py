import re

from marshmallow import Schema, fields, pre_load, validates, validate, ValidationError

# at least one lower, upper, digit and special character
PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]")
NAME_PATTERN = re.compile(r"^[A-Za-z\s]+$")


def _norm_email(v):
    return v.strip().lower() if isinstance(v, str) else v


class _EmailNormalizingSchema(Schema):
    @pre_load
    def normalize(self, data, **kwargs):
        if isinstance(data, dict):
            data = dict(data)
            if "email" in data:
                data["email"] = _norm_email(data["email"])
            if isinstance(data.get("name"), str):
                data["name"] = data["name"].strip()
        return data


class RegisterSchema(_EmailNormalizingSchema):
    email = fields.Email(
        required=True,
        validate=validate.Length(max=255, error="Email must not exceed 255 characters"),
        error_messages={"invalid": "Please provide a valid email address"},
    )
    password = fields.String(required=True, load_only=True)
    name = fields.String(required=True)

    @validates("password")
    def validate_password(self, value, **kwargs):
        if len(value) < 8:
            raise ValidationError("Password must be at least 8 characters long")
        if not PASSWORD_PATTERN.match(value):
            raise ValidationError(
                "Password must contain at least one lowercase letter, one uppercase letter, "
                "one number, and one special character"
            )

    @validates("name")
    def validate_name(self, value, **kwargs):
        if not value:
            raise ValidationError("Name is required")
        if not 2 <= len(value) <= 50:
            raise ValidationError("Name must be between 2 and 50 characters")
        if not NAME_PATTERN.match(value):
            raise ValidationError("Name can only contain letters and spaces")


class LoginSchema(_EmailNormalizingSchema):
    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
        error_messages={"invalid": "Please provide a valid email address"},
    )
    password = fields.String(
        required=True,
        load_only=True,
        validate=validate.Length(min=1, error="Password is required"),
    )


class RefreshSchema(Schema):
    refresh_token = fields.String(
        required=True,
        data_key="refreshToken",
        validate=validate.Length(min=1, error="Refresh token is required"),
    )
