# Input validation helpers
import re

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
PHONE_RE = re.compile(r'^\+[1-9]\d{6,14}$')

REGISTRATION_FIELDS = (
    'familyName', 'nativeOf', 'district', 'province', 'country', 'residence',
    'email', 'phone', 'occupation', 'worksAt', 'password',
)

# Never copied into the stored profile
SECRET_FIELDS = ('password', 'confirmPassword')


def validate_email(email):
    return isinstance(email, str) and EMAIL_RE.match(email) is not None


def validate_phone(phone):
    """E.164 phone numbers, e.g. +250788123456."""
    return isinstance(phone, str) and PHONE_RE.match(phone) is not None


def validate_password(password):
    """At least 8 characters with a letter and a digit."""
    if not isinstance(password, str) or len(password) < 8:
        return False
    return any(c.isalpha() for c in password) and any(c.isdigit() for c in password)


def missing_fields(data, required):
    data = data or {}
    return [field for field in required if field not in data]


def strip_secrets(profile):
    return {key: value for key, value in (profile or {}).items() if key not in SECRET_FIELDS}
