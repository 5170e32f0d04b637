# Identity provider: credential records, password checks and bearer tokens
import logging
import uuid

from flask_jwt_extended import create_access_token, decode_token
from jwt.exceptions import PyJWTError
from flask_jwt_extended.exceptions import JWTExtendedException
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .errors import Conflict, Unauthorized, UpstreamFailure
from .extensions import bcrypt
from .models import Credential

logger = logging.getLogger(__name__)


class IdentityProvider:

    def __init__(self, db):
        self.db = db

    def create_user(self, email=None, phone=None, password=None, display_name=None):
        if not password:
            raise ValueError('A password is required')
        credential = Credential(
            uid=uuid.uuid4().hex,
            email=email,
            phone=phone,
            display_name=display_name,
            password_hash=bcrypt.generate_password_hash(password).decode('utf-8'),
        )
        try:
            self.db.session.add(credential)
            self.db.session.commit()
        except IntegrityError as e:
            self.db.session.rollback()
            raise Conflict('Email or phone already registered') from e
        except SQLAlchemyError as e:
            self.db.session.rollback()
            logger.exception('Failed to create identity record')
            raise UpstreamFailure('Failed to create user') from e
        return credential.uid

    def delete_user(self, uid):
        try:
            credential = self.db.session.get(Credential, uid)
            if credential is not None:
                self.db.session.delete(credential)
                self.db.session.commit()
        except SQLAlchemyError as e:
            self.db.session.rollback()
            logger.exception('Failed to delete identity record %s', uid)
            raise UpstreamFailure('Failed to delete user') from e

    def get_user(self, uid):
        return self.db.session.get(Credential, uid)

    def get_user_by_email(self, email):
        return Credential.query.filter_by(email=email).first()

    def get_user_by_phone(self, phone):
        return Credential.query.filter_by(phone=phone).first()

    def authenticate(self, identifier, password):
        """Return the uid for a matching email-or-phone and password, else None."""
        credential = self.get_user_by_email(identifier) or self.get_user_by_phone(identifier)
        if credential is None or credential.disabled:
            return None
        if not bcrypt.check_password_hash(credential.password_hash, password):
            return None
        return credential.uid

    def issue_custom_token(self, uid, claims=None):
        return create_access_token(identity=str(uid), additional_claims=claims or {})

    def verify(self, token):
        try:
            decoded = decode_token(token)
        except (JWTExtendedException, PyJWTError) as e:
            raise Unauthorized('Invalid or expired token') from e
        return decoded['sub']
