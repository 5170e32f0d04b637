# Account service: registration, profiles and admin actions
import logging

from .errors import (CONFLICT, FORBIDDEN, INVALID_INPUT, NOT_FOUND, UNAUTHORIZED,
                     UPSTREAM_FAILURE, Conflict, NotFound, ServiceError, fail, ok)
from .forms import (REGISTRATION_FIELDS, SECRET_FIELDS, strip_secrets, validate_email,
                    validate_password, validate_phone)
from .store import is_valid_key

logger = logging.getLogger(__name__)

ROLE_PLAIN = 'plain'
ROLE_ADMIN = 'admin'


class AccountService:

    def __init__(self, store, identity, notifications, update_fields=()):
        self.store = store
        self.identity = identity
        self.notifications = notifications
        self.update_fields = tuple(update_fields)

    def check_if_user_exists(self, data):
        """True when the email or phone is already known to the identity provider."""
        email = data.get('email')
        if email and self.identity.get_user_by_email(email):
            logger.info('User with email %s already exists', email)
            return True
        phone = data.get('phone')
        if phone and self.identity.get_user_by_phone(phone):
            logger.info('User with phone %s already exists', phone)
            return True
        return False

    def register_user(self, data):
        """Create the identity record, then the profile.

        If the profile write fails the identity record is deleted again so the
        email/phone can be reused.
        """
        if not validate_email(data.get('email')):
            return fail(INVALID_INPUT, 'Invalid email format')
        if not validate_phone(data.get('phone')):
            return fail(INVALID_INPUT, 'Invalid phone number format')
        if not validate_password(data.get('password')):
            return fail(INVALID_INPUT, 'Password does not meet requirements')
        if self.check_if_user_exists(data):
            return fail(CONFLICT, 'User already exists')

        try:
            uid = self.identity.create_user(
                email=data['email'],
                phone=data['phone'],
                password=data['password'],
                display_name=data.get('familyName'),
            )
        except Conflict as e:
            return e.to_result()

        allowed = (set(REGISTRATION_FIELDS) | set(self.update_fields)) - set(SECRET_FIELDS)
        profile = {key: value for key, value in data.items() if key in allowed}
        profile['role'] = ROLE_PLAIN
        profile['createdAt'] = self.store.server_time()
        try:
            self.store.write(f'users/{uid}', profile)
        except ServiceError:
            logger.error('registerUser: profile write failed, rolling back identity %s', uid)
            self.identity.delete_user(uid)
            return fail(UPSTREAM_FAILURE, 'Registration failed')

        token = self.identity.issue_custom_token(uid)
        logger.info('User %s created successfully', uid)
        return ok('User registered successfully', token=token, uid=uid)

    def login(self, identifier, password):
        uid = self.identity.authenticate(identifier, password)
        if uid is None:
            return fail(UNAUTHORIZED, 'Invalid credentials')
        return ok('Logged in', token=self.identity.issue_custom_token(uid), uid=uid)

    def issue_custom_token(self, uid):
        return self.identity.issue_custom_token(uid)

    def user_exists(self, uid):
        if not is_valid_key(uid):
            return False
        return isinstance(self.store.read(f'users/{uid}'), dict)

    def display_name(self, uid):
        name = self.store.read(f'users/{uid}/familyName')
        return name if isinstance(name, str) and name else 'Someone'

    def is_admin(self, uid):
        return self.store.read(f'users/{uid}/role') == ROLE_ADMIN

    def get_user_data(self, uid):
        profile = self.store.read(f'users/{uid}')
        if not isinstance(profile, dict):
            raise NotFound('User does not exist')
        following = self.store.read(f'following/{uid}') or {}
        followers = self.store.read(f'followers/{uid}') or {}
        return {
            **strip_secrets(profile),
            'uid': uid,
            'followingCount': len(following),
            'followersCount': len(followers),
        }

    def get_profile(self, uid, viewer=None):
        """Profile of ``uid`` as seen by ``viewer``, including the follow relationship."""
        user = self.get_user_data(uid)
        if viewer and viewer != uid:
            user['isFollowing'] = self.store.exists(f'following/{viewer}/{uid}')
            user['isFollowedBy'] = self.store.exists(f'following/{uid}/{viewer}')
            user['hasRequestedFollow'] = self.store.exists(f'followRequests/{uid}/{viewer}')
        return ok('User fetched', user=user)

    def update_user(self, uid, update_data):
        if not isinstance(update_data, dict) or not update_data:
            return fail(INVALID_INPUT, 'Invalid update data format')
        disallowed = sorted(key for key in update_data if key not in self.update_fields)
        if disallowed:
            return fail(INVALID_INPUT, f'Only {", ".join(self.update_fields)} are allowed',
                        disallowed=disallowed)
        if not self.user_exists(uid):
            return fail(NOT_FOUND, 'User does not exist')
        self.store.update(f'users/{uid}', update_data)
        return ok('User updated')

    def make_admin(self, requester, uid):
        if not self.is_admin(requester):
            return fail(FORBIDDEN, 'Forbidden: Admins only')
        if not self.user_exists(uid):
            return fail(NOT_FOUND, 'User does not exist')
        self.store.write(f'users/{uid}/role', ROLE_ADMIN)
        logger.info('User %s promoted to admin by %s', uid, requester)
        return ok('User promoted to admin')

    def notify_all(self, admin_id, title, message):
        if not self.is_admin(admin_id):
            return fail(FORBIDDEN, 'Forbidden: Admins only')
        users = self.store.read('users') or {}
        if not users:
            return fail(NOT_FOUND, 'No users found')
        sent = 0
        for uid in users:
            if uid == admin_id:
                continue
            if self.notifications.notify(uid, 'admin-broadcast', admin_id, message, {'title': title}):
                sent += 1
        return ok('Notification sent to all users', sent=sent)
