# Notification engine: per-user notification logs plus best-effort push
import logging
import uuid

from .errors import INVALID_INPUT, NOT_FOUND, NotFound, fail, ok
from .schemas import dump_payload

logger = logging.getLogger(__name__)


class NotificationService:

    def __init__(self, store, pusher=None, push_title='Famileey'):
        self.store = store
        self.pusher = pusher
        self.push_title = push_title

    def add_notification(self, user_id, notification_type, from_uid, message,
                         data=None, rich_content=None):
        """Record a notification for ``user_id`` and push it to their device.

        The sender's family name is cached on the record. Push delivery never
        affects the outcome: the record counts as created either way.
        """
        payload = dump_payload(notification_type, data)
        from_user = self.store.read(f'users/{from_uid}')
        if not isinstance(from_user, dict):
            raise NotFound('User does not exist')

        notification_id = uuid.uuid4().hex
        notification = {
            'type': notification_type,
            'from': {
                'uid': from_uid,
                'familyName': from_user.get('familyName'),
            },
            'data': payload,
            'message': message,
            'timestamp': self.store.server_time(),
            'read': False,
            'richContent': rich_content,
        }
        self.store.write(f'notifications/{user_id}/{notification_id}', notification)

        self._deliver(user_id, notification_type, message, payload, rich_content)
        return ok('Notification created', notificationId=notification_id)

    def _deliver(self, user_id, notification_type, message, payload, rich_content):
        try:
            token = self.store.read(f'expo-tokens/{user_id}')
            if not token or self.pusher is None:
                return None
            result = self.pusher.send(
                token, self.push_title, message, {'type': notification_type, **payload}, rich_content)
            if not result.get('success'):
                logger.warning('Push to %s failed: %s', user_id, result.get('error'))
            return result
        except Exception:
            logger.exception('Push delivery to %s failed', user_id)
            return None

    def notify(self, user_id, notification_type, from_uid, message, data=None, rich_content=None):
        """Fire-and-forget ``add_notification``; failures are logged only."""
        try:
            return self.add_notification(
                user_id, notification_type, from_uid, message, data, rich_content)
        except Exception:
            logger.exception('Failed to notify %s (%s)', user_id, notification_type)
            return None

    def get_notifications(self, user_id):
        entries = self.store.read(f'notifications/{user_id}')
        if not isinstance(entries, dict):
            return []
        notifications = [
            {'id': notification_id, **value}
            for notification_id, value in entries.items()
            if isinstance(value, dict) and value.get('type') and value.get('message')
        ]
        notifications.sort(key=lambda n: n.get('timestamp') or 0, reverse=True)
        return notifications

    def mark_notification_read(self, user_id, notification_id):
        if not self.store.exists(f'notifications/{user_id}/{notification_id}'):
            return fail(NOT_FOUND, 'Notification not found')
        self.store.write(f'notifications/{user_id}/{notification_id}/read', True)
        return ok('Notification marked as read')

    def follow_request_notification_paths(self, user_id, from_uid):
        """Deletion map for every follow-request notification ``from_uid`` left ``user_id``."""
        entries = self.store.read(f'notifications/{user_id}')
        if not isinstance(entries, dict):
            return {}
        return {
            f'notifications/{user_id}/{notification_id}': None
            for notification_id, value in entries.items()
            if isinstance(value, dict)
            and value.get('type') == 'follow-request'
            and (value.get('from') or {}).get('uid') == from_uid
        }

    def remove_follow_request_notification(self, user_id, from_uid):
        removals = self.follow_request_notification_paths(user_id, from_uid)
        self.store.atomic_update(removals)
        return ok('Follow request notification removed', removed=len(removals))

    def reply_to_notification(self, user_id, notification_id, reply):
        if not reply:
            return fail(INVALID_INPUT, 'Reply text is required')
        notification = self.store.read(f'notifications/{user_id}/{notification_id}')
        if not isinstance(notification, dict):
            return fail(NOT_FOUND, 'Notification not found')

        reply_id = uuid.uuid4().hex
        self.store.write(f'notifications/{user_id}/{notification_id}/replies/{reply_id}', {
            'replyId': reply_id,
            'userId': user_id,
            'reply': reply,
            'timestamp': self.store.server_time(),
        })

        author_uid = (notification.get('from') or {}).get('uid')
        if author_uid and author_uid != user_id:
            self.notify(
                author_uid,
                'notification-reply',
                user_id,
                f'Your notification received a reply: {reply}',
                {'notificationId': notification_id, 'replyId': reply_id},
            )
        return ok('Reply sent', replyId=reply_id)

    def save_expo_token(self, user_id, token):
        if not isinstance(token, str) or not token.strip():
            return fail(INVALID_INPUT, 'Expo token is required')
        self.store.write(f'expo-tokens/{user_id}', token.strip())
        return ok('Expo token saved')
