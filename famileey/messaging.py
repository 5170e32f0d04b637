# Messaging: one-to-one chats and broadcast groups
# chats/<chatId>, userChats/<a>/<b> -> chatId, groups/<groupId>, userGroups/<uid>/<gid>, inChat/<uid>/<chatId>
import logging
import uuid

from .errors import (FORBIDDEN, INVALID_INPUT, NOT_FOUND, UNAUTHORIZED, UPSTREAM_FAILURE,
                     Forbidden, InvalidInput, NotFound, fail, ok)
from .schemas import MESSAGE_TYPES
from .store import StoreError, is_valid_key

logger = logging.getLogger(__name__)


def has_read(last_message, read_at, user_id):
    """Whether ``user_id`` has seen ``last_message`` given their read timestamp."""
    if not last_message:
        return True
    if last_message.get('senderId') == user_id:
        return True
    return read_at is not None and read_at >= (last_message.get('timestamp') or 0)


def _sorted_messages(messages):
    items = [{'id': message_id, **message}
             for message_id, message in (messages or {}).items() if isinstance(message, dict)]
    items.sort(key=lambda message: message.get('timestamp') or 0)
    return items


class MessagingService:

    def __init__(self, store, accounts, notifications):
        self.store = store
        self.accounts = accounts
        self.notifications = notifications

    def _check_message(self, text, message_type):
        if not text:
            return fail(INVALID_INPUT, 'Message text is required')
        if message_type not in MESSAGE_TYPES:
            return fail(INVALID_INPUT, f'Message type must be one of {", ".join(MESSAGE_TYPES)}')
        return None

    # One-to-one chats

    def find_chat_id(self, user_a, user_b):
        return (self.store.read(f'userChats/{user_a}/{user_b}')
                or self.store.read(f'userChats/{user_b}/{user_a}'))

    def get_or_create_chat_id(self, user_a, user_b):
        """Chat id shared by ``user_a`` and ``user_b``, created on first use.

        Creation first claims ``userChats/<low>/<high>`` (ids in sorted order)
        with a compare-and-set, so two racing first messages agree on one chat.
        """
        if not (is_valid_key(user_a) and is_valid_key(user_b)):
            raise InvalidInput('Chat participants must be valid user ids')
        if user_a == user_b:
            raise InvalidInput('Cannot open a chat with yourself')
        existing = self.find_chat_id(user_a, user_b)
        if existing:
            return existing

        low, high = sorted((user_a, user_b))
        candidate = str(uuid.uuid4())
        committed, chat_id = self.store.transact(
            f'userChats/{low}/{high}', lambda current: None if current else candidate)
        if not committed:
            return chat_id

        now = self.store.server_time()
        self.store.atomic_update({
            f'chats/{chat_id}': {
                'participants': {user_a: True, user_b: True},
                'createdAt': now,
                'readStatus': {user_a: now},
            },
            f'userChats/{low}/{high}': chat_id,
            f'userChats/{high}/{low}': chat_id,
        })
        logger.info('Created chat %s between %s and %s', chat_id, user_a, user_b)
        return chat_id

    def send_message(self, sender_id, recipient_id, text, message_type='text'):
        error = self._check_message(text, message_type)
        if error:
            return error
        if not is_valid_key(recipient_id):
            return fail(INVALID_INPUT, 'Recipient id is required')
        if sender_id == recipient_id:
            return fail(INVALID_INPUT, 'Cannot send a message to yourself')
        if not self.accounts.user_exists(recipient_id):
            return fail(NOT_FOUND, 'Recipient does not exist')

        chat_id = self.get_or_create_chat_id(sender_id, recipient_id)
        message_id = str(uuid.uuid4())
        timestamp = self.store.server_time()
        updates = {
            f'chats/{chat_id}/messages/{message_id}': {
                'senderId': sender_id,
                'text': text,
                'timestamp': timestamp,
                'type': message_type,
                'status': 'sent',
                'readStatus': {sender_id: timestamp},
            },
            f'chats/{chat_id}/lastMessage': {
                'text': text,
                'timestamp': timestamp,
                'senderId': sender_id,
                'messageId': message_id,
                'type': message_type,
            },
            f'chats/{chat_id}/readStatus/{sender_id}': timestamp,
            f'chats/{chat_id}/readStatus/{recipient_id}': None,
        }
        try:
            if not self.store.read(f'chats/{chat_id}/participants'):
                updates[f'chats/{chat_id}/participants'] = {sender_id: True, recipient_id: True}
            self.store.atomic_update(updates)
        except StoreError:
            logger.error('Failed to send message from %s to %s', sender_id, recipient_id)
            return fail(UPSTREAM_FAILURE, 'Failed to send message')

        self._notify_recipient(sender_id, recipient_id, chat_id, message_id, text, message_type)
        return ok('Message sent', messageId=message_id, chatId=chat_id)

    def _notify_recipient(self, sender_id, recipient_id, chat_id, message_id, text, message_type):
        try:
            if self.store.read(f'inChat/{recipient_id}/{chat_id}') is True:
                logger.debug('%s is viewing chat %s, skipping notification', recipient_id, chat_id)
                return
            name = self.accounts.display_name(sender_id)
            body = f'{name}: {text}' if message_type == 'text' else f'{name} sent you a photo'
            self.notifications.notify(
                recipient_id, 'message', sender_id, body,
                {'chatId': chat_id, 'messageId': message_id},
            )
        except Exception:
            logger.exception('Message notification to %s failed', recipient_id)

    def _require_chat_participant(self, chat_id, user_id):
        participants = self.store.read(f'chats/{chat_id}/participants')
        if not isinstance(participants, dict):
            raise NotFound('Chat not found')
        if user_id not in participants:
            raise Forbidden('You are not a participant of this chat')

    def get_chat_messages(self, chat_id, user_id=None):
        """All messages of a chat, oldest first."""
        if user_id is not None:
            self._require_chat_participant(chat_id, user_id)
        return _sorted_messages(self.store.read(f'chats/{chat_id}/messages'))

    def get_user_chats(self, user_id):
        """Direct and group threads of ``user_id``, latest activity first."""
        chats = []
        profiles = {}

        for other_id, chat_id in (self.store.read(f'userChats/{user_id}') or {}).items():
            chat = self.store.read(f'chats/{chat_id}')
            if not isinstance(chat, dict):
                continue
            last_message = chat.get('lastMessage')
            read_at = (chat.get('readStatus') or {}).get(user_id)
            chats.append({
                'chatId': chat_id,
                'isGroup': False,
                'withUser': other_id,
                'participants': [self._participant(uid, profiles)
                                 for uid in (chat.get('participants') or {})],
                'lastMessage': last_message,
                'readStatus': read_at,
                'hasRead': has_read(last_message, read_at, user_id),
            })

        for group_id in (self.store.read(f'userGroups/{user_id}') or {}):
            group = self.store.read(f'groups/{group_id}')
            if not isinstance(group, dict):
                continue
            last_message = group.get('lastMessage')
            read_at = ((last_message or {}).get('readStatus') or {}).get(user_id)
            chats.append({
                'chatId': group_id,
                'groupId': group_id,
                'isGroup': True,
                'isBroadcastGroup': bool(group.get('isBroadcastGroup')),
                'name': group.get('name'),
                'adminId': group.get('adminId'),
                'admin': self._participant(group.get('adminId'), profiles),
                'participantsCount': len(group.get('participants') or {}),
                'lastMessage': last_message,
                'hasRead': has_read(last_message, read_at, user_id),
            })

        chats.sort(key=lambda chat: (chat['lastMessage'] or {}).get('timestamp') or 0, reverse=True)
        return chats

    def _participant(self, uid, cache):
        if uid not in cache:
            try:
                cache[uid] = {'uid': uid, **self.accounts.get_user_data(uid)}
            except NotFound:
                logger.warning('User not found for uid: %s', uid)
                cache[uid] = {'uid': uid, 'error': 'User not found'}
        return cache[uid]

    def mark_chat_as_read(self, chat_id, message_id, user_id):
        message = self.store.read(f'chats/{chat_id}/messages/{message_id}')
        if not isinstance(message, dict):
            return fail(NOT_FOUND, 'Message not found')
        if message.get('senderId') == user_id:
            return fail(UNAUTHORIZED, 'You cannot mark your own message as read')
        participants = self.store.read(f'chats/{chat_id}/participants') or {}
        if user_id not in participants:
            return fail(FORBIDDEN, 'You are not a participant of this chat')

        now = self.store.server_time()
        self.store.atomic_update({
            f'chats/{chat_id}/messages/{message_id}/readStatus/{user_id}': now,
            f'chats/{chat_id}/lastMessage/readStatus/{user_id}': now,
            f'chats/{chat_id}/readStatus/{user_id}': now,
        })
        return ok('Chat marked as read', readAt=now)

    def set_in_chat_status(self, user_id, chat_id, status):
        self.store.write(f'inChat/{user_id}/{chat_id}', bool(status))
        return ok('In-chat status updated', inChat=bool(status))

    # Broadcast groups

    def get_or_create_broadcast_group(self, admin_id):
        """The admin's broadcast group, with membership synced to their followers."""
        admin = self.store.read(f'users/{admin_id}')
        if not isinstance(admin, dict):
            raise NotFound('User does not exist')

        for group_id, entry in self.store.query(
                f'userGroups/{admin_id}', order_by='isBroadcastGroup', equal_to=True):
            if not isinstance(entry, dict) or entry.get('role') != 'admin':
                continue
            group = self.store.read(f'groups/{group_id}')
            if isinstance(group, dict) and group.get('adminId') == admin_id:
                return self._reconcile_members(group_id, group, admin_id)

        followers = list(self.store.read(f'followers/{admin_id}') or {})
        group_id = str(uuid.uuid4())
        group = {
            'name': f'{admin.get("familyName") or "Family"} Broadcast',
            'adminId': admin_id,
            'participants': {uid: True for uid in [admin_id, *followers]},
            'isBroadcastGroup': True,
            'createdAt': self.store.server_time(),
        }
        updates = {
            f'groups/{group_id}': group,
            f'userGroups/{admin_id}/{group_id}': {'isBroadcastGroup': True, 'role': 'admin'},
        }
        for uid in followers:
            updates[f'userGroups/{uid}/{group_id}'] = {'isBroadcastGroup': True, 'role': 'member'}
        self.store.atomic_update(updates)
        logger.info('Created broadcast group %s for %s with %d members', group_id, admin_id, len(followers))
        return {'id': group_id, **group}

    def _reconcile_members(self, group_id, group, admin_id):
        followers = set(self.store.read(f'followers/{admin_id}') or {})
        participants = set(group.get('participants') or {})
        joined = followers - participants
        left = participants - followers - {admin_id}

        if joined or left:
            updates = {}
            for uid in joined:
                updates[f'groups/{group_id}/participants/{uid}'] = True
                updates[f'userGroups/{uid}/{group_id}'] = {'isBroadcastGroup': True, 'role': 'member'}
            for uid in left:
                updates[f'groups/{group_id}/participants/{uid}'] = None
                updates[f'userGroups/{uid}/{group_id}'] = None
            self.store.atomic_update(updates)
            logger.info('Broadcast group %s: %d joined, %d left', group_id, len(joined), len(left))

        summary = {key: value for key, value in group.items() if key != 'messages'}
        summary['participants'] = {uid: True for uid in (participants | joined) - left}
        return {'id': group_id, **summary}

    def send_group_message(self, sender_id, group_id, text, message_type='text'):
        error = self._check_message(text, message_type)
        if error:
            return error
        if not is_valid_key(group_id):
            return fail(INVALID_INPUT, 'Group id is required')
        group = self.store.read(f'groups/{group_id}')
        if not isinstance(group, dict):
            return fail(NOT_FOUND, 'Group not found')
        if sender_id not in (group.get('participants') or {}):
            return fail(FORBIDDEN, 'You are not a participant of this group')
        if group.get('isBroadcastGroup') and sender_id != group.get('adminId'):
            return fail(FORBIDDEN, 'Only the group admin can send messages')

        message_id = str(uuid.uuid4())
        timestamp = self.store.server_time()
        self.store.atomic_update({
            f'groups/{group_id}/messages/{message_id}': {
                'senderId': sender_id,
                'text': text,
                'timestamp': timestamp,
                'type': message_type,
                'status': 'sent',
                'readStatus': {sender_id: timestamp},
            },
            f'groups/{group_id}/lastMessage': {
                'text': text,
                'timestamp': timestamp,
                'senderId': sender_id,
                'messageId': message_id,
                'type': message_type,
                'readStatus': {sender_id: timestamp},
            },
        })
        return ok('Message sent', messageId=message_id, groupId=group_id)

    def broadcast_group_message(self, admin_id, text, message_type='text'):
        group = self.get_or_create_broadcast_group(admin_id)
        if group.get('adminId') != admin_id:
            return fail(FORBIDDEN, 'Only the group admin can broadcast')
        result = self.send_group_message(admin_id, group['id'], text, message_type)
        if not result['success']:
            return result

        name = self.accounts.display_name(admin_id)
        recipients = [uid for uid in group['participants'] if uid != admin_id]
        for uid in recipients:
            self.notifications.notify(
                uid, 'broadcast', admin_id,
                f'{name}: {text}' if message_type == 'text' else f'{name} shared a photo',
                {'groupId': group['id'], 'messageId': result['messageId']},
            )
        return ok('Broadcast sent', groupId=group['id'], messageId=result['messageId'],
                  recipients=len(recipients))

    def read_group_message(self, group_id, message_id, user_id):
        message = self.store.read(f'groups/{group_id}/messages/{message_id}')
        if not isinstance(message, dict):
            return fail(NOT_FOUND, 'Message not found')
        if message.get('senderId') == user_id:
            return fail(UNAUTHORIZED, 'You cannot mark your own message as read')
        if user_id not in (self.store.read(f'groups/{group_id}/participants') or {}):
            return fail(FORBIDDEN, 'You are not a participant of this group')

        now = self.store.server_time()
        self.store.atomic_update({
            f'groups/{group_id}/messages/{message_id}/readStatus/{user_id}': now,
            f'groups/{group_id}/lastMessage/readStatus/{user_id}': now,
        })
        return ok('Message marked as read', readAt=now)

    def get_group_messages(self, group_id, user_id=None):
        participants = self.store.read(f'groups/{group_id}/participants')
        if not isinstance(participants, dict):
            raise NotFound('Group not found')
        if user_id is not None and user_id not in participants:
            raise Forbidden('You are not a participant of this group')
        return _sorted_messages(self.store.read(f'groups/{group_id}/messages'))
