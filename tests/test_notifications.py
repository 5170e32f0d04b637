from unittest import mock

import pytest
import requests

from famileey.errors import InvalidInput, NotFound
from famileey.notifications import NotificationService
from famileey.push import ExpoPushClient

TOKEN = 'ExponentPushToken[abc123]'


@pytest.fixture
def notifications(svc):
    return svc.notifications


@pytest.fixture
def users(make_user):
    return make_user('alice', 'Uwase'), make_user('bob', 'Mugisha')


def test_notification_is_recorded_without_push_token(notifications, store, pusher, users):
    result = notifications.add_notification('bob', 'like', 'alice', 'Uwase liked your post',
                                            {'postId': 'p1'})

    assert result['success']
    stored = store.read(f"notifications/bob/{result['notificationId']}")
    assert stored['type'] == 'like'
    assert stored['from'] == {'uid': 'alice', 'familyName': 'Uwase'}
    assert stored['data'] == {'postId': 'p1'}
    assert stored['read'] is False
    assert pusher.sent == []


def test_notification_is_pushed_to_saved_token(notifications, pusher, users):
    notifications.save_expo_token('bob', TOKEN)

    notifications.add_notification('bob', 'comment', 'alice', 'Nice photo',
                                   {'postId': 'p1', 'commentId': 'c1'})

    [push] = pusher.sent
    assert push['to'] == TOKEN
    assert push['title'] == 'Famileey'
    assert push['body'] == 'Nice photo'
    assert push['data'] == {'type': 'comment', 'postId': 'p1', 'commentId': 'c1'}


def test_push_failure_does_not_fail_notification(notifications, pusher, users):
    notifications.save_expo_token('bob', TOKEN)
    pusher.error = RuntimeError('push service down')

    result = notifications.add_notification('bob', 'like', 'alice', 'liked', {'postId': 'p1'})

    assert result['success']
    assert len(notifications.get_notifications('bob')) == 1


def test_unknown_sender_is_rejected(notifications, users):
    with pytest.raises(NotFound):
        notifications.add_notification('bob', 'like', 'ghost', 'liked', {'postId': 'p1'})
    assert notifications.notify('bob', 'like', 'ghost', 'liked', {'postId': 'p1'}) is None


def test_payload_must_match_type(notifications, store, users):
    with pytest.raises(InvalidInput):
        notifications.add_notification('bob', 'like', 'alice', 'liked', {'chatId': 'c1'})
    with pytest.raises(InvalidInput):
        notifications.add_notification('bob', 'unknown-type', 'alice', 'hi', {})
    assert store.read('notifications') is None


def test_notifications_newest_first_and_filtered(notifications, store, users):
    store.write('notifications/bob', {
        'n1': {'type': 'like', 'message': 'first', 'timestamp': 1},
        'n2': {'type': 'like', 'message': 'second', 'timestamp': 2},
        'broken': {'timestamp': 3},
    })

    assert [n['id'] for n in notifications.get_notifications('bob')] == ['n2', 'n1']
    assert notifications.get_notifications('nobody') == []


def test_mark_notification_read(notifications, store, users):
    created = notifications.add_notification('bob', 'like', 'alice', 'liked', {'postId': 'p1'})

    assert notifications.mark_notification_read('bob', created['notificationId'])['success']
    assert store.read(f"notifications/bob/{created['notificationId']}/read") is True
    assert notifications.mark_notification_read('bob', 'missing')['error'] == 'not_found'


def test_remove_follow_request_notification(notifications, store, users):
    notifications.add_notification('bob', 'follow-request', 'alice', 'wants to follow',
                                   {'requesterId': 'alice'})
    kept = notifications.add_notification('bob', 'like', 'alice', 'liked', {'postId': 'p1'})

    result = notifications.remove_follow_request_notification('bob', 'alice')

    assert result['removed'] == 1
    assert [n['id'] for n in notifications.get_notifications('bob')] == [kept['notificationId']]


def test_reply_notifies_the_author(notifications, store, users):
    created = notifications.add_notification('bob', 'like', 'alice', 'liked', {'postId': 'p1'})

    result = notifications.reply_to_notification('bob', created['notificationId'], 'Thanks!')

    assert result['success']
    replies = store.read(f"notifications/bob/{created['notificationId']}/replies")
    assert replies[result['replyId']]['reply'] == 'Thanks!'
    [reply_notice] = notifications.get_notifications('alice')
    assert reply_notice['type'] == 'notification-reply'
    assert reply_notice['data'] == {'notificationId': created['notificationId'],
                                    'replyId': result['replyId']}


def test_reply_to_missing_notification(notifications, users):
    assert notifications.reply_to_notification('bob', 'nope', 'hi')['error'] == 'not_found'
    assert notifications.reply_to_notification('bob', 'nope', '')['error'] == 'invalid_input'


def test_save_expo_token_requires_value(notifications, store):
    assert notifications.save_expo_token('bob', '  ')['error'] == 'invalid_input'
    assert notifications.save_expo_token('bob', TOKEN)['success']
    assert store.read('expo-tokens/bob') == TOKEN


def test_failed_push_delivery_is_logged(store, users):
    failing = ExpoPushClient('https://push.example.test/send', session=mock.Mock())
    failing.session.post.side_effect = requests.Timeout('slow')
    notifications = NotificationService(store, failing)
    notifications.save_expo_token('bob', TOKEN)

    with mock.patch('famileey.notifications.logger') as logger:
        result = notifications.add_notification('bob', 'like', 'alice', 'liked', {'postId': 'p1'})

    assert result['success']
    logger.warning.assert_called_once()
