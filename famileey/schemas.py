# Notification payload schemas, one model per notification type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InvalidInput


class Payload(BaseModel):
    model_config = ConfigDict(extra='forbid', populate_by_name=True, frozen=True)


class LikePayload(Payload):
    post_id: str = Field(..., alias='postId', description="Post that was liked")


class CommentPayload(Payload):
    post_id: str = Field(..., alias='postId', description="Post that was commented on")
    comment_id: str = Field(..., alias='commentId', description="New comment")


class FollowRequestPayload(Payload):
    requester_id: str = Field(..., alias='requesterId', description="User asking to follow")


class FollowAcceptedPayload(Payload):
    target_id: str = Field(..., alias='targetId', description="User who accepted")


class FollowConfirmedPayload(Payload):
    requester_id: str = Field(..., alias='requesterId', description="New follower")


class FollowDeclinedPayload(Payload):
    target_id: str = Field(..., alias='targetId', description="User who declined")


class MessagePayload(Payload):
    chat_id: str = Field(..., alias='chatId')
    message_id: str = Field(..., alias='messageId')


class BroadcastPayload(Payload):
    group_id: str = Field(..., alias='groupId')
    message_id: str = Field(..., alias='messageId')


class NotificationReplyPayload(Payload):
    notification_id: str = Field(..., alias='notificationId')
    reply_id: str = Field(..., alias='replyId')


class AdminBroadcastPayload(Payload):
    title: str


PAYLOADS = {
    'like': LikePayload,
    'comment': CommentPayload,
    'follow-request': FollowRequestPayload,
    'follow-accepted': FollowAcceptedPayload,
    'follow-confirmed': FollowConfirmedPayload,
    'follow-declined': FollowDeclinedPayload,
    'message': MessagePayload,
    'broadcast': BroadcastPayload,
    'notification-reply': NotificationReplyPayload,
    'admin-broadcast': AdminBroadcastPayload,
}

NOTIFICATION_TYPES = tuple(PAYLOADS)

MESSAGE_TYPES = ('text', 'image')


def dump_payload(notification_type, data):
    """Validate ``data`` against the payload model of ``notification_type``."""
    model = PAYLOADS.get(notification_type)
    if model is None:
        raise InvalidInput(f'Unknown notification type: {notification_type}')
    try:
        payload = model.model_validate(data or {})
    except ValidationError as e:
        raise InvalidInput(f'Invalid {notification_type} payload: {e.errors()[0]["msg"]}') from e
    return payload.model_dump(by_alias=True)
