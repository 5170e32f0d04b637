# Routes for handling requests
import logging

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required

from famileey.errors import FORBIDDEN, NOT_FOUND, fail, status_for
from famileey.forms import REGISTRATION_FIELDS, missing_fields
from famileey.store import is_valid_key

logger = logging.getLogger(__name__)

# Create blueprints for different route categories
main_bp = Blueprint('main', __name__)
accounts_bp = Blueprint('accounts', __name__)
families_bp = Blueprint('families', __name__)
posts_bp = Blueprint('posts', __name__)
messaging_bp = Blueprint('messaging', __name__)
notifications_bp = Blueprint('notifications', __name__)
admin_bp = Blueprint('admin', __name__)


def services():
    return current_app.extensions['famileey']


def respond(result, success_status=200):
    return jsonify(result), status_for(result, success_status)


def body():
    return request.get_json(silent=True) or {}


def missing(data, required):
    """400 response listing absent fields, or None when all are present."""
    absent = missing_fields(data, required)
    if not absent:
        return None
    message = f"Missing required fields: {', '.join(absent)}"
    logger.error(message)
    return jsonify({"success": False, "message": message}), 400


def invalid_ids(data, fields):
    """400 response when a body id is empty or not a single store key."""
    bad = [field for field in fields if field in data and not is_valid_key(data[field])]
    if not bad:
        return None
    message = f"Invalid ids: {', '.join(bad)}"
    logger.error(message)
    return jsonify({"success": False, "message": message}), 400


@main_bp.route('', methods=['GET'])
def welcome():
    """Health check for the API"""
    return jsonify({"message": "API is running securely!"}), 200


# Account Endpoints
@accounts_bp.route('/register', methods=['POST'])
def register():
    """User Registration Endpoint"""
    data = body()
    error = missing(data, REGISTRATION_FIELDS)
    if error:
        return error
    return respond(services().accounts.register_user(data), 201)


@accounts_bp.route('/login', methods=['POST'])
def login():
    """User Login Endpoint (email or phone + password)"""
    data = body()
    error = missing(data, ['identifier', 'password'])
    if error:
        return error
    return respond(services().accounts.login(data['identifier'], data['password']))


@accounts_bp.route('/custom-token', methods=['POST'])
@jwt_required()
def custom_token():
    current_user_id = get_jwt_identity()
    uid = body().get('uid') or current_user_id
    error = invalid_ids({"uid": uid}, ["uid"])
    if error:
        return error
    accounts = services().accounts
    if uid != current_user_id and not accounts.is_admin(current_user_id):
        return respond(fail(FORBIDDEN, 'Forbidden: Admins only'))
    return jsonify({"success": True, "token": accounts.issue_custom_token(uid)}), 200


@accounts_bp.route('/user', methods=['GET'])
@jwt_required()
def current_user():
    """Get current user's profile"""
    return respond(services().accounts.get_profile(get_jwt_identity()))


@accounts_bp.route('/user/<uid>', methods=['GET'])
@jwt_required()
def user_profile(uid):
    return respond(services().accounts.get_profile(uid, viewer=get_jwt_identity()))


@accounts_bp.route('/updateaccount', methods=['PUT'])
@jwt_required()
def update_account():
    """Update current user's profile"""
    data = body()
    error = missing(data, ['updateData'])
    if error:
        return error
    return respond(services().accounts.update_user(get_jwt_identity(), data['updateData']))


# Family Endpoints
@families_bp.route('/', methods=['GET'])
@jwt_required()
def families():
    return respond(services().families.get_families(get_jwt_identity()))


@families_bp.route('/search', methods=['GET'])
@jwt_required()
def search_families():
    return respond(services().families.search_families(request.args.get('search', '')))


@families_bp.route('/posts/<uid>', methods=['GET'])
@jwt_required()
def family_posts(uid):
    return respond(services().families.get_family_posts(uid, get_jwt_identity()))


@families_bp.route('/follow/<family_id>', methods=['POST'])
@jwt_required()
def follow(family_id):
    return respond(services().families.follow_family(get_jwt_identity(), family_id))


@families_bp.route('/unfollow/<family_id>', methods=['POST'])
@jwt_required()
def unfollow(family_id):
    return respond(services().families.unfollow_family(get_jwt_identity(), family_id))


@families_bp.route('/postviewed/<post_id>', methods=['POST'])
@jwt_required()
def post_viewed(post_id):
    return respond(services().families.record_post_view(post_id))


@families_bp.route('/request-follow/<family_id>', methods=['POST'])
@jwt_required()
def request_follow(family_id):
    return respond(services().families.request_follow_family(get_jwt_identity(), family_id))


@families_bp.route('/accept-follow/<requester_id>', methods=['POST'])
@jwt_required()
def accept_follow(requester_id):
    return respond(services().families.accept_follow_family(get_jwt_identity(), requester_id))


@families_bp.route('/decline-follow/<requester_id>', methods=['POST'])
@jwt_required()
def decline_follow(requester_id):
    return respond(services().families.decline_follow_request(get_jwt_identity(), requester_id))


@families_bp.route('/cancel-follow/<family_id>', methods=['POST'])
@jwt_required()
def cancel_follow(family_id):
    return respond(services().families.cancel_follow_request(get_jwt_identity(), family_id))


@families_bp.route('/followers', methods=['GET'])
@jwt_required()
def followers():
    """Get current user's followers"""
    return respond(services().families.get_followers(get_jwt_identity()))


@families_bp.route('/following', methods=['GET'])
@jwt_required()
def following():
    """Get users that the current user is following"""
    return respond(services().families.get_following(get_jwt_identity()))


@families_bp.route('/requests', methods=['GET'])
@jwt_required()
def follow_requests():
    """Pending follow requests addressed to the current user"""
    return respond(services().families.get_follow_requests(get_jwt_identity()))


# Post Endpoints
@posts_bp.route('/', methods=['GET'])
@jwt_required()
def posts():
    return respond(services().posts.get_posts(get_jwt_identity()))


@posts_bp.route('/<post_id>', methods=['GET'])
@jwt_required()
def post_detail(post_id):
    return respond(services().posts.get_post_by_id(post_id, get_jwt_identity()))


@posts_bp.route('/upload', methods=['POST'])
@jwt_required()
def upload_post():
    data = body()
    error = missing(data, ['story'])
    if error:
        return error
    result = services().posts.upload_post(get_jwt_identity(), data['story'], data.get('photoUrl'))
    return respond(result, 201)


@posts_bp.route('/like/<post_id>', methods=['POST'])
@jwt_required()
def like_post(post_id):
    return respond(services().posts.like_post(post_id, get_jwt_identity()))


@posts_bp.route('/unlike/<post_id>', methods=['POST'])
@jwt_required()
def unlike_post(post_id):
    return respond(services().posts.unlike_post(post_id, get_jwt_identity()))


@posts_bp.route('/likes/<post_id>', methods=['GET'])
@jwt_required()
def post_likes(post_id):
    return respond(services().posts.get_likes(post_id, get_jwt_identity()))


@posts_bp.route('/comments/<post_id>', methods=['GET'])
@jwt_required()
def post_comments(post_id):
    return respond(services().posts.get_comments(post_id))


@posts_bp.route('/comments/<post_id>', methods=['POST'])
@jwt_required()
def add_comment(post_id):
    data = body()
    error = missing(data, ['comment'])
    if error:
        return error
    return respond(services().posts.add_comment(post_id, get_jwt_identity(), data['comment']))


@posts_bp.route('/comments/<post_id>/<comment_id>', methods=['DELETE'])
@jwt_required()
def delete_comment(post_id, comment_id):
    return respond(services().posts.delete_comment(post_id, comment_id, get_jwt_identity()))


# Messaging Endpoints
@messaging_bp.route('/send', methods=['POST'])
@jwt_required()
def send_message():
    data = body()
    error = missing(data, ['recipientId', 'text']) or invalid_ids(data, ['recipientId'])
    if error:
        return error
    user_id = get_jwt_identity()
    logger.info('Send message from %s to %s', user_id, data['recipientId'])
    result = services().messaging.send_message(
        user_id, data['recipientId'], data['text'], data.get('type') or 'text')
    return respond(result)


@messaging_bp.route('/messages/<chat_id>', methods=['GET'])
@jwt_required()
def chat_messages(chat_id):
    messages = services().messaging.get_chat_messages(chat_id, get_jwt_identity())
    return jsonify({"success": True, "messages": messages}), 200


@messaging_bp.route('/chats', methods=['GET'])
@jwt_required()
def user_chats():
    chats = services().messaging.get_user_chats(get_jwt_identity())
    return jsonify({"success": True, "chats": chats}), 200


@messaging_bp.route('/read/<chat_id>/<message_id>', methods=['PATCH'])
@jwt_required()
def mark_chat_read(chat_id, message_id):
    return respond(services().messaging.mark_chat_as_read(chat_id, message_id, get_jwt_identity()))


@messaging_bp.route('/getOrCreateChatId', methods=['POST'])
@jwt_required()
def get_or_create_chat_id():
    data = body()
    error = missing(data, ['userId']) or invalid_ids(data, ['userId'])
    if error:
        return error
    if not services().accounts.user_exists(data['userId']):
        return respond(fail(NOT_FOUND, 'User does not exist'))
    chat_id = services().messaging.get_or_create_chat_id(get_jwt_identity(), data['userId'])
    return jsonify({"success": True, "chatId": chat_id}), 200


@messaging_bp.route('/inchat/<chat_id>/<status>', methods=['POST'])
@jwt_required()
def in_chat(chat_id, status):
    return respond(services().messaging.set_in_chat_status(get_jwt_identity(), chat_id, status == 'true'))


@messaging_bp.route('/broadcast', methods=['POST'])
@jwt_required()
def broadcast():
    data = body()
    error = missing(data, ['text'])
    if error:
        return error
    result = services().messaging.broadcast_group_message(
        get_jwt_identity(), data['text'], data.get('type') or 'text')
    return respond(result)


@messaging_bp.route('/broadcast/group', methods=['GET'])
@jwt_required()
def broadcast_group():
    group = services().messaging.get_or_create_broadcast_group(get_jwt_identity())
    return jsonify({"success": True, "group": group}), 200


@messaging_bp.route('/group/send', methods=['POST'])
@jwt_required()
def send_group_message():
    data = body()
    error = missing(data, ['groupId', 'text']) or invalid_ids(data, ['groupId'])
    if error:
        return error
    result = services().messaging.send_group_message(
        get_jwt_identity(), data['groupId'], data['text'], data.get('type') or 'text')
    return respond(result)


@messaging_bp.route('/group/messages/<group_id>', methods=['GET'])
@jwt_required()
def group_messages(group_id):
    messages = services().messaging.get_group_messages(group_id, get_jwt_identity())
    return jsonify({"success": True, "messages": messages}), 200


@messaging_bp.route('/group/read/<group_id>/<message_id>', methods=['PATCH'])
@jwt_required()
def read_group_message(group_id, message_id):
    return respond(services().messaging.read_group_message(group_id, message_id, get_jwt_identity()))


# Notification Endpoints
@notifications_bp.route('/', methods=['GET'])
@jwt_required()
def notifications():
    items = services().notifications.get_notifications(get_jwt_identity())
    return jsonify({"success": True, "notifications": items}), 200


@notifications_bp.route('/read/<notification_id>', methods=['POST'])
@jwt_required()
def read_notification(notification_id):
    return respond(services().notifications.mark_notification_read(get_jwt_identity(), notification_id))


@notifications_bp.route('/reply/<notification_id>', methods=['POST'])
@jwt_required()
def reply_notification(notification_id):
    data = body()
    error = missing(data, ['reply'])
    if error:
        return error
    result = services().notifications.reply_to_notification(
        get_jwt_identity(), notification_id, data['reply'])
    return respond(result, 201)


@notifications_bp.route('/expo-token', methods=['POST'])
@jwt_required()
def save_expo_token():
    data = body()
    error = missing(data, ['token'])
    if error:
        return error
    return respond(services().notifications.save_expo_token(get_jwt_identity(), data['token']))


# Admin Endpoints
@admin_bp.route('/notify-all', methods=['POST'])
@jwt_required()
def notify_all():
    """Send a notification to every user except the calling admin"""
    data = body()
    error = missing(data, ['title', 'message'])
    if error:
        return error
    return respond(services().accounts.notify_all(get_jwt_identity(), data['title'], data['message']))


@admin_bp.route('/make-admin', methods=['POST'])
@jwt_required()
def make_admin():
    data = body()
    error = missing(data, ['userId']) or invalid_ids(data, ['userId'])
    if error:
        return error
    return respond(services().accounts.make_admin(get_jwt_identity(), data['userId']))
