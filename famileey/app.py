# Main Flask app
import logging
import os
from dataclasses import dataclass

from flask import Flask, jsonify, request

from famileey.accounts import AccountService
from famileey.config import config
from famileey.errors import ServiceError
from famileey.extensions import bcrypt, jwt
from famileey.families import FamilyService
from famileey.identity import IdentityProvider
from famileey.messaging import MessagingService
from famileey.models import db
from famileey.notifications import NotificationService
from famileey.posts import PostService
from famileey.push import ExpoPushClient
from famileey.routes import (accounts_bp, admin_bp, families_bp, main_bp, messaging_bp,
                             notifications_bp, posts_bp)
from famileey.store import TreeStore

LOG_FORMAT = '[%(asctime)s] %(levelname)s %(name)s: %(message)s'


@dataclass
class Services:
    store: TreeStore
    identity: IdentityProvider
    notifications: NotificationService
    accounts: AccountService
    posts: PostService
    families: FamilyService
    messaging: MessagingService


def build_services(app, pusher=None):
    store = TreeStore(db, max_retries=app.config['TRANSACTION_MAX_RETRIES'])
    identity = IdentityProvider(db)
    if pusher is None:
        pusher = ExpoPushClient(
            app.config['EXPO_PUSH_URL'],
            access_token=app.config['EXPO_ACCESS_TOKEN'],
            timeout=app.config['PUSH_TIMEOUT'],
        )
    notifications = NotificationService(store, pusher, push_title=app.config['PUSH_TITLE'])
    accounts = AccountService(store, identity, notifications, app.config['PROFILE_UPDATE_FIELDS'])
    posts = PostService(store, accounts, notifications)
    families = FamilyService(store, accounts, posts, notifications, app.config['FEED_SCORE_WEIGHTS'])
    messaging = MessagingService(store, accounts, notifications)
    return Services(store, identity, notifications, accounts, posts, families, messaging)


def configure_logging(app):
    formatter = logging.Formatter(LOG_FORMAT)
    level = app.config['LOG_LEVEL']
    handlers = [logging.StreamHandler()]

    log_dir = app.config.get('LOG_DIR')
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        server_log = logging.FileHandler(os.path.join(log_dir, 'server.log'))
        server_log.setLevel(logging.INFO)
        error_log = logging.FileHandler(os.path.join(log_dir, 'error.log'))
        error_log.setLevel(logging.ERROR)
        handlers.extend([server_log, error_log])

    package_logger = logging.getLogger('famileey')
    package_logger.setLevel(level)
    package_logger.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)
    package_logger.propagate = False
    app.logger.setLevel(level)


def register_error_handlers(app):

    @app.errorhandler(ServiceError)
    def handle_service_error(e):
        app.logger.warning('%s %s failed: %s', request.method, request.path, e.message)
        return jsonify({"success": False, "message": e.message}), e.status_code

    @app.errorhandler(404)
    def handle_not_found(e):
        return jsonify({"success": False, "message": f"Not Found - {request.path}"}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(e):
        return jsonify({"success": False, "message": "Method not allowed"}), 405

    @app.errorhandler(500)
    def handle_internal_error(e):
        app.logger.error('Global error handler: %s', e)
        return jsonify({"success": False, "message": "Internal server error"}), 500

    @jwt.unauthorized_loader
    def missing_token(reason):
        return jsonify({"success": False, "message": "No token provided"}), 401

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return jsonify({"success": False, "message": "Invalid or expired token"}), 401

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return jsonify({"success": False, "message": "Invalid or expired token"}), 401


def create_app(config_name='default', pusher=None):
    app = Flask(__name__)
    app.config.from_object(config[config_name])
    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    bcrypt.init_app(app)
    jwt.init_app(app)

    with app.app_context():
        db.create_all()

    app.extensions['famileey'] = build_services(app, pusher)
    register_error_handlers(app)

    @app.after_request
    def log_request(response):
        app.logger.info('%s %s -> %s', request.method, request.path, response.status_code)
        return response

    # Register blueprints
    app.register_blueprint(main_bp, url_prefix='/api')
    app.register_blueprint(accounts_bp, url_prefix='/api/accounts')
    app.register_blueprint(families_bp, url_prefix='/api/families')
    app.register_blueprint(posts_bp, url_prefix='/api/posts')
    app.register_blueprint(messaging_bp, url_prefix='/api/messaging')
    app.register_blueprint(notifications_bp, url_prefix='/api/notifications')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')

    return app


if __name__ == '__main__':
    create_app(os.getenv('FLASK_CONFIG', 'default')).run(
        host='0.0.0.0', port=int(os.getenv('PORT', 4011)))
