import threading

import pytest
from flask_jwt_extended import create_access_token

from famileey.app import create_app
from famileey.config import TestingConfig, config


class RecordingPusher:
    """Push client double that keeps every message it was asked to send."""

    def __init__(self):
        self.sent = []
        self.error = None

    def send(self, to, title, body, data=None, rich_content=None):
        self.sent.append({'to': to, 'title': title, 'body': body, 'data': data,
                          'rich_content': rich_content})
        if self.error:
            raise self.error
        return {'success': True, 'tickets': [{'status': 'ok'}]}


@pytest.fixture
def pusher():
    return RecordingPusher()


@pytest.fixture
def app(pusher):
    app = create_app('testing', pusher=pusher)
    with app.app_context():
        yield app


@pytest.fixture
def svc(app):
    return app.extensions['famileey']


@pytest.fixture
def store(svc):
    return svc.store


@pytest.fixture
def make_user(store):
    def _make(uid, family_name=None, **fields):
        store.write(f'users/{uid}', {
            'familyName': family_name or uid.title(),
            'role': 'plain',
            **fields,
        })
        return uid
    return _make


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth(app):
    def _headers(uid):
        return {'Authorization': f'Bearer {create_access_token(identity=uid)}'}
    return _headers


@pytest.fixture
def registration():
    return {
        'familyName': 'Ishimwe',
        'nativeOf': 'Huye',
        'district': 'Huye',
        'province': 'Southern',
        'country': 'Rwanda',
        'residence': 'Kigali',
        'email': 'ishimwe@example.com',
        'phone': '+250788123456',
        'occupation': 'Teacher',
        'worksAt': 'GS Kigali',
        'password': 'secret123',
        'confirmPassword': 'secret123',
    }


@pytest.fixture
def threaded_app(tmp_path, monkeypatch, pusher):
    """App on a file-backed SQLite database, safe to use from several threads."""
    threaded = type('ThreadedConfig', (TestingConfig,), {
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'store.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30, 'check_same_thread': False}},
        'TRANSACTION_MAX_RETRIES': 500,
    })
    monkeypatch.setitem(config, 'threaded', threaded)
    return create_app('threaded', pusher=pusher)


@pytest.fixture
def run_in_threads():
    return _run_in_threads


def _run_in_threads(app, target, workers):
    """Run ``target(index)`` in ``workers`` threads, each in its own app context."""
    errors = []

    def run(index):
        try:
            with app.app_context():
                target(index)
        except Exception as e:  # reported by the caller's assertion
            errors.append(e)

    threads = [threading.Thread(target=run, args=(i,)) for i in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return errors
