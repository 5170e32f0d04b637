# Expo push delivery
import logging
import re

import requests

logger = logging.getLogger(__name__)

PUSH_TOKEN_RE = re.compile(r'^(ExponentPushToken|ExpoPushToken)\[.+\]$')
CHUNK_SIZE = 100


def is_push_token(token):
    return isinstance(token, str) and PUSH_TOKEN_RE.match(token) is not None


def chunk_messages(messages, size=CHUNK_SIZE):
    return [messages[i:i + size] for i in range(0, len(messages), size)]


class ExpoPushClient:
    """Sends push messages through the Expo push HTTP API."""

    def __init__(self, url, access_token=None, timeout=10, session=None):
        self.url = url
        self.access_token = access_token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self):
        headers = {
            'Accept': 'application/json',
            'Accept-Encoding': 'gzip, deflate',
            'Content-Type': 'application/json',
        }
        if self.access_token:
            headers['Authorization'] = f'Bearer {self.access_token}'
        return headers

    def send(self, to, title, body, data=None, rich_content=None):
        if not is_push_token(to):
            logger.error('Push token %s is not a valid Expo push token', to)
            return {'success': False, 'error': 'Invalid Expo push token'}

        message = {
            'to': to,
            'sound': 'default',
            'title': title,
            'body': body,
            'data': data or {},
        }
        if rich_content:
            message['richContent'] = rich_content

        tickets = []
        for chunk in chunk_messages([message]):
            try:
                response = self.session.post(
                    self.url, json=chunk, headers=self._headers(), timeout=self.timeout)
                response.raise_for_status()
                tickets.extend(response.json().get('data', []))
            except (requests.RequestException, ValueError) as e:
                logger.error('Expo push send error: %s', e)
        if not tickets:
            return {'success': False, 'error': 'Push delivery failed', 'tickets': tickets}
        return {'success': True, 'tickets': tickets}
