# Hierarchical key-value store persisted as one table row per leaf
import json
import logging
import time
import uuid

from sqlalchemy import delete, insert, or_, select, true, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .errors import InvalidInput, UpstreamFailure
from .models import Node

logger = logging.getLogger(__name__)

_FORBIDDEN_CHARS = frozenset('./#$[]')
_MISSING = object()


class StoreError(UpstreamFailure):
    pass


class InvalidKey(InvalidInput, ValueError):
    pass


def now_ms():
    return int(time.time() * 1000)


def is_valid_key(key):
    """True for a non-empty string usable as a single path segment."""
    return isinstance(key, str) and bool(key.strip()) and not _FORBIDDEN_CHARS.intersection(key)


def normalize_path(path):
    path = str(path or '').strip('/')
    if not path:
        return ''
    parts = path.split('/')
    for part in parts:
        _check_key(part)
    return '/'.join(parts)


def _check_key(key):
    if not is_valid_key(key):
        raise InvalidKey(f'Invalid store key: {key!r}')


def _join(base, key):
    return f'{base}/{key}' if base else key


def _ancestors(path):
    parts = path.split('/')
    return ['/'.join(parts[:i]) for i in range(1, len(parts))]


def _encode(value):
    return json.dumps(value, sort_keys=True, separators=(',', ':'))


def _flatten(path, value):
    if value is None:
        return []
    if isinstance(value, dict):
        leaves = []
        for key, child in value.items():
            key = str(key)
            _check_key(key)
            leaves.extend(_flatten(_join(path, key), child))
        return leaves
    if not path:
        raise ValueError('Cannot store a scalar at the root')
    return [(path, _encode(value))]


def _assemble(base, rows):
    tree = None
    for path, raw in rows:
        value = json.loads(raw)
        if path == base:
            return value
        parts = (path[len(base) + 1:] if base else path).split('/')
        if tree is None:
            tree = {}
        node = tree
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value
    return tree


def _order_key(value):
    # null < false < true < numbers < strings < objects
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, value)
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    return (4, _encode(value))


class TreeStore:
    """Store adapter over the ``Nodes`` table of a Flask-SQLAlchemy database."""

    def __init__(self, db, max_retries=25):
        self.db = db
        self.max_retries = max_retries

    @property
    def session(self):
        return self.db.session

    @staticmethod
    def server_time():
        return now_ms()

    @staticmethod
    def new_key():
        """Child key that sorts in creation order."""
        return f'{now_ms():012x}{uuid.uuid4().hex[:12]}'

    def _subtree(self, path):
        if not path:
            return true()
        return or_(Node.path == path, Node.path.startswith(path + '/', autoescape=True))

    # Reads

    def read(self, path=''):
        path = normalize_path(path)
        session = self.session
        try:
            rows = session.execute(
                select(Node.path, Node.value).where(self._subtree(path)).order_by(Node.path)
            ).all()
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.exception('Store read failed for %r', path)
            raise StoreError('Store read failed') from e
        return _assemble(path, rows)

    def exists(self, path):
        return self.read(path) is not None

    def query(self, path, order_by=None, equal_to=_MISSING, limit_to_last=None):
        """Children of ``path`` as ``(key, value)`` pairs ordered by a child field."""
        data = self.read(path)
        if not isinstance(data, dict):
            return []

        def field(value):
            if order_by is None:
                return value
            return value.get(order_by) if isinstance(value, dict) else None

        items = sorted(data.items(), key=lambda kv: (_order_key(field(kv[1])), kv[0]))
        if equal_to is not _MISSING:
            items = [kv for kv in items if field(kv[1]) == equal_to]
        if limit_to_last:
            items = items[-limit_to_last:]
        return items

    # Writes

    def _set(self, session, path, value):
        session.execute(
            delete(Node).where(self._subtree(path)).execution_options(synchronize_session=False))
        ancestors = _ancestors(path) if path else []
        if ancestors:
            session.execute(
                delete(Node).where(Node.path.in_(ancestors)).execution_options(synchronize_session=False))
        leaves = _flatten(path, value)
        if leaves:
            session.execute(insert(Node), [{'path': p, 'value': v} for p, v in leaves])

    def _commit(self, updates):
        session = self.session
        try:
            for path, value in updates.items():
                self._set(session, path, value)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.exception('Store write failed for %s', sorted(updates))
            raise StoreError('Store write failed') from e
        except ValueError:
            session.rollback()
            raise

    def write(self, path, value):
        self._commit({normalize_path(path): value})

    def delete(self, path):
        self.write(path, None)

    def atomic_update(self, updates):
        """Write every ``path -> value`` pair at once; ``None`` deletes."""
        normalized = {}
        for path, value in updates.items():
            path = normalize_path(path)
            if not path:
                raise ValueError('Multi-path updates cannot target the root')
            normalized[path] = value
        for path in normalized:
            for ancestor in _ancestors(path):
                if ancestor in normalized:
                    raise ValueError(f'Overlapping update paths: {ancestor!r} and {path!r}')
        if normalized:
            self._commit(normalized)

    def update(self, path, mapping):
        path = normalize_path(path)
        self.atomic_update({_join(path, key): value for key, value in mapping.items()})

    def transact(self, path, fn):
        """Optimistic read-modify-write of a leaf.

        ``fn`` receives the current value (``None`` when absent) and returns
        the next one; returning ``None`` aborts. The write only lands if the
        leaf still holds the value that was read, otherwise the whole cycle is
        retried. Returns ``(committed, value)``.
        """
        path = normalize_path(path)
        if not path:
            raise ValueError('Transactions cannot target the root')
        session = self.session
        for attempt in range(self.max_retries):
            session.rollback()
            try:
                raw = session.execute(select(Node.value).where(Node.path == path)).scalar_one_or_none()
                if raw is None and session.execute(
                        select(Node.path).where(Node.path.startswith(path + '/', autoescape=True)).limit(1)
                ).first() is not None:
                    raise ValueError('Transactions are supported on leaf values only')
                current = json.loads(raw) if raw is not None else None
                proposed = fn(current)
                if proposed is None:
                    session.rollback()
                    return False, current
                if isinstance(proposed, dict):
                    raise ValueError('Transactions are supported on leaf values only')
                encoded = _encode(proposed)
                if raw is None:
                    session.execute(insert(Node), [{'path': path, 'value': encoded}])
                else:
                    result = session.execute(
                        update(Node)
                        .where(Node.path == path, Node.value == raw)
                        .values(value=encoded)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        logger.debug('Transaction on %r lost a race (attempt %d)', path, attempt + 1)
                        continue
                session.commit()
                return True, proposed
            except IntegrityError:
                logger.debug('Transaction on %r lost an insert race (attempt %d)', path, attempt + 1)
                continue
            except ValueError:
                session.rollback()
                raise
            except SQLAlchemyError as e:
                session.rollback()
                logger.exception('Store transaction failed for %r', path)
                raise StoreError('Store transaction failed') from e
        session.rollback()
        raise StoreError(f'Transaction on {path} did not commit after {self.max_retries} attempts')
