import pytest

from famileey.errors import InvalidInput
from famileey.store import is_valid_key


def test_read_returns_nested_subtree(store):
    store.write('users/u1', {'familyName': 'Ishimwe', 'address': {'country': 'RW'}})

    assert store.read('users/u1') == {'familyName': 'Ishimwe', 'address': {'country': 'RW'}}
    assert store.read('users/u1/address/country') == 'RW'
    assert store.read('users') == {'u1': {'familyName': 'Ishimwe', 'address': {'country': 'RW'}}}
    assert store.read('users/u2') is None


def test_write_replaces_whole_subtree(store):
    store.write('chats/c1', {'participants': {'a': True, 'b': True}, 'createdAt': 1})
    store.write('chats/c1', {'createdAt': 2})

    assert store.read('chats/c1') == {'createdAt': 2}


def test_write_below_a_leaf_replaces_the_leaf(store):
    store.write('inChat/u1', True)
    store.write('inChat/u1/c1', True)

    assert store.read('inChat/u1') == {'c1': True}


def test_none_and_empty_dicts_are_not_stored(store):
    store.write('a/b', 1)
    store.write('a/b', None)
    store.write('x', {'y': {}})

    assert store.read('a') is None
    assert store.read('x') is None
    assert not store.exists('a/b')


def test_update_merges_children(store):
    store.write('users/u1', {'familyName': 'Old', 'bio': 'hello'})
    store.update('users/u1', {'familyName': 'New', 'bio': None})

    assert store.read('users/u1') == {'familyName': 'New'}


def test_atomic_update_writes_and_deletes_together(store):
    store.write('followRequests/b/a', True)
    store.atomic_update({
        'following/a/b': True,
        'followers/b/a': True,
        'followRequests/b/a': None,
    })

    assert store.read('following/a/b') is True
    assert store.read('followers/b/a') is True
    assert store.read('followRequests') is None


def test_atomic_update_rejects_overlapping_paths(store):
    with pytest.raises(ValueError):
        store.atomic_update({'chats/c1': {'x': 1}, 'chats/c1/lastMessage': {'text': 'hi'}})
    assert store.read('chats') is None


def test_atomic_update_is_all_or_nothing(store):
    store.write('a/keep', 1)
    with pytest.raises(ValueError):
        store.atomic_update({'a/keep': None, 'b': {'bad.key': 1}})

    assert store.read('a/keep') == 1
    assert store.read('b') is None


def test_invalid_keys_are_rejected(store):
    with pytest.raises(ValueError):
        store.write('users/bad#key', 1)
    with pytest.raises(ValueError):
        store.read('users//u1')


def test_query_orders_by_child_field(store):
    store.write('posts', {
        'p1': {'uid': 'u1', 'timestamp': 30},
        'p2': {'uid': 'u2', 'timestamp': 10},
        'p3': {'uid': 'u1', 'timestamp': 20},
    })

    assert [key for key, _ in store.query('posts', order_by='timestamp')] == ['p2', 'p3', 'p1']
    assert [key for key, _ in store.query('posts', order_by='uid', equal_to='u1')] == ['p1', 'p3']
    assert [key for key, _ in store.query('posts', order_by='timestamp', limit_to_last=1)] == ['p1']
    assert store.query('missing', order_by='timestamp') == []


def test_new_keys_sort_in_creation_order(store):
    keys = [store.new_key() for _ in range(5)]
    assert len(set(keys)) == 5
    assert keys == sorted(keys)


def test_transact_increments_and_aborts(store):
    assert store.transact('postViews/p1/count', lambda c: (c or 0) + 1) == (True, 1)
    assert store.transact('postViews/p1/count', lambda c: (c or 0) + 1) == (True, 2)
    assert store.transact('postViews/p1/count', lambda c: None) == (False, 2)
    assert store.read('postViews/p1/count') == 2


def test_transact_refuses_interior_nodes(store):
    store.write('users/u1', {'familyName': 'X'})
    with pytest.raises(ValueError):
        store.transact('users/u1', lambda current: 1)


def test_concurrent_transactions_do_not_lose_updates(threaded_app, run_in_threads):
    services = threaded_app.extensions['famileey']
    with threaded_app.app_context():
        services.store.write('posts/p1', {'uid': 'u1', 'story': 'hi', 'timestamp': 1})

    workers, views_each = 4, 5

    def view(index):
        for _ in range(views_each):
            services.families.record_post_view('p1')

    assert run_in_threads(threaded_app, view, workers) == []
    with threaded_app.app_context():
        assert services.store.read('postViews/p1/count') == workers * views_each


def test_keys_cannot_smuggle_path_separators(store):
    store.write('userChats/alice/bob', 'chat-1')

    with pytest.raises(InvalidInput):
        store.write('userChats/mallory', {'alice/bob': 'x'})
    with pytest.raises(InvalidInput):
        store.read('users/ ')

    assert store.read('userChats') == {'alice': {'bob': 'chat-1'}}
    assert is_valid_key('alice')
    assert not is_valid_key('alice/bob')
    assert not is_valid_key('')
    assert not is_valid_key(None)
