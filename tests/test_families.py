import pytest


@pytest.fixture
def families(svc):
    return svc.families


@pytest.fixture
def alice_and_bob(make_user):
    return make_user('alice', 'Uwase'), make_user('bob', 'Mugisha')


def test_follow_writes_both_sides(families, store, alice_and_bob):
    result = families.follow_family('alice', 'bob')

    assert result['success']
    assert store.read('following/alice/bob') is True
    assert store.read('followers/bob/alice') is True


def test_unfollow_removes_both_sides(families, store, alice_and_bob):
    families.follow_family('alice', 'bob')
    families.unfollow_family('alice', 'bob')

    assert store.read('following/alice') is None
    assert store.read('followers/bob') is None


def test_follow_rejects_self_and_unknown_family(families, alice_and_bob):
    assert families.follow_family('alice', 'alice')['error'] == 'invalid_input'
    assert families.follow_family('alice', 'ghost')['error'] == 'not_found'


def test_request_follow_records_request_and_notifies(families, store, svc, alice_and_bob):
    result = families.request_follow_family('alice', 'bob')

    assert result['success']
    assert store.read('followRequests/bob/alice') is True
    [notification] = svc.notifications.get_notifications('bob')
    assert notification['type'] == 'follow-request'
    assert notification['from'] == {'uid': 'alice', 'familyName': 'Uwase'}
    assert notification['data'] == {'requesterId': 'alice'}


def test_request_follow_when_already_following(families, store, alice_and_bob):
    families.follow_family('alice', 'bob')

    result = families.request_follow_family('alice', 'bob')

    assert result['success'] is False
    assert result['error'] == 'conflict'
    assert store.read('followRequests') is None


def test_duplicate_request_is_a_conflict(families, alice_and_bob):
    families.request_follow_family('alice', 'bob')
    assert families.request_follow_family('alice', 'bob')['error'] == 'conflict'


def test_accept_follow_creates_edge_and_cleans_up(families, store, svc, alice_and_bob):
    families.request_follow_family('alice', 'bob')

    result = families.accept_follow_family('bob', 'alice')

    assert result['success']
    assert store.read('following/alice/bob') is True
    assert store.read('followers/bob/alice') is True
    assert store.read('followRequests') is None

    bob_notifications = svc.notifications.get_notifications('bob')
    assert [n['type'] for n in bob_notifications] == ['follow-confirmed']
    alice_notifications = svc.notifications.get_notifications('alice')
    assert [n['type'] for n in alice_notifications] == ['follow-accepted']


def test_accept_without_request_fails(families, store, alice_and_bob):
    result = families.accept_follow_family('bob', 'alice')

    assert result['error'] == 'not_found'
    assert store.read('following') is None


def test_decline_follow_request(families, store, svc, alice_and_bob):
    families.request_follow_family('alice', 'bob')

    assert families.decline_follow_request('bob', 'alice')['success']
    assert store.read('followRequests') is None
    assert store.read('following') is None
    assert svc.notifications.get_notifications('bob') == []
    [declined] = svc.notifications.get_notifications('alice')
    assert declined['type'] == 'follow-declined'


def test_cancel_follow_request(families, store, svc, alice_and_bob):
    families.request_follow_family('alice', 'bob')

    assert families.cancel_follow_request('alice', 'bob')['success']
    assert store.read('followRequests') is None
    assert svc.notifications.get_notifications('bob') == []
    assert families.cancel_follow_request('alice', 'bob')['error'] == 'not_found'


def test_follow_listings(families, make_user, alice_and_bob):
    make_user('carol', 'Keza')
    families.follow_family('alice', 'bob')
    families.follow_family('carol', 'bob')
    families.request_follow_family('alice', 'carol')

    followers = families.get_followers('bob')['followers']
    assert sorted(f['id'] for f in followers) == ['alice', 'carol']
    assert [f['id'] for f in families.get_following('alice')['following']] == ['bob']
    assert [r['id'] for r in families.get_follow_requests('carol')['requests']] == ['alice']


def test_get_families_ranks_by_engagement(families, store, make_user):
    make_user('me', 'Me')
    make_user('quiet', 'Quiet')
    make_user('busy', 'Busy', password='never-returned')
    store.write('posts', {
        'p1': {'uid': 'busy', 'story': 'a', 'timestamp': 1},
        'p2': {'uid': 'busy', 'story': 'b', 'timestamp': 2},
        'p3': {'uid': 'quiet', 'story': 'c', 'timestamp': 3},
    })
    store.write('likes/p1', {'me': {'timestamp': 1}, 'quiet': {'timestamp': 2}})
    store.write('comments/p2/c1', {'uid': 'me', 'comment': 'nice', 'timestamp': 3})
    families.follow_family('me', 'busy')

    result = families.get_families('me')['families']

    assert [f['id'] for f in result] == ['busy', 'quiet']
    busy = result[0]
    assert busy['totalPosts'] == 2
    assert busy['totalLikes'] == 2
    assert busy['totalComments'] == 1
    assert busy['totalEngagement'] == 3
    assert busy['isFollowing'] is True
    assert 'password' not in busy
    assert result[1]['totalEngagement'] == 0


def test_family_posts_are_scored(families, svc, make_user):
    make_user('owner', 'Owner')
    make_user('fan', 'Fan')
    make_user('viewer', 'Viewer')
    quiet = svc.posts.upload_post('owner', 'quiet day')['postId']
    popular = svc.posts.upload_post('owner', 'wedding')['postId']
    svc.posts.like_post(popular, 'fan')
    svc.posts.add_comment(popular, 'fan', 'congrats')

    posts = families.get_family_posts('owner', 'viewer')['posts']

    assert [p['postId'] for p in posts] == [popular, quiet]
    top = posts[0]
    assert top['likes'] == 1
    assert top['commentsCount'] == 1
    assert top['views'] == 0
    assert top['hasUserLiked'] is False
    assert top['score'] == 3.5
    assert top['user']['familyName'] == 'Owner'


def test_post_views_count_up(families, svc, make_user):
    make_user('owner')
    post_id = svc.posts.upload_post('owner', 'hello')['postId']

    assert families.record_post_view(post_id)['views'] == 1
    assert families.record_post_view(post_id)['views'] == 2
    assert families.record_post_view('missing')['error'] == 'not_found'


def test_search_families(families, make_user):
    make_user('u1', 'Ishimwe')
    make_user('u2', 'Ishema')
    make_user('u3', 'Keza')

    assert sorted(f['id'] for f in families.search_families('ISH')['families']) == ['u1', 'u2']
    assert len(families.search_families('')['families']) == 3
    assert families.search_families('zzz')['families'] == []
