# Social graph and family feed
# Follow edges are mirrored: following/<follower>/<followee> and followers/<followee>/<follower>
import logging

from .errors import CONFLICT, INVALID_INPUT, NOT_FOUND, fail, ok
from .forms import strip_secrets

logger = logging.getLogger(__name__)

DEFAULT_SCORE_WEIGHTS = {'likes': 2.0, 'comments': 1.5, 'views': 1.0}


def relevance_score(likes, comments, views, weights=None):
    weights = weights or DEFAULT_SCORE_WEIGHTS
    return weights['likes'] * likes + weights['comments'] * comments + weights['views'] * views


def edge_updates(follower, followee, present):
    value = True if present else None
    return {
        f'following/{follower}/{followee}': value,
        f'followers/{followee}/{follower}': value,
    }


class FamilyService:

    def __init__(self, store, accounts, posts, notifications, score_weights=None):
        self.store = store
        self.accounts = accounts
        self.posts = posts
        self.notifications = notifications
        self.score_weights = dict(score_weights or DEFAULT_SCORE_WEIGHTS)

    # Feeds

    def get_families(self, user_id):
        """Every other user with engagement totals, most engaged first."""
        users = self.store.read('users') or {}
        if not users:
            return ok('No families found', families=[])
        posts = self.store.read('posts') or {}
        likes = self.store.read('likes') or {}
        comments = self.store.read('comments') or {}
        following = self.store.read(f'following/{user_id}') or {}

        totals = {uid: {'totalPosts': 0, 'totalLikes': 0, 'totalComments': 0} for uid in users}
        for post_id, post in posts.items():
            owner = post.get('uid') if isinstance(post, dict) else None
            if owner not in totals:
                continue
            entry = totals[owner]
            entry['totalPosts'] += 1
            entry['totalLikes'] += len(likes.get(post_id) or {})
            entry['totalComments'] += len(comments.get(post_id) or {})

        families = []
        for uid, profile in users.items():
            if uid == user_id or not isinstance(profile, dict):
                continue
            entry = totals[uid]
            families.append({
                'id': uid,
                **strip_secrets(profile),
                **entry,
                'totalEngagement': entry['totalLikes'] + entry['totalComments'],
                'isFollowing': uid in following,
            })
        families.sort(key=lambda family: (-family['totalEngagement'], family['id']))
        return ok('Families fetched', families=families)

    def get_family_posts(self, uid, caller):
        """Posts by ``uid`` ranked by relevance score."""
        entries = self.store.query('posts', order_by='uid', equal_to=uid)
        if not entries:
            return ok('No posts found', posts=[])
        tables = self.posts.engagement_tables()
        profiles = {}
        posts = []
        for post_id, post in entries:
            annotated = self.posts.annotate(post_id, post, caller, tables, profiles)
            annotated['score'] = relevance_score(
                annotated['likes'], annotated['commentsCount'], annotated['views'], self.score_weights)
            posts.append(annotated)
        posts.sort(key=lambda post: post['score'], reverse=True)
        return ok('Posts fetched', posts=posts)

    def search_families(self, query):
        users = self.store.read('users') or {}
        if not users:
            return ok('No families found', families=[])
        needle = (query or '').lower()
        families = [
            {'id': uid, **strip_secrets(profile)}
            for uid, profile in users.items()
            if isinstance(profile, dict)
            and isinstance(profile.get('familyName'), str)
            and needle in profile['familyName'].lower()
        ]
        return ok('Families fetched', families=families)

    def record_post_view(self, post_id):
        if not self.store.exists(f'posts/{post_id}'):
            return fail(NOT_FOUND, 'Post not found')
        _, count = self.store.transact(f'postViews/{post_id}/count', lambda current: (current or 0) + 1)
        return ok('Post view recorded', views=count)

    # Unconditional follow

    def _check_pair(self, user_id, other_id):
        if user_id == other_id:
            return fail(INVALID_INPUT, 'You cannot follow yourself')
        if not self.accounts.user_exists(other_id):
            return fail(NOT_FOUND, 'Family not found')
        return None

    def follow_family(self, user_id, family_id):
        error = self._check_pair(user_id, family_id)
        if error:
            return error
        updates = edge_updates(user_id, family_id, True)
        updates[f'followRequests/{family_id}/{user_id}'] = None
        self.store.atomic_update(updates)
        return ok('Family followed')

    def unfollow_family(self, user_id, family_id):
        if user_id == family_id:
            return fail(INVALID_INPUT, 'You cannot unfollow yourself')
        self.store.atomic_update(edge_updates(user_id, family_id, False))
        return ok('Family unfollowed')

    # Request workflow

    def request_follow_family(self, requester_id, target_id):
        error = self._check_pair(requester_id, target_id)
        if error:
            return error
        if self.store.exists(f'followers/{target_id}/{requester_id}'):
            return fail(CONFLICT, 'Already following this family')
        if self.store.exists(f'followRequests/{target_id}/{requester_id}'):
            return fail(CONFLICT, 'Follow request already sent')

        self.store.write(f'followRequests/{target_id}/{requester_id}', True)
        self.notifications.notify(
            target_id, 'follow-request', requester_id,
            f'{self.accounts.display_name(requester_id)} wants to follow you',
            {'requesterId': requester_id},
        )
        return ok('Follow request sent')

    def _pending(self, target_id, requester_id):
        return self.store.exists(f'followRequests/{target_id}/{requester_id}')

    def accept_follow_family(self, target_id, requester_id):
        """Turn a pending request into a follow edge.

        The edge, the request removal and the request notification removal
        land in one multi-path update.
        """
        if not self._pending(target_id, requester_id):
            return fail(NOT_FOUND, 'No pending follow request')
        updates = edge_updates(requester_id, target_id, True)
        updates[f'followRequests/{target_id}/{requester_id}'] = None
        updates.update(self.notifications.follow_request_notification_paths(target_id, requester_id))
        self.store.atomic_update(updates)

        self.notifications.notify(
            requester_id, 'follow-accepted', target_id,
            f'{self.accounts.display_name(target_id)} accepted your follow request',
            {'targetId': target_id},
        )
        self.notifications.notify(
            target_id, 'follow-confirmed', requester_id,
            f'{self.accounts.display_name(requester_id)} is now following you',
            {'requesterId': requester_id},
        )
        return ok('Follow request accepted')

    def decline_follow_request(self, target_id, requester_id):
        if not self._pending(target_id, requester_id):
            return fail(NOT_FOUND, 'No pending follow request')
        updates = {f'followRequests/{target_id}/{requester_id}': None}
        updates.update(self.notifications.follow_request_notification_paths(target_id, requester_id))
        self.store.atomic_update(updates)

        self.notifications.notify(
            requester_id, 'follow-declined', target_id,
            f'{self.accounts.display_name(target_id)} declined your follow request',
            {'targetId': target_id},
        )
        return ok('Follow request declined')

    def cancel_follow_request(self, requester_id, target_id):
        if not self._pending(target_id, requester_id):
            return fail(NOT_FOUND, 'No pending follow request')
        updates = {f'followRequests/{target_id}/{requester_id}': None}
        updates.update(self.notifications.follow_request_notification_paths(target_id, requester_id))
        self.store.atomic_update(updates)
        return ok('Follow request cancelled')

    # Listings

    def _profiles(self, uids):
        profiles = []
        for uid in uids:
            profile = self.store.read(f'users/{uid}')
            if isinstance(profile, dict):
                profiles.append({'id': uid, **strip_secrets(profile)})
        return profiles

    def get_followers(self, user_id):
        followers = self.store.read(f'followers/{user_id}') or {}
        return ok('Followers fetched', followers=self._profiles(followers))

    def get_following(self, user_id):
        following = self.store.read(f'following/{user_id}') or {}
        return ok('Following fetched', following=self._profiles(following))

    def get_follow_requests(self, user_id):
        requests = self.store.read(f'followRequests/{user_id}') or {}
        return ok('Follow requests fetched', requests=self._profiles(requests))
