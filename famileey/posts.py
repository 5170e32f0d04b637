# Post service: uploads, likes, comments
import logging

from .errors import FORBIDDEN, INVALID_INPUT, NOT_FOUND, NotFound, fail, ok

logger = logging.getLogger(__name__)


class PostService:

    def __init__(self, store, accounts, notifications):
        self.store = store
        self.accounts = accounts
        self.notifications = notifications

    def author_profile(self, uid, cache):
        if uid not in cache:
            try:
                cache[uid] = self.accounts.get_user_data(uid)
            except NotFound:
                logger.warning('User not found for uid: %s', uid)
                cache[uid] = None
        return cache[uid]

    def engagement_tables(self):
        """Whole like, comment and view tables, keyed by post id."""
        return (
            self.store.read('likes') or {},
            self.store.read('comments') or {},
            self.store.read('postViews') or {},
        )

    def annotate(self, post_id, post, caller, tables, profiles):
        likes, comments, views = tables
        post_likes = likes.get(post_id) or {}
        post_comments = comments.get(post_id) or {}
        return {
            'postId': post_id,
            **post,
            'user': self.author_profile(post.get('uid'), profiles),
            'likes': len(post_likes),
            'hasUserLiked': caller in post_likes,
            'commentsCount': len(post_comments),
            'views': (views.get(post_id) or {}).get('count') or 0,
        }

    def upload_post(self, uid, story, photo_url=None):
        if not story:
            return fail(INVALID_INPUT, 'Post content is required')
        post_id = self.store.new_key()
        self.store.write(f'posts/{post_id}', {
            'uid': uid,
            'story': story,
            'photoUrl': photo_url,
            'timestamp': self.store.server_time(),
        })
        return ok('Post uploaded', postId=post_id)

    def get_posts(self, caller):
        entries = self.store.query('posts', order_by='timestamp')
        if not entries:
            return ok('No posts found', posts=[])
        tables = self.engagement_tables()
        profiles = {}
        posts = [self.annotate(post_id, post, caller, tables, profiles)
                 for post_id, post in reversed(entries)]
        return ok('Posts fetched', posts=posts)

    def get_post_by_id(self, post_id, caller):
        post = self.store.read(f'posts/{post_id}')
        if not isinstance(post, dict):
            return fail(NOT_FOUND, 'Post not found')
        tables = (
            {post_id: self.store.read(f'likes/{post_id}')},
            {post_id: self.store.read(f'comments/{post_id}')},
            {post_id: self.store.read(f'postViews/{post_id}')},
        )
        return ok('Post fetched', post=self.annotate(post_id, post, caller, tables, {}))

    def like_post(self, post_id, uid):
        post = self.store.read(f'posts/{post_id}')
        if not isinstance(post, dict):
            return fail(NOT_FOUND, 'Post not found')
        already_liked = self.store.exists(f'likes/{post_id}/{uid}')
        self.store.write(f'likes/{post_id}/{uid}', {'timestamp': self.store.server_time()})

        owner = post.get('uid')
        if not already_liked and owner and owner != uid:
            self.notifications.notify(
                owner, 'like', uid,
                f'{self.accounts.display_name(uid)} liked your post',
                {'postId': post_id},
            )
        return ok('Post liked', liked=True)

    def unlike_post(self, post_id, uid):
        if not self.store.exists(f'posts/{post_id}'):
            return fail(NOT_FOUND, 'Post does not exist')
        if not self.store.exists(f'likes/{post_id}/{uid}'):
            return fail(NOT_FOUND, 'User has not liked this post')
        self.store.delete(f'likes/{post_id}/{uid}')
        return ok('Like removed successfully', liked=False)

    def get_likes(self, post_id, caller):
        likes = self.store.read(f'likes/{post_id}') or {}
        return ok('Likes fetched', likes=len(likes), hasUserLiked=caller in likes)

    def add_comment(self, post_id, uid, text):
        if not text:
            return fail(INVALID_INPUT, 'Comment content is required')
        post = self.store.read(f'posts/{post_id}')
        if not isinstance(post, dict):
            return fail(NOT_FOUND, 'Post not found')
        comment_id = self.store.new_key()
        self.store.write(f'comments/{post_id}/{comment_id}', {
            'uid': uid,
            'comment': text,
            'timestamp': self.store.server_time(),
        })

        owner = post.get('uid')
        if owner and owner != uid:
            self.notifications.notify(
                owner, 'comment', uid,
                f'{self.accounts.display_name(uid)} commented on your post: {text}',
                {'postId': post_id, 'commentId': comment_id},
            )
        return ok('Comment posted', commentId=comment_id)

    def delete_comment(self, post_id, comment_id, uid):
        comment = self.store.read(f'comments/{post_id}/{comment_id}')
        if not isinstance(comment, dict):
            return fail(NOT_FOUND, 'Comment not found')
        post_owner = self.store.read(f'posts/{post_id}/uid')
        if uid not in (comment.get('uid'), post_owner):
            return fail(FORBIDDEN, 'You cannot delete this comment')
        self.store.delete(f'comments/{post_id}/{comment_id}')
        return ok('Comment deleted')

    def get_comments(self, post_id):
        """Comments of a post, newest first, each with its author's profile."""
        entries = self.store.query(f'comments/{post_id}', order_by='timestamp')
        if not entries:
            return ok('No comments found', comments=[])
        profiles = {}
        comments = [
            {'commentId': comment_id, **comment,
             'user': self.author_profile(comment.get('uid'), profiles)}
            for comment_id, comment in reversed(entries)
        ]
        return ok('Comments fetched', comments=comments)
