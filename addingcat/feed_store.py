"""The in-memory feed and the post/like operations behind it.

Every mutation goes to the backend first and is followed by a full reload of
the feed, so the server's timestamps, counters and author embeds are always
what the UI shows. The feed is replaced wholesale, never edited in place.
"""
import logging
import threading
import time
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .api_interface import APIInterface
from .config import IMAGE_CONTENT_TYPE, POSTS_BUCKET
from .data_models import Identity, Post, Result
from .errors import (
    AddingCatError,
    AmbiguousNotFoundOrForbidden,
    Forbidden,
    LikeInFlight,
    NotAuthenticated,
    NotFound,
    RemoteError,
)
from .session_store import SessionStore

logger = logging.getLogger("addingcat.feed")

POSTS_TABLE = "posts"
LIKES_TABLE = "likes"
# Embed the author's public profile through the posts.user_id foreign key
FEED_COLUMNS = "*, users:user_id(username, avatar_url)"

LIKE_PROCEDURE = "like_post"
UNLIKE_PROCEDURE = "unlike_post"


class LikeState(Enum):
    NOT_LIKED = "not-liked"
    LIKED = "liked"
    PENDING = "pending"


class FeedStore:
    def __init__(self, api: APIInterface, session: SessionStore):
        self.api = api
        self.session = session
        self._feed: Tuple[Post, ...] = ()
        self._lock = threading.Lock()
        self._next_seq = 0
        self._applied_seq = 0
        self._in_flight = 0
        self._pending: Dict[str, bool] = {}  # post id -> liked state being requested

    @property
    def feed(self) -> List[Post]:
        return list(self._feed)

    @property
    def loading(self) -> bool:
        return self._in_flight > 0

    def find(self, post_id: str) -> Optional[Post]:
        for post in self._feed:
            if post.id == post_id:
                return post
        return None

    def posts_by(self, user_id: str) -> List[Post]:
        """Posts written by one user, newest first."""
        return [p for p in self._feed if p.user_id == user_id]

    def like_state(self, post_id: str) -> LikeState:
        if post_id in self._pending:
            return LikeState.PENDING
        post = self.find(post_id)
        if post is not None and post.is_liked_by_current_user:
            return LikeState.LIKED
        return LikeState.NOT_LIKED

    # --- feed state ---
    def _take_seq(self) -> int:
        with self._lock:
            self._next_seq += 1
            return self._next_seq

    def _apply(self, seq: int, posts: Tuple[Post, ...]) -> bool:
        with self._lock:
            if seq < self._applied_seq:
                logger.debug("discarding stale feed #%d (applied #%d)", seq, self._applied_seq)
                return False
            self._applied_seq = seq
            self._feed = posts
            return True

    def on_identity_changed(self, identity: Optional[Identity]) -> None:
        if identity is None:
            self.clear()
        else:
            self.refresh_feed()

    def clear(self) -> None:
        self._apply(self._take_seq(), ())

    def refresh_feed(self) -> Result:
        """Reload every post and mark the ones the current user has liked."""
        seq = self._take_seq()
        identity = self.session.identity
        with self._lock:
            self._in_flight += 1
        try:
            rows = self.api.select(POSTS_TABLE, FEED_COLUMNS, order="created_at.desc")
            liked = set()
            if identity is not None:
                like_rows = self.api.select(LIKES_TABLE, "post_id", filters={"user_id": identity.user_id})
                liked = {str(r["post_id"]) for r in like_rows}
        except AddingCatError as e:
            logger.error("Error fetching posts: %s", e)
            return Result(error=e)
        finally:
            with self._lock:
                self._in_flight -= 1

        posts = [Post.from_row(row) for row in rows or []]
        posts.sort(key=lambda p: p.created_at, reverse=True)
        annotated = tuple(replace(p, is_liked_by_current_user=p.id in liked) for p in posts)
        if _user_id(self.session.identity) != _user_id(identity):
            logger.debug("identity changed during feed refresh #%d; dropping it", seq)
        else:
            self._apply(seq, annotated)
        return Result(data=list(annotated))

    def _refresh_for(self, identity: Identity) -> None:
        """Reload after a mutation, unless the user who made it is gone."""
        if _user_id(self.session.identity) != identity.user_id:
            logger.debug("skipping feed reload: %s is no longer signed in", identity.user_id)
            return
        self.refresh_feed()

    # --- posts ---
    def create_post(self, image_url: str, caption: str) -> Result:
        identity = self.session.identity
        if identity is None:
            return Result(error=NotAuthenticated())
        try:
            row = self.api.insert(
                POSTS_TABLE,
                {"user_id": identity.user_id, "image_url": image_url, "caption": caption, "like_count": 0},
            )
        except AddingCatError as e:
            logger.error("Error creating post: %s", e)
            return Result(error=e)

        self._refresh_for(identity)
        return Result(data=Post.from_row(row))

    def update_post(self, post_id: str, caption: str) -> Result:
        """Change the caption of one of the current user's posts."""
        identity = self.session.identity
        if identity is None:
            return Result(error=NotAuthenticated())
        try:
            rows = self.api.update(POSTS_TABLE, {"caption": caption}, {"id": post_id, "user_id": identity.user_id})
            if not rows:
                raise self._unchanged_post_error(post_id, identity)
        except AddingCatError as e:
            logger.error("Error updating post %s: %s", post_id, e)
            return Result(error=e)

        self._refresh_for(identity)
        return Result(data=Post.from_row(rows[0]))

    def delete_post(self, post_id: str) -> Result:
        identity = self.session.identity
        if identity is None:
            return Result(error=NotAuthenticated())
        try:
            rows = self.api.delete(POSTS_TABLE, {"id": post_id, "user_id": identity.user_id})
            if not rows:
                raise self._unchanged_post_error(post_id, identity)
        except AddingCatError as e:
            logger.error("Error deleting post %s: %s", post_id, e)
            return Result(error=e)

        self._refresh_for(identity)
        return Result(data=post_id)

    def _unchanged_post_error(self, post_id: str, identity: Identity) -> AmbiguousNotFoundOrForbidden:
        # The ownership predicate matched nothing: find out which half failed
        try:
            row = self.api.select(POSTS_TABLE, "id, user_id", filters={"id": post_id}, single=True)
        except RemoteError as e:
            if e.is_no_rows:
                return NotFound(post_id)
            raise
        if str(row.get("user_id")) != identity.user_id:
            return Forbidden(post_id)
        return AmbiguousNotFoundOrForbidden(post_id)

    def upload_image(self, image_path) -> Result:
        """Upload a picture to the posts bucket and return its public URL."""
        identity = self.session.identity
        if identity is None:
            return Result(error=NotAuthenticated())

        filename = f"{identity.user_id}/{int(time.time() * 1000)}.jpg"
        try:
            data = Path(image_path).read_bytes()
            self.api.upload(POSTS_BUCKET, filename, data, IMAGE_CONTENT_TYPE)
        except OSError as e:
            logger.error("Error reading image %s: %s", image_path, e)
            return Result(error=AddingCatError(f"Could not read image: {e}"))
        except AddingCatError as e:
            logger.error("Error uploading image: %s", e)
            return Result(error=e)

        return Result(data=self.api.get_public_url(POSTS_BUCKET, filename))

    # --- likes ---
    def like_post(self, post_id: str) -> Result:
        return self._set_liked(post_id, True)

    def unlike_post(self, post_id: str) -> Result:
        return self._set_liked(post_id, False)

    def _set_liked(self, post_id: str, liked: bool) -> Result:
        """Move one post to the liked/not-liked state.

        ``Result.data`` is True when something changed and False when the post
        was already in the requested state.
        """
        identity = self.session.identity
        if identity is None:
            return Result(error=NotAuthenticated())

        with self._lock:
            if post_id in self._pending:
                return Result(error=LikeInFlight(post_id))
            self._pending[post_id] = liked

        try:
            rows = self.api.select(LIKES_TABLE, "post_id", filters={"post_id": post_id, "user_id": identity.user_id})
            if bool(rows) == liked:
                return Result(data=False)
            # The procedure writes the like row and like_count in one transaction
            self.api.rpc(LIKE_PROCEDURE if liked else UNLIKE_PROCEDURE, {"target_post_id": post_id})
        except AddingCatError as e:
            logger.error("Error %s post %s: %s", "liking" if liked else "unliking", post_id, e)
            return Result(error=e)
        finally:
            with self._lock:
                self._pending.pop(post_id, None)

        self._refresh_for(identity)
        return Result(data=True)


def _user_id(identity: Optional[Identity]) -> Optional[str]:
    return identity.user_id if identity is not None else None
