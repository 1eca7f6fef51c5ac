"""Authentication identity and the signed-in user's profile.

SessionStore reacts to auth events pushed by the backend and re-derives the
profile from the identity every time (fetch-or-create), so repeated or
overlapping resolutions are harmless. Each resolution is numbered; one that
finishes after a later-started resolution has already been applied is
dropped, so the most recently started resolution always wins.
"""
import logging
import threading
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .api_interface import APIInterface, Subscription
from .config import AVATARS_BUCKET, IMAGE_CONTENT_TYPE
from .data_models import Identity, Profile, Result, SignUpReceipt
from .errors import NO_ROWS_CODE, AddingCatError, NotAuthenticated, RemoteError

logger = logging.getLogger("addingcat.session")

PROFILES_TABLE = "users"
SIGN_UP_MESSAGE = "Please check your email to confirm your account before signing in."
SIGN_UP_FAILED_MESSAGE = "An unexpected error occurred during sign up."

IdentityListener = Callable[[Optional[Identity]], None]


class SessionStore:
    def __init__(self, api: APIInterface):
        self.api = api
        self._identity: Optional[Identity] = None
        self._profile: Optional[Profile] = None
        self._loading = True
        self._lock = threading.Lock()
        self._next_seq = 0
        self._applied_seq = 0
        self._listeners: List[IdentityListener] = []
        self._subscription: Optional[Subscription] = None

    # --- read-only state ---
    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def profile(self) -> Optional[Profile]:
        return self._profile

    @property
    def loading(self) -> bool:
        return self._loading

    def subscribe(self, listener: IdentityListener) -> None:
        """Call ``listener(identity_or_None)`` whenever the identity changes."""
        self._listeners.append(listener)

    # --- lifecycle ---
    def start(self) -> Result:
        """Resolve the startup session and follow backend auth events."""
        if self._subscription is None:
            self._subscription = self.api.on_auth_state_change(self._on_auth_event)
        return self.establish_session()

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _on_auth_event(self, event: str, identity: Optional[Identity]) -> None:
        logger.debug("auth state changed: %s", event)
        self._resolve(identity)

    def establish_session(self) -> Result:
        """Read the backend's current session and resolve its profile."""
        seq = self._take_seq()
        try:
            identity = self.api.get_current_session()
        except AddingCatError as e:
            logger.error("Error reading current session: %s", e)
            self._apply(seq, None, None)
            return Result(error=e)
        return self._resolve(identity, seq)

    def _take_seq(self) -> int:
        with self._lock:
            self._next_seq += 1
            return self._next_seq

    def _resolve(self, identity: Optional[Identity], seq: Optional[int] = None) -> Result:
        if seq is None:
            seq = self._take_seq()
        if identity is None:
            self._apply(seq, None, None)
            return Result(data=None)
        try:
            profile = self._fetch_or_create_profile(identity.user_id)
        except AddingCatError as e:
            logger.error("Error resolving profile for %s: %s", identity.user_id, e)
            self._apply(seq, identity, None)
            return Result(error=e)
        self._apply(seq, identity, profile)
        return Result(data=profile)

    def _apply(self, seq: int, identity: Optional[Identity], profile: Optional[Profile]) -> bool:
        with self._lock:
            if seq < self._applied_seq:
                logger.debug("discarding stale session resolution #%d (applied #%d)", seq, self._applied_seq)
                return False
            self._applied_seq = seq
            previous = self._identity
            self._identity = identity
            self._profile = profile
            self._loading = False
        if _user_id(previous) != _user_id(identity):
            self._notify(identity)
        return True

    def _notify(self, identity: Optional[Identity]) -> None:
        for listener in list(self._listeners):
            listener(identity)

    def _fetch_or_create_profile(self, user_id: str) -> Profile:
        try:
            row = self.api.select(PROFILES_TABLE, filters={"id": user_id}, single=True)
            return Profile.from_row(row)
        except RemoteError as e:
            if not e.is_no_rows:
                raise

        logger.info("Creating new profile for user: %s", user_id)
        row = self.api.insert(
            PROFILES_TABLE,
            {"id": user_id, "username": Profile.default_username(user_id), "avatar_url": None},
        )
        return Profile.from_row(row)

    # --- operations ---
    def sign_in(self, email: str, password: str) -> Result:
        """Authenticate. The profile arrives through the SIGNED_IN event."""
        try:
            identity = self.api.sign_in_with_password(email, password)
        except AddingCatError as e:
            logger.error("Sign in failed: %s", e)
            return Result(error=e)
        return Result(data=identity)

    def sign_up(self, email: str, password: str, username: str) -> Result:
        """Create the account only; the profile row is made on first login."""
        try:
            outcome = self.api.sign_up(email, password, {"username": username})
        except RemoteError as e:
            logger.error("Auth error: %s", e)
            return Result(error=e)
        except (KeyError, ValueError):
            logger.exception("Sign up error")
            return Result(error=AddingCatError(SIGN_UP_FAILED_MESSAGE))

        user = outcome.get("user") or {}
        return Result(data=SignUpReceipt(user_id=user.get("id"), email=email, message=SIGN_UP_MESSAGE))

    def update_profile(self, **fields) -> Result:
        identity = self._identity
        if identity is None:
            return Result(error=NotAuthenticated("No user logged in"))
        try:
            rows = self.api.update(PROFILES_TABLE, fields, {"id": identity.user_id})
        except AddingCatError as e:
            logger.error("Error updating profile: %s", e)
            return Result(error=e)
        if not rows:
            return Result(error=RemoteError("Profile row is missing", code=NO_ROWS_CODE))

        profile = Profile.from_row(rows[0])
        with self._lock:
            if self._identity is not None and self._identity.user_id == identity.user_id:
                self._profile = profile
        return Result(data=profile)

    def change_avatar(self, image_path) -> Result:
        """Upload a new avatar (overwriting the old file) and point the profile at it."""
        identity = self._identity
        if identity is None:
            return Result(error=NotAuthenticated())
        filename = avatar_key(identity.user_id)
        logger.debug("Uploading avatar: %s", filename)
        try:
            data = Path(image_path).read_bytes()
        except OSError as e:
            return Result(error=AddingCatError(f"Could not read image: {e}"))
        try:
            self.api.upload(AVATARS_BUCKET, filename, data, IMAGE_CONTENT_TYPE, upsert=True)
        except RemoteError as e:
            logger.error("Error uploading avatar: %s", e)
            if "row-level security" in e.message:
                return Result(error=RemoteError(
                    "Upload permission denied. Please check storage policies.", code=e.code, status=e.status
                ))
            return Result(error=RemoteError(f"Upload failed: {e.message}", code=e.code, status=e.status))

        url = self.api.get_public_url(AVATARS_BUCKET, filename)
        return self.update_profile(avatar_url=url)

    def remove_avatar(self) -> Result:
        identity = self._identity
        if identity is None:
            return Result(error=NotAuthenticated())
        try:
            self.api.remove(AVATARS_BUCKET, [avatar_key(identity.user_id)])
        except RemoteError as e:
            # the profile no longer points at it either way
            logger.warning("Could not delete avatar file: %s", e)
        return self.update_profile(avatar_url=None)

    def sign_out(self) -> Result:
        """Sign out remotely; the local session is cleared even if that fails."""
        error = None
        try:
            self.api.sign_out()
        except AddingCatError as e:
            logger.error("Remote sign out failed: %s", e)
            error = e
        finally:
            # supersede any resolution still in flight
            self._apply(self._take_seq(), None, None)
        return Result(error=error)

    def reset_password(self, email: str) -> Result:
        try:
            data = self.api.send_password_reset(email)
        except AddingCatError as e:
            logger.error("Password reset failed: %s", e)
            return Result(error=e)
        return Result(data=data)

    def snapshot(self) -> Tuple[Optional[Identity], Optional[Profile]]:
        with self._lock:
            return self._identity, self._profile


def avatar_key(user_id: str) -> str:
    return f"{user_id}.jpg"


def _user_id(identity: Optional[Identity]) -> Optional[str]:
    return identity.user_id if identity is not None else None
