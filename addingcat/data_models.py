"""
Data models for the addingcat client.
These models define the structure of data passed between the backend
client, the stores and the UI.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def parse_timestamp(value: Any) -> datetime:
    """Parse a timestamp as returned by PostgREST (ISO 8601, maybe with Z)."""
    if isinstance(value, datetime):
        return value
    if not value:
        return datetime.now(timezone.utc)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


@dataclass
class Identity:
    """The authenticated session principal."""
    user_id: str
    access_token: str
    refresh_token: str = ""
    expires_at: Optional[int] = None  # epoch seconds
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: Optional[float] = None, leeway: int = 30) -> bool:
        if self.expires_at is None:
            return False
        if now is None:
            now = datetime.now(timezone.utc).timestamp()
        return now >= self.expires_at - leeway

    @classmethod
    def from_token_response(cls, data: Dict[str, Any]) -> "Identity":
        user = data.get("user") or {}
        expires_at = data.get("expires_at")
        if expires_at is None and data.get("expires_in"):
            expires_at = int(datetime.now(timezone.utc).timestamp()) + int(data["expires_in"])
        return cls(
            user_id=str(user.get("id") or data.get("user_id")),
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or "",
            expires_at=int(expires_at) if expires_at is not None else None,
            email=user.get("email") or data.get("email"),
            user_metadata=dict(user.get("user_metadata") or {}),
        )


@dataclass
class Profile:
    """Public account data, one row per identity."""
    id: str
    username: str
    avatar_url: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Profile":
        return cls(id=str(row["id"]), username=row.get("username") or "", avatar_url=row.get("avatar_url"))

    @staticmethod
    def default_username(user_id: str) -> str:
        return f"user_{user_id[:8]}"


@dataclass
class Author:
    username: str
    avatar_url: Optional[str] = None


@dataclass
class Post:
    """A shared image with a caption."""
    id: str
    user_id: str
    image_url: str
    caption: str
    like_count: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    author: Optional[Author] = None
    is_liked_by_current_user: bool = False  # client-only

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Post":
        # The feed query embeds the author as `users:user_id(username, avatar_url)`
        embedded = row.get("users") or row.get("author")
        author = None
        if embedded:
            author = Author(username=embedded.get("username") or "", avatar_url=embedded.get("avatar_url"))
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            image_url=row.get("image_url") or "",
            caption=row.get("caption") or "",
            like_count=int(row.get("like_count") or 0),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row["updated_at"]) if row.get("updated_at") else None,
            author=author,
        )


@dataclass
class SignUpReceipt:
    """What the caller gets back from a successful sign-up."""
    user_id: Optional[str]
    email: str
    message: str


@dataclass
class Result:
    """Uniform {data, error} value returned by every public store operation."""
    data: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_message(self) -> str:
        if self.error is None:
            return ""
        return getattr(self.error, "message", None) or str(self.error)
