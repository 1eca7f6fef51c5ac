"""Exception types raised inside the client.

Store operations catch these and hand them back as ``Result.error``; the UI
decides how to present them.
"""
from typing import Optional


class AddingCatError(Exception):
    """Base class for client errors"""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ConfigError(AddingCatError):
    """Missing or invalid configuration"""
    pass


class NotAuthenticated(AddingCatError):
    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class ValidationError(AddingCatError):
    """Input rejected before it reached a store"""
    pass


class RemoteError(AddingCatError):
    """Any failure reported by the backend or the network.

    ``code`` carries the backend's error code when it sent one (for example
    PostgREST's ``PGRST116`` for "no rows"), ``status`` the HTTP status.
    """

    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.status = status

    @property
    def is_no_rows(self) -> bool:
        return self.code == NO_ROWS_CODE

    def __repr__(self) -> str:
        return f"RemoteError({self.message!r}, code={self.code!r}, status={self.status!r})"


class AmbiguousNotFoundOrForbidden(AddingCatError):
    """An ownership-scoped update or delete touched zero rows"""

    def __init__(self, post_id: str, message: str = ""):
        super().__init__(message or f"Post {post_id} was not changed")
        self.post_id = post_id


class NotFound(AmbiguousNotFoundOrForbidden):
    def __init__(self, post_id: str):
        super().__init__(post_id, f"Post {post_id} does not exist")


class Forbidden(AmbiguousNotFoundOrForbidden):
    def __init__(self, post_id: str):
        super().__init__(post_id, f"You can only change your own posts ({post_id})")


class LikeInFlight(AddingCatError):
    def __init__(self, post_id: str):
        super().__init__(f"A like/unlike for post {post_id} is already in progress")
        self.post_id = post_id


# PostgREST: single-object request matched no rows
NO_ROWS_CODE = "PGRST116"
