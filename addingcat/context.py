"""The application context: one backend client and the two stores.

Built once at startup and handed to every screen. Screens read state from
the stores and change it only through their methods.
"""
import logging
from typing import Optional

from .api_interface import APIInterface, RealAPI
from .config import Settings
from .data_models import Result
from .feed_store import FeedStore
from .session_store import SessionStore

logger = logging.getLogger("addingcat.context")


class AppContext:
    def __init__(self, api: APIInterface):
        self.api = api
        self.session = SessionStore(api)
        self.feed = FeedStore(api, self.session)
        self.session.subscribe(self.feed.on_identity_changed)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "AppContext":
        settings = settings or Settings.from_env()
        logger.debug("using backend %s (timeout %.1fs)", settings.supabase_url, settings.timeout)
        return cls(RealAPI(settings.supabase_url, settings.anon_key, timeout=settings.timeout))

    def start(self) -> Result:
        """Resolve the stored session; the feed follows via the identity listener."""
        return self.session.start()

    def close(self) -> None:
        self.session.stop()
