"""Configuration and constants"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigError

# Storage buckets
POSTS_BUCKET = "posts"
AVATARS_BUCKET = "avatars"
IMAGE_CONTENT_TYPE = "image/jpeg"

# Input limits enforced by the UI before any store call
CAPTION_MAX_LENGTH = 500
MIN_PASSWORD_LENGTH = 6

# Storage settings
KEYRING_SERVICE = "addingcat"

DEFAULT_TIMEOUT = 10.0


@dataclass
class Settings:
    supabase_url: str
    anon_key: str
    timeout: float = DEFAULT_TIMEOUT
    debug: bool = False

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """Build settings from the environment (and a .env file if present).

        Raises ConfigError when the backend URL or anon key is missing.
        """
        load_dotenv(env_file, override=True)

        url = os.environ.get("SUPABASE_URL", "").strip()
        key = os.environ.get("SUPABASE_ANON_KEY", "").strip()
        if not url:
            raise ConfigError(
                "SUPABASE_URL is not set. Point it at your project, "
                "e.g. 'https://xyzcompany.supabase.co'."
            )
        if not key:
            raise ConfigError("SUPABASE_ANON_KEY is not set.")

        raw_timeout = os.environ.get("ADDINGCAT_TIMEOUT")
        try:
            timeout = float(raw_timeout) if raw_timeout else DEFAULT_TIMEOUT
        except ValueError:
            raise ConfigError(f"ADDINGCAT_TIMEOUT must be a number, got {raw_timeout!r}")

        return cls(
            supabase_url=url.rstrip("/"),
            anon_key=key,
            timeout=timeout,
            debug=bool(os.environ.get("ADDINGCAT_DEBUG")),
        )
