"""Input checks the UI runs before calling a store.

The stores trust their arguments; everything a user can type wrong is
caught here and raised as ValidationError with a message fit for an alert.
"""
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .config import CAPTION_MAX_LENGTH, MIN_PASSWORD_LENGTH
from .errors import ValidationError


def clean_caption(caption: str) -> str:
    """Return the trimmed caption or raise ValidationError."""
    text = (caption or "").strip()
    if not text:
        raise ValidationError("Please write a caption")
    if len(text) > CAPTION_MAX_LENGTH:
        raise ValidationError(f"Caption must be at most {CAPTION_MAX_LENGTH} characters")
    return text


def clean_username(username: str) -> str:
    text = (username or "").strip()
    if not text:
        raise ValidationError("Username cannot be empty")
    return text


def check_credentials(
    email: str,
    password: str,
    confirm_password: Optional[str] = None,
    username: Optional[str] = None,
    signing_up: bool = False,
) -> str:
    """Validate the auth form; returns the trimmed email."""
    email = (email or "").strip()
    if not email or not password:
        raise ValidationError("Please enter email and password")
    if not signing_up:
        return email
    if password != confirm_password:
        raise ValidationError("Passwords do not match")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not (username or "").strip():
        raise ValidationError("Please enter a username")
    return email


def clean_email(email: str) -> str:
    text = (email or "").strip()
    if not text:
        raise ValidationError("Please enter your email address")
    return text


def check_image_file(path) -> Path:
    """Make sure ``path`` names a readable image. The bytes are not modified."""
    if not path or not str(path).strip():
        raise ValidationError("Please select an image")
    image_path = Path(str(path).strip()).expanduser()
    if not image_path.is_file():
        raise ValidationError(f"No such file: {image_path}")
    try:
        with Image.open(image_path) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise ValidationError(f"{image_path.name} is not an image")
    return image_path
