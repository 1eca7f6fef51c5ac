"""Tests for the input checks the UI runs before calling a store."""

import pytest

from addingcat import validation
from addingcat.errors import ValidationError


class TestCaption:
    @pytest.mark.parametrize("caption", ["", "   ", "\n\t"])
    def test_empty_caption_is_rejected(self, caption):
        with pytest.raises(ValidationError, match="caption"):
            validation.clean_caption(caption)

    def test_caption_at_limit_is_accepted(self):
        assert validation.clean_caption("x" * 500) == "x" * 500

    def test_caption_over_limit_is_rejected(self):
        with pytest.raises(ValidationError, match="500"):
            validation.clean_caption("x" * 501)

    def test_caption_is_trimmed_before_measuring(self):
        assert validation.clean_caption("  " + "x" * 500 + "  ") == "x" * 500


class TestCredentials:
    def test_sign_in_needs_email_and_password(self):
        with pytest.raises(ValidationError, match="email and password"):
            validation.check_credentials("alice@x.com", "")

    def test_sign_in_does_not_check_password_policy(self):
        assert validation.check_credentials(" alice@x.com ", "abc") == "alice@x.com"

    def test_sign_up_password_mismatch(self):
        with pytest.raises(ValidationError, match="do not match"):
            validation.check_credentials("a@x.com", "secret1", "secret2", "alice", signing_up=True)

    def test_sign_up_short_password(self):
        with pytest.raises(ValidationError, match="at least 6"):
            validation.check_credentials("a@x.com", "12345", "12345", "alice", signing_up=True)

    def test_sign_up_needs_username(self):
        with pytest.raises(ValidationError, match="username"):
            validation.check_credentials("a@x.com", "secret1", "secret1", "  ", signing_up=True)

    def test_valid_sign_up(self):
        assert validation.check_credentials("a@x.com", "secret1", "secret1", "alice", signing_up=True) == "a@x.com"


class TestOtherFields:
    def test_username_cannot_be_blank(self):
        with pytest.raises(ValidationError, match="Username cannot be empty"):
            validation.clean_username("   ")

    def test_username_is_trimmed(self):
        assert validation.clean_username(" alice ") == "alice"

    def test_reset_needs_email(self):
        with pytest.raises(ValidationError):
            validation.clean_email("")


class TestImageFile:
    def test_real_image_is_accepted(self, image_file):
        assert validation.check_image_file(str(image_file)) == image_file

    def test_no_selection(self):
        with pytest.raises(ValidationError, match="select an image"):
            validation.check_image_file("")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValidationError, match="No such file"):
            validation.check_image_file(tmp_path / "gone.jpg")

    def test_non_image_is_rejected(self, tmp_path):
        notes = tmp_path / "notes.jpg"
        notes.write_text("definitely not a jpeg")

        with pytest.raises(ValidationError, match="not an image"):
            validation.check_image_file(notes)
