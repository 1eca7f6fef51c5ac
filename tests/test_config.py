"""Tests for settings loading and logging setup."""

import logging

import pytest

from addingcat.config import DEFAULT_TIMEOUT, Settings
from addingcat.errors import ConfigError
from addingcat.log import configure_logging

ENV_KEYS = ("SUPABASE_URL", "SUPABASE_ANON_KEY", "ADDINGCAT_TIMEOUT", "ADDINGCAT_DEBUG")


@pytest.fixture()
def clean_env(monkeypatch):
    # setenv first so monkeypatch restores whatever load_dotenv writes
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    return monkeypatch


def write_env(tmp_path, text):
    path = tmp_path / ".env"
    path.write_text(text)
    return str(path)


class TestSettings:
    def test_reads_env_file(self, clean_env, tmp_path):
        env_file = write_env(
            tmp_path,
            "SUPABASE_URL=https://proj.supabase.co/\nSUPABASE_ANON_KEY=anon\nADDINGCAT_TIMEOUT=2.5\n",
        )

        settings = Settings.from_env(env_file)

        assert settings == Settings("https://proj.supabase.co", "anon", 2.5, False)

    def test_defaults(self, clean_env, tmp_path):
        clean_env.setenv("SUPABASE_URL", "https://proj.supabase.co")
        clean_env.setenv("SUPABASE_ANON_KEY", "anon")

        settings = Settings.from_env(write_env(tmp_path, ""))

        assert settings.timeout == DEFAULT_TIMEOUT
        assert settings.debug is False

    def test_missing_url(self, clean_env, tmp_path):
        with pytest.raises(ConfigError, match="SUPABASE_URL"):
            Settings.from_env(write_env(tmp_path, "SUPABASE_ANON_KEY=anon\n"))

    def test_missing_key(self, clean_env, tmp_path):
        with pytest.raises(ConfigError, match="SUPABASE_ANON_KEY"):
            Settings.from_env(write_env(tmp_path, "SUPABASE_URL=https://proj.supabase.co\n"))

    def test_bad_timeout(self, clean_env, tmp_path):
        env_file = write_env(
            tmp_path, "SUPABASE_URL=https://proj.supabase.co\nSUPABASE_ANON_KEY=anon\nADDINGCAT_TIMEOUT=soon\n"
        )

        with pytest.raises(ConfigError, match="ADDINGCAT_TIMEOUT"):
            Settings.from_env(env_file)


class TestLogging:
    @pytest.fixture()
    def fresh_logger(self):
        logger = logging.getLogger("addingcat")
        saved = (logger.handlers[:], logger.level)
        logger.handlers.clear()
        yield logger
        for handler in logger.handlers:
            handler.close()
        logger.handlers[:] = saved[0]
        logger.setLevel(saved[1])

    def test_quiet_by_default(self, fresh_logger):
        configure_logging(debug=False)

        assert fresh_logger.level == logging.WARNING
        assert len(fresh_logger.handlers) == 1

    def test_debug_writes_to_file(self, fresh_logger, tmp_path, monkeypatch):
        log_file = tmp_path / "debug.log"
        monkeypatch.setattr("addingcat.log.DEBUG_LOG_FILE", log_file)

        configure_logging(debug=True)
        logging.getLogger("addingcat.feed").debug("refresh started")
        for handler in fresh_logger.handlers:
            handler.flush()

        assert fresh_logger.level == logging.DEBUG
        assert "refresh started" in log_file.read_text()

    def test_configuring_twice_keeps_one_set_of_handlers(self, fresh_logger):
        configure_logging(debug=False)
        configure_logging(debug=False)

        assert len(fresh_logger.handlers) == 1
