import logging
import os
import unittest
from pathlib import Path
from unittest.mock import patch

from gemchat.core.config import (
    DEFAULT_DATABASE_URL,
    DEFAULT_MODEL,
    LOG_LEVELS,
    Settings,
    normalize_database_url,
)


class NormalizeDatabaseUrlTests(unittest.TestCase):

    def test_plain_sqlite_gets_async_driver(self):
        self.assertEqual(normalize_database_url("sqlite:///chat.db"), "sqlite+aiosqlite:///chat.db")

    def test_postgres_schemes_get_asyncpg(self):
        for url in ("postgres://u:p@host/db", "postgresql://u:p@host/db"):
            self.assertEqual(normalize_database_url(url), "postgresql+asyncpg://u:p@host/db")

    def test_explicit_driver_untouched(self):
        url = "postgresql+asyncpg://u:p@host/db?sslmode=require"
        self.assertEqual(normalize_database_url(url), url)


class SettingsFromEnvTests(unittest.TestCase):
    """Settings come from environment variables with sensible defaults."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env(dotenv=False)
        self.assertEqual(settings.database_url, DEFAULT_DATABASE_URL)
        self.assertEqual(settings.gemini_model, DEFAULT_MODEL)
        self.assertIsNone(settings.gemini_api_key)
        self.assertEqual(settings.environment, "prod")

    def test_reads_environment(self):
        env = {
            "DATABASE_URL": "postgres://u:p@db.example.com/chat",
            "GEMINI_API_KEY": "secret",
            "GEMINI_MODEL": "gemini-test",
            "ENVIRONMENT": "debug",
            "GEMCHAT_API_URL": "http://api.local:9000/",
            "GEMCHAT_STATE_FILE": "/tmp/gemchat-state.json",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env(dotenv=False)
        self.assertEqual(settings.database_url, "postgresql+asyncpg://u:p@db.example.com/chat")
        self.assertEqual(settings.gemini_api_key, "secret")
        self.assertEqual(settings.gemini_model, "gemini-test")
        self.assertEqual(settings.environment, "debug")
        self.assertEqual(settings.api_url, "http://api.local:9000")
        self.assertEqual(settings.state_file, Path("/tmp/gemchat-state.json"))

    def test_empty_api_key_means_unconfigured(self):
        with patch.dict(os.environ, {"GEMINI_API_KEY": ""}, clear=True):
            self.assertIsNone(Settings.from_env(dotenv=False).gemini_api_key)

    def test_unknown_environment_falls_back_to_prod(self):
        with patch.dict(os.environ, {"ENVIRONMENT": "staging"}, clear=True):
            self.assertEqual(Settings.from_env(dotenv=False).environment, "prod")

    def test_log_levels(self):
        self.assertEqual(LOG_LEVELS["prod"], logging.WARNING)
        self.assertEqual(LOG_LEVELS["release"], logging.INFO)
        self.assertEqual(LOG_LEVELS["debug"], logging.DEBUG)


if __name__ == "__main__":
    unittest.main()
