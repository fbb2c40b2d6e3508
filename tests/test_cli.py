import io
import os
import sqlite3
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest.mock import patch

from gemchat import cli
from gemchat.core.db import INDEXES, TABLES


class InitDbCommandTests(unittest.TestCase):
    """The gemchat-init-db console script."""

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.path = Path(tmp.name) / "chat.db"
        env = patch.dict(os.environ, {}, clear=True)
        env.start()
        self.addCleanup(env.stop)
        dotenv = patch("gemchat.core.config.load_dotenv")
        dotenv.start()
        self.addCleanup(dotenv.stop)

    def test_creates_schema(self):
        out = io.StringIO()
        with redirect_stdout(out):
            code = cli.main(["--database-url", f"sqlite:///{self.path}"])

        self.assertEqual(code, 0)
        self.assertIn("Database initialized successfully!", out.getvalue())
        for name in TABLES + INDEXES:
            self.assertIn(f"  - {name}", out.getvalue())

        with sqlite3.connect(self.path) as conn:
            tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        self.assertTrue(set(TABLES) <= tables)

    def test_uses_database_url_from_environment(self):
        os.environ["DATABASE_URL"] = f"sqlite:///{self.path}"
        with redirect_stdout(io.StringIO()):
            self.assertEqual(cli.main([]), 0)
        self.assertTrue(self.path.exists())

    def test_reports_failure(self):
        err = io.StringIO()
        unreachable = self.path.parent / "missing" / "dir" / "chat.db"
        with redirect_stdout(io.StringIO()), redirect_stderr(err):
            code = cli.main(["--database-url", f"sqlite:///{unreachable}"])
        self.assertEqual(code, 1)
        self.assertIn("Failed to initialize database", err.getvalue())


if __name__ == "__main__":
    unittest.main()
