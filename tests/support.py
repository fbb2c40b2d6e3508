import itertools
import tempfile
from pathlib import Path
from unittest.mock import patch

from gemchat.core.db import Database


def sqlite_url(directory: str) -> str:
    return f"sqlite+aiosqlite:///{Path(directory) / 'chat.db'}"


class TempDatabaseMixin:
    """Gives each test a fresh SQLite file and a monotonic fake ms clock"""

    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.db = Database(sqlite_url(self._tmp.name)).open()
        await self.db.init_schema()
        clock = itertools.count(1_000, 10)
        self._clock_patch = patch("gemchat.core.crud.now_ms", side_effect=lambda: next(clock))
        self._clock_patch.start()

    async def asyncTearDown(self):
        self._clock_patch.stop()
        await self.db.close()
        self._tmp.cleanup()


class FakeGemini:
    """Stands in for GeminiService; records what it was asked"""

    def __init__(self, chunks=("Hello", ", ", "world"), fail_at=None):
        self.chunks = list(chunks)
        self.fail_at = fail_at
        self.calls = []
        self.follow_ups = ["What next?", "Why?"]
        self.suggestions = ["Explain closures", "Write a regex"]
        self.error = None
        self.closed = None

    async def stream_reply(self, prompt, history=()):
        self.calls.append({"prompt": prompt, "history": list(history)})
        self.closed = False
        try:
            for index, chunk in enumerate(self.chunks):
                if self.fail_at is not None and index == self.fail_at:
                    raise RuntimeError("upstream exploded")
                yield chunk
        finally:
            self.closed = True

    async def generate_follow_up_questions(self, user_question, ai_response):
        if self.error:
            raise self.error
        return list(self.follow_ups)

    async def generate_suggestions(self, category):
        if self.error:
            raise self.error
        return list(self.suggestions)

    async def aclose(self):
        pass
