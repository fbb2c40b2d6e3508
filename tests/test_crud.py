import unittest

from sqlalchemy import delete, func
from sqlmodel import select

from gemchat.core import crud
from gemchat.core.models import (
    Artifact,
    ArtifactRead,
    Message,
    MessageCreate,
    MessagePatch,
    User,
)
from support import TempDatabaseMixin


def user_message(content, timestamp, **kwargs):
    return MessageCreate(role="user", content=content, timestamp=timestamp, **kwargs)


class UserCrudTests(TempDatabaseMixin, unittest.IsolatedAsyncioTestCase):
    """Users are created once and never duplicated."""

    async def test_ensure_user_is_idempotent(self):
        """Should create the user the first time only."""
        self.assertTrue(await crud.ensure_user(self.db, "u1", "alice"))
        self.assertFalse(await crud.ensure_user(self.db, "u1", "alice again"))
        self.assertTrue(await crud.user_exists(self.db, "u1"))

        stats = await crud.get_database_stats(self.db)
        self.assertEqual(stats["total_users"], 1)

    async def test_unknown_user_does_not_exist(self):
        """Should report a missing user as absent."""
        self.assertFalse(await crud.user_exists(self.db, "nobody"))


class SessionCrudTests(TempDatabaseMixin, unittest.IsolatedAsyncioTestCase):
    """Session creation, ordering, renaming and deletion."""

    async def asyncSetUp(self):
        await super().asyncSetUp()
        await crud.create_user(self.db, "u1", "alice")

    async def test_create_session_defaults_title(self):
        """Should fall back to 'New Chat' when no title is given."""
        session = await crud.create_session(self.db, "u1", "s1")
        self.assertEqual(session.title, "New Chat")
        self.assertEqual(session.messages, [])
        self.assertEqual(session.created_at, session.updated_at)

        stored = await crud.get_session(self.db, "s1")
        self.assertEqual(stored.title, "New Chat")

    async def test_sessions_sorted_most_recent_first(self):
        """Should list sessions by updatedAt descending."""
        await crud.create_session(self.db, "u1", "old", "Old")
        await crud.create_session(self.db, "u1", "new", "New")
        sessions = await crud.get_sessions(self.db, "u1")
        self.assertEqual([s.id for s in sessions], ["new", "old"])

        # Touching the older session moves it to the top
        await crud.add_message(self.db, "old", user_message("hi", 5))
        sessions = await crud.get_sessions(self.db, "u1")
        self.assertEqual([s.id for s in sessions], ["old", "new"])
        self.assertEqual(sessions[0].messages[0].content, "hi")

    async def test_sessions_are_scoped_to_user(self):
        """Should not return another user's sessions."""
        await crud.create_user(self.db, "u2", "bob")
        await crud.create_session(self.db, "u1", "s1")
        await crud.create_session(self.db, "u2", "s2")
        self.assertEqual([s.id for s in await crud.get_sessions(self.db, "u2")], ["s2"])

    async def test_update_session_title_bumps_timestamp(self):
        """Should rename the session and refresh updatedAt."""
        created = await crud.create_session(self.db, "u1", "s1")
        await crud.update_session_title(self.db, "s1", "Renamed")
        stored = await crud.get_session(self.db, "s1")
        self.assertEqual(stored.title, "Renamed")
        self.assertGreater(stored.updated_at, created.updated_at)

    async def test_missing_session_is_none(self):
        """Should return None for an unknown session id."""
        self.assertIsNone(await crud.get_session(self.db, "missing"))

    async def test_delete_session_cascades(self):
        """Should remove the session's messages and their artifacts."""
        await crud.create_session(self.db, "u1", "s1")
        await crud.add_message(
            self.db,
            "s1",
            MessageCreate(
                id="m1",
                role="assistant",
                content="code below",
                timestamp=1,
                artifacts=[ArtifactRead(type="code", language="python", content="print(1)")],
            ),
        )
        self.assertEqual(len(await crud.get_message_artifacts(self.db, "m1")), 1)

        await crud.delete_session(self.db, "s1")

        self.assertIsNone(await crud.get_session(self.db, "s1"))
        async with self.db.session() as db_session:
            messages = await db_session.execute(select(func.count()).select_from(Message))
            artifacts = await db_session.execute(select(func.count()).select_from(Artifact))
            self.assertEqual(messages.scalar_one(), 0)
            self.assertEqual(artifacts.scalar_one(), 0)

    async def test_deleting_user_removes_sessions(self):
        """Should cascade from users down to sessions."""
        await crud.create_session(self.db, "u1", "s1")
        async with self.db.session() as db_session:
            await db_session.execute(delete(User).where(User.id == "u1"))
            await db_session.commit()
        self.assertIsNone(await crud.get_session(self.db, "s1"))

    async def test_clear_all_sessions_only_touches_one_user(self):
        """Should delete every session of the given user and no others."""
        await crud.create_user(self.db, "u2", "bob")
        await crud.create_session(self.db, "u1", "a")
        await crud.create_session(self.db, "u1", "b")
        await crud.create_session(self.db, "u2", "c")

        await crud.clear_all_sessions(self.db, "u1")

        self.assertEqual(await crud.get_sessions(self.db, "u1"), [])
        self.assertEqual(len(await crud.get_sessions(self.db, "u2")), 1)
        self.assertTrue(await crud.user_exists(self.db, "u1"))


class MessageCrudTests(TempDatabaseMixin, unittest.IsolatedAsyncioTestCase):
    """Message insertion, patching and truncation."""

    async def asyncSetUp(self):
        await super().asyncSetUp()
        await crud.create_user(self.db, "u1", "alice")
        await crud.create_session(self.db, "u1", "s1")

    async def test_messages_ordered_by_timestamp(self):
        """Should return messages oldest first regardless of insert order."""
        await crud.add_message(self.db, "s1", user_message("third", 30, id="c"))
        await crud.add_message(self.db, "s1", user_message("first", 10, id="a"))
        await crud.add_message(self.db, "s1", user_message("second", 20, id="b"))
        messages = await crud.get_session_messages(self.db, "s1")
        self.assertEqual([m.content for m in messages], ["first", "second", "third"])

    async def test_add_message_stores_artifacts_and_follow_ups(self):
        """Should round-trip artifacts and follow-up questions."""
        await crud.add_message(
            self.db,
            "s1",
            MessageCreate(
                id="m1",
                role="assistant",
                content="Here you go",
                timestamp=1,
                follow_up_questions=["Why?"],
                artifacts=[
                    ArtifactRead(id="a1", type="code", language="sql", content="SELECT 1"),
                    ArtifactRead(id="a2", type="markdown", content="# Notes", expanded=True),
                ],
            ),
        )
        [message] = await crud.get_session_messages(self.db, "s1")
        self.assertEqual(message.follow_up_questions, ["Why?"])
        artifacts = {a.id: a for a in message.artifacts}
        self.assertEqual(artifacts["a1"].language, "sql")
        self.assertIsNone(artifacts["a2"].language)
        self.assertTrue(artifacts["a2"].expanded)
        self.assertNotIn("language", artifacts["a2"].to_wire())

    async def test_message_without_extras_omits_optional_fields(self):
        """Should leave artifacts and followUpQuestions out of the wire form."""
        await crud.add_message(self.db, "s1", user_message("hello", 1))
        [message] = await crud.get_session_messages(self.db, "s1")
        wire = message.to_wire()
        self.assertNotIn("artifacts", wire)
        self.assertNotIn("followUpQuestions", wire)
        self.assertEqual(wire["isStreaming"], False)

    async def test_update_message_applies_only_present_fields(self):
        """Should change the patched columns and keep the rest."""
        await crud.add_message(
            self.db,
            "s1",
            MessageCreate(id="m1", role="assistant", content="", timestamp=1, is_streaming=True),
        )
        await crud.update_message(self.db, "s1", "m1", MessagePatch(content="done"))
        [message] = await crud.get_session_messages(self.db, "s1")
        self.assertEqual(message.content, "done")
        self.assertTrue(message.is_streaming)

        await crud.update_message(self.db, "s1", "m1", MessagePatch(is_streaming=False))
        [message] = await crud.get_session_messages(self.db, "s1")
        self.assertEqual(message.content, "done")
        self.assertFalse(message.is_streaming)

    async def test_empty_patch_is_a_no_op(self):
        """Should not touch the message or the session timestamp."""
        await crud.add_message(self.db, "s1", user_message("hello", 1, id="m1"))
        before = await crud.get_session(self.db, "s1")
        await crud.update_message(self.db, "s1", "m1", MessagePatch())
        after = await crud.get_session(self.db, "s1")
        self.assertEqual(before.updated_at, after.updated_at)
        self.assertEqual(after.messages[0].content, "hello")

    async def test_delete_messages_from_index_keeps_prefix(self):
        """Should keep exactly the first k messages."""
        for i in range(5):
            await crud.add_message(self.db, "s1", user_message(f"m{i}", 100 - i * 10 + (i % 2)))
        ordered = [m.content for m in await crud.get_session_messages(self.db, "s1")]

        await crud.delete_messages_from_index(self.db, "s1", 2)

        remaining = [m.content for m in await crud.get_session_messages(self.db, "s1")]
        self.assertEqual(remaining, ordered[:2])

    async def test_delete_messages_past_the_end_keeps_everything(self):
        """Should leave the session untouched when the index is past the end."""
        await crud.add_message(self.db, "s1", user_message("only", 1))
        await crud.delete_messages_from_index(self.db, "s1", 5)
        self.assertEqual(len(await crud.get_session_messages(self.db, "s1")), 1)

    async def test_delete_messages_from_zero_empties_session(self):
        """Should remove every message when the index is zero."""
        await crud.add_message(self.db, "s1", user_message("a", 1))
        await crud.add_message(self.db, "s1", user_message("b", 2))
        await crud.delete_messages_from_index(self.db, "s1", 0)
        self.assertEqual(await crud.get_session_messages(self.db, "s1"), [])

    async def test_negative_index_rejected(self):
        """Should refuse a negative fromIndex."""
        with self.assertRaises(ValueError):
            await crud.delete_messages_from_index(self.db, "s1", -1)

    async def test_database_stats(self):
        """Should count users, sessions and messages."""
        await crud.add_message(self.db, "s1", user_message("a", 1))
        await crud.add_message(self.db, "s1", user_message("b", 2))
        self.assertEqual(
            await crud.get_database_stats(self.db),
            {"total_users": 1, "total_sessions": 1, "total_messages": 2},
        )


if __name__ == "__main__":
    unittest.main()
