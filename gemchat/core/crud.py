import logging
from collections import defaultdict
from typing import Dict, List, Optional

from sqlalchemy import delete, func, update
from sqlmodel import select

from .db import Database
from .models import (
    DEFAULT_SESSION_TITLE,
    Artifact,
    ArtifactRead,
    ChatSession,
    Message,
    MessageCreate,
    MessagePatch,
    MessageRead,
    SessionRead,
    User,
    now_ms,
)

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------------------
# Row -> wire conversion
# ------------------------------------------------------------------------------
def _artifact_read(row: Artifact) -> ArtifactRead:
    return ArtifactRead(
        id=row.id,
        type=row.type,
        content=row.content,
        language=row.language or None,
        expanded=bool(row.expanded),
    )


def _message_read(row: Message, artifacts: List[ArtifactRead]) -> MessageRead:
    return MessageRead(
        id=row.id,
        role=row.role,
        content=row.content,
        timestamp=int(row.timestamp),
        is_streaming=bool(row.is_streaming),
        artifacts=artifacts or None,
        follow_up_questions=row.follow_up_questions or None,
    )


def _session_read(row: ChatSession, messages: List[MessageRead]) -> SessionRead:
    return SessionRead(
        id=row.id,
        title=row.title,
        messages=messages,
        created_at=int(row.created_at),
        updated_at=int(row.updated_at),
    )


async def _load_messages(db_session, session_ids: List[str]) -> Dict[str, List[MessageRead]]:
    """Messages (with artifacts) for several sessions, grouped by session id"""
    grouped: Dict[str, List[MessageRead]] = defaultdict(list)
    if not session_ids:
        return grouped
    result = await db_session.execute(
        select(Message)
        .where(Message.session_id.in_(session_ids))
        .order_by(Message.timestamp, Message.id)
    )
    messages = list(result.scalars().all())
    artifacts: Dict[str, List[ArtifactRead]] = defaultdict(list)
    if messages:
        result = await db_session.execute(
            select(Artifact).where(Artifact.message_id.in_([m.id for m in messages]))
        )
        for row in result.scalars().all():
            artifacts[row.message_id].append(_artifact_read(row))
    for row in messages:
        grouped[row.session_id].append(_message_read(row, artifacts.get(row.id, [])))
    return grouped


# ------------------------------------------------------------------------------
# User Operations
# ------------------------------------------------------------------------------
async def create_user(db: Database, user_id: str, username: str):
    async with db.session() as db_session:
        db_session.add(User(id=user_id, username=username, created_at=now_ms()))
        await db_session.commit()
    logger.info(f"Created user {user_id}")


async def user_exists(db: Database, user_id: str) -> bool:
    async with db.session() as db_session:
        return await db_session.get(User, user_id) is not None


async def ensure_user(db: Database, user_id: str, username: str) -> bool:
    """Create the user unless it already exists; returns True when created"""
    if await user_exists(db, user_id):
        return False
    await create_user(db, user_id, username)
    return True


# ------------------------------------------------------------------------------
# Session Operations
# ------------------------------------------------------------------------------
async def get_sessions(db: Database, user_id: str) -> List[SessionRead]:
    """All sessions of a user, most recently updated first"""
    async with db.session() as db_session:
        result = await db_session.execute(
            select(ChatSession)
            .where(ChatSession.user_id == user_id)
            .order_by(ChatSession.updated_at.desc())
        )
        sessions = list(result.scalars().all())
        messages = await _load_messages(db_session, [s.id for s in sessions])
    return [_session_read(s, messages.get(s.id, [])) for s in sessions]


async def get_session(db: Database, session_id: str) -> Optional[SessionRead]:
    async with db.session() as db_session:
        row = await db_session.get(ChatSession, session_id)
        if row is None:
            return None
        messages = await _load_messages(db_session, [row.id])
    return _session_read(row, messages.get(row.id, []))


async def create_session(
    db: Database, user_id: str, session_id: str, title: Optional[str] = None
) -> SessionRead:
    now = now_ms()
    row = ChatSession(
        id=session_id,
        user_id=user_id,
        title=title or DEFAULT_SESSION_TITLE,
        created_at=now,
        updated_at=now,
    )
    async with db.session() as db_session:
        db_session.add(row)
        await db_session.commit()
    logger.info(f"Created session {session_id} for user {user_id}")
    return _session_read(row, [])


async def update_session_title(db: Database, session_id: str, title: str):
    async with db.session() as db_session:
        await db_session.execute(
            update(ChatSession)
            .where(ChatSession.id == session_id)
            .values(title=title, updated_at=now_ms())
        )
        await db_session.commit()


async def delete_session(db: Database, session_id: str):
    """Delete a chat session; messages and artifacts go with it"""
    async with db.session() as db_session:
        await db_session.execute(delete(ChatSession).where(ChatSession.id == session_id))
        await db_session.commit()
    logger.info(f"Deleted session {session_id}")


async def update_session_timestamp(db: Database, session_id: str):
    async with db.session() as db_session:
        await db_session.execute(
            update(ChatSession).where(ChatSession.id == session_id).values(updated_at=now_ms())
        )
        await db_session.commit()


# ------------------------------------------------------------------------------
# Message Operations
# ------------------------------------------------------------------------------
async def get_session_messages(db: Database, session_id: str) -> List[MessageRead]:
    async with db.session() as db_session:
        messages = await _load_messages(db_session, [session_id])
    return messages.get(session_id, [])


async def add_message(db: Database, session_id: str, message: MessageCreate):
    """Insert a message, then its artifacts one at a time"""
    async with db.session() as db_session:
        db_session.add(
            Message(
                id=message.id,
                session_id=session_id,
                role=message.role,
                content=message.content,
                timestamp=message.timestamp,
                is_streaming=message.is_streaming,
                follow_up_questions=message.follow_up_questions,
            )
        )
        await db_session.commit()

        for artifact in message.artifacts or []:
            db_session.add(
                Artifact(
                    id=artifact.id,
                    message_id=message.id,
                    type=artifact.type,
                    language=artifact.language,
                    content=artifact.content,
                    expanded=artifact.expanded,
                )
            )
            await db_session.commit()

    await update_session_timestamp(db, session_id)


async def update_message(db: Database, session_id: str, message_id: str, patch: MessagePatch):
    """Apply the fields present in the patch; an empty patch changes nothing"""
    values = patch.assignments()
    if not values:
        return
    async with db.session() as db_session:
        await db_session.execute(update(Message).where(Message.id == message_id).values(**values))
        await db_session.commit()
    await update_session_timestamp(db, session_id)


async def delete_messages_from_index(db: Database, session_id: str, from_index: int):
    """Keep the first ``from_index`` messages of a session, delete the rest"""
    if from_index < 0:
        raise ValueError("fromIndex must be a non-negative integer")
    async with db.session() as db_session:
        result = await db_session.execute(
            select(Message.id)
            .where(Message.session_id == session_id)
            .order_by(Message.timestamp, Message.id)
        )
        doomed = list(result.scalars().all())[from_index:]
        if doomed:
            await db_session.execute(delete(Message).where(Message.id.in_(doomed)))
            await db_session.commit()
            logger.info(f"Deleted {len(doomed)} messages from session {session_id}")
    await update_session_timestamp(db, session_id)


# ------------------------------------------------------------------------------
# Artifact Operations
# ------------------------------------------------------------------------------
async def get_message_artifacts(db: Database, message_id: str) -> List[ArtifactRead]:
    async with db.session() as db_session:
        result = await db_session.execute(select(Artifact).where(Artifact.message_id == message_id))
        return [_artifact_read(row) for row in result.scalars().all()]


# ------------------------------------------------------------------------------
# Utility Functions
# ------------------------------------------------------------------------------
async def clear_all_sessions(db: Database, user_id: str):
    async with db.session() as db_session:
        await db_session.execute(delete(ChatSession).where(ChatSession.user_id == user_id))
        await db_session.commit()
    logger.info(f"Cleared all sessions for user {user_id}")


async def get_database_stats(db: Database) -> Dict[str, int]:
    """Get database statistics"""
    async with db.session() as db_session:
        stats = {}
        for key, table in (
            ("total_users", User),
            ("total_sessions", ChatSession),
            ("total_messages", Message),
        ):
            result = await db_session.execute(select(func.count()).select_from(table))
            stats[key] = result.scalar_one()
    return stats
