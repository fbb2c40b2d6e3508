import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ..core import crud
from ..core.db import Database
from .deps import get_database
from .schemas import (
    MessageCreateBody,
    MessageUpdateBody,
    SessionCreateBody,
    SessionUpdateBody,
    UserBody,
    error_response,
    success_response,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/db")


# ------------------------------------------------------------------------------
# Sessions
# ------------------------------------------------------------------------------
@router.get("/sessions")
async def get_sessions(
    user_id: Optional[str] = Query(None, alias="userId"),
    session_id: Optional[str] = Query(None, alias="sessionId"),
    db: Database = Depends(get_database),
):
    try:
        if not user_id:
            return error_response(400, "User ID is required")

        if session_id:
            session = await crud.get_session(db, session_id)
            if session is None:
                return error_response(404, "Session not found")
            return JSONResponse({"session": session.to_wire()})

        sessions = await crud.get_sessions(db, user_id)
        return JSONResponse({"sessions": [s.to_wire() for s in sessions]})
    except Exception as e:
        logger.error(f"Error getting sessions: {e}")
        return error_response(500, "Failed to get sessions")


@router.post("/sessions")
async def create_session(body: SessionCreateBody, db: Database = Depends(get_database)):
    try:
        if not body.user_id or not body.session_id:
            return error_response(400, "User ID and session ID are required")

        session = await crud.create_session(db, body.user_id, body.session_id, body.title)
        return JSONResponse({"session": session.to_wire()})
    except Exception as e:
        logger.error(f"Error creating session: {e}")
        return error_response(500, "Failed to create session")


@router.put("/sessions")
async def update_session(body: SessionUpdateBody, db: Database = Depends(get_database)):
    try:
        if not body.session_id or not body.title:
            return error_response(400, "Session ID and title are required")

        await crud.update_session_title(db, body.session_id, body.title)
        return success_response()
    except Exception as e:
        logger.error(f"Error updating session: {e}")
        return error_response(500, "Failed to update session")


@router.delete("/sessions")
async def delete_session(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    db: Database = Depends(get_database),
):
    try:
        if not session_id:
            return error_response(400, "Session ID is required")

        await crud.delete_session(db, session_id)
        return success_response()
    except Exception as e:
        logger.error(f"Error deleting session: {e}")
        return error_response(500, "Failed to delete session")


# ------------------------------------------------------------------------------
# Messages
# ------------------------------------------------------------------------------
@router.get("/messages")
async def get_messages(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    db: Database = Depends(get_database),
):
    try:
        if not session_id:
            return error_response(400, "Session ID is required")

        messages = await crud.get_session_messages(db, session_id)
        return JSONResponse({"messages": [m.to_wire() for m in messages]})
    except Exception as e:
        logger.error(f"Error getting messages: {e}")
        return error_response(500, "Failed to get messages")


@router.post("/messages")
async def add_message(body: MessageCreateBody, db: Database = Depends(get_database)):
    try:
        if not body.session_id or body.message is None:
            return error_response(400, "Session ID and message are required")

        await crud.add_message(db, body.session_id, body.message)
        return success_response()
    except Exception as e:
        logger.error(f"Error adding message: {e}")
        return error_response(500, "Failed to add message")


@router.put("/messages")
async def update_message(body: MessageUpdateBody, db: Database = Depends(get_database)):
    try:
        if not body.session_id or not body.message_id or body.updates is None:
            return error_response(400, "Session ID, message ID, and updates are required")

        await crud.update_message(db, body.session_id, body.message_id, body.updates)
        return success_response()
    except Exception as e:
        logger.error(f"Error updating message: {e}")
        return error_response(500, "Failed to update message")


@router.delete("/messages")
async def delete_messages(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    from_index: Optional[str] = Query(None, alias="fromIndex"),
    db: Database = Depends(get_database),
):
    try:
        if not session_id or from_index is None:
            return error_response(400, "Session ID and fromIndex are required")
        try:
            index = int(from_index)
        except ValueError:
            return error_response(400, "fromIndex must be a non-negative integer")
        if index < 0:
            return error_response(400, "fromIndex must be a non-negative integer")

        await crud.delete_messages_from_index(db, session_id, index)
        return success_response()
    except Exception as e:
        logger.error(f"Error deleting messages: {e}")
        return error_response(500, "Failed to delete messages")


# ------------------------------------------------------------------------------
# User
# ------------------------------------------------------------------------------
@router.post("/user")
async def create_user(body: UserBody, db: Database = Depends(get_database)):
    try:
        if not body.user_id or not body.username or not body.username.strip():
            return error_response(400, "User ID and username are required")

        # Only create the user if it doesn't exist (sessions reference it)
        await crud.ensure_user(db, body.user_id, body.username.strip())
        return success_response()
    except Exception as e:
        logger.error(f"Error creating user: {e}")
        return error_response(500, "Failed to create user")


@router.delete("/user")
async def clear_user_sessions(
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Database = Depends(get_database),
):
    try:
        if not user_id:
            return error_response(400, "User ID is required")

        await crud.clear_all_sessions(db, user_id)
        return success_response()
    except Exception as e:
        logger.error(f"Error clearing sessions: {e}")
        return error_response(500, "Failed to clear sessions")
