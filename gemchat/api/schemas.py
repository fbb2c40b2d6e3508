from typing import List, Literal, Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..core.models import CamelModel, MessageCreate, MessagePatch


class SessionCreateBody(CamelModel):
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    title: Optional[str] = None


class SessionUpdateBody(CamelModel):
    session_id: Optional[str] = None
    title: Optional[str] = None


class MessageCreateBody(CamelModel):
    session_id: Optional[str] = None
    message: Optional[MessageCreate] = None


class MessageUpdateBody(CamelModel):
    session_id: Optional[str] = None
    message_id: Optional[str] = None
    updates: Optional[MessagePatch] = None


class UserBody(CamelModel):
    user_id: Optional[str] = None
    username: Optional[str] = None


class HistoryTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatBody(CamelModel):
    prompt: Optional[str] = None
    history: List[HistoryTurn] = []


class FollowUpBody(CamelModel):
    user_question: Optional[str] = None
    ai_response: Optional[str] = None


class SuggestionBody(CamelModel):
    category: Optional[str] = None


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def success_response() -> JSONResponse:
    return JSONResponse({"success": True})
