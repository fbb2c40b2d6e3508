import time
import uuid
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field as PydanticField
from pydantic.alias_generators import to_camel
from sqlalchemy import JSON, BigInteger, CheckConstraint, Column, Index, Text
from sqlmodel import Field, Relationship, SQLModel

Role = Literal["user", "assistant"]
ArtifactType = Literal["code", "markdown"]

DEFAULT_SESSION_TITLE = "New Chat"


def now_ms() -> int:
    """Current time in epoch milliseconds"""
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


# ------------------------------------------------------------------------------
# Tables
# ------------------------------------------------------------------------------
class User(SQLModel, table=True):
    """Chat user, identified by a client-generated id"""
    __tablename__ = "users"

    id: str = Field(primary_key=True)
    username: str
    created_at: int = Field(default_factory=now_ms, sa_type=BigInteger)

    sessions: List["ChatSession"] = Relationship(
        back_populates="user",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "passive_deletes": True},
    )


class ChatSession(SQLModel, table=True):
    """Chat session model"""
    __tablename__ = "chat_sessions"
    __table_args__ = (Index("idx_chat_sessions_user_id", "user_id"),)

    id: str = Field(primary_key=True)
    user_id: str = Field(foreign_key="users.id", ondelete="CASCADE")
    title: str = DEFAULT_SESSION_TITLE
    created_at: int = Field(default_factory=now_ms, sa_type=BigInteger)
    updated_at: int = Field(default_factory=now_ms, sa_type=BigInteger)

    user: Optional[User] = Relationship(back_populates="sessions")
    messages: List["Message"] = Relationship(
        back_populates="session",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "passive_deletes": True},
    )


class Message(SQLModel, table=True):
    """Chat message model with session support"""
    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint("role IN ('user', 'assistant')", name="ck_messages_role"),
        Index("idx_messages_session_id", "session_id"),
    )

    id: str = Field(primary_key=True)
    session_id: str = Field(foreign_key="chat_sessions.id", ondelete="CASCADE")
    role: str
    content: str = Field(sa_type=Text)
    timestamp: int = Field(default_factory=now_ms, sa_type=BigInteger)
    is_streaming: bool = False
    follow_up_questions: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))

    session: Optional[ChatSession] = Relationship(back_populates="messages")
    artifacts: List["Artifact"] = Relationship(
        back_populates="message",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "passive_deletes": True},
    )


class Artifact(SQLModel, table=True):
    """Code or markdown block attached to an assistant message"""
    __tablename__ = "artifacts"
    __table_args__ = (
        CheckConstraint("type IN ('code', 'markdown')", name="ck_artifacts_type"),
        Index("idx_artifacts_message_id", "message_id"),
    )

    id: str = Field(primary_key=True)
    message_id: str = Field(foreign_key="messages.id", ondelete="CASCADE")
    type: str
    language: Optional[str] = None
    content: str = Field(sa_type=Text)
    expanded: bool = False

    message: Optional[Message] = Relationship(back_populates="artifacts")


# ------------------------------------------------------------------------------
# Wire schemas (camelCase JSON)
# ------------------------------------------------------------------------------
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ArtifactRead(CamelModel):
    id: str = PydanticField(default_factory=new_id)
    type: ArtifactType
    content: str
    language: Optional[str] = None
    expanded: bool = False


class MessageRead(CamelModel):
    id: str = PydanticField(default_factory=new_id)
    role: Role
    content: str = ""
    timestamp: int = PydanticField(default_factory=now_ms)
    is_streaming: bool = False
    artifacts: Optional[List[ArtifactRead]] = None
    follow_up_questions: Optional[List[str]] = None


# Messages arrive from clients in the same shape they are read back in.
MessageCreate = MessageRead


class SessionRead(CamelModel):
    id: str
    title: str = DEFAULT_SESSION_TITLE
    messages: List[MessageRead] = PydanticField(default_factory=list)
    created_at: int = PydanticField(default_factory=now_ms)
    updated_at: int = PydanticField(default_factory=now_ms)


class MessagePatch(CamelModel):
    """Partial message update; only the fields that are set get written"""

    content: Optional[str] = None
    is_streaming: Optional[bool] = None
    follow_up_questions: Optional[List[str]] = None

    def assignments(self) -> Dict[str, Any]:
        """Column name -> new value for every field present in the patch"""
        values = {
            "content": self.content,
            "is_streaming": self.is_streaming,
            "follow_up_questions": self.follow_up_questions,
        }
        return {column: value for column, value in values.items() if value is not None}

    def is_empty(self) -> bool:
        return not self.assignments()
