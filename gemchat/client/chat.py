import time
import uuid
import codecs
import contextlib
import asyncio
import logging
from typing import Callable, List, Optional

from ..core.models import (
    DEFAULT_SESSION_TITLE,
    MessagePatch,
    MessageRead,
    SessionRead,
    now_ms,
)
from .storage import ChatStorage

logger = logging.getLogger(__name__)

UPDATE_INTERVAL = 0.05  # seconds between re-renders while streaming (20 fps)
TITLE_LIMIT = 60
ERROR_MESSAGE = "Sorry, there was an error processing your request."


class StreamAborted(Exception):
    """Raised inside the read loop when the user stops generation"""


class StreamFailed(Exception):
    ...


def derive_title(content: str) -> str:
    """Session title from the first user message, like ChatGPT"""
    if len(content) > TITLE_LIMIT:
        return content[:TITLE_LIMIT].strip() + "..."
    return content.strip()


async def _next_chunk(chunks, abort: asyncio.Event) -> bytes:
    """Next body chunk, or StreamAborted as soon as the abort event fires"""
    if abort.is_set():
        raise StreamAborted()
    read = asyncio.ensure_future(chunks.__anext__())
    aborted = asyncio.ensure_future(abort.wait())
    try:
        done, _ = await asyncio.wait({read, aborted}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        read.cancel()
        aborted.cancel()
        raise
    if read in done:
        aborted.cancel()
        return read.result()
    read.cancel()
    with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
        await read
    raise StreamAborted()


class ChatController:
    """Client-side session state and request/response orchestration

    ``on_change`` is called after every state change the UI should render;
    while a reply streams in it fires at most once per ``update_interval``.
    """

    def __init__(
        self,
        storage: ChatStorage,
        on_change: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        update_interval: float = UPDATE_INTERVAL,
    ):
        self.storage = storage
        self.on_change = on_change
        self.clock = clock
        self.update_interval = update_interval

        self.sessions: List[SessionRead] = []
        self.active_session_id: Optional[str] = None
        self.user_id: Optional[str] = None
        self.username: str = ""
        self.is_loading = True
        self._abort: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _notify(self):
        if self.on_change is not None:
            self.on_change()

    def _find(self, session_id: str) -> Optional[SessionRead]:
        return next((s for s in self.sessions if s.id == session_id), None)

    def _sort(self):
        self.sessions.sort(key=lambda s: s.updated_at, reverse=True)

    def _next_timestamp(self, session_id: str) -> int:
        """Message timestamps increase strictly within a session"""
        session = self._find(session_id)
        last = session.messages[-1].timestamp if session and session.messages else 0
        return max(now_ms(), last + 1)

    def _set_active(self, session_id: Optional[str]):
        self.active_session_id = session_id
        if session_id:
            self.storage.set_active_session_id(session_id)

    @staticmethod
    def new_session() -> SessionRead:
        return SessionRead(id=str(uuid.uuid4()), title=DEFAULT_SESSION_TITLE)

    async def _start_fresh_session(self) -> SessionRead:
        session = self.new_session()
        await self.storage.create_session(self.user_id, session.id, session.title)
        self.sessions = [session]
        self._set_active(session.id)
        return session

    @property
    def active_session(self) -> Optional[SessionRead]:
        if self.active_session_id is None:
            return None
        return self._find(self.active_session_id)

    @property
    def is_generating(self) -> bool:
        return self._abort is not None

    # ------------------------------------------------------------------
    # user & sessions
    # ------------------------------------------------------------------
    async def initialize(self):
        """Load the device user and their sessions"""
        try:
            user = self.storage.get_user()
            if user:
                self.user_id = user["id"]
                self.username = user.get("username", "")
                sessions = await self.storage.get_sessions(self.user_id)
                stored_active = self.storage.get_active_session_id()
                if sessions:
                    self.sessions = sessions
                    self._sort()
                    known = any(s.id == stored_active for s in sessions)
                    self._set_active(stored_active if known else self.sessions[0].id)
                else:
                    await self._start_fresh_session()
        except Exception as e:
            logger.error(f"Failed to initialize user: {e}")
        finally:
            self.is_loading = False
            self._notify()

    async def setup_user(self, username: str):
        """First-time setup: register a user and open an empty chat"""
        user = await self.storage.set_user(username.strip())
        if user:
            self.user_id = user["id"]
            self.username = user["username"]
            await self._start_fresh_session()
            self.is_loading = False
            self._notify()
        return user

    async def add_session(self) -> Optional[SessionRead]:
        if not self.user_id:
            return None
        session = self.new_session()
        await self.storage.create_session(self.user_id, session.id, session.title)
        self.sessions.insert(0, session)
        self._set_active(session.id)
        self._notify()
        return session

    async def delete_session(self, session_id: str):
        await self.storage.delete_session(session_id)
        remaining = [s for s in self.sessions if s.id != session_id]
        if not remaining and self.user_id:
            await self._start_fresh_session()
        else:
            self.sessions = remaining
            if session_id == self.active_session_id:
                self._set_active(remaining[0].id if remaining else None)
        self._notify()

    async def update_session_title(self, session_id: str, title: str):
        await self.storage.update_session_title(session_id, title)
        session = self._find(session_id)
        if session is not None:
            session.title = title
            session.updated_at = now_ms()
            self._sort()
        self._notify()

    async def reload_session(self, session_id: str):
        """Refresh one session from the server"""
        if not self.user_id:
            return
        fresh = await self.storage.get_session(self.user_id, session_id)
        if fresh is None:
            return
        self.sessions = [fresh if s.id == session_id else s for s in self.sessions]
        self._sort()
        self._notify()

    async def switch_session(self, session_id: str):
        if session_id == self.active_session_id:
            return
        self._set_active(session_id)
        await self.reload_session(session_id)

    async def clear_history(self):
        if not self.user_id:
            return
        await self.storage.clear_all(self.user_id)
        await self._start_fresh_session()
        self._notify()

    # ------------------------------------------------------------------
    # messages
    # ------------------------------------------------------------------
    async def add_message(self, session_id: str, message: MessageRead):
        await self.storage.add_message(session_id, message)

        session = self._find(session_id)
        if session is None:
            return
        session.messages.append(message)
        if session.title == DEFAULT_SESSION_TITLE and message.role == "user":
            session.title = derive_title(message.content)
            await self.storage.update_session_title(session_id, session.title)
        session.updated_at = now_ms()
        self._sort()
        self._notify()

    async def update_message(self, session_id: str, message_id: str, patch: MessagePatch):
        # Intermediate streaming state stays local
        if patch.is_streaming is False or patch.content or patch.follow_up_questions:
            await self.storage.update_message(session_id, message_id, patch)

        session = self._find(session_id)
        if session is None:
            return
        for message in session.messages:
            if message.id == message_id:
                for field, value in patch.model_dump(exclude_none=True).items():
                    setattr(message, field, value)
        session.updated_at = now_ms()
        self._sort()
        self._notify()

    async def update_message_follow_ups(self, session_id: str, message_id: str, questions: List[str]):
        await self.update_message(session_id, message_id, MessagePatch(follow_up_questions=questions))

    # ------------------------------------------------------------------
    # streaming
    # ------------------------------------------------------------------
    async def stream_message(self, session_id: str, prompt: str, add_user_message: bool = True):
        """Send a prompt and stream the assistant reply into the session"""
        session = self._find(session_id)
        history = [
            {"role": m.role, "content": m.content}
            for m in (session.messages if session else [])
            if m.content and not m.is_streaming
        ]
        if not add_user_message and history and history[-1]["role"] == "user":
            history.pop()

        if add_user_message:
            await self.add_message(
                session_id,
                MessageRead(role="user", content=prompt, timestamp=self._next_timestamp(session_id)),
            )
        assistant = MessageRead(
            role="assistant", content="", is_streaming=True, timestamp=self._next_timestamp(session_id)
        )
        await self.add_message(session_id, assistant)

        abort = asyncio.Event()
        self._abort = abort
        accumulated = ""
        try:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            last_update = self.clock()
            async with self.storage.stream_chat(prompt, history) as response:
                if not response.is_success:
                    raise StreamFailed(f"Failed to fetch response: HTTP {response.status_code}")
                chunks = response.aiter_bytes()
                while True:
                    try:
                        chunk = await _next_chunk(chunks, abort)
                    except StopAsyncIteration:
                        break
                    accumulated += decoder.decode(chunk)

                    # Throttle UI updates
                    now = self.clock()
                    if now - last_update >= self.update_interval:
                        await self.update_message(session_id, assistant.id, MessagePatch(content=accumulated))
                        last_update = now
                accumulated += decoder.decode(b"", final=True)

            # Final update with complete content
            await self.update_message(session_id, assistant.id, MessagePatch(content=accumulated))
            await self.update_message(session_id, assistant.id, MessagePatch(is_streaming=False))
            logger.info(f"Streamed {len(accumulated)} characters into session {session_id}")
        except StreamAborted:
            logger.info("Stream aborted by user")
            await self.update_message(
                session_id, assistant.id, MessagePatch(content=accumulated or None, is_streaming=False)
            )
        except Exception as e:
            logger.error(f"Error streaming message: {e}")
            await self.update_message(
                session_id, assistant.id, MessagePatch(content=ERROR_MESSAGE, is_streaming=False)
            )
        except BaseException:
            # Task cancellation, or a UI rerun raised from inside on_change
            logger.info("Stream interrupted")
            await self._finish_interrupted(session_id, assistant.id, accumulated)
            raise
        finally:
            if self._abort is abort:
                self._abort = None
        return assistant.id

    async def _finish_interrupted(self, session_id: str, message_id: str, accumulated: str):
        """Mark an interrupted reply finished, keeping what arrived

        The render callback is detached meanwhile since it may be what raised.
        """
        on_change, self.on_change = self.on_change, None
        try:
            await self.update_message(
                session_id, message_id, MessagePatch(content=accumulated or None, is_streaming=False)
            )
        finally:
            self.on_change = on_change

    def stop_generating(self):
        if self._abort is not None:
            self._abort.set()
            self._abort = None

    async def regenerate_message(self, session_id: str, message_id: str):
        """Drop an assistant reply (and everything after it) and ask again"""
        session = self._find(session_id)
        if session is None:
            return
        index = next((i for i, m in enumerate(session.messages) if m.id == message_id), -1)
        if index <= 0:
            return
        previous = session.messages[index - 1]
        if previous.role != "user":
            return

        await self.storage.delete_messages_from_index(session_id, index)
        session.messages = session.messages[:index]
        self._notify()
        return await self.stream_message(session_id, previous.content, add_user_message=False)

    async def edit_prompt(self, session_id: str, message_id: str, new_prompt: str):
        """Replace a user prompt, discarding the conversation after it"""
        session = self._find(session_id)
        if session is None:
            return
        index = next((i for i, m in enumerate(session.messages) if m.id == message_id), -1)
        if index == -1:
            return

        await self.storage.delete_messages_from_index(session_id, index)
        session.messages = session.messages[:index]
        self._notify()
        return await self.stream_message(session_id, new_prompt)

    # ------------------------------------------------------------------
    # suggestions
    # ------------------------------------------------------------------
    async def fetch_follow_up_questions(self, session_id: str) -> List[str]:
        """Fetch follow-ups for the last reply once it has finished streaming"""
        session = self._find(session_id)
        if session is None or len(session.messages) < 2:
            return []
        last, before = session.messages[-1], session.messages[-2]
        if (
            last.role != "assistant"
            or last.is_streaming
            or not last.content
            or last.follow_up_questions
            or before.role != "user"
        ):
            return []
        questions = await self.storage.get_follow_up_questions(before.content, last.content)
        if questions:
            await self.update_message_follow_ups(session_id, last.id, questions)
        return questions

    async def fetch_suggestions(self, category: str) -> List[str]:
        return await self.storage.get_suggestions(category)

    async def search_people(self, query: str) -> List[str]:
        results = await self.storage.search(query, "person")
        return [r["text"] for r in results]
