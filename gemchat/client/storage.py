import json
import uuid
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from ..core.models import MessageCreate, MessagePatch, SessionRead

logger = logging.getLogger(__name__)

USER_KEY = "chat-user-data"
ACTIVE_SESSION_KEY = "active-session-id"


# ------------------------------------------------------------------------------
# Local state (device-specific user and active session)
# ------------------------------------------------------------------------------
class LocalState:
    """Small JSON key/value file standing in for browser local storage"""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> Dict[str, Any]:
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable state file {self.path}: {e}")
            return {}

    def _save(self, data: Dict[str, Any]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data), encoding="utf-8")

    def get(self, key: str) -> Any:
        return self._load().get(key)

    def set(self, key: str, value: Any):
        data = self._load()
        data[key] = value
        self._save(data)

    def remove(self, key: str):
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)


# ------------------------------------------------------------------------------
# REST client
# ------------------------------------------------------------------------------
class ChatStorage:
    """Client for the chat REST API; failures are logged, never raised"""

    def __init__(self, base_url: str, state: LocalState, http: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.state = state
        self.http = http or httpx.AsyncClient(base_url=self.base_url, timeout=30.0)

    async def aclose(self):
        await self.http.aclose()

    # -- user ---------------------------------------------------------------
    def get_user(self) -> Optional[Dict[str, str]]:
        user = self.state.get(USER_KEY)
        if isinstance(user, dict) and user.get("id"):
            return user
        return None

    async def set_user(self, username: str) -> Optional[Dict[str, str]]:
        """Create a device user and make sure it exists server-side"""
        user = {"id": str(uuid.uuid4()), "username": username}
        try:
            self.state.set(USER_KEY, user)
            response = await self.http.post("/api/db/user", json={"userId": user["id"], "username": username})
            response.raise_for_status()
            return user
        except (httpx.HTTPError, OSError) as e:
            logger.error(f"Failed to set user: {e}")
            return None

    # -- sessions -----------------------------------------------------------
    async def get_sessions(self, user_id: str) -> List[SessionRead]:
        try:
            response = await self.http.get("/api/db/sessions", params={"userId": user_id})
            response.raise_for_status()
            return [SessionRead.model_validate(s) for s in response.json().get("sessions", [])]
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to get sessions: {e}")
            return []

    async def get_session(self, user_id: str, session_id: str) -> Optional[SessionRead]:
        try:
            response = await self.http.get(
                "/api/db/sessions", params={"userId": user_id, "sessionId": session_id}
            )
            response.raise_for_status()
            session = response.json().get("session")
            return SessionRead.model_validate(session) if session else None
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to load session data: {e}")
            return None

    async def create_session(self, user_id: str, session_id: str, title: str) -> Optional[SessionRead]:
        try:
            response = await self.http.post(
                "/api/db/sessions",
                json={"userId": user_id, "sessionId": session_id, "title": title},
            )
            response.raise_for_status()
            return SessionRead.model_validate(response.json()["session"])
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.error(f"Failed to create session: {e}")
            return None

    async def update_session_title(self, session_id: str, title: str):
        await self._send("PUT", "/api/db/sessions", "update session title",
                         json={"sessionId": session_id, "title": title})

    async def delete_session(self, session_id: str):
        await self._send("DELETE", "/api/db/sessions", "delete session",
                         params={"sessionId": session_id})

    # -- messages -----------------------------------------------------------
    async def add_message(self, session_id: str, message: MessageCreate):
        await self._send("POST", "/api/db/messages", "add message",
                         json={"sessionId": session_id, "message": message.to_wire()})

    async def update_message(self, session_id: str, message_id: str, patch: MessagePatch):
        await self._send("PUT", "/api/db/messages", "update message",
                         json={"sessionId": session_id, "messageId": message_id, "updates": patch.to_wire()})

    async def delete_messages_from_index(self, session_id: str, from_index: int):
        await self._send("DELETE", "/api/db/messages", "delete messages",
                         params={"sessionId": session_id, "fromIndex": from_index})

    # -- active session -----------------------------------------------------
    def get_active_session_id(self) -> Optional[str]:
        return self.state.get(ACTIVE_SESSION_KEY)

    def set_active_session_id(self, session_id: str):
        self.state.set(ACTIVE_SESSION_KEY, session_id)

    async def clear_all(self, user_id: str):
        await self._send("DELETE", "/api/db/user", "clear all sessions", params={"userId": user_id})
        self.state.remove(ACTIVE_SESSION_KEY)

    # -- AI helpers ---------------------------------------------------------
    async def get_follow_up_questions(self, user_question: str, ai_response: str) -> List[str]:
        try:
            response = await self.http.post(
                "/api/followup-questions",
                json={"userQuestion": user_question, "aiResponse": ai_response},
            )
            response.raise_for_status()
            return list(response.json().get("questions") or [])
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error fetching follow-up questions: {e}")
            return []

    async def get_suggestions(self, category: str) -> List[str]:
        try:
            response = await self.http.get("/api/suggestions", params={"category": category})
            response.raise_for_status()
            return list(response.json().get("suggestions") or [])
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error fetching suggestions: {e}")
            return []

    async def search(self, query: str, type_: str = "general", limit: int = 10) -> List[Dict[str, str]]:
        try:
            response = await self.http.get(
                "/api/search", params={"q": query, "type": type_, "limit": limit}
            )
            response.raise_for_status()
            return list(response.json().get("results") or [])
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Search failed: {e}")
            return []

    def stream_chat(self, prompt: str, history: List[Dict[str, str]]):
        """Streaming POST /api/chat; used as ``async with storage.stream_chat(...)``"""
        return self.http.stream("POST", "/api/chat", json={"prompt": prompt, "history": history})

    async def _send(self, method: str, url: str, action: str, **kwargs):
        try:
            response = await self.http.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to {action}: {e}")
