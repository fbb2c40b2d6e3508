from typing import Optional

from fastapi import Request

from ..core.db import Database
from ..core.gemini_api import GeminiService


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_gemini(request: Request) -> Optional[GeminiService]:
    """Configured Gemini service, or None when no API key was provided"""
    return request.app.state.gemini
