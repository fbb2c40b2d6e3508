import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, StreamingResponse

from ..core import search as directory
from ..core.gemini_api import CATEGORY_PROMPTS, GeminiService
from .deps import get_gemini
from .schemas import ChatBody, FollowUpBody, SuggestionBody, error_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

NOT_CONFIGURED = "GEMINI_API_KEY not configured"


@router.post("/chat")
async def chat(body: ChatBody, gemini: Optional[GeminiService] = Depends(get_gemini)):
    """Proxy a prompt to Gemini and forward the reply as a plain-text byte stream"""
    prompt = (body.prompt or "").strip()
    if not prompt:
        return error_response(400, "Prompt is required")
    if gemini is None:
        return error_response(500, NOT_CONFIGURED)

    history = [turn.model_dump() for turn in body.history]
    stream = gemini.stream_reply(prompt, history)

    # Pull the first chunk eagerly so upstream failures still get a JSON 500
    try:
        first = await anext(stream)
    except StopAsyncIteration:
        first = ""
    except Exception as e:
        logger.error(f"Error starting chat stream: {e}")
        return error_response(500, "Failed to generate response")

    async def body_iterator():
        try:
            if first:
                yield first.encode("utf-8")
            async for chunk in stream:
                yield chunk.encode("utf-8")
        except Exception as e:
            logger.error(f"Chat stream aborted: {e}")
            raise
        finally:
            # Also runs when the client disconnects mid-reply
            await stream.aclose()

    return StreamingResponse(body_iterator(), media_type="text/plain; charset=utf-8")


@router.post("/followup-questions")
async def follow_up_questions(
    body: FollowUpBody, gemini: Optional[GeminiService] = Depends(get_gemini)
):
    try:
        if not body.user_question or not body.ai_response:
            return error_response(400, "User question and AI response are required")
        if gemini is None:
            return error_response(500, NOT_CONFIGURED)

        questions = await gemini.generate_follow_up_questions(body.user_question, body.ai_response)
        return JSONResponse({"questions": questions})
    except Exception as e:
        logger.error(f"Error generating follow-up questions: {e}")
        return error_response(500, "Failed to generate follow-up questions")


async def _suggestions(category: Optional[str], gemini: Optional[GeminiService]):
    try:
        if not category or category not in CATEGORY_PROMPTS:
            return error_response(400, "Invalid category")
        if gemini is None:
            return error_response(500, NOT_CONFIGURED)

        suggestions = await gemini.generate_suggestions(category)
        return JSONResponse({"suggestions": suggestions})
    except Exception as e:
        logger.error(f"Error generating suggestions: {e}")
        return error_response(500, "Failed to generate suggestions")


@router.get("/suggestions")
async def get_suggestions(
    category: Optional[str] = Query(None),
    gemini: Optional[GeminiService] = Depends(get_gemini),
):
    return await _suggestions(category, gemini)


@router.post("/suggestions")
async def post_suggestions(
    body: SuggestionBody, gemini: Optional[GeminiService] = Depends(get_gemini)
):
    return await _suggestions(body.category, gemini)


@router.get("/search")
def search(
    q: str = Query(""),
    type_: str = Query("general", alias="type"),
    limit: int = Query(10, ge=0, le=100),
):
    if type_ not in directory.SEARCH_TYPES:
        return error_response(400, "Invalid search type")
    return JSONResponse({"results": directory.search(q, type_, limit)})
