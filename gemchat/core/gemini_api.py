import asyncio
import logging
from typing import AsyncIterator, Dict, List, Optional, Sequence

from google import genai
from google.genai import types
from google.genai.errors import ClientError, ServerError

from .parsing import parse_string_list

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a helpful, knowledgeable assistant in a chat application.

Guidelines:
- Answer clearly and concisely, expanding only when the question calls for depth
- Use markdown for structure; put code in fenced code blocks with a language tag
- Say so when you are unsure instead of guessing
- Stay consistent with earlier turns of the conversation"""

FOLLOW_UP_PROMPT = """Based on this conversation:

User Question: "{question}"
AI Response: "{answer}"

Generate 4-5 relevant follow-up questions that the user might want to ask next. These questions should:
- Be specific and contextual to the conversation
- Explore different aspects or go deeper into the topic
- Be concise (one sentence each)
- Be naturally related to what was discussed

Return ONLY a JSON array of strings, no additional text or formatting."""

CATEGORY_PROMPTS: Dict[str, str] = {
    "code": "Generate 4 short, practical coding-related questions or prompts that a user might ask an AI assistant. Focus on common programming tasks, debugging, explanations, or implementations. Return ONLY a JSON array of strings, no additional text.",
    "create": "Generate 4 short, creative prompts related to design, UI/UX, or creative projects that a user might ask an AI assistant. Return ONLY a JSON array of strings, no additional text.",
    "learn": "Generate 4 short educational questions about technology, computer science, or programming concepts that a user might want to learn. Return ONLY a JSON array of strings, no additional text.",
    "write": "Generate 4 short prompts related to writing documentation, emails, blog posts, or technical content. Return ONLY a JSON array of strings, no additional text.",
    "life": "Generate 4 short prompts about everyday life topics like health, productivity, travel, or personal organization. Return ONLY a JSON array of strings, no additional text.",
}

MAX_FOLLOW_UPS = 5
MAX_SUGGESTIONS = 4


# ------------------------------------------------------------------------------
# Errors
# ------------------------------------------------------------------------------
class GeminiError(RuntimeError):
    ...


class GeminiConfigError(GeminiError):
    ...


class GeminiRateLimited(GeminiError):
    ...


class GeminiBlocked(GeminiError):
    ...


class GeminiUnavailable(GeminiError):
    ...


def _translate_error(e: Exception) -> GeminiError:
    if isinstance(e, GeminiError):
        return e
    if isinstance(e, ClientError):
        text = str(e).lower()
        if "quota" in text or getattr(e, "code", None) == 429:
            return GeminiRateLimited("API quota exceeded")
        if "safety" in text:
            return GeminiBlocked("Response filtered due to safety policies")
        return GeminiError(f"Client error: {e}")
    if isinstance(e, ServerError):
        return GeminiUnavailable("Gemini service temporarily unavailable")
    if isinstance(e, asyncio.TimeoutError):
        return GeminiUnavailable("Gemini request timed out")
    return GeminiError(f"Unexpected Gemini error: {e}")


def build_contents(prompt: str, history: Sequence[Dict[str, str]] = ()) -> List[types.Content]:
    """Prior turns plus the new prompt as Gemini contents"""
    contents = []
    for turn in history:
        text = (turn.get("content") or "").strip()
        if not text:
            continue
        role = "model" if turn.get("role") == "assistant" else "user"
        contents.append(types.Content(role=role, parts=[types.Part(text=text)]))
    contents.append(types.Content(role="user", parts=[types.Part(text=prompt)]))
    return contents


# ------------------------------------------------------------------------------
# Service
# ------------------------------------------------------------------------------
class GeminiService:
    """Thin async wrapper over the Gemini client used by the API layer"""

    def __init__(self, api_key: str, model: str, client: Optional[genai.Client] = None):
        if not api_key:
            raise GeminiConfigError("GEMINI_API_KEY not configured")
        self.model = model
        self.client = client or genai.Client(api_key=api_key)
        logger.info(f"Gemini client initialized for model {model}")

    async def stream_reply(
        self, prompt: str, history: Sequence[Dict[str, str]] = ()
    ) -> AsyncIterator[str]:
        """Generate streaming response from Gemini"""
        config = types.GenerateContentConfig(
            system_instruction=SYSTEM_PROMPT,
            temperature=0.7,
            top_p=0.8,
            top_k=40,
        )
        logger.info(f"Generating response for prompt length: {len(prompt)} characters")
        total = 0
        try:
            stream = await self.client.aio.models.generate_content_stream(
                model=self.model,
                contents=build_contents(prompt, history),
                config=config,
            )
            async for chunk in stream:
                if chunk and chunk.text:
                    total += len(chunk.text)
                    yield chunk.text
        except Exception as e:
            logger.error(f"Gemini streaming error: {e}")
            raise _translate_error(e) from e
        logger.info(f"Generated response of {total} characters")

    async def generate_text(self, prompt: str, temperature: float = 0.7) -> str:
        """Generate a single, complete response (non-streaming)"""
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=types.GenerateContentConfig(temperature=temperature),
            )
        except Exception as e:
            logger.error(f"Gemini generation error: {e}")
            raise _translate_error(e) from e
        return (response.text or "") if response else ""

    async def generate_follow_up_questions(self, user_question: str, ai_response: str) -> List[str]:
        text = await self.generate_text(
            FOLLOW_UP_PROMPT.format(question=user_question, answer=ai_response)
        )
        return parse_string_list(text, limit=MAX_FOLLOW_UPS, require_question=True)

    async def generate_suggestions(self, category: str) -> List[str]:
        prompt = CATEGORY_PROMPTS.get(category)
        if prompt is None:
            raise ValueError(f"Invalid category: {category}")
        text = await self.generate_text(prompt, temperature=0.9)
        return parse_string_list(text, limit=MAX_SUGGESTIONS)

    async def aclose(self):
        """Cleanup the Gemini client"""
        try:
            aio = getattr(self.client, "aio", None)
            if aio is not None and hasattr(aio, "aclose"):
                await aio.aclose()
        except Exception as e:
            logger.error(f"Error cleaning up Gemini client: {e}")
