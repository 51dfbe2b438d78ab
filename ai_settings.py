"""
AI provider access for the library.
API keys live in the ai_settings table; requests are proxied to OpenAI,
Anthropic (Claude) or Google Gemini.
"""

import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from library_db import LibraryStore, Tag

logger = logging.getLogger(__name__)

PROVIDERS = ("gemini", "claude", "openai")

# gemini first, it is usually the fastest for short background prompts
COMPLETION_ORDER = ("gemini", "claude", "openai")

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "claude": "claude-sonnet-4-20250514",
    "gemini": "gemini-2.0-flash",
}

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
CLAUDE_URL = "https://api.anthropic.com/v1/messages"
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
ANTHROPIC_VERSION = "2023-06-01"

CHAT_MAX_TOKENS = 2000
COMPLETION_MAX_TOKENS = 500
MAX_SUGGESTED_TAGS = 3

TAG_SPLIT_RE = re.compile(r"[,、\n]")


class AIError(Exception):
    """A provider call failed or could not be made."""


def build_system_prompt(context: Optional[str]) -> str:
    if context:
        return ("You are a reading assistant. Answer the user's questions about "
                "the book they are reading.\n\nCurrent book content:\n" + context)
    return "You are a reading assistant. Answer the user's questions."


def parse_tag_response(response: str, tags: List[Tag]) -> List[str]:
    """
    Map a free-text model answer ("Programming, Python") onto existing tags.
    A tag matches when a suggested name equals it or contains it,
    ignoring case. Returns tag ids in tag-list order.
    """
    names = [s.strip().lower() for s in TAG_SPLIT_RE.split(response or "")]
    names = [n for n in names if n]
    matched = []
    for tag in tags:
        tag_name = tag.name.lower()
        if any(name == tag_name or tag_name in name for name in names):
            matched.append(tag.id)
    return matched


def _first(data: Any, *path) -> Optional[str]:
    """Walk nested lists/dicts, returning None as soon as a step is missing."""
    for key in path:
        try:
            data = data[key]
        except (KeyError, IndexError, TypeError):
            return None
    return data if isinstance(data, str) else None


class AIClient:
    """Sends prompts to the configured providers."""

    def __init__(self, store: LibraryStore, transport: Optional[httpx.AsyncBaseTransport] = None,
                 timeout: float = 60.0):
        self.store = store
        self.transport = transport
        self.timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _post(self, url: str, payload: Dict, headers: Optional[Dict] = None,
                    params: Optional[Dict] = None) -> Dict:
        try:
            async with self._client() as client:
                response = await client.post(url, json=payload, headers=headers, params=params)
            data = response.json()
        except httpx.HTTPError as e:
            raise AIError(f"Request to AI provider failed: {e}") from e
        except ValueError as e:
            raise AIError(f"AI provider returned invalid JSON (HTTP {response.status_code})") from e

        if isinstance(data, dict) and data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise AIError(message or "AI provider returned an error")
        if not response.is_success:
            raise AIError(f"AI provider returned status {response.status_code}")
        return data

    async def _call(self, provider: str, api_key: str, model: Optional[str],
                    message: str, system: Optional[str], max_tokens: int) -> Optional[str]:
        model = model or DEFAULT_MODELS.get(provider)

        if provider == "openai":
            messages = [{"role": "user", "content": message}]
            if system:
                messages.insert(0, {"role": "system", "content": system})
            data = await self._post(
                OPENAI_URL,
                {"model": model, "messages": messages, "max_tokens": max_tokens},
                headers={"Authorization": f"Bearer {api_key}"},
            )
            return _first(data, "choices", 0, "message", "content")

        if provider == "claude":
            payload = {
                "model": model,
                "max_tokens": max_tokens,
                "messages": [{"role": "user", "content": message}],
            }
            if system:
                payload["system"] = system
            data = await self._post(
                CLAUDE_URL,
                payload,
                headers={"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION},
            )
            return _first(data, "content", 0, "text")

        if provider == "gemini":
            text = f"{system}\n\nUser question: {message}" if system else message
            data = await self._post(
                GEMINI_URL.format(model=model),
                {"contents": [{"parts": [{"text": text}]}]},
                params={"key": api_key},
            )
            return _first(data, "candidates", 0, "content", "parts", 0, "text")

        raise AIError("Unknown provider")

    async def chat(self, provider: str, message: str, context: Optional[str] = None) -> str:
        """Answer a reader's question, optionally grounded in the current page."""
        if provider not in PROVIDERS:
            raise AIError("Unknown provider")
        setting = self.store.get_ai_setting(provider)
        if setting is None or not setting.api_key:
            raise AIError(f"{provider} API key is not configured")

        response = await self._call(provider, setting.api_key, setting.model, message,
                                    build_system_prompt(context), CHAT_MAX_TOKENS)
        return response or "No response"

    async def complete(self, prompt: str) -> Optional[str]:
        """
        One-shot completion with the first configured provider.
        Returns None when nothing is configured or the call fails; callers
        treat AI output as optional.
        """
        settings = {s.provider: s for s in self.store.get_ai_settings() if s.api_key}
        provider = next((p for p in COMPLETION_ORDER if p in settings), None)
        if provider is None:
            return None

        setting = settings[provider]
        try:
            return await self._call(provider, setting.api_key, setting.model, prompt,
                                    None, COMPLETION_MAX_TOKENS)
        except AIError as e:
            logger.error("AI call to %s failed: %s", provider, e)
            return None

    async def suggest_tags(self, title: str, content: str) -> List[str]:
        """Ids of existing tags the model considers fitting for a book."""
        tags = self.store.get_all_tags()
        if not tags:
            return []

        prompt = (
            "Choose the most suitable tags for the following book or article "
            "based on its title and content.\n"
            f"Pick only from the list below and answer comma separated (at most {MAX_SUGGESTED_TAGS}).\n"
            "If no tag fits, answer with nothing.\n\n"
            f"Available tags: {', '.join(t.name for t in tags)}\n\n"
            f"Title: {title}\n"
            f"Content (first 500 characters): {content[:500]}\n\n"
            "Chosen tags (comma separated):"
        )
        response = await self.complete(prompt)
        if not response:
            return []
        return parse_tag_response(response, tags)[:MAX_SUGGESTED_TAGS]

    async def generate_clip_description(self, context: str, book_title: str) -> str:
        prompt = (
            "Write a concise one or two sentence description of an image "
            "captured from the following book.\n"
            f"Book title: {book_title}\n"
            f"Context / surrounding text: {context[:300]}\n\n"
            "Description:"
        )
        return await self.complete(prompt) or ""
