from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

import httpx

from .errors import ProviderError
from .logging import get_logger
from .model import Turn

logger = get_logger(__name__)

__all__ = [
    "CompletionProvider",
    "OpenAICompletionProvider",
    "OPENAI_BASE_URL",
]

OPENAI_BASE_URL = "https://api.openai.com/v1"


class CompletionProvider(Protocol):
    async def complete(self, model: str, turns: Sequence[Turn]) -> str: ...


def _join_choices(payload: dict[str, Any]) -> str | None:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    parts: list[str] = []
    for choice in choices:
        message = choice.get("message") if isinstance(choice, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if isinstance(content, str):
            parts.append(content)
    reply = "\n".join(parts)
    return reply if reply.strip() else None


class OpenAICompletionProvider:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = OPENAI_BASE_URL,
        timeout_s: float = 600,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("OpenAI API key is empty")
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def complete(self, model: str, turns: Sequence[Turn]) -> str:
        body = {
            "model": model,
            "messages": [{"role": t.role, "content": t.content} for t in turns],
            "stream": False,
        }
        logger.debug("openai.request", model=model, turns=len(turns))
        try:
            resp = await self._client.post(self._url, json=body, headers=self._headers)
        except httpx.HTTPError as exc:
            request_url = getattr(exc.request, "url", None)
            logger.error(
                "openai.network_error",
                url=str(request_url) if request_url is not None else None,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            raise ProviderError(f"network error: {exc}") from exc

        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "openai.http_error",
                status=resp.status_code,
                url=str(resp.request.url),
                body=resp.text,
            )
            raise ProviderError(f"HTTP {resp.status_code}: {resp.text}") from exc

        try:
            payload = resp.json()
        except ValueError as exc:
            logger.error(
                "openai.bad_response",
                status=resp.status_code,
                url=str(resp.request.url),
                error=str(exc),
                body=resp.text,
            )
            raise ProviderError("response is not valid JSON") from exc

        reply = _join_choices(payload) if isinstance(payload, dict) else None
        if not reply:
            logger.error("openai.invalid_payload", payload=payload)
            raise ProviderError("completion returned no content")
        logger.debug("openai.response", model=model, chars=len(reply))
        return reply
