from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import anyio
import httpx

from ..errors import TransportError
from ..logging import get_logger

logger = get_logger(__name__)

MAX_RETRY_AFTER_ATTEMPTS = 3


class TelegramApiError(TransportError):
    def __init__(self, method: str, description: str, *, status: int | None = None) -> None:
        self.method = method
        self.description = description
        self.status = status
        super().__init__(f"{method}: {description}")


class TelegramRetryAfter(TelegramApiError):
    def __init__(self, method: str, retry_after: float) -> None:
        self.retry_after = retry_after
        super().__init__(method, f"retry after {retry_after:g}", status=429)


class BotClient(Protocol):
    async def close(self) -> None: ...

    async def get_me(self) -> dict[str, Any]: ...

    async def get_updates(
        self,
        offset: int | None,
        timeout_s: int = 50,
        allowed_updates: list[str] | None = None,
    ) -> list[dict[str, Any]]: ...

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_to_message_id: int | None = None,
        entities: list[dict[str, Any]] | None = None,
        parse_mode: str | None = None,
    ) -> dict[str, Any]: ...

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        entities: list[dict[str, Any]] | None = None,
        parse_mode: str | None = None,
    ) -> dict[str, Any]: ...


_RETRY_AFTER_RE = re.compile(r"retry after (\d+)", re.IGNORECASE)


def _retry_after_from_payload(payload: dict[str, Any]) -> float | None:
    params = payload.get("parameters")
    if isinstance(params, dict):
        retry_after = params.get("retry_after")
        if isinstance(retry_after, (int, float)):
            return float(retry_after)
    description = payload.get("description")
    if isinstance(description, str):
        match = _RETRY_AFTER_RE.search(description)
        if match:
            return float(match.group(1))
    return None


class TelegramClient:
    def __init__(
        self,
        token: str,
        timeout_s: float = 120,
        client: httpx.AsyncClient | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
        max_retry_after: int = MAX_RETRY_AFTER_ATTEMPTS,
    ) -> None:
        if not token:
            raise ValueError("Telegram token is empty")
        self._base = f"https://api.telegram.org/bot{token}"
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None
        self._sleep = sleep
        self._max_retry_after = max_retry_after

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _call(self, method: str, json_data: dict[str, Any]) -> Any:
        attempt = 0
        while True:
            try:
                return await self._post(method, json_data)
            except TelegramRetryAfter as exc:
                attempt += 1
                if attempt > self._max_retry_after:
                    raise
                await self._sleep(exc.retry_after)

    async def _post(self, method: str, json_data: dict[str, Any]) -> Any:
        logger.debug("telegram.request", method=method, payload=json_data)
        try:
            resp = await self._client.post(f"{self._base}/{method}", json=json_data)
        except httpx.HTTPError as e:
            logger.error(
                "telegram.network_error",
                method=method,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            raise TelegramApiError(method, f"network error: {e}") from e

        try:
            payload = resp.json()
        except ValueError:
            payload = None

        if resp.status_code == 429 and isinstance(payload, dict):
            retry_after = _retry_after_from_payload(payload)
            if retry_after is not None:
                logger.info(
                    "telegram.rate_limited",
                    method=method,
                    status=resp.status_code,
                    retry_after=retry_after,
                )
                raise TelegramRetryAfter(method, retry_after)

        if not isinstance(payload, dict):
            logger.error(
                "telegram.bad_response",
                method=method,
                status=resp.status_code,
                body=resp.text,
            )
            raise TelegramApiError(
                method, f"unexpected response body: {resp.text[:200]}", status=resp.status_code
            )

        if not payload.get("ok") or resp.is_error:
            description = str(payload.get("description") or f"HTTP {resp.status_code}")
            logger.error(
                "telegram.api_error",
                method=method,
                status=resp.status_code,
                description=description,
            )
            raise TelegramApiError(method, description, status=resp.status_code)

        logger.debug("telegram.response", method=method, payload=payload)
        return payload.get("result")

    async def get_me(self) -> dict[str, Any]:
        result = await self._call("getMe", {})
        if not isinstance(result, dict):
            raise TelegramApiError("getMe", "unexpected result")
        return result

    async def get_updates(
        self,
        offset: int | None,
        timeout_s: int = 50,
        allowed_updates: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"timeout": timeout_s}
        if offset is not None:
            params["offset"] = offset
        if allowed_updates is not None:
            params["allowed_updates"] = allowed_updates
        result = await self._call("getUpdates", params)
        if not isinstance(result, list):
            raise TelegramApiError("getUpdates", "unexpected result")
        return result

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_to_message_id: int | None = None,
        entities: list[dict[str, Any]] | None = None,
        parse_mode: str | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
        }
        if reply_to_message_id is not None:
            params["reply_to_message_id"] = reply_to_message_id
        if entities is not None:
            params["entities"] = entities
        if parse_mode is not None:
            params["parse_mode"] = parse_mode
        result = await self._call("sendMessage", params)
        if not isinstance(result, dict):
            raise TelegramApiError("sendMessage", "unexpected result")
        return result

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        entities: list[dict[str, Any]] | None = None,
        parse_mode: str | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
        }
        if entities is not None:
            params["entities"] = entities
        if parse_mode is not None:
            params["parse_mode"] = parse_mode
        result = await self._call("editMessageText", params)
        # Telegram answers `true` for inline messages; keep the known id.
        if isinstance(result, dict):
            return result
        return {"message_id": message_id, "chat": {"id": chat_id}}
