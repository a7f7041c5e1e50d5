"""Outbound message sinks. Failures are logged and never raised."""
import asyncio
import os
from collections import deque
from typing import Any

import httpx

from gasto_categorizer.interfaces import NotificationSink
from gasto_categorizer.logger import get_logger

logger = get_logger(__name__)

DISCORD_CONTENT_LIMIT = 2000


class LoggingNotificationSink(NotificationSink):
    """Writes messages to the log; used when no gateway is configured."""

    def __init__(self) -> None:
        self.sent: deque[tuple[str, str, str]] = deque(maxlen=100)

    async def notify(
        self,
        conversation_id: str,
        message: str,
        context: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.sent.append((conversation_id, context, message))
        logger.info("[NOTIFY] %s -> %s: %s", context, conversation_id, message.replace("\n", " | "))


class _HttpSink(NotificationSink):
    def __init__(self, url: str, client: httpx.AsyncClient | None = None, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout
        self._client = client
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        client = self._client
        if client is not None and not client.is_closed:
            return client
        async with self._client_lock:
            client = self._client
            if client is None or client.is_closed:
                client = httpx.AsyncClient()
                self._client = client
            return client

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _post(self, payload: dict[str, Any], description: str) -> None:
        client = await self._get_client()
        try:
            response = await client.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("[NOTIFY] Failed to deliver %s: %s", description, exc)


class WebhookNotificationSink(_HttpSink):
    """POSTs replies to the chat gateway that owns the conversation."""

    def __init__(self, url: str | None = None, client: httpx.AsyncClient | None = None):
        super().__init__(url or os.getenv("NOTIFY_WEBHOOK_URL") or "", client=client)

    async def notify(
        self,
        conversation_id: str,
        message: str,
        context: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        payload = {
            "conversation_id": conversation_id,
            "message": message,
            "context": context,
            "metadata": metadata or {},
        }
        await self._post(payload, f"{context} to {conversation_id}")


class DiscordAlertSink(_HttpSink):
    """Operator alerts through a Discord webhook."""

    def __init__(self, url: str | None = None, client: httpx.AsyncClient | None = None):
        super().__init__(url or os.getenv("DISCORD_WEBHOOK_URL") or "", client=client)

    async def notify(
        self,
        conversation_id: str,
        message: str,
        context: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        lines = [f"**[{context}]** {message}"]
        for key, value in (metadata or {}).items():
            if value is not None:
                lines.append(f"• {key}: {value}")
        content = "\n".join(lines)[:DISCORD_CONTENT_LIMIT]
        await self._post({"content": content}, f"{context} alert")
