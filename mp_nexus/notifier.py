"""Webhook notification of run results.

Sends one message per run to a chat webhook. The generic ``NotifierMessage``
is transformed into the payload each provider expects (Feishu, DingTalk,
WeCom); ``custom`` webhooks receive the message as-is. A ``mock://`` webhook
is accepted and sends nothing.
"""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import BaseModel, Field

from .config import NotifyConfig
from .utils import Logger

PROVIDERS = ("feishu", "dingtalk", "wechatwork", "custom")


class NotifierMessage(BaseModel):
    """Provider-neutral notification content."""

    title: str = ""
    text: str = ""
    markdown: str = ""
    level: str = Field(default="info", description="info | warning | error | success")
    meta: dict[str, Any] = Field(default_factory=dict)

    def compose_text(self) -> str:
        return "\n".join(part for part in (self.title, self.text, self.markdown) if part).strip()


class NotifierError(Exception):
    """Raised when the webhook rejects the message or cannot be reached."""


class WebhookNotifier:
    """Posts ``NotifierMessage`` payloads to a chat webhook.

    Args:
        timeout: Per-request timeout in seconds.
        logger: Diagnostic sink.
        transport: Optional ``httpx`` transport (tests pass a ``MockTransport``).
    """

    def __init__(
        self,
        timeout: float = 10.0,
        logger: Logger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.logger = logger or Logger()
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=5.0),
            transport=self.transport,
        )

    @staticmethod
    def transform(message: NotifierMessage, provider: str) -> dict[str, Any]:
        """Map *message* to the payload shape *provider* expects."""
        if provider == "feishu":
            return {"msg_type": "text", "content": {"text": message.compose_text()}}
        if provider in ("dingtalk", "wechatwork"):
            return {"msgtype": "text", "text": {"content": message.compose_text()}}
        return message.model_dump(exclude_defaults=True)

    async def notify(self, message: NotifierMessage, config: NotifyConfig) -> None:
        """Send *message* according to *config*.

        Raises:
            NotifierError: On a non-2xx response or a transport failure.
        """
        if config.webhook.startswith("mock://"):
            self.logger.debug(f"[notify] mock webhook, skipping send ({config.webhook})")
            return

        payload = self.transform(message, config.provider)
        try:
            async with self._client() as client:
                response = await client.post(config.webhook, json=payload, headers=config.headers)
        except httpx.HTTPError as exc:
            raise NotifierError(f"Notifier request failed: {exc}") from exc

        if not response.is_success:
            raise NotifierError(
                f"Notifier request failed: {response.status_code} "
                f"{response.reason_phrase} {response.text[:200]}".rstrip()
            )
        self.logger.debug(f"[notify] sent to {config.provider} webhook")
