"""
Bot delivery webhook client.

POSTs a purchase payload to the bot's webhook URL. A single attempt with a
timeout; the caller decides what to do on failure.
"""

import httpx
from structlog import get_logger

from economy.config import settings
from economy.exceptions import WebhookDeliveryError
from economy.models.domain import DeliveryPayload
from economy.observability.tracing import get_tracer

logger = get_logger(__name__)
tracer = get_tracer(__name__)

RESPONSE_SNIPPET_LENGTH = 500


def payload_to_json(payload: DeliveryPayload) -> dict[str, str | int]:
    """Wire format expected by bot operators (camelCase keys)."""
    return {
        "purchaseId": str(payload.purchase_id),
        "botId": payload.bot_id,
        "botName": payload.bot_name,
        "userId": payload.account_id,
        "userName": payload.display_name,
        "telegramId": payload.telegram_id,
        "amount": str(payload.amount),
        "timestamp": payload.timestamp.isoformat(),
    }


class BotDeliveryClient:
    """Delivers bot purchases to the operator's webhook."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds or settings.webhook_timeout_seconds
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def deliver(self, url: str, payload: DeliveryPayload) -> str:
        """
        POST the payload and return a snippet of the response body.

        Raises:
            WebhookDeliveryError: Non-2xx response, timeout or connection failure
        """
        with tracer.start_as_current_span("bot_webhook_delivery") as span:
            span.set_attribute("bot.id", payload.bot_id)
            try:
                response = await self.http_client.post(
                    url, json=payload_to_json(payload), timeout=self.timeout_seconds
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise WebhookDeliveryError(url, f"HTTP {e.response.status_code}") from e
            except httpx.TimeoutException as e:
                raise WebhookDeliveryError(url, "timeout") from e
            except httpx.HTTPError as e:
                raise WebhookDeliveryError(url, str(e) or type(e).__name__) from e
            span.set_attribute("http.status_code", response.status_code)

        logger.info(
            "bot_webhook_delivered",
            purchase_id=str(payload.purchase_id),
            bot_id=payload.bot_id,
            status=response.status_code,
        )
        return response.text[:RESPONSE_SNIPPET_LENGTH]

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
