"""Webhook delivery for deployment and rollback events.

Each configured endpoint receives an HTTP POST with a JSON payload
``{"event_type": ..., **event_data}``. Server errors, timeouts and
transport errors are retried with exponential backoff; client errors are
not retried. Delivery never raises; every attempt yields a
``WebhookNotificationResult``.

Example:
    >>> from vtex_deploy.schemas.config import WebhookConfig
    >>> config = WebhookConfig(url="https://hooks.example.com/deploys", events=["deploy"])
    >>> notifier = WebhookNotifier(config=config)
    >>> notifier.should_notify("rollback")
    False
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from vtex_deploy.schemas.config import WebhookConfig
from vtex_deploy.telemetry.sanitization import sanitize_error_message
from vtex_deploy.telemetry.tracing import create_span

# Exponential backoff configuration
BACKOFF_BASE_SECONDS = 1.0
"""Base delay for exponential backoff (doubles each retry)."""

logger = structlog.get_logger(__name__)


class WebhookNotificationResult(BaseModel):
    """Result of delivering one event to one webhook.

    Attributes:
        success: Whether the notification was delivered.
        status_code: HTTP status of the last response, if any.
        url: Target webhook URL.
        error: Error message if delivery failed.
        attempts: Number of delivery attempts made.
    """

    model_config = ConfigDict(extra="forbid")

    success: bool = Field(..., description="Whether notification delivered successfully")
    status_code: int | None = Field(default=None, description="HTTP response status code")
    url: str = Field(..., description="Target webhook URL")
    error: str | None = Field(default=None, description="Error message if failed")
    attempts: int = Field(default=1, ge=1, description="Number of delivery attempts")


class WebhookNotifier:
    """HTTP webhook notifier for deploy and rollback events.

    Examples:
        >>> notifier = WebhookNotifier(
        ...     configs=[WebhookConfig(url="https://a.example/hook", events=["deploy", "rollback"])]
        ... )
        >>> notifier.should_notify("deploy")
        True
    """

    config: WebhookConfig | None
    configs: list[WebhookConfig]

    def __init__(
        self,
        config: WebhookConfig | None = None,
        configs: list[WebhookConfig] | None = None,
    ) -> None:
        """Initialize with one config or a list of configs.

        Raises:
            ValueError: If neither config nor configs provided.
        """
        if config is not None:
            self.config = config
            self.configs = [config]
        elif configs is not None:
            self.configs = list(configs)
            self.config = self.configs[0] if self.configs else None
        else:
            raise ValueError("Must provide either config or configs")

    def should_notify(self, event_type: str) -> bool:
        """Whether any configured webhook subscribes to ``event_type``."""
        return any(event_type in config.events for config in self.configs)

    def build_payload(self, event_type: str, event_data: dict[str, Any]) -> dict[str, Any]:
        return {"event_type": event_type, **event_data}

    async def notify(
        self,
        event_type: str,
        event_data: dict[str, Any],
    ) -> WebhookNotificationResult:
        """Deliver an event to the primary webhook configuration."""
        if self.config is None:
            return WebhookNotificationResult(
                success=False,
                url="",
                error="No webhook configuration",
            )
        return await self._deliver(self.config, event_type, event_data)

    async def notify_all(
        self,
        event_type: str,
        event_data: dict[str, Any],
    ) -> list[WebhookNotificationResult]:
        """Deliver an event to every webhook subscribed to it.

        One failing webhook does not stop delivery to the others.
        """
        results: list[WebhookNotificationResult] = []
        for config in self.configs:
            if event_type not in config.events:
                logger.debug(
                    "webhook_skipped",
                    url=config.url,
                    event_type=event_type,
                    reason="event_type_not_subscribed",
                )
                continue
            results.append(await self._deliver(config, event_type, event_data))
        return results

    async def _deliver(
        self,
        config: WebhookConfig,
        event_type: str,
        event_data: dict[str, Any],
    ) -> WebhookNotificationResult:
        url = config.url
        timeout = config.timeout_seconds
        headers = config.headers or {}
        payload = self.build_payload(event_type, event_data)

        # 1 initial attempt + retry_count retries
        max_attempts = 1 + config.retry_count
        last_status_code: int | None = None
        last_error: str | None = None

        with create_span(
            "vtex_deploy.webhook.notify",
            attributes={
                "webhook.url": url,
                "webhook.event_type": event_type,
                "webhook.max_retries": config.retry_count,
            },
        ) as span:
            start_time = time.monotonic()

            for attempt in range(1, max_attempts + 1):
                retryable = False
                try:
                    async with httpx.AsyncClient(timeout=timeout) as client:
                        response = await client.post(url=url, json=payload, headers=headers)
                    last_status_code = response.status_code

                    if response.status_code < 400:
                        duration_ms = int((time.monotonic() - start_time) * 1000)
                        span.set_attribute("webhook.attempts", attempt)
                        span.set_attribute("webhook.status_code", response.status_code)
                        span.set_attribute("webhook.success", True)
                        logger.info(
                            "webhook_notification_sent",
                            url=url,
                            event_type=event_type,
                            status_code=response.status_code,
                            attempts=attempt,
                            duration_ms=duration_ms,
                        )
                        return WebhookNotificationResult(
                            success=True,
                            status_code=response.status_code,
                            url=url,
                            attempts=attempt,
                        )

                    if response.status_code >= 500:
                        last_error = f"Server error: {response.status_code}"
                        retryable = True
                    else:
                        # Client error - don't retry
                        last_error = f"Client error: {response.status_code}"
                except httpx.TimeoutException:
                    last_error = "Request timed out"
                    retryable = True
                except httpx.RequestError as e:
                    last_error = sanitize_error_message(str(e))
                    retryable = True

                if not retryable:
                    break
                if attempt < max_attempts:
                    backoff_delay = BACKOFF_BASE_SECONDS * (2 ** (attempt - 1))
                    logger.warning(
                        "webhook_notification_retry",
                        url=url,
                        event_type=event_type,
                        error=last_error,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        backoff_seconds=backoff_delay,
                    )
                    await asyncio.sleep(backoff_delay)

            duration_ms = int((time.monotonic() - start_time) * 1000)
            attempts = attempt
            span.set_attribute("webhook.attempts", attempts)
            span.set_attribute("webhook.success", False)
            if last_status_code is not None:
                span.set_attribute("webhook.status_code", last_status_code)
            logger.error(
                "webhook_notification_failed",
                url=url,
                event_type=event_type,
                status_code=last_status_code,
                error=last_error,
                attempts=attempts,
                duration_ms=duration_ms,
            )
            return WebhookNotificationResult(
                success=False,
                status_code=last_status_code,
                url=url,
                error=last_error,
                attempts=attempts,
            )


__all__: list[str] = [
    "BACKOFF_BASE_SECONDS",
    "WebhookNotificationResult",
    "WebhookNotifier",
]
