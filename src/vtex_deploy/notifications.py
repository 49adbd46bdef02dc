"""Notification sinks for deployment and rollback outcomes.

Sinks receive snapshots of terminal deployment records and of rollback
records. Delivery is fire-and-forget: ``send_deployment`` and
``send_rollback`` catch and log every sink error, so a broken webhook can
never change a deployment's reported outcome.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import structlog

from vtex_deploy.telemetry.sanitization import sanitize_error_message
from vtex_deploy.webhooks import WebhookNotifier

if TYPE_CHECKING:
    from vtex_deploy.contracts import NotificationSink
    from vtex_deploy.schemas.config import NotificationSettings
    from vtex_deploy.schemas.deploy import DeploymentRecord, RollbackRecord

logger = structlog.get_logger(__name__)

DEPLOY_EVENT = "deploy"
ROLLBACK_EVENT = "rollback"


def deployment_payload(record: DeploymentRecord) -> dict[str, Any]:
    """JSON-safe payload for a deployment record."""
    payload = record.model_dump(mode="json")
    payload["duration_ms"] = record.duration_ms
    if record.error:
        payload["error"] = sanitize_error_message(record.error)
    return payload


def rollback_payload(record: RollbackRecord) -> dict[str, Any]:
    """JSON-safe payload for a rollback record."""
    payload = record.model_dump(mode="json")
    if record.error:
        payload["error"] = sanitize_error_message(record.error)
    return payload


class LoggingNotificationSink:
    """Sink that writes notifications to the process log."""

    def send_deployment_notification(self, record: DeploymentRecord) -> None:
        logger.info(
            "deployment_notification",
            deployment_id=record.id,
            environment=record.environment.value,
            status=record.status.value,
            version=record.version,
            workspace=record.workspace,
            duration_ms=record.duration_ms,
            rollback_version=record.rollback_version,
            error=sanitize_error_message(record.error) if record.error else None,
        )

    def send_rollback_notification(self, record: RollbackRecord) -> None:
        logger.info(
            "rollback_notification",
            rollback_id=str(record.rollback_id),
            environment=record.environment.value,
            success=record.success,
            previous_version=record.previous_version,
            current_version=record.current_version,
            duration_ms=record.duration_ms,
            error=sanitize_error_message(record.error) if record.error else None,
        )


class WebhookNotificationSink:
    """Sink that posts notifications to configured webhooks.

    Runs the async notifier to completion on a private event loop, so it
    must be called from synchronous code.
    """

    def __init__(self, notifier: WebhookNotifier) -> None:
        self._notifier = notifier

    def send_deployment_notification(self, record: DeploymentRecord) -> None:
        self._send(DEPLOY_EVENT, deployment_payload(record))

    def send_rollback_notification(self, record: RollbackRecord) -> None:
        self._send(ROLLBACK_EVENT, rollback_payload(record))

    def _send(self, event_type: str, payload: dict[str, Any]) -> None:
        if not self._notifier.should_notify(event_type):
            return
        results = asyncio.run(self._notifier.notify_all(event_type, payload))
        failed = [r.url for r in results if not r.success]
        if failed:
            logger.warning("webhook_delivery_incomplete", event_type=event_type, failed_urls=failed)


class CompositeNotificationSink:
    """Fan out to several sinks; one failing sink does not stop the others."""

    def __init__(self, sinks: Sequence[NotificationSink]) -> None:
        self._sinks = list(sinks)

    @property
    def sinks(self) -> list[NotificationSink]:
        return list(self._sinks)

    def send_deployment_notification(self, record: DeploymentRecord) -> None:
        for sink in self._sinks:
            send_deployment(sink, record)

    def send_rollback_notification(self, record: RollbackRecord) -> None:
        for sink in self._sinks:
            send_rollback(sink, record)


def send_deployment(sink: NotificationSink, record: DeploymentRecord) -> bool:
    """Deliver a deployment snapshot, logging instead of raising on error."""
    try:
        sink.send_deployment_notification(record.model_copy(deep=True))
    except Exception as e:
        logger.warning(
            "deployment_notification_failed",
            deployment_id=record.id,
            sink=type(sink).__name__,
            error=sanitize_error_message(str(e)),
        )
        return False
    return True


def send_rollback(sink: NotificationSink, record: RollbackRecord) -> bool:
    """Deliver a rollback record, logging instead of raising on error."""
    try:
        sink.send_rollback_notification(record)
    except Exception as e:
        logger.warning(
            "rollback_notification_failed",
            rollback_id=str(record.rollback_id),
            sink=type(sink).__name__,
            error=sanitize_error_message(str(e)),
        )
        return False
    return True


def build_notification_sink(settings: NotificationSettings) -> NotificationSink:
    """Sink for the configured notification settings.

    The logging sink is always present; webhooks are added when enabled.
    """
    sinks: list[NotificationSink] = [LoggingNotificationSink()]
    if settings.enabled and settings.webhooks:
        sinks.append(WebhookNotificationSink(WebhookNotifier(configs=settings.webhooks)))
    if len(sinks) == 1:
        return sinks[0]
    return CompositeNotificationSink(sinks)


__all__: list[str] = [
    "CompositeNotificationSink",
    "LoggingNotificationSink",
    "WebhookNotificationSink",
    "build_notification_sink",
    "deployment_payload",
    "rollback_payload",
    "send_deployment",
    "send_rollback",
]
