# booking_engine/services/notification_provider.py
"""
Notification provider used by the outbox dispatcher.

Delivery itself belongs to the notification service; this client hands an
effect over with its idempotency key so the receiving side can drop repeats.
When no service URL is configured the effect is only logged, which is how
local development and tests run.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Optional

import httpx

from ..core.config import Settings, settings as default_settings
from ..domain.notification_effect import NotificationEffect

logger = logging.getLogger(__name__)


class NotificationProviderTemporaryError(RuntimeError):
    """Transient failure; the outbox worker retries with backoff."""


class NotificationProviderError(RuntimeError):
    """The notification service rejected the effect."""


@dataclass(slots=True)
class NotificationDispatchResult:
    """Metadata describing a provider hand-off."""

    idempotency_key: str
    event_type: str
    delivered: bool
    status_code: Optional[int] = None


class NotificationProvider:
    """
    Hand notification effects to the notification service.

    Usage:
        provider = NotificationProvider()
        provider.deliver(effect)
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        cfg = config or default_settings
        self._url = cfg.notification_service_url
        self._api_key = cfg.notification_service_api_key.get_secret_value()
        self._timeout = cfg.gateway_timeout_seconds
        self._transport = transport

    def deliver(self, effect: NotificationEffect) -> NotificationDispatchResult:
        key = effect.idempotency_key
        if not self._url:
            logger.info(
                "Notification %s (no notification service configured): %s",
                key,
                json.dumps(effect.request_body(), sort_keys=True, default=str)[:500],
            )
            return NotificationDispatchResult(
                idempotency_key=key, event_type=effect.event, delivered=False
            )

        headers = {"Idempotency-Key": key, "Accept": "application/json"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(self._url, json=effect.request_body(), headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status >= 500 or status == 429:
                raise NotificationProviderTemporaryError(
                    f"Notification service responded with {status}"
                ) from exc
            raise NotificationProviderError(
                f"Notification service rejected {key}: {status}"
            ) from exc
        except httpx.TransportError as exc:
            raise NotificationProviderTemporaryError(
                f"Notification service unreachable: {exc}"
            ) from exc

        logger.info("Delivered notification %s", key)
        return NotificationDispatchResult(
            idempotency_key=key,
            event_type=effect.event,
            delivered=True,
            status_code=response.status_code,
        )
