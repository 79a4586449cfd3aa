"""Turns a detected AI-bot request into a deferred report."""

import logging
from typing import Optional

from ethicrawler_shield.config import SettingsStore
from ethicrawler_shield.delivery import DeliveryEngine
from ethicrawler_shield.errors import ErrorCategory
from ethicrawler_shield.events import ClassificationEvent
from ethicrawler_shield.lifecycle import PostResponseHooks
from ethicrawler_shield.telemetry import DeliveryTelemetry

logger = logging.getLogger(__name__)


class EventDispatcher:
    """Builds classification events and defers their delivery.

    Nothing here performs I/O: delivery, and even telemetry writes, are
    enqueued on the request's post-response hooks.
    """

    def __init__(self, settings_store: SettingsStore, delivery_engine: DeliveryEngine,
                 telemetry: DeliveryTelemetry):
        self.settings_store = settings_store
        self.delivery_engine = delivery_engine
        self.telemetry = telemetry

    def dispatch(self, user_agent: str, ip_address: str, path: str,
                 hooks: PostResponseHooks) -> Optional[ClassificationEvent]:
        """Create an event for a detected bot and schedule its delivery.

        Args:
            user_agent: Sanitized User-Agent of the request
            ip_address: Resolved client IP address
            path: Request URI
            hooks: Post-response hooks of the triggering request

        Returns:
            The event, or None when no site id is configured
        """
        site_id = self.settings_store.get().site_id
        if not site_id:
            hooks.add(
                self.telemetry.record_error,
                "No site ID configured",
                category=ErrorCategory.CONFIGURATION,
            )
            return None

        event = ClassificationEvent(
            site_id=site_id,
            user_agent=user_agent,
            ip_address=ip_address,
            path=path,
        )
        hooks.add(self.delivery_engine.deliver, event)
        logger.debug(f"Queued report for {ip_address} {path!r}")
        return event
