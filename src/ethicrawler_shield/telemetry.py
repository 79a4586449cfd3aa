"""Outcome telemetry for the reporting pipeline.

Keeps a capped list of the most recent errors plus aggregate error and
success counters in the transient store, for display in an admin UI. Writing
telemetry never affects the pipeline's control flow: storage failures are
logged and dropped.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ethicrawler_shield.config import SettingsStore
from ethicrawler_shield.consts import (
    ERROR_STATS_KEY,
    RECENT_ERRORS_KEY,
    SUCCESS_STATS_KEY,
    VERSION,
)
from ethicrawler_shield.errors import ErrorCategory, categorize_error
from ethicrawler_shield.events import utc_timestamp
from ethicrawler_shield.storage import TransientStore

logger = logging.getLogger(__name__)


class ErrorLogEntry(BaseModel):
    """A single recorded pipeline error."""

    timestamp: str = Field(default_factory=lambda: utc_timestamp())
    level: str = "ERROR"
    category: ErrorCategory
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)
    version: str = VERSION


class ErrorStats(BaseModel):
    total: int = 0
    last_error: Optional[str] = None
    by_category: Dict[str, int] = Field(default_factory=dict)


class SuccessStats(BaseModel):
    total: int = 0
    last_success: Optional[str] = None


class TelemetrySnapshot(BaseModel):
    """Aggregated telemetry as shown to an operator."""

    success: SuccessStats = Field(default_factory=SuccessStats)
    errors: ErrorStats = Field(default_factory=ErrorStats)
    recent_errors: List[ErrorLogEntry] = Field(default_factory=list)


def _json_safe(context: Dict[str, Any]) -> Dict[str, Any]:
    """Round-trip context through JSON so any store backend can hold it."""
    return json.loads(json.dumps(context, default=str))


class DeliveryTelemetry:
    """Records categorized error and success statistics."""

    def __init__(self, store: TransientStore, settings_store: SettingsStore):
        """Initialize telemetry.

        Args:
            store: Transient store holding statistics (written without expiry)
            settings_store: Settings, read for the ring buffer size and debug flag
        """
        self.store = store
        self.settings_store = settings_store

    async def record_error(self, message: str, context: Optional[Dict[str, Any]] = None,
                           category: Optional[ErrorCategory] = None) -> ErrorLogEntry:
        """Record a categorized error.

        Args:
            message: Error message, used for categorization
            context: Structured details for debugging
            category: Explicit category, skips keyword matching

        Returns:
            The recorded entry
        """
        entry = ErrorLogEntry(
            category=category or categorize_error(message),
            message=message,
            context=_json_safe(context or {}),
        )
        logger.error(
            f"Ethicrawler [ERROR] [{entry.category.value}]: {message} - "
            f"{json.dumps(entry.context)}"
        )

        try:
            limit = self.settings_store.get().max_recent_errors
            recent = await self.store.get(RECENT_ERRORS_KEY, [])
            recent = [entry.model_dump(mode="json")] + list(recent)
            await self.store.set(RECENT_ERRORS_KEY, recent[:limit])

            stats = ErrorStats.model_validate(await self.store.get(ERROR_STATS_KEY, {}))
            stats.total += 1
            stats.last_error = entry.timestamp
            category = entry.category.value
            stats.by_category[category] = stats.by_category.get(category, 0) + 1
            await self.store.set(ERROR_STATS_KEY, stats.model_dump())
        except Exception as e:
            logger.warning(f"Failed to persist error telemetry: {e}")

        return entry

    async def record_success(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """Record a successful delivery."""
        context = _json_safe(context or {})
        debug = self.settings_store.get().debug
        logger.log(
            logging.INFO if debug else logging.DEBUG,
            f"Ethicrawler [SUCCESS]: {message} - {json.dumps(context)}",
        )

        try:
            stats = SuccessStats.model_validate(await self.store.get(SUCCESS_STATS_KEY, {}))
            stats.total += 1
            stats.last_success = utc_timestamp()
            await self.store.set(SUCCESS_STATS_KEY, stats.model_dump())
        except Exception as e:
            logger.warning(f"Failed to persist success telemetry: {e}")

    async def stats(self) -> TelemetrySnapshot:
        """Read the current statistics."""
        return TelemetrySnapshot(
            success=SuccessStats.model_validate(await self.store.get(SUCCESS_STATS_KEY, {})),
            errors=ErrorStats.model_validate(await self.store.get(ERROR_STATS_KEY, {})),
            recent_errors=[
                ErrorLogEntry.model_validate(item)
                for item in await self.store.get(RECENT_ERRORS_KEY, [])
            ],
        )

    async def clear_errors(self) -> None:
        """Drop the recent error list and reset error counters."""
        await self.store.delete(RECENT_ERRORS_KEY)
        await self.store.delete(ERROR_STATS_KEY)
        logger.info("Error telemetry cleared")
