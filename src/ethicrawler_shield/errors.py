"""Error taxonomy for Ethicrawler Shield.

Every failure in the reporting pipeline is handled locally: exceptions raised
inside the delivery engine are caught, categorized and handed to telemetry.
Nothing defined here ever reaches the request that triggered a report.
"""

from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ErrorCategory(str, Enum):
    """Categories used to aggregate pipeline errors."""
    CONFIGURATION = "configuration"
    RETRY = "retry"
    TIMEOUT = "timeout"
    HTTP = "http"
    SSL = "ssl"
    DNS = "dns"
    GENERAL = "general"


# Checked in order, lowest specificity last.
_CATEGORY_KEYWORDS: Tuple[Tuple[ErrorCategory, Tuple[str, ...]], ...] = (
    (ErrorCategory.CONFIGURATION, ("url",)),
    (ErrorCategory.RETRY, ("retry",)),
    (ErrorCategory.TIMEOUT, ("timeout", "timed out")),
    (ErrorCategory.HTTP, ("http", "status")),
    (ErrorCategory.SSL, ("ssl", "tls")),
    (ErrorCategory.DNS, ("dns", "resolve")),
)


def categorize_error(message: str) -> ErrorCategory:
    """Map an error message to its category by keyword.

    Args:
        message: Human readable error message

    Returns:
        The first category whose keyword occurs in the message, or
        ``ErrorCategory.GENERAL`` when none does.
    """
    lowered = (message or "").lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return ErrorCategory.GENERAL


class EthicrawlerError(Exception):
    """Base exception for Ethicrawler Shield errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    @property
    def category(self) -> ErrorCategory:
        return categorize_error(self.message)


class ConfigurationError(EthicrawlerError):
    """Raised for non-transient configuration problems (never retried)."""


class DeliveryError(EthicrawlerError):
    """Raised when a report could not be handed to the backend."""


class UnsafeRedirectError(DeliveryError):
    """Raised when the backend redirects to a private or loopback address."""
