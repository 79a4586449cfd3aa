"""Ethicrawler Shield - Detect AI crawlers without slowing your FastAPI app down.

Ethicrawler Shield classifies every inbound request by its user-agent and
reports AI-bot traffic to the Ethicrawler backend. Reports are sent only
after the response has left the server; failed reports are persisted and
retried with exponential backoff.

Key Components:
    - BotDetector: Composition root wiring classifier, dispatcher and delivery
    - BotDetectionMiddleware: ASGI middleware observing every request
    - detect_ai_bots: FastAPI dependency factory for per-route detection

Usage:
    ```python
    from ethicrawler_shield import BotDetector, BotDetectionMiddleware, MemorySettingsStore

    detector = BotDetector(MemorySettingsStore(site_id="site-123"))
    app = FastAPI(lifespan=...)  # call detector.startup() / detector.shutdown()
    app.add_middleware(BotDetectionMiddleware, detector=detector)
    ```
"""

from ethicrawler_shield.classifier import (
    AI_BOT_PATTERNS,
    WHITELISTED_BOTS,
    Classification,
    UserAgentClassifier,
    classify,
    is_ai_bot,
    is_whitelisted,
)
from ethicrawler_shield.config import (
    DetectorSettings,
    EnvironmentSettingsLoader,
    FileSettingsLoader,
    MemorySettingsStore,
    SettingsStore,
    load_settings,
)
from ethicrawler_shield.consts import VERSION
from ethicrawler_shield.context import RequestContext, RequestContextExtractor, is_public_ip
from ethicrawler_shield.delivery import DeliveryEngine, DeliveryResult
from ethicrawler_shield.detector import BotDetector, DetectionResult, DetectorStatus
from ethicrawler_shield.dispatcher import EventDispatcher
from ethicrawler_shield.errors import (
    ConfigurationError,
    DeliveryError,
    ErrorCategory,
    EthicrawlerError,
    UnsafeRedirectError,
    categorize_error,
)
from ethicrawler_shield.events import ClassificationEvent, RetryRecord
from ethicrawler_shield.lifecycle import PostResponseHooks
from ethicrawler_shield.middleware import BotDetectionMiddleware, detect_ai_bots
from ethicrawler_shield.retry import (
    APSchedulerTaskScheduler,
    MemoryTaskScheduler,
    RetryScheduler,
    TaskScheduler,
)
from ethicrawler_shield.storage import MemoryTransientStore, RedisTransientStore, TransientStore
from ethicrawler_shield.telemetry import DeliveryTelemetry, ErrorLogEntry, TelemetrySnapshot

__version__ = VERSION

__all__ = [
    "AI_BOT_PATTERNS",
    "WHITELISTED_BOTS",
    "Classification",
    "UserAgentClassifier",
    "classify",
    "is_ai_bot",
    "is_whitelisted",
    "DetectorSettings",
    "EnvironmentSettingsLoader",
    "FileSettingsLoader",
    "MemorySettingsStore",
    "SettingsStore",
    "load_settings",
    "RequestContext",
    "RequestContextExtractor",
    "is_public_ip",
    "DeliveryEngine",
    "DeliveryResult",
    "BotDetector",
    "DetectionResult",
    "DetectorStatus",
    "EventDispatcher",
    "ConfigurationError",
    "DeliveryError",
    "ErrorCategory",
    "EthicrawlerError",
    "UnsafeRedirectError",
    "categorize_error",
    "ClassificationEvent",
    "RetryRecord",
    "PostResponseHooks",
    "BotDetectionMiddleware",
    "detect_ai_bots",
    "APSchedulerTaskScheduler",
    "MemoryTaskScheduler",
    "RetryScheduler",
    "TaskScheduler",
    "MemoryTransientStore",
    "RedisTransientStore",
    "TransientStore",
    "DeliveryTelemetry",
    "ErrorLogEntry",
    "TelemetrySnapshot",
]
