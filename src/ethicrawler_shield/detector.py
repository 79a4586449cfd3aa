"""Composition root of the detection and reporting pipeline.

The host builds one `BotDetector`, calls `startup()` and `shutdown()` from
its lifespan, and feeds every inbound request to `observe()` together with
that request's post-response hooks.

Examples:
    ```python
    detector = BotDetector(MemorySettingsStore(site_id="site-123"))

    @asynccontextmanager
    async def lifespan(app):
        await detector.startup()
        yield
        await detector.shutdown()

    app = FastAPI(lifespan=lifespan)
    app.add_middleware(BotDetectionMiddleware, detector=detector)
    ```
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Request
from pydantic import BaseModel, Field

from ethicrawler_shield.classifier import Classification, UserAgentClassifier
from ethicrawler_shield.config import MemorySettingsStore, SettingsStore
from ethicrawler_shield.consts import DEBUG_QUERY_PARAM, RETRY_JOB_NAME, VERSION
from ethicrawler_shield.context import RequestContext, RequestContextExtractor
from ethicrawler_shield.delivery import DeliveryEngine
from ethicrawler_shield.dispatcher import EventDispatcher
from ethicrawler_shield.events import ClassificationEvent
from ethicrawler_shield.lifecycle import PostResponseHooks
from ethicrawler_shield.retry import APSchedulerTaskScheduler, RetryScheduler, TaskScheduler
from ethicrawler_shield.storage import MemoryTransientStore, TransientStore
from ethicrawler_shield.telemetry import DeliveryTelemetry, TelemetrySnapshot

logger = logging.getLogger(__name__)


class DetectionResult(BaseModel):
    """What `BotDetector.observe` decided for one request."""

    classification: Classification = Classification.UNCLASSIFIED
    context: Optional[RequestContext] = None
    event: Optional[ClassificationEvent] = None
    skipped: Optional[str] = None  # reason the request was not classified

    @property
    def reported(self) -> bool:
        return self.event is not None


class DetectorStatus(BaseModel):
    """Operator-facing status of the detector."""

    enabled: bool
    site_id: str
    site_id_configured: bool
    backend_url: str
    version: str = VERSION
    whitelisted_bots: List[str] = Field(default_factory=list)
    telemetry: TelemetrySnapshot


class BotDetector:
    """Detects AI bots and reports them without delaying responses."""

    def __init__(
        self,
        settings_store: Optional[SettingsStore] = None,
        store: Optional[TransientStore] = None,
        task_scheduler: Optional[TaskScheduler] = None,
        classifier: Optional[UserAgentClassifier] = None,
        extractor: Optional[RequestContextExtractor] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Wire the pipeline.

        Args:
            settings_store: Settings source, read on every request
            store: Transient store for retry records and telemetry
            task_scheduler: Runner for retry jobs, an APScheduler runner if omitted
            classifier: User-agent classifier
            extractor: Request context extractor
            transport: Optional httpx transport for backend calls
        """
        self.settings_store = settings_store or MemorySettingsStore()
        self.store = store or MemoryTransientStore()
        self.task_scheduler = task_scheduler or APSchedulerTaskScheduler()
        self.classifier = classifier or UserAgentClassifier()
        self.extractor = extractor or RequestContextExtractor()

        self.telemetry = DeliveryTelemetry(self.store, self.settings_store)
        self.retry_scheduler = RetryScheduler(
            self.store, self.task_scheduler, self.telemetry, self.settings_store
        )
        self.delivery_engine = DeliveryEngine(
            self.settings_store, self.telemetry, self.retry_scheduler, transport=transport
        )
        self.dispatcher = EventDispatcher(
            self.settings_store, self.delivery_engine, self.telemetry
        )
        self.task_scheduler.register_job(RETRY_JOB_NAME, self.delivery_engine.retry)

    async def startup(self) -> None:
        self.task_scheduler.start()
        logger.info("Ethicrawler bot detector started")

    async def shutdown(self) -> None:
        self.task_scheduler.shutdown()
        logger.info("Ethicrawler bot detector stopped")

    def _is_excluded(self, path: str) -> bool:
        prefixes = self.settings_store.get().excluded_path_prefixes
        return any(path.startswith(prefix) for prefix in prefixes)

    def observe(self, request: Request, hooks: PostResponseHooks) -> DetectionResult:
        """Classify a request and, for an AI bot, queue its report.

        Runs inline in the request; performs no I/O.

        Args:
            request: Inbound request
            hooks: Post-response hooks of this request

        Returns:
            DetectionResult for the request
        """
        if not self.settings_store.get().enabled:
            return DetectionResult(skipped="disabled")
        if self._is_excluded(request.url.path):
            return DetectionResult(skipped="excluded_path")

        context = self.extractor.extract(request)
        if not context.user_agent:
            return DetectionResult(context=context, skipped="no_user_agent")

        classification = self.classifier.classify(context.user_agent)
        event = None
        if classification is Classification.AI_BOT:
            event = self.dispatcher.dispatch(
                context.user_agent, context.ip_address, context.path, hooks
            )
        return DetectionResult(classification=classification, context=context, event=event)

    def is_debug_request(self, request: Request) -> bool:
        return (
            self.settings_store.get().debug_endpoint
            and DEBUG_QUERY_PARAM in request.query_params
        )

    def debug_payload(self, request: Request) -> Dict[str, Any]:
        """Body of the diagnostic response for a debug request."""
        logger.info("Ethicrawler debug endpoint hit")
        return {
            "success": True,
            "data": {
                "user_agent": request.headers.get("user-agent", "none"),
                "forwarded_for": request.headers.get("x-forwarded-for", "none"),
            },
        }

    async def status(self) -> DetectorStatus:
        """Snapshot of settings and delivery statistics."""
        settings = self.settings_store.get()
        return DetectorStatus(
            enabled=settings.enabled,
            site_id=settings.site_id,
            site_id_configured=bool(settings.site_id),
            backend_url=settings.backend_url,
            whitelisted_bots=list(self.classifier.whitelisted_bots),
            telemetry=await self.telemetry.stats(),
        )

    async def clear_errors(self) -> None:
        await self.telemetry.clear_errors()
