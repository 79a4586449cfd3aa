"""Delivery of classification events to the collection backend.

First attempts run after the triggering response has been sent, with a short
timeout and without inspecting the backend's answer. Failed first attempts
are persisted and handed to the retry scheduler; retries inspect the status
code and only a 2xx answer counts as delivered.
"""

import asyncio
import ipaddress
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from ethicrawler_shield.config import DetectorSettings, SettingsStore
from ethicrawler_shield.consts import (
    CORRELATION_ID_HEADER,
    FIRST_ATTEMPT_MAX_REDIRECTS,
    LOG_REQUEST_ENDPOINT,
    PRODUCT_NAME,
    RETRY_COUNT_HEADER,
    RETRY_MAX_REDIRECTS,
    VERSION,
)
from ethicrawler_shield.context import is_public_ip
from ethicrawler_shield.errors import ConfigurationError, EthicrawlerError, UnsafeRedirectError
from ethicrawler_shield.events import (
    ClassificationEvent,
    correlation_id_from_retry_key,
    generate_correlation_id,
    retry_key_for,
)
from ethicrawler_shield.retry import RetryScheduler
from ethicrawler_shield.telemetry import DeliveryTelemetry

logger = logging.getLogger(__name__)


class DeliveryResult(BaseModel):
    """Outcome of a single delivery attempt."""

    delivered: bool
    endpoint: Optional[str] = None
    correlation_id: Optional[str] = None
    status_code: Optional[int] = None
    error: Optional[str] = None
    terminal: bool = False  # failure that no retry can fix


def endpoint_url(backend_url: str) -> str:
    """Build the report endpoint for a backend base URL.

    Raises:
        ConfigurationError: If the URL is not an absolute http(s) URL
    """
    try:
        url = httpx.URL(backend_url or "")
    except httpx.InvalidURL:
        url = None
    if url is None or url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError("Invalid backend URL configured", {"url": backend_url})
    return backend_url.rstrip("/") + LOG_REQUEST_ENDPOINT


async def _resolves_to_public(host: str) -> bool:
    """Whether every address a redirect host points to is public."""
    try:
        return is_public_ip(str(ipaddress.ip_address(host)))
    except ValueError:
        pass

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, None)
    except UnicodeError:
        # Hosts that cannot be IDNA-encoded are refused
        return False
    except OSError:
        # Unresolvable targets fail on connect
        return True
    return all(is_public_ip(info[4][0]) for info in infos)


async def reject_unsafe_redirect(response: httpx.Response) -> None:
    """httpx response hook refusing redirects into private or loopback space."""
    if not response.has_redirect_location:
        return
    target = response.request.url.join(response.headers["Location"])
    if not await _resolves_to_public(target.host):
        raise UnsafeRedirectError(
            f"Redirect to non-public address rejected: {target.host}",
            {"location": str(target)},
        )


class DeliveryEngine:
    """Sends classification events to the backend and drives retries."""

    def __init__(
        self,
        settings_store: SettingsStore,
        telemetry: DeliveryTelemetry,
        retry_scheduler: RetryScheduler,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the delivery engine.

        Args:
            settings_store: Source of backend URL and timeouts, read per attempt
            telemetry: Outcome recorder
            retry_scheduler: Persists and reschedules failed payloads
            transport: Optional httpx transport, mainly for tests
        """
        self.settings_store = settings_store
        self.telemetry = telemetry
        self.retry_scheduler = retry_scheduler
        self.transport = transport

    def _client(self, settings: DetectorSettings, is_retry: bool) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self.transport,
            timeout=settings.retry_timeout if is_retry else settings.first_attempt_timeout,
            follow_redirects=True,
            max_redirects=RETRY_MAX_REDIRECTS if is_retry else FIRST_ATTEMPT_MAX_REDIRECTS,
            verify=settings.verify_ssl,
            event_hooks={"response": [reject_unsafe_redirect]},
        )

    @staticmethod
    def _headers(correlation_id: str, is_retry: bool, retry_count: int) -> Dict[str, str]:
        user_agent = f"{PRODUCT_NAME}/{VERSION}"
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            CORRELATION_ID_HEADER: correlation_id,
        }
        if is_retry:
            user_agent += " (retry)"
            headers[RETRY_COUNT_HEADER] = str(retry_count)
        headers["User-Agent"] = user_agent
        return headers

    async def attempt_delivery(
        self,
        event: ClassificationEvent,
        is_retry: bool = False,
        retry_key: Optional[str] = None,
        retry_count: int = 0,
    ) -> DeliveryResult:
        """Perform one POST of the event to the backend.

        Never raises for delivery problems; the outcome is described by the
        returned result.

        Args:
            event: Event to report
            is_retry: Whether this attempt is run by the retry job
            retry_key: Retry key of the persisted record, for retries
            retry_count: Attempt number sent in the retry count header

        Returns:
            DeliveryResult describing the outcome
        """
        settings = self.settings_store.get()
        try:
            endpoint = endpoint_url(settings.backend_url)
        except ConfigurationError as e:
            return DeliveryResult(delivered=False, error=e.message, terminal=True)

        if retry_key:
            correlation_id = correlation_id_from_retry_key(retry_key)
        else:
            correlation_id = generate_correlation_id(event)

        headers = self._headers(correlation_id, is_retry, retry_count)
        try:
            async with self._client(settings, is_retry) as client:
                response = await client.post(endpoint, content=event.to_json(), headers=headers)
        except (httpx.HTTPError, EthicrawlerError) as e:
            return DeliveryResult(
                delivered=False,
                endpoint=endpoint,
                correlation_id=correlation_id,
                error=f"{type(e).__name__}: {e}",
            )

        if not is_retry:
            # Fire-and-forget: the answer itself is not inspected
            return DeliveryResult(
                delivered=True,
                endpoint=endpoint,
                correlation_id=correlation_id,
                status_code=response.status_code,
            )

        delivered = response.is_success
        return DeliveryResult(
            delivered=delivered,
            endpoint=endpoint,
            correlation_id=correlation_id,
            status_code=response.status_code,
            error=None if delivered else f"status {response.status_code}",
        )

    async def deliver(self, event: ClassificationEvent) -> Optional[DeliveryResult]:
        """First delivery attempt, run as a post-response hook.

        A failure is recorded, the payload persisted and a retry scheduled.
        """
        try:
            result = await self.attempt_delivery(event)
            context: Dict[str, Any] = {
                "endpoint": result.endpoint,
                "request_id": result.correlation_id,
            }

            if result.delivered:
                context["data_size"] = len(event.to_json())
                await self.telemetry.record_success("Data transmitted to backend", context)
                return result

            if result.terminal:
                await self.telemetry.record_error(
                    result.error, {"url": self.settings_store.get().backend_url}
                )
                return result

            context["error"] = result.error
            await self.telemetry.record_error(f"API request failed: {result.error}", context)

            retry_key = retry_key_for(result.correlation_id)
            await self.retry_scheduler.store_payload(retry_key, event)
            await self.retry_scheduler.schedule_retry(retry_key)
            return result
        except Exception as e:
            logger.exception(f"Unexpected failure delivering event: {e}")
            await self.telemetry.record_error(f"Unexpected delivery failure: {e}")
            return None

    async def retry(self, retry_key: str) -> Optional[DeliveryResult]:
        """Re-deliver a persisted event; the body of the retry job.

        Running it for a key whose record is gone only records an error.
        """
        try:
            record = await self.retry_scheduler.load_record(retry_key)
            if record is None:
                await self.telemetry.record_error(
                    "Retry failed: Missing data for retry", {"retry_key": retry_key}
                )
                await self.retry_scheduler.purge(retry_key)
                return None

            retry_count = record.attempt_count
            logger.info(f"Attempting retry {retry_count} for {retry_key}")
            result = await self.attempt_delivery(
                record.payload, is_retry=True, retry_key=retry_key, retry_count=retry_count
            )
            context: Dict[str, Any] = {
                "endpoint": result.endpoint,
                "retry_count": retry_count,
                "retry_key": retry_key,
            }

            if result.delivered:
                context["status_code"] = result.status_code
                await self.telemetry.record_success("Retry successful", context)
                await self.retry_scheduler.purge(retry_key)
                return result

            if result.terminal:
                await self.telemetry.record_error(
                    "Retry failed: Invalid backend URL",
                    {"url": self.settings_store.get().backend_url, "retry_key": retry_key},
                )
                await self.retry_scheduler.purge(retry_key)
                return result

            context["error"] = result.error
            if result.status_code is not None:
                context["status_code"] = result.status_code
            await self.telemetry.record_error(f"Retry attempt failed: {result.error}", context)

            # Reschedules while attempts remain, otherwise drops the record
            await self.retry_scheduler.schedule_retry(retry_key)
            return result
        except Exception as e:
            logger.exception(f"Unexpected failure retrying {retry_key}: {e}")
            await self.telemetry.record_error(f"Unexpected retry failure: {e}", {"retry_key": retry_key})
            return None
