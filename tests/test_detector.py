"""Tests for the BotDetector composition root."""

import asyncio
from unittest.mock import Mock

import pytest

from ethicrawler_shield.classifier import Classification
from ethicrawler_shield.config import MemorySettingsStore
from ethicrawler_shield.consts import RETRY_JOB_NAME, VERSION
from ethicrawler_shield.detector import BotDetector
from ethicrawler_shield.events import ClassificationEvent, retry_key_for
from ethicrawler_shield.lifecycle import PostResponseHooks
from ethicrawler_shield.retry import APSchedulerTaskScheduler, TaskScheduler

from tests.mocks.ethicrawler_mocks import (
    BACKEND_URL,
    BROWSER_UA,
    GOOGLEBOT_UA,
    GPTBOT_UA,
    RecordingBackend,
    build_detector,
    make_request,
)


class TestObserve:

    def test_ai_bot_produces_exactly_one_event(self):
        detector = build_detector()
        hooks = PostResponseHooks()

        result = detector.observe(make_request({"User-Agent": GPTBOT_UA}, path="/a"), hooks)

        assert result.classification == Classification.AI_BOT
        assert result.reported is True
        assert result.event.path == "/a"
        assert len(hooks) == 1

    @pytest.mark.parametrize("user_agent,classification", [
        (GOOGLEBOT_UA, Classification.WHITELISTED),
        (BROWSER_UA, Classification.UNCLASSIFIED),
    ])
    def test_not_dispatched(self, user_agent, classification):
        detector = build_detector()
        hooks = PostResponseHooks()

        result = detector.observe(make_request({"User-Agent": user_agent}), hooks)

        assert result.classification == classification
        assert result.event is None
        assert len(hooks) == 0

    def test_empty_user_agent_skipped(self):
        result = build_detector().observe(make_request(), PostResponseHooks())
        assert result.skipped == "no_user_agent"
        assert result.classification == Classification.UNCLASSIFIED

    def test_disabled(self):
        result = build_detector(enabled=False).observe(
            make_request({"User-Agent": GPTBOT_UA}), PostResponseHooks()
        )
        assert result.skipped == "disabled"
        assert result.context is None

    def test_excluded_prefix(self):
        detector = build_detector(excluded_path_prefixes=["/admin", "/wp-json"])
        result = detector.observe(
            make_request({"User-Agent": GPTBOT_UA}, path="/wp-json/v2/posts"), PostResponseHooks()
        )
        assert result.skipped == "excluded_path"

    def test_settings_read_per_request(self):
        detector = build_detector()
        request = make_request({"User-Agent": GPTBOT_UA})

        detector.settings_store.update(enabled=False)
        assert detector.observe(request, PostResponseHooks()).skipped == "disabled"

        detector.settings_store.update(enabled=True)
        assert detector.observe(request, PostResponseHooks()).reported is True


class TestWiring:

    def test_default_collaborators(self):
        detector = BotDetector()
        assert detector.settings_store.get().site_id == ""
        assert detector.settings_store.get().backend_url == "https://api.ethicrawler.com"
        assert detector.settings_store.get().enabled is True
        assert isinstance(detector.task_scheduler, APSchedulerTaskScheduler)

    @pytest.mark.asyncio
    async def test_default_runner_delivers_retry(self):
        backend = RecordingBackend().fail_with_connect_error(1)
        detector = BotDetector(
            MemorySettingsStore(
                site_id="site-123", backend_url=BACKEND_URL, retry_base_delay=0.05
            ),
            transport=backend.transport,
        )
        event = ClassificationEvent(
            site_id="site-123", user_agent=GPTBOT_UA, ip_address="203.0.113.1", path="/"
        )

        await detector.startup()
        try:
            result = await detector.delivery_engine.deliver(event)
            assert result.delivered is False
            for _ in range(100):
                if backend.call_count >= 2:
                    break
                await asyncio.sleep(0.02)
        finally:
            await detector.shutdown()

        assert backend.call_count == 2
        assert backend.requests[1].headers["X-Retry-Count"] == "1"
        assert await detector.store.get(retry_key_for(result.correlation_id)) is None
        stats = await detector.telemetry.stats()
        assert stats.success.total == 1

    @pytest.mark.asyncio
    async def test_retry_job_registered_and_lifecycle(self):
        task_scheduler = Mock(spec=TaskScheduler)
        detector = BotDetector(task_scheduler=task_scheduler)

        task_scheduler.register_job.assert_called_once_with(
            RETRY_JOB_NAME, detector.delivery_engine.retry
        )

        await detector.startup()
        await detector.shutdown()
        task_scheduler.start.assert_called_once()
        task_scheduler.shutdown.assert_called_once()


class TestStatus:

    @pytest.mark.asyncio
    async def test_status_snapshot(self):
        backend = RecordingBackend().fail_with_connect_error(1)
        detector = build_detector(backend)
        hooks = PostResponseHooks()
        detector.observe(make_request({"User-Agent": GPTBOT_UA}), hooks)
        await hooks.run()

        status = await detector.status()

        assert status.enabled is True
        assert status.site_id == "site-123"
        assert status.site_id_configured is True
        assert status.version == VERSION
        assert "Googlebot" in status.whitelisted_bots
        assert status.telemetry.errors.total == 1

    @pytest.mark.asyncio
    async def test_unconfigured_site(self):
        status = await build_detector(site_id="").status()
        assert status.site_id_configured is False

    @pytest.mark.asyncio
    async def test_clear_errors(self):
        detector = build_detector()
        await detector.telemetry.record_error("failure")

        await detector.clear_errors()

        status = await detector.status()
        assert status.telemetry.errors.total == 0
        assert status.telemetry.recent_errors == []
