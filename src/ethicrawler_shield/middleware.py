"""FastAPI/Starlette integration.

Two ways to attach a `BotDetector` to an application:

- `BotDetectionMiddleware`, a pure ASGI middleware observing every HTTP
  request and running the request's post-response hooks once the final
  response body message has been sent.
- `detect_ai_bots`, a dependency factory for per-route detection that runs
  the hooks as a Starlette background task.

Neither alters the response of the request being observed.
"""

import logging
from typing import Awaitable, Callable

from fastapi import BackgroundTasks, Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ethicrawler_shield.consts import POST_RESPONSE_HOOKS_STATE_KEY
from ethicrawler_shield.detector import BotDetector, DetectionResult
from ethicrawler_shield.lifecycle import PostResponseHooks

logger = logging.getLogger(__name__)


class BotDetectionMiddleware:
    """ASGI middleware reporting AI-bot requests after they are answered.

    Examples:
        ```python
        app = FastAPI()
        app.add_middleware(BotDetectionMiddleware, detector=detector)
        ```
    """

    def __init__(self, app: ASGIApp, detector: BotDetector):
        self.app = app
        self.detector = detector

    def _observe(self, request: Request, hooks: PostResponseHooks) -> None:
        try:
            self.detector.observe(request, hooks)
        except Exception as e:
            logger.exception(f"Bot detection failed for {request.url.path}: {e}")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)

        if self.detector.is_debug_request(request):
            response = JSONResponse(self.detector.debug_payload(request))
            await response(scope, receive, send)
            return

        hooks = PostResponseHooks()
        scope.setdefault("state", {})[POST_RESPONSE_HOOKS_STATE_KEY] = hooks
        self._observe(request, hooks)

        response_complete = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_complete
            await send(message)
            if message["type"] == "http.response.body" and not message.get("more_body", False):
                response_complete = True

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            if response_complete:
                await hooks.run()
            else:
                hooks.discard()


def detect_ai_bots(detector: BotDetector) -> Callable[..., Awaitable[DetectionResult]]:
    """Create a dependency that classifies the request it is attached to.

    Reports are delivered from a background task, after the response.

    Args:
        detector: Detector to run

    Returns:
        A FastAPI dependency returning the DetectionResult

    Examples:
        ```python
        @app.get("/articles/{slug}")
        async def article(slug: str, detection=Depends(detect_ai_bots(detector))):
            ...
        ```
    """

    async def dependency(request: Request, background_tasks: BackgroundTasks) -> DetectionResult:
        hooks = PostResponseHooks()
        try:
            result = detector.observe(request, hooks)
        except Exception as e:
            logger.exception(f"Bot detection failed for {request.url.path}: {e}")
            return DetectionResult(skipped="error")
        if len(hooks):
            background_tasks.add_task(hooks.run)
        return result

    return dependency
