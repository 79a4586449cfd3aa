"""Post-response hook list.

Callbacks registered during a request run once, in registration order, after
the response has been handed to the server. Each callback keeps its own
captured arguments.
"""

import inspect
import logging
from typing import Any, Dict, List, Tuple

from ethicrawler_shield.typing import PostResponseCallback

logger = logging.getLogger(__name__)


class PostResponseHooks:
    """Single-shot list of deferred callbacks for one request."""

    def __init__(self):
        self._hooks: List[Tuple[PostResponseCallback, Tuple[Any, ...], Dict[str, Any]]] = []
        self._ran = False

    def add(self, callback: PostResponseCallback, *args: Any, **kwargs: Any) -> None:
        """Register a callback to run after the response is sent.

        Args:
            callback: Sync or async callable
            *args: Positional arguments captured for this callback
            **kwargs: Keyword arguments captured for this callback
        """
        if self._ran:
            logger.warning(f"Post-response hooks already ran, dropping {callback!r}")
            return
        self._hooks.append((callback, args, kwargs))

    def __len__(self) -> int:
        return len(self._hooks)

    @property
    def ran(self) -> bool:
        return self._ran

    async def run(self) -> None:
        """Run every registered callback once.

        A failing callback is logged and does not prevent the next one.
        Calling this again is a no-op.
        """
        if self._ran:
            return
        self._ran = True

        hooks, self._hooks = self._hooks, []
        for callback, args, kwargs in hooks:
            try:
                result = callback(*args, **kwargs)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.exception(f"Post-response hook {callback!r} failed: {e}")

    def discard(self) -> None:
        """Drop pending callbacks without running them."""
        if self._hooks:
            logger.warning(f"Discarding {len(self._hooks)} post-response hook(s)")
        self._hooks = []
        self._ran = True
