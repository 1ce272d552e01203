"""Push channel for analysis status updates.

Bridges progress writes from the pipeline to any number of listeners
(SSE connections, in-process pollers) through per-subscriber
asyncio.Queue instances.
"""

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)


class AnalysisStatusNotifier:
    """Fan-out of status records keyed by analysis id.

    Each subscriber gets its own queue so an SSE client and a poller
    watching the same analysis both see every update.
    """

    def __init__(self) -> None:
        """Initialize notifier with empty subscription map."""
        self._queues: dict[str, list[asyncio.Queue[dict[str, Any]]]] = {}

    def subscribe(self, analysis_id: str) -> asyncio.Queue[dict[str, Any]]:
        """Create a queue receiving status events for one analysis.

        Args:
            analysis_id: Analysis to watch.

        Returns:
            asyncio.Queue of ``{"event": ..., "data": ...}`` dicts.
        """
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._queues.setdefault(analysis_id, []).append(queue)
        logger.debug("Created status subscription for analysis %s", analysis_id)
        return queue

    def unsubscribe(
        self,
        analysis_id: str,
        queue: asyncio.Queue[dict[str, Any]] | None = None,
    ) -> None:
        """Remove one queue, or every queue for the analysis if none given.

        No-op if nothing is subscribed.
        """
        queues = self._queues.get(analysis_id)
        if not queues:
            return
        if queue is None:
            queues.clear()
        elif queue in queues:
            queues.remove(queue)
        if not queues:
            del self._queues[analysis_id]
            logger.debug("Removed status subscriptions for analysis %s", analysis_id)

    def has_subscribers(self, analysis_id: str) -> bool:
        return bool(self._queues.get(analysis_id))

    async def publish(self, analysis_id: str, status: dict[str, Any], event: str = "status") -> None:
        """Deliver a status record to every subscriber of the analysis."""
        for queue in list(self._queues.get(analysis_id, [])):
            await queue.put({"event": event, "data": status})
