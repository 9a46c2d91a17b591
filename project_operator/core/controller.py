"""
Dispatch layer between the watch stream and the reconciler.

Reconciliations of one Project never overlap. A requeue directive schedules a
delayed re-fetch of the resource; a newer watch event for the same key
replaces a requeue that has not fired yet.
"""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from project_operator.connectors.kubectl import KubectlConnector
from project_operator.core.errors import PlatformApiError
from project_operator.core.reconciler import Action, Reconciler

logger = logging.getLogger(__name__)


def resource_key(body: Mapping[str, Any]) -> str:
    metadata = body.get("metadata") or {}
    return f"{metadata.get('namespace') or ''}/{metadata.get('name') or ''}"


class ProjectController:
    def __init__(self, reconciler: Reconciler, kubectl: KubectlConnector, resource_type: str, error_delay: float = 5.0):
        """
        Args:
            reconciler: Reconciler invoked for every event and requeue
            kubectl: Connector used to re-fetch a resource when a requeue fires
            resource_type: kubectl resource type of the Project CRD (e.g. "projects.kyotu.tech")
            error_delay: Delay before retrying a requeue whose re-fetch failed
        """
        self.reconciler = reconciler
        self.kubectl = kubectl
        self.resource_type = resource_type
        self.error_delay = error_delay
        self._locks: dict[str, asyncio.Lock] = {}
        self._requeues: dict[str, asyncio.Task] = {}

    def pending_requeues(self) -> list[str]:
        return [key for key, task in self._requeues.items() if not task.done()]

    async def handle_event(self, event_type: str | None, body: Mapping[str, Any]) -> Action | None:
        """
        Handle one watch event.

        Args:
            event_type: "ADDED", "MODIFIED", "DELETED" or None for the initial listing
            body: Resource body

        Returns:
            The reconciler's directive, or None for DELETED events
        """
        key = resource_key(body)
        self._cancel_requeue(key)

        if event_type == "DELETED":
            logger.debug(f"Project {key} is gone, dropping its state")
            lock = self._locks.get(key)
            if lock is not None and not lock.locked():
                del self._locks[key]
            return None

        return await self._reconcile(key, dict(body))

    async def _reconcile(self, key: str, body: dict[str, Any]) -> Action:
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            action = await self.reconciler.reconcile(body)

        if action.requeue_after is not None:
            self._schedule_requeue(key, body, action.requeue_after)
        return action

    def _schedule_requeue(self, key: str, body: dict[str, Any], delay: float) -> None:
        self._cancel_requeue(key)
        metadata = body.get("metadata") or {}
        logger.debug(f"Requeueing Project {key} in {delay}s")
        self._requeues[key] = asyncio.create_task(
            self._requeue_later(key, metadata.get("name"), metadata.get("namespace"), delay),
            name=f"requeue-{key}",
        )

    def _cancel_requeue(self, key: str) -> None:
        task = self._requeues.pop(key, None)
        if task is not None and not task.done():
            logger.debug(f"Cancelling pending requeue of Project {key}")
            task.cancel()

    async def _requeue_later(self, key: str, name: str | None, namespace: str | None, delay: float) -> None:
        await asyncio.sleep(delay)

        # From here on the requeue runs to completion; newer events wait on the lock instead
        if self._requeues.get(key) is asyncio.current_task():
            del self._requeues[key]

        if not name or not namespace:
            return

        try:
            body = await self.kubectl.get_object(self.resource_type, name, namespace)
        except PlatformApiError as e:
            logger.warning(f"Failed to re-fetch Project {key} for requeue: {e}")
            self._schedule_requeue(key, {"metadata": {"name": name, "namespace": namespace}}, self.error_delay)
            return

        if body is None:
            logger.debug(f"Project {key} no longer exists, requeue dropped")
            return

        await self._reconcile(key, body)

    async def shutdown(self) -> None:
        tasks = list(self._requeues.values())
        self._requeues.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
