"""Fire-and-forget collaborators notified after a mutation commits.

Nothing here may fail a mutation: every call is submitted to a worker
pool and any exception is logged and dropped.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class ActivitySink(Protocol):
    def record(
        self,
        actor_id: str,
        workspace_id: str,
        board_id: Optional[str],
        action: str,
        target_type: str,
        target_id: str,
        details: dict[str, Any],
    ) -> None: ...


class NotificationSink(Protocol):
    def notify(self, board_id: str, triggered_by: str, message: str, metadata: dict[str, Any]) -> None: ...


class PresenceSink(Protocol):
    def touch(self, user_id: str, board_id: str) -> None: ...


class LoggingActivitySink:
    def record(self, actor_id, workspace_id, board_id, action, target_type, target_id, details) -> None:
        logger.info(
            "activity %s",
            action,
            extra={
                "actorId": actor_id,
                "workspaceId": workspace_id,
                "boardId": board_id,
                "targetType": target_type,
                "targetId": target_id,
                "details": details,
            },
        )


class LoggingNotificationSink:
    def notify(self, board_id, triggered_by, message, metadata) -> None:
        logger.info(
            "notification: %s",
            message,
            extra={"boardId": board_id, "triggeredBy": triggered_by, "metadata": metadata},
        )


class NullPresenceSink:
    def touch(self, user_id, board_id) -> None:
        return None


class SideEffects:
    """Dispatches side-channel calls off the request path."""

    def __init__(self, executor: Optional[Executor] = None, max_workers: int = 4) -> None:
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="boardline-side"
        )
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        name = getattr(fn, "__qualname__", repr(fn))
        try:
            future = self._executor.submit(self._run, name, fn, *args, **kwargs)
        except RuntimeError:
            logger.warning("side effect dropped, dispatcher is shut down", extra={"sideEffect": name})
            return
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    @staticmethod
    def _run(name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        try:
            fn(*args, **kwargs)
        except Exception:
            logger.warning("side effect failed", exc_info=True, extra={"sideEffect": name})

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every call submitted so far has finished."""
        with self._lock:
            pending = list(self._pending)
        for future in pending:
            future.exception(timeout=timeout)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
