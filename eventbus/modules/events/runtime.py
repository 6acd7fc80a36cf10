"""Runs one named handler against one event and never raises."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from eventbus.config import settings
from eventbus.database.base import utcnow
from eventbus.modules.events.constants import UNKNOWN_HANDLER_ERROR

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandlerResult:
    """What a handler reports back: ``success`` and, on failure, ``error``."""

    success: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> HandlerResult:
        return cls(success=True)

    @classmethod
    def failed(cls, error: str) -> HandlerResult:
        return cls(success=False, error=error)


# handle(event_type, payload, aggregate_id, store_id) -> HandlerResult
HandlerFunc = Callable[[str, dict, str, str | None], Awaitable[HandlerResult]]


@dataclass(frozen=True)
class ExecutionOutcome:
    handler_name: str
    result: HandlerResult
    started_at: datetime
    duration_ms: int

    @property
    def success(self) -> bool:
        return self.result.success


class HandlerRuntime:
    """Executes handlers with a per-call timeout.

    A handler that raises, times out, or returns something other than a
    ``HandlerResult`` is reported as a failed result; nothing propagates to
    the dispatcher.
    """

    def __init__(self, timeout_seconds: float | None = None) -> None:
        self.timeout_seconds = timeout_seconds or settings.handler_timeout_seconds

    async def run(
        self,
        handler_name: str,
        func: HandlerFunc,
        event_type: str,
        payload: dict,
        aggregate_id: str,
        store_id: str | None,
    ) -> ExecutionOutcome:
        started_at = utcnow()
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                func(event_type, payload, aggregate_id, store_id),
                timeout=self.timeout_seconds,
            )
            if not isinstance(result, HandlerResult):
                result = HandlerResult.failed(
                    f"Handler returned {type(result).__name__}, expected HandlerResult"
                )
            elif not result.success and not result.error:
                result = HandlerResult.failed(UNKNOWN_HANDLER_ERROR)
        except TimeoutError:
            logger.warning(
                "Handler %s timed out after %.1fs for %s:%s",
                handler_name, self.timeout_seconds, event_type, aggregate_id,
            )
            result = HandlerResult.failed(
                f"Handler timed out after {self.timeout_seconds:g}s"
            )
        except Exception as exc:
            logger.exception(
                "Handler %s raised for %s:%s", handler_name, event_type, aggregate_id
            )
            result = HandlerResult.failed(str(exc) or type(exc).__name__)

        duration_ms = int((time.perf_counter() - start) * 1000)
        return ExecutionOutcome(
            handler_name=handler_name,
            result=result,
            started_at=started_at,
            duration_ms=duration_ms,
        )
