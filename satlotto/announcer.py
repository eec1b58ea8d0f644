"""
Reliable announcement on top of an `EventRelay`.

Delivery is retried a fixed number of times with a fixed pause between
attempts. Every failure is treated alike: there is no backoff, no jitter and no
retryable/fatal split. When the attempts are spent the event goes to the dead-letter
store. Persisting the dead letter is best effort: if the store is down too, the
event survives only in the log.

``announce`` never raises for delivery problems; callers inspect the returned
`AnnounceResult` and keep going.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol

from .clients.base import EventRelay
from .metrics import METRICS, Metrics
from .types import AnnounceOutcome, AnnounceResult, RelayEvent


class DeadLetterSink(Protocol):
    async def store_dead_letter(
        self, payload: Mapping[str, Any], error: str, round_id: Optional[int] = None
    ) -> None:
        ...


class ReliableAnnouncer:
    def __init__(
        self,
        relay: EventRelay,
        dead_letters: DeadLetterSink,
        attempts: int = 3,
        delay_seconds: float = 1.0,
        timeout_seconds: Optional[float] = 30.0,
        logger: Optional[logging.Logger] = None,
        metrics: Optional[Metrics] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self._relay = relay
        self._dead_letters = dead_letters
        self._attempts = attempts
        self._delay = delay_seconds
        self._timeout = timeout_seconds
        self._logger = logger or logging.getLogger("satlotto.announcer")
        self._metrics = metrics or METRICS
        self._sleep = sleep

    async def announce(self, event: RelayEvent, round_id: Optional[int] = None) -> AnnounceResult:
        last_error = ""
        for attempt in range(1, self._attempts + 1):
            try:
                await asyncio.wait_for(self._relay.publish(event), timeout=self._timeout)
            except asyncio.TimeoutError:
                last_error = f"publish timed out after {self._timeout}s"
            except Exception as exc:
                last_error = str(exc) or repr(exc)
            else:
                self._metrics.record_announcement(AnnounceOutcome.DELIVERED.value)
                return AnnounceResult(outcome=AnnounceOutcome.DELIVERED, attempts=attempt)

            self._logger.error(
                "Publish of kind %s failed (attempt %s/%s): %s",
                event.kind,
                attempt,
                self._attempts,
                last_error,
            )
            if attempt < self._attempts:
                await self._sleep(self._delay)

        self._logger.error(
            "Publish of kind %s failed after %s attempts, storing in dead-letter queue",
            event.kind,
            self._attempts,
        )
        persisted = await self.dead_letter(event.to_dict(), last_error, round_id=round_id)
        self._metrics.record_announcement(AnnounceOutcome.DEAD_LETTERED.value)
        return AnnounceResult(
            outcome=AnnounceOutcome.DEAD_LETTERED,
            attempts=self._attempts,
            error=last_error,
            persisted=persisted,
        )

    async def dead_letter(
        self, payload: Mapping[str, Any], error: str, round_id: Optional[int] = None
    ) -> bool:
        """Best-effort write to the dead-letter store; returns whether it stuck."""
        try:
            await asyncio.wait_for(
                self._dead_letters.store_dead_letter(payload, error, round_id=round_id),
                timeout=self._timeout,
            )
        except Exception:
            self._logger.exception("Failed to store dead letter (round=%s): %s", round_id, payload)
            return False
        return True
