from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Optional, Type, TypeVar

from .clients.base import ChainOracle
from .config import DrawSettings
from .engine import RoundEngine, RoundStore
from .errors import ChainOracleError, ExternalServiceError, StorageError
from .metrics import METRICS, Metrics
from .types import RoundState

T = TypeVar("T")


class SchedulerAction(str, Enum):
    WAIT = "wait"
    COMMIT = "commit"
    DRAW = "draw"


@dataclass
class TickResult:
    round_id: int
    action: SchedulerAction
    completed: bool = False


class DrawScheduler:
    """Samples chain height and participant counts and triggers phase transitions.

    Holds no state between ticks; everything it needs is re-read from storage.
    """

    def __init__(
        self,
        settings: DrawSettings,
        engine: RoundEngine,
        store: RoundStore,
        chain: ChainOracle,
        logger: Optional[logging.Logger] = None,
        metrics: Optional[Metrics] = None,
    ) -> None:
        self._settings = settings
        self._engine = engine
        self._store = store
        self._chain = chain
        self._logger = logger or logging.getLogger("satlotto.scheduler")
        self._metrics = metrics or METRICS

    async def run_forever(self) -> None:
        interval = self._settings.poll_interval_seconds
        self._logger.info("Draw scheduler started; poll interval=%s", interval)
        while True:
            try:
                await self.tick()
            except ExternalServiceError as exc:
                self._logger.exception("Scheduler tick failed: %s", exc)
                await self._engine.dead_letter({"phase": "scheduler", "error": str(exc)}, str(exc))
            except Exception as exc:
                self._logger.exception("Scheduler tick failed: %s", exc)
            await asyncio.sleep(interval)

    async def run_once(self) -> Optional[TickResult]:
        return await self.tick()

    async def tick(self) -> Optional[TickResult]:
        snapshot = await self._call(self._store.get_active_round(), "get active round", StorageError)
        if snapshot is None:
            self._logger.debug("No active round; nothing to do.")
            return None

        active = await self._call(self._store.count_active_rounds(), "count active rounds", StorageError)
        if active > 1:
            self._logger.warning(
                "%s rounds are active; only the oldest (%s) is driven", active, snapshot.round_id
            )

        round_id = snapshot.round_id
        if snapshot.state is RoundState.PENDING:
            return await self._maybe_commit(round_id)
        if snapshot.state is RoundState.COUNTDOWN:
            return await self._maybe_draw(round_id, snapshot.future_block)
        return None

    async def _maybe_commit(self, round_id: int) -> TickResult:
        count = await self._call(self._store.count_participants(round_id), "count participants", StorageError)
        self._metrics.set_ticket_count(count)
        threshold = self._settings.participant_threshold
        if count < threshold:
            self._logger.info("Round %s has %s/%s participants; waiting.", round_id, count, threshold)
            return TickResult(round_id=round_id, action=SchedulerAction.WAIT)

        height = await self._call(self._chain.get_block_count(), "get block count", ChainOracleError)
        future_block = height + self._settings.block_horizon
        self._logger.info(
            "Round %s reached %s participants at height %s; committing for block %s",
            round_id,
            count,
            height,
            future_block,
        )
        seed = await self._engine.commit_seed(round_id)
        if seed is None:
            return TickResult(round_id=round_id, action=SchedulerAction.COMMIT)
        commitment = await self._engine.commit_ticket_set(round_id, future_block)
        return TickResult(round_id=round_id, action=SchedulerAction.COMMIT, completed=commitment is not None)

    async def _maybe_draw(self, round_id: int, future_block: Optional[int]) -> TickResult:
        height = await self._call(self._chain.get_block_count(), "get block count", ChainOracleError)
        if future_block is None or height < future_block:
            self._logger.info("Round %s waiting for block %s (tip %s).", round_id, future_block, height)
            return TickResult(round_id=round_id, action=SchedulerAction.WAIT)

        result = await self._engine.resolve_draw(round_id)
        return TickResult(round_id=round_id, action=SchedulerAction.DRAW, completed=result is not None)


    async def _call(self, awaitable: Awaitable[T], what: str, error_cls: Type[ExternalServiceError]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._settings.call_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise error_cls(f"{what} timed out after {self._settings.call_timeout_seconds}s") from exc
