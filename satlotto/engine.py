from __future__ import annotations

import asyncio
import logging
import secrets
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Type, TypeVar

from .announcer import ReliableAnnouncer
from .clients.base import ChainOracle, PayoutRail
from .config import DrawSettings
from .errors import (
    ChainOracleError,
    CommitmentMismatch,
    DrawNotReady,
    ExternalServiceError,
    InvalidRoundState,
    PayoutError,
    ProtocolViolation,
    RoundNotFound,
    SeedNotCommitted,
    StaleRoundState,
    StorageError,
    ValidationError,
)
from .fairness import content_hash, derive_winner, merkle_root, split_pool
from .metrics import METRICS, Metrics
from .schemas import validate_round_id, validate_ticket_set
from .types import (
    DrawResult,
    EventKind,
    RelayEvent,
    RoundSnapshot,
    RoundState,
    SeedCommitment,
    TicketSetCommitment,
    WinnerRecord,
)

SEED_BYTES = 32

T = TypeVar("T")


class RoundStore(Protocol):
    async def get_active_round(self) -> Optional[RoundSnapshot]:
        ...

    async def count_active_rounds(self) -> int:
        ...

    async def get_round(self, round_id: int) -> Optional[RoundSnapshot]:
        ...

    async def count_participants(self, round_id: int) -> int:
        ...

    async def list_ticket_ids(self, round_id: int) -> List[str]:
        ...

    async def sum_ticket_amounts(self, round_id: int, ticket_ids: Optional[Sequence[str]] = None) -> int:
        ...

    async def store_seed_commitment(self, commitment: SeedCommitment) -> bool:
        ...

    async def begin_countdown(
        self, round_id: int, future_block: int, merkle_root: str, ticket_ids: Sequence[str]
    ) -> bool:
        ...

    async def complete_round(self, record: WinnerRecord) -> bool:
        ...

    async def store_dead_letter(
        self, payload: Mapping[str, Any], error: str, round_id: Optional[int] = None
    ) -> None:
        ...

    async def store_failed_payout(
        self, round_id: int, recipient: str, amount: int, memo: str, error: str
    ) -> None:
        ...


class RoundEngine:
    """Runs the three commit-reveal phases for a round.

    Validation errors and protocol violations propagate to the caller.
    External failures are logged, dead-lettered and reported as ``None``;
    the round keeps whatever state was last persisted.
    """

    def __init__(
        self,
        settings: DrawSettings,
        store: RoundStore,
        chain: ChainOracle,
        announcer: ReliableAnnouncer,
        payouts: PayoutRail,
        logger: Optional[logging.Logger] = None,
        metrics: Optional[Metrics] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._store = store
        self._chain = chain
        self._announcer = announcer
        self._payouts = payouts
        self._logger = logger or logging.getLogger("satlotto.engine")
        self._metrics = metrics or METRICS
        self._clock = clock

    # ----- public phase operations -------------------------------------------

    async def commit_seed(self, round_id: int) -> Optional[SeedCommitment]:
        round_id = validate_round_id(round_id)
        try:
            return await self._commit_seed(round_id)
        except ExternalServiceError as exc:
            await self._fail("commit_seed", round_id, exc)
            return None

    async def commit_ticket_set(self, round_id: int, future_block: int) -> Optional[TicketSetCommitment]:
        round_id = validate_round_id(round_id)
        if isinstance(future_block, bool) or not isinstance(future_block, int) or future_block < 1:
            raise ValidationError(f"future block must be a positive integer, got {future_block!r}")
        try:
            return await self._commit_ticket_set(round_id, future_block)
        except ExternalServiceError as exc:
            await self._fail("commit_ticket_set", round_id, exc)
            return None

    async def resolve_draw(self, round_id: int) -> Optional[DrawResult]:
        round_id = validate_round_id(round_id)
        try:
            return await self._resolve_draw(round_id)
        except ExternalServiceError as exc:
            await self._fail("resolve_draw", round_id, exc)
            return None

    async def dead_letter(self, payload: Mapping[str, Any], error: str, round_id: Optional[int] = None) -> bool:
        return await self._announcer.dead_letter(payload, error, round_id=round_id)

    # ----- phases --------------------------------------------------------------

    async def _commit_seed(self, round_id: int) -> SeedCommitment:
        snapshot = await self._require_round(round_id, RoundState.PENDING)
        if snapshot.seed_hash:
            self._logger.info("Round %s already committed to seed hash %s", round_id, snapshot.seed_hash)
            return SeedCommitment(round_id=round_id, seed=snapshot.seed or "", seed_hash=snapshot.seed_hash)

        seed = secrets.token_bytes(SEED_BYTES)
        commitment = SeedCommitment(round_id=round_id, seed=seed.hex(), seed_hash=content_hash(seed).hex())
        stored = await self._call(self._store.store_seed_commitment(commitment), "store seed", StorageError)
        if not stored:
            raise StaleRoundState(round_id, "seed commitment")
        self._logger.info("Round %s committed to seed hash %s", round_id, commitment.seed_hash)

        await self._announcer.announce(
            self._event(EventKind.SEED_COMMITMENT, {"round": round_id, "seedHash": commitment.seed_hash}),
            round_id=round_id,
        )
        return commitment

    async def _commit_ticket_set(self, round_id: int, future_block: int) -> TicketSetCommitment:
        snapshot = await self._require_round(round_id, RoundState.PENDING)
        if not snapshot.seed_hash:
            raise SeedNotCommitted(round_id)

        raw_tickets = await self._call(self._store.list_ticket_ids(round_id), "list tickets", StorageError)
        ticket_ids = validate_ticket_set(round_id, raw_tickets, self._settings.max_tickets)
        if not ticket_ids:
            # An empty committed set could never be drawn and would pin the round in countdown.
            raise ValidationError(f"Round {round_id} has no tickets to commit")

        height = await self._call(self._chain.get_block_count(), "get block count", ChainOracleError)
        if future_block <= height:
            raise ValidationError(
                f"future block {future_block} for round {round_id} is not ahead of tip {height}"
            )
        if future_block - height < self._settings.block_horizon:
            # A block found between the caller's height sample and ours shortens the lead.
            self._logger.warning(
                "Round %s resolves %s blocks ahead of tip %s; horizon is %s",
                round_id,
                future_block - height,
                height,
                self._settings.block_horizon,
            )

        root = merkle_root(ticket_ids)
        moved = await self._call(
            self._store.begin_countdown(round_id, future_block, root, ticket_ids),
            "begin countdown",
            StorageError,
        )
        if not moved:
            raise StaleRoundState(round_id, "ticket-set commitment")
        self._logger.info(
            "Round %s in countdown: %s tickets, root %s, resolves at block %s",
            round_id,
            len(ticket_ids),
            root,
            future_block,
        )

        announcement = await self._announcer.announce(
            self._event(
                EventKind.TICKET_COMMITMENT,
                {"round": round_id, "merkleRoot": root, "futureBlock": future_block},
            ),
            round_id=round_id,
        )
        return TicketSetCommitment(
            round_id=round_id,
            merkle_root=root,
            future_block=future_block,
            ticket_count=len(ticket_ids),
            announcement=announcement,
        )

    async def _resolve_draw(self, round_id: int) -> DrawResult:
        snapshot = await self._require_round(round_id, RoundState.COUNTDOWN)
        if not snapshot.seed:
            raise SeedNotCommitted(round_id)
        if snapshot.future_block is None:
            raise ProtocolViolation(f"Round {round_id} is in countdown without a resolving block")

        height = await self._call(self._chain.get_block_count(), "get block count", ChainOracleError)
        if height < snapshot.future_block:
            raise DrawNotReady(round_id, height, snapshot.future_block)
        block_hash = await self._call(
            self._chain.get_block_hash(snapshot.future_block), "get block hash", ChainOracleError
        )

        committed = validate_ticket_set(round_id, list(snapshot.committed_tickets), self._settings.max_tickets)
        recomputed = merkle_root(committed)
        if recomputed != snapshot.merkle_root:
            raise CommitmentMismatch(round_id, snapshot.merkle_root or "", recomputed)
        if not committed:
            raise ValidationError(f"Round {round_id} has no committed tickets to draw from")

        live = await self._call(self._store.list_ticket_ids(round_id), "list tickets", StorageError)
        late = sorted(set(live) - set(committed))
        if late:
            self._logger.warning(
                "Round %s: %s tickets arrived after commitment and are excluded: %s", round_id, len(late), late
            )
        missing = sorted(set(committed) - set(live))
        if missing:
            self._logger.error("Round %s: committed tickets missing from storage: %s", round_id, missing)

        winner = derive_winner(bytes.fromhex(snapshot.seed), bytes.fromhex(block_hash), committed)
        pool = await self._call(
            self._store.sum_ticket_amounts(round_id, committed), "sum ticket amounts", StorageError
        )
        prize, fee = split_pool(pool, self._settings.prize_share_percent)
        record = WinnerRecord(round_id=round_id, winner=winner, prize=prize, fee=fee, block_hash=block_hash)

        completed = await self._call(self._store.complete_round(record), "complete round", StorageError)
        if not completed:
            raise StaleRoundState(round_id, "draw resolution")
        self._metrics.record_draw()
        self._logger.info(
            "Round %s drawn at block %s (%s): winner %s prize %s fee %s",
            round_id,
            snapshot.future_block,
            block_hash,
            winner,
            prize,
            fee,
        )

        failed_payouts = await self._pay_out(record)
        announcement = await self._announcer.announce(
            self._event(
                EventKind.DRAW_RESULT,
                {
                    "round": round_id,
                    "winner": winner,
                    "prize": prize,
                    "fee": fee,
                    "blockHash": block_hash,
                    "seed": snapshot.seed,
                },
            ),
            round_id=round_id,
        )
        return DrawResult(
            record=record,
            announcement=announcement,
            late_tickets=late,
            failed_payouts=failed_payouts,
        )

    # ----- payouts -------------------------------------------------------------

    async def _pay_out(self, record: WinnerRecord) -> List[str]:
        failed: List[str] = []
        legs = (
            (record.winner, record.prize, f"SatLotto Prize Round {record.round_id}"),
            (self._settings.platform_recipient, record.fee, f"SatLotto Fee Round {record.round_id}"),
        )
        for recipient, amount, memo in legs:
            if amount <= 0:
                self._logger.info("Round %s: nothing to pay %s", record.round_id, recipient)
                continue
            try:
                instruction = await self._call(
                    self._payouts.create_payment(recipient, amount, memo), "create payment", PayoutError
                )
            except PayoutError as exc:
                self._logger.exception(
                    "Failed to pay %s sats to %s for round %s", amount, recipient, record.round_id
                )
                failed.append(recipient)
                await self._record_failed_payout(record.round_id, recipient, amount, memo, str(exc))
                continue

            if recipient == record.winner:
                await self._announcer.announce(
                    self._event(
                        EventKind.DIRECT_MESSAGE,
                        {"round": record.round_id, "invoice": instruction.payment_request},
                        tags=(("p", record.winner),),
                    ),
                    round_id=record.round_id,
                )
                self._logger.info(
                    "Sent invoice for %s sats to winner %s for round %s", amount, recipient, record.round_id
                )
            else:
                self._logger.info("Payout to platform: %s sats for round %s", amount, record.round_id)
        return failed

    async def _record_failed_payout(self, round_id: int, recipient: str, amount: int, memo: str, error: str) -> None:
        try:
            await self._call(
                self._store.store_failed_payout(round_id, recipient, amount, memo, error),
                "store failed payout",
                StorageError,
            )
        except StorageError as exc:
            self._logger.exception("Could not record failed payout for round %s", round_id)
            await self._announcer.dead_letter(
                {"round": round_id, "recipient": recipient, "amount": amount, "memo": memo, "error": error},
                str(exc),
                round_id=round_id,
            )

    # ----- helpers -------------------------------------------------------------

    async def _require_round(self, round_id: int, expected: RoundState) -> RoundSnapshot:
        snapshot = await self._call(self._store.get_round(round_id), "get round", StorageError)
        if snapshot is None:
            raise RoundNotFound(round_id)
        if snapshot.state is not expected:
            raise InvalidRoundState(round_id, snapshot.state.value, expected.value)
        return snapshot

    async def _call(self, awaitable: Awaitable[T], what: str, error_cls: Type[ExternalServiceError]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._settings.call_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise error_cls(f"{what} timed out after {self._settings.call_timeout_seconds}s") from exc

    def _event(
        self, kind: EventKind, content: Dict[str, Any], tags: Sequence[Sequence[str]] = ()
    ) -> RelayEvent:
        return RelayEvent(kind=int(kind), content=content, created_at=int(self._clock()), tags=tags)

    async def _fail(self, phase: str, round_id: int, exc: ExternalServiceError) -> None:
        self._logger.exception("Round %s: %s failed: %s", round_id, phase, exc)
        await self._announcer.dead_letter(
            {"round": round_id, "phase": phase, "error": str(exc)}, str(exc), round_id=round_id
        )
