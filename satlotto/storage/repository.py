from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, List, Mapping, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from ..errors import StorageError
from ..types import RoundSnapshot, RoundState, SeedCommitment, WinnerRecord
from .db import Database
from .models import DeadLetter, FailedPayout, Round, SeedCommitmentRow, Ticket, Winner

ACTIVE_STATES = (RoundState.PENDING.value, RoundState.COUNTDOWN.value)


def _snapshot(row: Round) -> RoundSnapshot:
    return RoundSnapshot(
        round_id=int(row.id),
        state=RoundState(row.state),
        future_block=row.future_block,
        seed=row.seed,
        seed_hash=row.seed_hash,
        merkle_root=row.merkle_root,
        committed_tickets=tuple(row.get_committed_tickets()),
    )


class SqlRoundStore:
    """Round/ticket storage on SQLAlchemy.

    Every state transition is a conditional ``UPDATE ... WHERE state = ...``;
    the boolean result tells the caller whether it won the transition.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except SQLAlchemyError as exc:
            raise StorageError(f"{fn.__name__.lstrip('_')} failed: {exc}") from exc

    # ----- reads -------------------------------------------------------------

    async def get_active_round(self) -> Optional[RoundSnapshot]:
        return await self._run(self._get_active_round)

    def _get_active_round(self) -> Optional[RoundSnapshot]:
        with self._db.session_scope() as session:
            row = session.scalars(
                select(Round).where(Round.state.in_(ACTIVE_STATES)).order_by(Round.id).limit(1)
            ).first()
            return _snapshot(row) if row is not None else None

    async def count_active_rounds(self) -> int:
        return await self._run(self._count_active_rounds)

    def _count_active_rounds(self) -> int:
        with self._db.session_scope() as session:
            return int(
                session.scalar(select(func.count(Round.id)).where(Round.state.in_(ACTIVE_STATES))) or 0
            )

    async def get_round(self, round_id: int) -> Optional[RoundSnapshot]:
        return await self._run(self._get_round, round_id)

    def _get_round(self, round_id: int) -> Optional[RoundSnapshot]:
        with self._db.session_scope() as session:
            row = session.get(Round, round_id)
            return _snapshot(row) if row is not None else None

    async def get_winner(self, round_id: int) -> Optional[WinnerRecord]:
        return await self._run(self._get_winner, round_id)

    def _get_winner(self, round_id: int) -> Optional[WinnerRecord]:
        with self._db.session_scope() as session:
            row = session.get(Winner, round_id)
            if row is None:
                return None
            return WinnerRecord(
                round_id=row.round_id,
                winner=row.winner,
                prize=int(row.prize),
                fee=int(row.fee),
                block_hash=row.block_hash,
            )

    async def count_participants(self, round_id: int) -> int:
        return await self._run(self._count_participants, round_id)

    def _count_participants(self, round_id: int) -> int:
        with self._db.session_scope() as session:
            return int(session.scalar(select(func.count(Ticket.id)).where(Ticket.round_id == round_id)) or 0)

    async def list_ticket_ids(self, round_id: int) -> List[str]:
        return await self._run(self._list_ticket_ids, round_id)

    def _list_ticket_ids(self, round_id: int) -> List[str]:
        with self._db.session_scope() as session:
            rows = session.scalars(
                select(Ticket.id).where(Ticket.round_id == round_id).order_by(Ticket.id.asc())
            )
            return [str(ticket_id) for ticket_id in rows]

    async def sum_ticket_amounts(self, round_id: int, ticket_ids: Optional[Sequence[str]] = None) -> int:
        return await self._run(self._sum_ticket_amounts, round_id, ticket_ids)

    def _sum_ticket_amounts(self, round_id: int, ticket_ids: Optional[Sequence[str]]) -> int:
        query = select(func.sum(Ticket.amount)).where(Ticket.round_id == round_id)
        if ticket_ids is not None:
            if not ticket_ids:
                return 0
            query = query.where(Ticket.id.in_(list(ticket_ids)))
        with self._db.session_scope() as session:
            return int(session.scalar(query) or 0)

    # ----- transitions -------------------------------------------------------

    async def store_seed_commitment(self, commitment: SeedCommitment) -> bool:
        return await self._run(self._store_seed_commitment, commitment)

    def _store_seed_commitment(self, commitment: SeedCommitment) -> bool:
        with self._db.session_scope() as session:
            result = session.execute(
                update(Round)
                .where(
                    Round.id == commitment.round_id,
                    Round.state == RoundState.PENDING.value,
                    Round.seed_hash.is_(None),
                )
                .values(seed=commitment.seed, seed_hash=commitment.seed_hash)
            )
            if result.rowcount != 1:
                return False
            session.add(
                SeedCommitmentRow(
                    round_id=commitment.round_id,
                    seed=commitment.seed,
                    seed_hash=commitment.seed_hash,
                )
            )
            return True

    async def begin_countdown(
        self, round_id: int, future_block: int, merkle_root: str, ticket_ids: Sequence[str]
    ) -> bool:
        return await self._run(self._begin_countdown, round_id, future_block, merkle_root, list(ticket_ids))

    def _begin_countdown(self, round_id: int, future_block: int, merkle_root: str, ticket_ids: List[str]) -> bool:
        with self._db.session_scope() as session:
            result = session.execute(
                update(Round)
                .where(
                    Round.id == round_id,
                    Round.state == RoundState.PENDING.value,
                    Round.seed_hash.is_not(None),
                    Round.future_block.is_(None),
                )
                .values(
                    state=RoundState.COUNTDOWN.value,
                    future_block=future_block,
                    merkle_root=merkle_root,
                    committed_tickets=json.dumps(ticket_ids),
                )
            )
            return result.rowcount == 1

    async def complete_round(self, record: WinnerRecord) -> bool:
        return await self._run(self._complete_round, record)

    def _complete_round(self, record: WinnerRecord) -> bool:
        with self._db.session_scope() as session:
            result = session.execute(
                update(Round)
                .where(Round.id == record.round_id, Round.state == RoundState.COUNTDOWN.value)
                .values(state=RoundState.DONE.value)
            )
            if result.rowcount != 1:
                return False
            session.add(
                Winner(
                    round_id=record.round_id,
                    winner=record.winner,
                    prize=record.prize,
                    fee=record.fee,
                    block_hash=record.block_hash,
                )
            )
            return True

    # ----- failure sinks -----------------------------------------------------

    async def store_dead_letter(
        self, payload: Mapping[str, Any], error: str, round_id: Optional[int] = None
    ) -> None:
        await self._run(self._store_dead_letter, dict(payload), error, round_id)

    def _store_dead_letter(self, payload: dict, error: str, round_id: Optional[int]) -> None:
        with self._db.session_scope() as session:
            entry = DeadLetter(round_id=round_id, error=error)
            entry.set_payload(payload)
            session.add(entry)

    async def store_failed_payout(
        self, round_id: int, recipient: str, amount: int, memo: str, error: str
    ) -> None:
        await self._run(self._store_failed_payout, round_id, recipient, amount, memo, error)

    def _store_failed_payout(self, round_id: int, recipient: str, amount: int, memo: str, error: str) -> None:
        with self._db.session_scope() as session:
            session.add(
                FailedPayout(round_id=round_id, recipient=recipient, amount=amount, memo=memo, error=error)
            )
