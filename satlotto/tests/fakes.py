"""In-memory collaborators for engine, scheduler and status API tests."""

from __future__ import annotations

import dataclasses
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

from prometheus_client import CollectorRegistry

from satlotto.announcer import ReliableAnnouncer
from satlotto.clients.base import ChainOracle, EventRelay, PayoutRail
from satlotto.config import DrawSettings
from satlotto.engine import RoundEngine
from satlotto.errors import BlockNotAvailable, PayoutError, RelayError, StorageError
from satlotto.metrics import Metrics
from satlotto.types import PaymentInstruction, RelayEvent, RoundSnapshot, RoundState, SeedCommitment, WinnerRecord

BLOCK_HASH = "00000000000000000002a7c4c1e48d76c5a37902165a270156b7a8d72728a054"


class FakeStore:
    def __init__(self) -> None:
        self.rounds: Dict[int, RoundSnapshot] = {}
        self.tickets: Dict[int, Dict[str, int]] = {}
        self.seeds: List[SeedCommitment] = []
        self.winners: Dict[int, WinnerRecord] = {}
        self.dead_letters: List[Dict[str, Any]] = []
        self.failed_payouts: List[Dict[str, Any]] = []
        self.state_history: Dict[int, List[RoundState]] = {}
        self.failing: Set[str] = set()

    def add_round(self, round_id: int, state: RoundState = RoundState.PENDING, **fields: Any) -> None:
        self.rounds[round_id] = RoundSnapshot(round_id=round_id, state=state, **fields)
        self.state_history[round_id] = [state]
        self.tickets.setdefault(round_id, {})

    def add_tickets(self, round_id: int, amounts: Mapping[str, int]) -> None:
        self.tickets.setdefault(round_id, {}).update(amounts)

    def _check(self, name: str) -> None:
        if name in self.failing:
            raise StorageError(f"{name} unavailable")

    def _set(self, round_id: int, **changes: Any) -> None:
        current = self.rounds[round_id]
        updated = dataclasses.replace(current, **changes)
        self.rounds[round_id] = updated
        if updated.state is not current.state:
            self.state_history[round_id].append(updated.state)

    async def get_active_round(self) -> Optional[RoundSnapshot]:
        self._check("get_active_round")
        active = [r for r in self.rounds.values() if r.state is not RoundState.DONE]
        return min(active, key=lambda r: r.round_id) if active else None

    async def count_active_rounds(self) -> int:
        return len([r for r in self.rounds.values() if r.state is not RoundState.DONE])

    async def get_round(self, round_id: int) -> Optional[RoundSnapshot]:
        self._check("get_round")
        return self.rounds.get(round_id)

    async def get_winner(self, round_id: int) -> Optional[WinnerRecord]:
        return self.winners.get(round_id)

    async def count_participants(self, round_id: int) -> int:
        self._check("count_participants")
        return len(self.tickets.get(round_id, {}))

    async def list_ticket_ids(self, round_id: int) -> List[str]:
        self._check("list_ticket_ids")
        return sorted(self.tickets.get(round_id, {}))

    async def sum_ticket_amounts(self, round_id: int, ticket_ids: Optional[Sequence[str]] = None) -> int:
        self._check("sum_ticket_amounts")
        amounts = self.tickets.get(round_id, {})
        keys = amounts.keys() if ticket_ids is None else [t for t in ticket_ids if t in amounts]
        return sum(amounts[k] for k in keys)

    async def store_seed_commitment(self, commitment: SeedCommitment) -> bool:
        self._check("store_seed_commitment")
        current = self.rounds.get(commitment.round_id)
        if current is None or current.state is not RoundState.PENDING or current.seed_hash:
            return False
        self.seeds.append(commitment)
        self._set(commitment.round_id, seed=commitment.seed, seed_hash=commitment.seed_hash)
        return True

    async def begin_countdown(
        self, round_id: int, future_block: int, merkle_root: str, ticket_ids: Sequence[str]
    ) -> bool:
        self._check("begin_countdown")
        current = self.rounds.get(round_id)
        if current is None or current.state is not RoundState.PENDING or not current.seed_hash:
            return False
        self._set(
            round_id,
            state=RoundState.COUNTDOWN,
            future_block=future_block,
            merkle_root=merkle_root,
            committed_tickets=tuple(ticket_ids),
        )
        return True

    async def complete_round(self, record: WinnerRecord) -> bool:
        self._check("complete_round")
        current = self.rounds.get(record.round_id)
        if current is None or current.state is not RoundState.COUNTDOWN:
            return False
        self.winners[record.round_id] = record
        self._set(record.round_id, state=RoundState.DONE)
        return True

    async def store_dead_letter(
        self, payload: Mapping[str, Any], error: str, round_id: Optional[int] = None
    ) -> None:
        self._check("store_dead_letter")
        self.dead_letters.append({"payload": dict(payload), "error": error, "round_id": round_id})

    async def store_failed_payout(
        self, round_id: int, recipient: str, amount: int, memo: str, error: str
    ) -> None:
        self._check("store_failed_payout")
        self.failed_payouts.append(
            {"round_id": round_id, "recipient": recipient, "amount": amount, "memo": memo, "error": error}
        )


class FakeChain(ChainOracle):
    def __init__(self, height: int = 800_000, hashes: Optional[Dict[int, str]] = None) -> None:
        self.height = height
        self.hashes = hashes or {}
        self.closed = False

    async def get_block_count(self) -> int:
        return self.height

    async def get_block_hash(self, height: int) -> str:
        if height > self.height:
            raise BlockNotAvailable(height, self.height)
        return self.hashes.get(height, BLOCK_HASH)

    async def close(self) -> None:
        self.closed = True


class FlakyRelay(EventRelay):
    """Fails the first ``failures`` publishes; ``failures=None`` fails forever."""

    def __init__(self, failures: Optional[int] = 0) -> None:
        self.failures = failures
        self.calls = 0
        self.published: List[RelayEvent] = []

    async def publish(self, event: RelayEvent) -> str:
        self.calls += 1
        if self.failures is None or self.calls <= self.failures:
            raise RelayError(f"relay down (call {self.calls})")
        self.published.append(event)
        return f"event-{len(self.published)}"

    def kinds(self) -> List[int]:
        return [int(e.kind) for e in self.published]


class RefusingRelay(EventRelay):
    """Fails every publish with a socket error rather than a `RelayError`."""

    def __init__(self) -> None:
        self.calls = 0

    async def publish(self, event: RelayEvent) -> str:
        self.calls += 1
        raise ConnectionRefusedError("relay socket refused")


class FakePayouts(PayoutRail):
    def __init__(self, failing_recipients: Sequence[str] = ()) -> None:
        self.failing = set(failing_recipients)
        self.payments: List[PaymentInstruction] = []

    async def create_payment(self, recipient: str, amount: int, memo: str) -> PaymentInstruction:
        if recipient in self.failing:
            raise PayoutError(f"cannot pay {recipient}")
        instruction = PaymentInstruction(
            recipient=recipient, amount=amount, memo=memo, payment_request=f"lnbc{amount}n1{recipient}"
        )
        self.payments.append(instruction)
        return instruction


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def private_metrics() -> Metrics:
    return Metrics(registry=CollectorRegistry())


def build_engine(
    store: FakeStore,
    chain: Optional[FakeChain] = None,
    relay: Optional[EventRelay] = None,
    payouts: Optional[FakePayouts] = None,
    settings: Optional[DrawSettings] = None,
    sleep: Optional[RecordingSleep] = None,
) -> RoundEngine:
    settings = settings or DrawSettings(call_timeout_seconds=5.0)
    metrics = private_metrics()
    announcer = ReliableAnnouncer(
        relay if relay is not None else FlakyRelay(),
        store,
        attempts=settings.announce_attempts,
        delay_seconds=settings.announce_delay_seconds,
        timeout_seconds=settings.call_timeout_seconds,
        metrics=metrics,
        sleep=sleep or RecordingSleep(),
    )
    return RoundEngine(
        settings,
        store,
        chain if chain is not None else FakeChain(),
        announcer,
        payouts if payouts is not None else FakePayouts(),
        metrics=metrics,
        clock=lambda: 1_700_000_000,
    )
