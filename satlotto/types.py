from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Mapping, Optional, Sequence


class RoundState(str, Enum):
    PENDING = "pending"
    COUNTDOWN = "countdown"
    DONE = "done"


class EventKind(IntEnum):
    DIRECT_MESSAGE = 4
    TICKET_COMMITMENT = 30000
    DRAW_RESULT = 30001
    SEED_COMMITMENT = 30002


@dataclass(frozen=True)
class RoundSnapshot:
    round_id: int
    state: RoundState
    future_block: Optional[int] = None
    seed: Optional[str] = field(default=None, repr=False)
    seed_hash: Optional[str] = None
    merkle_root: Optional[str] = None
    committed_tickets: Sequence[str] = ()


@dataclass(frozen=True)
class SeedCommitment:
    round_id: int
    seed: str = field(repr=False)
    seed_hash: str


@dataclass(frozen=True)
class WinnerRecord:
    round_id: int
    winner: str
    prize: int
    fee: int
    block_hash: str


@dataclass(frozen=True)
class PaymentInstruction:
    recipient: str
    amount: int
    memo: str
    payment_request: str


@dataclass(frozen=True)
class RelayEvent:
    """Unsigned announcement; relays sign and serialise it on publish."""

    kind: int
    content: Mapping[str, Any]
    created_at: int
    tags: Sequence[Sequence[str]] = ()

    def content_json(self) -> str:
        return json.dumps(dict(self.content), separators=(",", ":"), sort_keys=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": int(self.kind),
            "content": self.content_json(),
            "created_at": self.created_at,
            "tags": [list(tag) for tag in self.tags],
        }


class AnnounceOutcome(str, Enum):
    DELIVERED = "delivered"
    DEAD_LETTERED = "dead_lettered"


@dataclass(frozen=True)
class AnnounceResult:
    outcome: AnnounceOutcome
    attempts: int
    error: Optional[str] = None
    persisted: bool = False

    @property
    def delivered(self) -> bool:
        return self.outcome is AnnounceOutcome.DELIVERED


@dataclass(frozen=True)
class TicketSetCommitment:
    round_id: int
    merkle_root: str
    future_block: int
    ticket_count: int
    announcement: AnnounceResult


@dataclass(frozen=True)
class DrawResult:
    record: WinnerRecord
    announcement: AnnounceResult
    late_tickets: List[str] = field(default_factory=list)
    failed_payouts: List[str] = field(default_factory=list)
