"""Exception hierarchy shared by the draw engine and its collaborators.

Three families matter to callers:

- ``ValidationError``: bad input to a phase operation. Raised synchronously.
- ``ProtocolViolation``: a phase was invoked out of order. Indicates a caller
  bug and must not be retried.
- ``ExternalServiceError``: storage, chain, relay or payout trouble. The engine
  catches these at the phase boundary and dead-letters them.
"""

from __future__ import annotations

from typing import Optional


class LotteryError(Exception):
    """Base class for every error raised by satlotto."""


# ============ Validation ============

class ValidationError(LotteryError):
    pass


class TicketLimitExceeded(ValidationError):
    def __init__(self, round_id: int, count: int, limit: int) -> None:
        self.round_id = round_id
        self.count = count
        self.limit = limit
        super().__init__(f"Round {round_id} has {count} tickets; at most {limit} allowed")


# ============ Protocol ordering ============

class ProtocolViolation(LotteryError):
    pass


class RoundNotFound(ProtocolViolation):
    def __init__(self, round_id: int) -> None:
        self.round_id = round_id
        super().__init__(f"Round {round_id} not found")


class InvalidRoundState(ProtocolViolation):
    def __init__(self, round_id: int, state: str, expected: str) -> None:
        self.round_id = round_id
        self.state = state
        self.expected = expected
        super().__init__(f"Round {round_id} is {state}; expected {expected}")


class SeedNotCommitted(ProtocolViolation):
    def __init__(self, round_id: int) -> None:
        self.round_id = round_id
        super().__init__(f"Round {round_id} has no seed commitment yet")


class DrawNotReady(ProtocolViolation):
    def __init__(self, round_id: int, height: int, future_block: int) -> None:
        self.round_id = round_id
        self.height = height
        self.future_block = future_block
        super().__init__(
            f"Round {round_id} resolves at block {future_block}; chain is at {height}"
        )


class StaleRoundState(ProtocolViolation):
    """Conditional update lost: another writer moved the round first."""

    def __init__(self, round_id: int, transition: str) -> None:
        self.round_id = round_id
        self.transition = transition
        super().__init__(f"Round {round_id} changed before {transition} could be applied")


class CommitmentMismatch(ProtocolViolation):
    def __init__(self, round_id: int, committed: str, recomputed: str) -> None:
        self.round_id = round_id
        self.committed = committed
        self.recomputed = recomputed
        super().__init__(
            f"Round {round_id} ticket root {recomputed} does not match committed {committed}"
        )


# ============ External collaborators ============

class ExternalServiceError(LotteryError):
    pass


class StorageError(ExternalServiceError):
    pass


class ChainOracleError(ExternalServiceError):
    pass


class BlockNotAvailable(ChainOracleError):
    def __init__(self, height: int, tip: Optional[int] = None) -> None:
        self.height = height
        self.tip = tip
        detail = f" (tip is {tip})" if tip is not None else ""
        super().__init__(f"Block {height} is not available yet{detail}")


class RelayError(ExternalServiceError):
    pass


class PayoutError(ExternalServiceError):
    pass
