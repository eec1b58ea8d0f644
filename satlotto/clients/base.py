from __future__ import annotations

import abc

from ..types import PaymentInstruction, RelayEvent


class ChainOracle(abc.ABC):
    """Source of chain height and block hashes."""

    @abc.abstractmethod
    async def get_block_count(self) -> int:
        """Return the current best-chain height."""

    @abc.abstractmethod
    async def get_block_hash(self, height: int) -> str:
        """Return the hex block hash at ``height``.

        Implementations must raise `BlockNotAvailable` when ``height`` is above
        the current tip instead of returning a placeholder.
        """

    async def close(self) -> None:
        return None


class EventRelay(abc.ABC):
    """Publish side of the announcement network."""

    @abc.abstractmethod
    async def publish(self, event: RelayEvent) -> str:
        """Publish ``event`` and return its network id.

        Raise `RelayError` when no relay accepted the event.
        """

    async def close(self) -> None:
        return None


class PayoutRail(abc.ABC):
    """Creates payment instructions for prizes and fees."""

    @abc.abstractmethod
    async def create_payment(self, recipient: str, amount: int, memo: str) -> PaymentInstruction:
        """Raise `PayoutError` when the rail rejects or cannot be reached."""

    async def close(self) -> None:
        return None
