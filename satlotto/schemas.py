from __future__ import annotations

from typing import List, Optional, Sequence

from pydantic import BaseModel, Field, validator
from pydantic import ValidationError as PydanticValidationError

from .errors import TicketLimitExceeded, ValidationError


class RoundRef(BaseModel):
    round: int = Field(..., ge=1, description="Positive round identifier.")

    @validator("round", pre=True)
    def reject_bool(cls, value):
        if isinstance(value, bool):
            raise ValueError("round must be an integer, not a boolean")
        return value


class TicketSet(BaseModel):
    round: int = Field(..., ge=1)
    ticket_ids: List[str]

    @validator("ticket_ids")
    def validate_ticket_ids(cls, value: List[str]) -> List[str]:
        for ticket_id in value:
            if not ticket_id or not ticket_id.strip():
                raise ValueError("ticket ids must be non-empty strings")
        if len(set(value)) != len(value):
            raise ValueError("ticket ids must be unique")
        return value


class WinnerResponse(BaseModel):
    winner: str
    prize: int
    fee: int
    blockHash: str


class RoundStatusResponse(BaseModel):
    round: int
    state: str
    participantCount: int
    currentBlock: Optional[int] = None
    futureBlock: Optional[int] = None
    seedHash: Optional[str] = None
    merkleRoot: Optional[str] = None
    result: Optional[WinnerResponse] = None


def validate_round_id(round_id: object) -> int:
    try:
        return RoundRef(round=round_id).round
    except PydanticValidationError as exc:
        raise ValidationError(f"invalid round id {round_id!r}: {exc}") from exc


def validate_ticket_set(round_id: int, ticket_ids: Sequence[str], limit: int) -> List[str]:
    """Validate a ticket id list and enforce the per-round bound."""
    if len(ticket_ids) > limit:
        raise TicketLimitExceeded(round_id, len(ticket_ids), limit)
    try:
        payload = TicketSet(round=round_id, ticket_ids=list(ticket_ids))
    except PydanticValidationError as exc:
        raise ValidationError(f"round {round_id} ticket list rejected: {exc}") from exc
    return payload.ticket_ids
