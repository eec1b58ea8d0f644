from __future__ import annotations

import datetime as dt
import json
from typing import Any, Dict, List

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


class Round(Base):
    __tablename__ = "rounds"

    id = Column(Integer, primary_key=True)
    state = Column(String(16), nullable=False, default="pending", index=True)
    future_block = Column(Integer, nullable=True)
    seed = Column(String(64), nullable=True)
    seed_hash = Column(String(64), nullable=True)
    merkle_root = Column(String(64), nullable=True)
    committed_tickets = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    def get_committed_tickets(self) -> List[str]:
        if not self.committed_tickets:
            return []
        return json.loads(self.committed_tickets)


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(String(64), primary_key=True)
    round_id = Column(Integer, ForeignKey("rounds.id"), nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)


class SeedCommitmentRow(Base):
    __tablename__ = "seeds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    round_id = Column(Integer, ForeignKey("rounds.id"), nullable=False, unique=True)
    seed = Column(String(64), nullable=False)
    seed_hash = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)


class Winner(Base):
    __tablename__ = "winners"

    round_id = Column(Integer, ForeignKey("rounds.id"), primary_key=True)
    winner = Column(String(64), nullable=False)
    prize = Column(BigInteger, nullable=False)
    fee = Column(BigInteger, nullable=False)
    block_hash = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)


class DeadLetter(Base):
    __tablename__ = "dead_letters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    round_id = Column(Integer, nullable=True, index=True)
    payload = Column(Text, nullable=False)
    error = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    def set_payload(self, payload: Dict[str, Any]) -> None:
        self.payload = json.dumps(payload, default=str, sort_keys=True)

    def get_payload(self) -> Dict[str, Any]:
        return json.loads(self.payload)


class FailedPayout(Base):
    __tablename__ = "failed_payouts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    round_id = Column(Integer, nullable=False, index=True)
    recipient = Column(String(128), nullable=False)
    amount = Column(BigInteger, nullable=False)
    memo = Column(String(255), nullable=True)
    error = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

