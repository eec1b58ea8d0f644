from .db import Database
from .models import Base, DeadLetter, FailedPayout, Round, SeedCommitmentRow, Ticket, Winner
from .repository import SqlRoundStore

__all__ = [
    "Database",
    "Base",
    "DeadLetter",
    "FailedPayout",
    "Round",
    "SeedCommitmentRow",
    "Ticket",
    "Winner",
    "SqlRoundStore",
]
