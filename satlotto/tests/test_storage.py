import asyncio
import unittest

from sqlalchemy import select

from satlotto.storage import Database, DeadLetter, FailedPayout, Round, SeedCommitmentRow, SqlRoundStore, Ticket
from satlotto.types import RoundState, SeedCommitment, WinnerRecord

SEED = "11" * 32
SEED_HASH = "22" * 32
ROOT = "33" * 32
BLOCK_HASH = "00" * 8 + "ab" * 24


class SqlRoundStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.database = Database("sqlite://")
        self.database.create_all()
        self.store = SqlRoundStore(self.database)
        with self.database.session_scope() as session:
            session.add(Round(id=1, state=RoundState.PENDING.value))
            session.add(Round(id=2, state=RoundState.PENDING.value))
            for index, amount in enumerate((500, 300, 200)):
                session.add(Ticket(id=f"t{index}", round_id=1, amount=amount))

    def tearDown(self) -> None:
        self.database.dispose()

    def _commit_seed(self, round_id: int = 1) -> bool:
        return asyncio.run(
            self.store.store_seed_commitment(SeedCommitment(round_id=round_id, seed=SEED, seed_hash=SEED_HASH))
        )

    def test_reads(self) -> None:
        active = asyncio.run(self.store.get_active_round())
        self.assertEqual(active.round_id, 1)
        self.assertEqual(active.state, RoundState.PENDING)
        self.assertEqual(asyncio.run(self.store.count_active_rounds()), 2)
        self.assertEqual(asyncio.run(self.store.count_participants(1)), 3)
        self.assertEqual(asyncio.run(self.store.list_ticket_ids(1)), ["t0", "t1", "t2"])
        self.assertEqual(asyncio.run(self.store.sum_ticket_amounts(1)), 1000)
        self.assertEqual(asyncio.run(self.store.sum_ticket_amounts(1, ["t0", "t2"])), 700)
        self.assertEqual(asyncio.run(self.store.sum_ticket_amounts(1, [])), 0)
        self.assertIsNone(asyncio.run(self.store.get_round(42)))
        self.assertIsNone(asyncio.run(self.store.get_winner(1)))

    def test_seed_commitment_is_written_once(self) -> None:
        self.assertTrue(self._commit_seed())
        self.assertFalse(self._commit_seed())

        snapshot = asyncio.run(self.store.get_round(1))
        self.assertEqual(snapshot.seed, SEED)
        self.assertEqual(snapshot.seed_hash, SEED_HASH)
        with self.database.session_scope() as session:
            rows = session.scalars(select(SeedCommitmentRow)).all()
            self.assertEqual([(r.round_id, r.seed_hash) for r in rows], [(1, SEED_HASH)])

    def test_countdown_requires_seed_and_freezes_ticket_list(self) -> None:
        self.assertFalse(asyncio.run(self.store.begin_countdown(1, 800_144, ROOT, ["t0", "t1", "t2"])))

        self._commit_seed()
        self.assertTrue(asyncio.run(self.store.begin_countdown(1, 800_144, ROOT, ["t0", "t1", "t2"])))
        self.assertFalse(asyncio.run(self.store.begin_countdown(1, 900_000, "44" * 32, ["t0"])))

        snapshot = asyncio.run(self.store.get_round(1))
        self.assertEqual(snapshot.state, RoundState.COUNTDOWN)
        self.assertEqual(snapshot.future_block, 800_144)
        self.assertEqual(snapshot.merkle_root, ROOT)
        self.assertEqual(snapshot.committed_tickets, ("t0", "t1", "t2"))

    def test_complete_round_only_from_countdown(self) -> None:
        record = WinnerRecord(round_id=1, winner="t1", prize=990, fee=10, block_hash=BLOCK_HASH)
        self.assertFalse(asyncio.run(self.store.complete_round(record)))

        self._commit_seed()
        asyncio.run(self.store.begin_countdown(1, 800_144, ROOT, ["t0", "t1", "t2"]))
        self.assertTrue(asyncio.run(self.store.complete_round(record)))
        self.assertFalse(asyncio.run(self.store.complete_round(record)))

        self.assertEqual(asyncio.run(self.store.get_round(1)).state, RoundState.DONE)
        self.assertEqual(asyncio.run(self.store.get_winner(1)), record)
        self.assertEqual(asyncio.run(self.store.get_active_round()).round_id, 2)
        self.assertEqual(asyncio.run(self.store.count_active_rounds()), 1)

    def test_failure_sinks(self) -> None:
        asyncio.run(self.store.store_dead_letter({"kind": 30001, "content": "{}"}, "relay down", round_id=1))
        asyncio.run(self.store.store_dead_letter({"phase": "scheduler"}, "rpc down"))
        asyncio.run(self.store.store_failed_payout(1, "t1", 990, "SatLotto Prize Round 1", "lnd down"))

        with self.database.session_scope() as session:
            letters = session.scalars(select(DeadLetter).order_by(DeadLetter.id)).all()
            self.assertEqual([l.round_id for l in letters], [1, None])
            self.assertEqual(letters[0].get_payload(), {"kind": 30001, "content": "{}"})
            payouts = session.scalars(select(FailedPayout)).all()
            self.assertEqual([(p.recipient, p.amount) for p in payouts], [("t1", 990)])


if __name__ == "__main__":
    unittest.main()
