import unittest

from satlotto.errors import ChainOracleError
from satlotto.tests.fakes import BLOCK_HASH, FakeChain, FakeStore, private_metrics
from satlotto.types import RoundState, WinnerRecord
from status_api.app import create_app


class UnreachableChain(FakeChain):
    async def get_block_count(self) -> int:
        raise ChainOracleError("bitcoind unreachable")


class StatusRoutesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = FakeStore()
        self.store.add_round(1)
        self.store.add_tickets(1, {"t1": 100, "t2": 100})
        self.store.add_round(
            2,
            state=RoundState.DONE,
            future_block=800_144,
            seed="aa" * 32,
            seed_hash="bb" * 32,
            merkle_root="cc" * 32,
            committed_tickets=("x1", "x2"),
        )
        self.store.add_tickets(2, {"x1": 500, "x2": 500})
        self.store.winners[2] = WinnerRecord(round_id=2, winner="x2", prize=990, fee=10, block_hash=BLOCK_HASH)
        self.metrics = private_metrics()
        self.app = create_app(self.store, FakeChain(height=800_200), metrics=self.metrics)
        self.client = self.app.test_client()

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_data(as_text=True), "OK")

    def test_pending_round_status(self) -> None:
        response = self.client.get("/api/round/1/status")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.get_json(),
            {
                "round": 1,
                "state": "pending",
                "participantCount": 2,
                "currentBlock": 800_200,
                "futureBlock": None,
                "seedHash": None,
                "merkleRoot": None,
                "result": None,
            },
        )
        self.assertEqual(self.metrics.registry.get_sample_value("satlotto_tickets_total"), 2.0)

    def test_completed_round_includes_result(self) -> None:
        body = self.client.get("/api/round/2/status").get_json()

        self.assertEqual(body["state"], "done")
        self.assertEqual(body["futureBlock"], 800_144)
        self.assertEqual(body["seedHash"], "bb" * 32)
        self.assertEqual(body["merkleRoot"], "cc" * 32)
        self.assertEqual(
            body["result"], {"winner": "x2", "prize": 990, "fee": 10, "blockHash": BLOCK_HASH}
        )
        self.assertNotIn("seed", body)

    def test_unknown_round(self) -> None:
        response = self.client.get("/api/round/42/status")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json(), {"error": "round 42 not found"})

    def test_invalid_round_id(self) -> None:
        for bad in ("0", "abc", "-3"):
            with self.subTest(round_id=bad):
                self.assertEqual(self.client.get(f"/api/round/{bad}/status").status_code, 400)

    def test_chain_outage_degrades_to_missing_height(self) -> None:
        app = create_app(self.store, UnreachableChain(), metrics=self.metrics)
        body = app.test_client().get("/api/round/1/status").get_json()
        self.assertIsNone(body["currentBlock"])
        self.assertEqual(body["participantCount"], 2)

    def test_storage_outage_is_503(self) -> None:
        self.store.failing.add("get_round")
        response = self.client.get("/api/round/1/status")
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.get_json(), {"error": "upstream unavailable"})

    def test_metrics_endpoint(self) -> None:
        self.client.get("/api/round/1/status")
        response = self.client.get("/metrics")

        self.assertEqual(response.status_code, 200)
        text = response.get_data(as_text=True)
        self.assertIn("satlotto_response_time_seconds_count 1.0", text)
        self.assertIn("satlotto_tickets_total 2.0", text)


if __name__ == "__main__":
    unittest.main()
