from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional

from .announcer import ReliableAnnouncer
from .clients.bitcoind import BitcoindChainOracle, BitcoindClientConfig
from .clients.lightning import LndClientConfig, LndPayoutRail
from .clients.nostr import NostrRelayPool, SchnorrSigner
from .config import LotterySettings, load_config
from .engine import RoundEngine
from .scheduler import DrawScheduler, TickResult
from .storage import Database, SqlRoundStore


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )


def build_chain_oracle(settings: LotterySettings) -> BitcoindChainOracle:
    cfg = settings.bitcoind
    return BitcoindChainOracle(
        BitcoindClientConfig(
            url=cfg.url,
            username=cfg.username,
            password=cfg.password,
            timeout_seconds=cfg.timeout_seconds,
        )
    )


def build_payout_rail(settings: LotterySettings) -> LndPayoutRail:
    cfg = settings.lightning
    return LndPayoutRail(
        LndClientConfig(
            url=cfg.url,
            macaroon_path=cfg.macaroon_path,
            tls_cert_path=cfg.tls_cert_path,
            timeout_seconds=cfg.timeout_seconds,
        )
    )


def build_relay(settings: LotterySettings) -> NostrRelayPool:
    cfg = settings.relay
    return NostrRelayPool(cfg.urls, SchnorrSigner(cfg.private_key), timeout_seconds=cfg.timeout_seconds)


async def run(args: argparse.Namespace) -> Optional[TickResult]:
    settings = load_config(args.env_file)
    configure_logging(args.verbose)
    logger = logging.getLogger("satlotto")

    database = Database(settings.database_url)
    database.create_all()
    store = SqlRoundStore(database)
    chain = build_chain_oracle(settings)
    relay = build_relay(settings)
    payouts = build_payout_rail(settings)

    draw = settings.draw
    announcer = ReliableAnnouncer(
        relay,
        store,
        attempts=draw.announce_attempts,
        delay_seconds=draw.announce_delay_seconds,
        timeout_seconds=draw.call_timeout_seconds,
    )
    engine = RoundEngine(draw, store, chain, announcer, payouts)
    scheduler = DrawScheduler(draw, engine, store, chain)

    try:
        if args.once or draw.run_once:
            result = await scheduler.run_once()
            if result:
                logger.info(
                    "Tick on round=%s action=%s completed=%s", result.round_id, result.action.value, result.completed
                )
            return result

        await scheduler.run_forever()
        return None
    finally:
        await chain.close()
        await relay.close()
        await payouts.close()
        database.dispose()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="SatLotto draw service")
    parser.add_argument("--env-file", type=str, default=None, help="Path to .env file with credentials")
    parser.add_argument("--once", action="store_true", help="Run a single scheduler tick and exit.")
    parser.add_argument(
        "--verbose", action="store_true", help="Enable debug logging (default INFO)."
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        print("Draw service stopped by user.")


if __name__ == "__main__":
    main()
