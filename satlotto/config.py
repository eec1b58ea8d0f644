from __future__ import annotations

import os
import pathlib
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional, Tuple

from dotenv import load_dotenv

DEFAULT_RELAYS: Tuple[str, ...] = (
    "wss://relay.damus.io",
    "wss://nostr-pub.wellorder.net",
    "wss://relay.nostr.band",
    "wss://nostr-2.zebedee.cloud",
)

BITCOIND_PORTS = {"mainnet": 8332, "testnet": 18332, "signet": 38332, "regtest": 18443}


def _bool_from_env(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_from_env(value: Optional[str], default: int) -> int:
    if value is None or value == "":
        return default
    return int(value)


def _float_from_env(value: Optional[str], default: float) -> float:
    if value is None or value == "":
        return default
    return float(value)


def _read_secret_file(path: str) -> str:
    secret_path = pathlib.Path(path)
    if not secret_path.exists():
        raise RuntimeError(f"Secret file not found: {secret_path}")
    return secret_path.read_text(encoding="utf-8").strip()


@dataclass(frozen=True)
class DrawSettings:
    poll_interval_seconds: int = 60
    participant_threshold: int = 10
    block_horizon: int = 144
    max_tickets: int = 100
    prize_share_percent: int = 99
    announce_attempts: int = 3
    announce_delay_seconds: float = 1.0
    call_timeout_seconds: float = 30.0
    platform_recipient: str = "platform"
    run_once: bool = False


@dataclass(frozen=True)
class BitcoindSettings:
    url: str = "http://bitcoind:8332"
    username: str = ""
    password: str = field(default="", repr=False)
    timeout_seconds: int = 10


@dataclass(frozen=True)
class LightningSettings:
    url: str = "https://lnd:8080"
    macaroon_path: str = "/root/.lnd/data/chain/bitcoin/mainnet/admin.macaroon"
    tls_cert_path: Optional[str] = "/root/.lnd/tls.cert"
    timeout_seconds: int = 10


@dataclass(frozen=True)
class RelaySettings:
    urls: Tuple[str, ...] = DEFAULT_RELAYS
    private_key: str = field(default="", repr=False)
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class LotterySettings:
    database_url: str = "sqlite:///satlotto.db"
    draw: DrawSettings = DrawSettings()
    bitcoind: BitcoindSettings = BitcoindSettings()
    lightning: LightningSettings = LightningSettings()
    relay: RelaySettings = RelaySettings()


def load_bitcoind_settings() -> BitcoindSettings:
    network = os.getenv("BITCOIND__NETWORK", "mainnet")
    if network not in BITCOIND_PORTS:
        raise RuntimeError(f"Unknown BITCOIND__NETWORK: {network}")
    url = os.getenv("BITCOIND__URL") or f"http://bitcoind:{BITCOIND_PORTS[network]}"

    rpcauth_file = os.getenv("BITCOIND__RPCAUTH_FILE")
    if rpcauth_file:
        username, _, password = _read_secret_file(rpcauth_file).partition(":")
    else:
        username = os.getenv("BITCOIND__USER", "")
        password = os.getenv("BITCOIND__PASSWORD", "")

    return BitcoindSettings(
        url=url,
        username=username,
        password=password,
        timeout_seconds=_int_from_env(os.getenv("BITCOIND__TIMEOUT_SECONDS"), 10),
    )


def _load_relay() -> RelaySettings:
    raw_urls = os.getenv("RELAY__URLS", "")
    urls = tuple(u.strip() for u in raw_urls.split(",") if u.strip()) or DEFAULT_RELAYS

    key_file = os.getenv("RELAY__PRIVATE_KEY_FILE")
    private_key = _read_secret_file(key_file) if key_file else os.getenv("RELAY__PRIVATE_KEY", "")
    if not private_key:
        raise RuntimeError("Missing relay signing key: set RELAY__PRIVATE_KEY or RELAY__PRIVATE_KEY_FILE")

    return RelaySettings(
        urls=urls,
        private_key=private_key,
        timeout_seconds=_float_from_env(os.getenv("RELAY__TIMEOUT_SECONDS"), 10.0),
    )


def load_from_environment() -> LotterySettings:
    draw = DrawSettings(
        poll_interval_seconds=_int_from_env(os.getenv("POLL_INTERVAL_SECONDS"), 60),
        participant_threshold=_int_from_env(os.getenv("PARTICIPANT_THRESHOLD"), 10),
        block_horizon=_int_from_env(os.getenv("BLOCK_HORIZON"), 144),
        max_tickets=_int_from_env(os.getenv("MAX_TICKETS"), 100),
        prize_share_percent=_int_from_env(os.getenv("PRIZE_SHARE_PERCENT"), 99),
        announce_attempts=_int_from_env(os.getenv("ANNOUNCE_ATTEMPTS"), 3),
        announce_delay_seconds=_float_from_env(os.getenv("ANNOUNCE_DELAY_SECONDS"), 1.0),
        call_timeout_seconds=_float_from_env(os.getenv("CALL_TIMEOUT_SECONDS"), 30.0),
        platform_recipient=os.getenv("PLATFORM_RECIPIENT", "platform"),
        run_once=_bool_from_env(os.getenv("RUN_ONCE"), False),
    )

    lightning = LightningSettings(
        url=os.getenv("LND__URL", "https://lnd:8080"),
        macaroon_path=os.getenv(
            "LND__MACAROON_PATH", "/root/.lnd/data/chain/bitcoin/mainnet/admin.macaroon"
        ),
        tls_cert_path=os.getenv("LND__TLS_CERT_PATH", "/root/.lnd/tls.cert") or None,
        timeout_seconds=_int_from_env(os.getenv("LND__TIMEOUT_SECONDS"), 10),
    )

    return LotterySettings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///satlotto.db"),
        draw=draw,
        bitcoind=load_bitcoind_settings(),
        lightning=lightning,
        relay=_load_relay(),
    )


@lru_cache(maxsize=1)
def load_config(dotenv_path: Optional[str] = None) -> LotterySettings:
    if dotenv_path:
        load_dotenv(dotenv_path)
    else:
        default_path = pathlib.Path(".env")
        if default_path.exists():
            load_dotenv(default_path)
    return load_from_environment()
