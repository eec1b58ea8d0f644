from .base import ChainOracle, EventRelay, PayoutRail
from .bitcoind import BitcoindChainOracle, BitcoindClientConfig
from .lightning import LndClientConfig, LndPayoutRail
from .nostr import NostrRelayPool, SchnorrSigner

__all__ = [
    "ChainOracle",
    "EventRelay",
    "PayoutRail",
    "BitcoindChainOracle",
    "BitcoindClientConfig",
    "LndClientConfig",
    "LndPayoutRail",
    "NostrRelayPool",
    "SchnorrSigner",
]
