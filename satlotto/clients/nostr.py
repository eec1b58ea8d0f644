"""
Nostr relay pool used to announce commitments and outcomes.

Events follow NIP-01: the id is SHA-256 over the compact JSON array
``[0, pubkey, created_at, kind, tags, content]`` and the signature is a BIP-340
Schnorr signature over that id, computed on secp256k1 from ``ecdsa``.

A publish succeeds when at least one relay answers ``["OK", id, true, ...]``.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
from typing import Any, Dict, List, Optional, Sequence

import websockets
from websockets.exceptions import WebSocketException
from ecdsa import SECP256k1
from ecdsa.ellipticcurve import INFINITY, PointJacobi

from ..errors import RelayError
from ..types import RelayEvent
from .base import EventRelay

_CURVE = SECP256k1.curve
_G = SECP256k1.generator
_N = SECP256k1.order
_P = _CURVE.p()


def _tagged_hash(tag: str, msg: bytes) -> bytes:
    tag_hash = hashlib.sha256(tag.encode("utf-8")).digest()
    return hashlib.sha256(tag_hash + tag_hash + msg).digest()


def _int_from_bytes(data: bytes) -> int:
    return int.from_bytes(data, "big")


def _bytes_from_int(value: int) -> bytes:
    return value.to_bytes(32, "big")


def _lift_x(x: int) -> Optional[PointJacobi]:
    if x >= _P:
        return None
    y_sq = (pow(x, 3, _P) + 7) % _P
    y = pow(y_sq, (_P + 1) // 4, _P)
    if pow(y, 2, _P) != y_sq:
        return None
    return PointJacobi(_CURVE, x, y if y % 2 == 0 else _P - y, 1, _N)


class SchnorrSigner:
    """BIP-340 signer holding a single secp256k1 secret key."""

    def __init__(self, private_key_hex: str) -> None:
        secret = _int_from_bytes(bytes.fromhex(private_key_hex))
        if not 1 <= secret < _N:
            raise ValueError("private key out of range for secp256k1")
        point = _G * secret
        self._secret = secret if point.y() % 2 == 0 else _N - secret
        self._pubkey = _bytes_from_int(point.x())

    @property
    def public_key(self) -> str:
        return self._pubkey.hex()

    def sign(self, msg: bytes, aux_rand: Optional[bytes] = None) -> bytes:
        aux = aux_rand if aux_rand is not None else os.urandom(32)
        t = bytes(a ^ b for a, b in zip(_bytes_from_int(self._secret), _tagged_hash("BIP0340/aux", aux)))
        k0 = _int_from_bytes(_tagged_hash("BIP0340/nonce", t + self._pubkey + msg)) % _N
        if k0 == 0:
            raise RuntimeError("derived nonce is zero")
        r_point = _G * k0
        k = k0 if r_point.y() % 2 == 0 else _N - k0
        r = _bytes_from_int(r_point.x())
        e = _int_from_bytes(_tagged_hash("BIP0340/challenge", r + self._pubkey + msg)) % _N
        return r + _bytes_from_int((k + e * self._secret) % _N)


def verify_signature(pubkey: bytes, msg: bytes, sig: bytes) -> bool:
    if len(pubkey) != 32 or len(sig) != 64:
        return False
    point = _lift_x(_int_from_bytes(pubkey))
    r = _int_from_bytes(sig[:32])
    s = _int_from_bytes(sig[32:])
    if point is None or r >= _P or s == 0 or s >= _N:
        return False
    e = _int_from_bytes(_tagged_hash("BIP0340/challenge", sig[:32] + pubkey + msg)) % _N
    candidate = _G * s + point * (_N - e)
    if candidate == INFINITY:
        return False
    return candidate.y() % 2 == 0 and candidate.x() == r


def event_id(pubkey: str, event: RelayEvent) -> str:
    serialized = json.dumps(
        [0, pubkey, event.created_at, int(event.kind), [list(t) for t in event.tags], event.content_json()],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def sign_event(signer: SchnorrSigner, event: RelayEvent) -> Dict[str, Any]:
    payload = event.to_dict()
    payload["pubkey"] = signer.public_key
    payload["id"] = event_id(signer.public_key, event)
    payload["sig"] = signer.sign(bytes.fromhex(payload["id"])).hex()
    return payload


class NostrRelayPool(EventRelay):
    def __init__(
        self,
        urls: Sequence[str],
        signer: SchnorrSigner,
        timeout_seconds: float = 10.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not urls:
            raise ValueError("at least one relay url is required")
        self._urls = tuple(urls)
        self._signer = signer
        self._timeout = timeout_seconds
        self._logger = logger or logging.getLogger("satlotto.clients.nostr")

    async def publish(self, event: RelayEvent) -> str:
        signed = sign_event(self._signer, event)
        results = await asyncio.gather(
            *(self._publish_to(url, signed) for url in self._urls), return_exceptions=True
        )
        accepted: List[str] = []
        for url, result in zip(self._urls, results):
            if isinstance(result, BaseException):
                self._logger.warning("Relay %s rejected event %s: %s", url, signed["id"], result)
            else:
                accepted.append(url)
        if not accepted:
            raise RelayError(f"no relay accepted event {signed['id']} (kind {signed['kind']})")
        self._logger.info("Event %s kind=%s accepted by %s", signed["id"], signed["kind"], accepted)
        return signed["id"]

    async def _publish_to(self, url: str, signed: Dict[str, Any]) -> None:
        try:
            async with websockets.connect(url, open_timeout=self._timeout) as ws:
                await ws.send(json.dumps(["EVENT", signed]))
                while True:
                    raw = await asyncio.wait_for(ws.recv(), timeout=self._timeout)
                    message = json.loads(raw)
                    if isinstance(message, list) and message[:2] == ["OK", signed["id"]]:
                        if len(message) > 2 and message[2] is True:
                            return
                        reason = message[3] if len(message) > 3 else ""
                        raise RelayError(f"{url} refused event: {reason}")
        except asyncio.TimeoutError as exc:
            raise RelayError(f"{url} timed out") from exc
        except (OSError, ValueError, WebSocketException) as exc:
            raise RelayError(f"{url} failed: {exc}") from exc
