from __future__ import annotations

import asyncio
import logging
import pathlib
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

import requests

from ..errors import PayoutError
from ..types import PaymentInstruction
from .base import PayoutRail


@dataclass(frozen=True)
class LndClientConfig:
    url: str
    macaroon_path: str
    tls_cert_path: Optional[str] = None
    timeout_seconds: int = 10


class LndPayoutRail(PayoutRail):
    """Payout rail that issues invoices through LND's REST gateway."""

    def __init__(
        self,
        config: LndClientConfig,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._config = config
        self._session = session or requests.Session()
        self._session.headers["Grpc-Metadata-macaroon"] = self._load_macaroon(config.macaroon_path)
        self._logger = logger or logging.getLogger("satlotto.clients.lightning")

    @staticmethod
    def _load_macaroon(path: str) -> str:
        macaroon_path = pathlib.Path(path)
        if not macaroon_path.exists():
            raise FileNotFoundError(f"LND macaroon not found: {macaroon_path}")
        return macaroon_path.read_bytes().hex()

    @property
    def _verify(self) -> Union[str, bool]:
        return self._config.tls_cert_path or True

    async def create_payment(self, recipient: str, amount: int, memo: str) -> PaymentInstruction:
        if amount <= 0:
            raise PayoutError(f"refusing to create a payment of {amount} sats for {recipient}")
        data = await asyncio.to_thread(self._add_invoice, amount, memo)
        payment_request = data.get("payment_request")
        if not isinstance(payment_request, str) or not payment_request:
            raise PayoutError("LND returned an invoice without payment_request")
        self._logger.info("Created invoice for %s sats to %s (%s)", amount, recipient, memo)
        return PaymentInstruction(
            recipient=recipient,
            amount=amount,
            memo=memo,
            payment_request=payment_request,
        )

    async def close(self) -> None:
        self._session.close()

    def _add_invoice(self, amount: int, memo: str) -> Mapping[str, Any]:
        url = self._config.url.rstrip("/") + "/v1/invoices"
        try:
            resp = self._session.post(
                url,
                json={"value": str(amount), "memo": memo},
                timeout=self._config.timeout_seconds,
                verify=self._verify,
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as exc:
            raise PayoutError(f"LND addinvoice failed: {exc}") from exc
        except ValueError as exc:
            raise PayoutError("LND addinvoice returned non-JSON body") from exc
        if not isinstance(data, Mapping):
            raise PayoutError("LND addinvoice returned non-object payload")
        return data
