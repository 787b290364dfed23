"""
XRP Ledger client.

Uses xrpl-py's async JSON-RPC client for the two things the bridge needs
from the XRPL: looking up the payment an agent reported as delivery, and
rotating the master account's regular key when an agent is onboarded.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import httpx
from xrpl.asyncio.clients import AsyncJsonRpcClient
from xrpl.asyncio.transaction import XRPLReliableSubmissionException, submit_and_wait
from xrpl.models.requests import ServerInfo, Tx
from xrpl.models.transactions import SetRegularKey
from xrpl.wallet import Wallet

from .base import XrplLedger, XrplTransaction
from ..core.bridge.constants import XRPL_CHAIN_ID
from ..core.recovery.errors import TransactionRevertedError, TransientSubmissionError, ValidationError

logger = logging.getLogger(__name__)


def xrpl_hash(tx_hash: str) -> str:
    """XRPL hashes are 64 upper-case hex chars without a prefix."""
    value = tx_hash.strip()
    if value.lower().startswith("0x"):
        value = value[2:]
    return value.upper()


def _parse_amount(raw: Any) -> Optional[Decimal]:
    if raw is None:
        return None
    if isinstance(raw, dict):
        raw = raw.get("value")
    try:
        return Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None


def parse_tx_result(result: Dict[str, Any]) -> XrplTransaction:
    """Build an ``XrplTransaction`` from a ``tx`` response (API v1 or v2)."""
    tx = result.get("tx_json") or result
    meta = result.get("meta") or {}
    if not isinstance(meta, dict):
        meta = {}
    delivered = meta.get("delivered_amount")
    if delivered is None or delivered == "unavailable":
        delivered = tx.get("DeliverMax", tx.get("Amount"))
    ledger_index = result.get("ledger_index", tx.get("ledger_index"))
    return XrplTransaction(
        hash=result.get("hash") or tx.get("hash") or "",
        validated=bool(result.get("validated")),
        transaction_type=tx.get("TransactionType"),
        result=meta.get("TransactionResult"),
        account=tx.get("Account"),
        destination=tx.get("Destination"),
        delivered_amount=_parse_amount(delivered),
        ledger_index=int(ledger_index) if ledger_index is not None else None,
    )


class XrplJsonRpcLedger(XrplLedger):
    timeout_s = 20

    def __init__(
        self,
        rpc_url: str,
        master_seed: Optional[str] = None,
        client: Optional[AsyncJsonRpcClient] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self._client = client or AsyncJsonRpcClient(rpc_url)
        self._master_wallet: Optional[Wallet] = Wallet.from_seed(master_seed) if master_seed else None

    @property
    def master_address(self) -> Optional[str]:
        return self._master_wallet.classic_address if self._master_wallet else None

    async def ready(self) -> bool:
        return bool(self.rpc_url)

    async def health_check(self) -> Dict[str, Any]:
        try:
            response = await self._client.request(ServerInfo())
        except (httpx.HTTPError, OSError) as exc:
            return {"status": "error", "reason": str(exc)}
        if not response.is_successful():
            return {"status": "error", "reason": response.result.get("error", "unknown")}
        info = response.result.get("info", {})
        validated = info.get("validated_ledger") or {}
        return {
            "status": "healthy",
            "serverState": info.get("server_state"),
            "validatedLedger": validated.get("seq"),
        }

    async def get_transaction(self, tx_hash: str) -> Optional[XrplTransaction]:
        try:
            response = await self._client.request(Tx(transaction=xrpl_hash(tx_hash)))
        except (httpx.HTTPError, OSError) as exc:
            raise TransientSubmissionError(f"XRPL lookup failed: {exc}", operation="tx") from exc

        if not response.is_successful():
            error = response.result.get("error")
            if error == "txnNotFound":
                return None
            raise TransientSubmissionError(f"XRPL lookup error: {error}", operation="tx")
        return parse_tx_result(response.result)

    async def set_regular_key(self, regular_key: str) -> XrplTransaction:
        if self._master_wallet is None:
            raise ValidationError("XRPL master seed is not configured", code="XRPL_MASTER_NOT_CONFIGURED")

        tx = SetRegularKey(account=self._master_wallet.classic_address, regular_key=regular_key)
        try:
            response = await submit_and_wait(tx, self._client, self._master_wallet)
        except XRPLReliableSubmissionException as exc:
            raise TransactionRevertedError(
                f"SetRegularKey failed: {exc}",
                reason=str(exc),
                chain_id=XRPL_CHAIN_ID,
            ) from exc
        except (httpx.HTTPError, OSError) as exc:
            raise TransientSubmissionError(f"SetRegularKey submission failed: {exc}", operation="SetRegularKey") from exc

        result = parse_tx_result(response.result)
        if result.validated:
            logger.info("Regular key set to %s (tx %s)", regular_key, result.hash)
        else:
            logger.warning("SetRegularKey not validated: %s", response.result.get("meta"))
        return result
