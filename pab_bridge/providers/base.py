from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:  # pragma: no cover
    from ..core.bridge.models import Agent, BridgeRequest


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: int = 10

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        pass


@dataclass
class TxReceipt:
    tx_hash: str
    block_number: int
    success: bool
    gas_used: Optional[int] = None


@dataclass
class XrplTransaction:
    """The fields of an XRPL transaction the delivery check looks at."""

    hash: str
    validated: bool
    transaction_type: Optional[str] = None
    result: Optional[str] = None  # meta.TransactionResult, e.g. "tesSUCCESS"
    account: Optional[str] = None
    destination: Optional[str] = None
    # XRP in drops, or the value of an issued-currency amount
    delivered_amount: Optional[Decimal] = None
    ledger_index: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.result == "tesSUCCESS"


class GatewayContract(Provider):
    """The PAB gateway contract on one EVM chain.

    Mutating methods take the acting address, submit the call signed by that
    address and return the transaction hash without waiting for a receipt.
    """

    name = "gateway"
    chain_id: int
    # ERC-20 the gateway pulls with transferFrom on register, deposit and bridgeTokens
    token_address: Optional[str] = None

    @abstractmethod
    async def register(self, actor: str, xrpl_address: str, amount: int) -> str:
        pass

    @abstractmethod
    async def deposit(self, actor: str, amount: int) -> str:
        pass

    @abstractmethod
    async def bridge_tokens(self, actor: str, amount: int, destination_chain_id: int) -> str:
        pass

    @abstractmethod
    async def claim_bridge(self, actor: str, user: str) -> str:
        pass

    @abstractmethod
    async def confirm_bridge(self, actor: str, user: str, xrpl_tx_hash: str) -> str:
        pass

    @abstractmethod
    async def force_receive(self, actor: str) -> str:
        pass

    @abstractmethod
    async def approve_forced_receive(self, actor: str, user: str) -> str:
        pass

    @abstractmethod
    async def withdraw(self, actor: str) -> str:
        pass

    @abstractmethod
    async def add_supported_chain(self, actor: str, chain_id: int) -> str:
        pass

    @abstractmethod
    async def remove_supported_chain(self, actor: str, chain_id: int) -> str:
        pass

    @abstractmethod
    async def approve_token(self, actor: str, amount: int) -> str:
        """Let the gateway pull ``amount`` of the custody token from ``actor``."""
        pass

    # Reads
    @abstractmethod
    async def agents(self, address: str) -> Optional[Agent]:
        """Agent record, or None when the address never registered."""
        pass

    @abstractmethod
    async def atomic_bridge(self, user: str) -> Optional[BridgeRequest]:
        """The user's slot, or None when it is empty."""
        pass

    @abstractmethod
    async def get_supported_chains(self) -> List[int]:
        pass

    @abstractmethod
    async def is_chain_supported(self, chain_id: int) -> bool:
        pass

    @abstractmethod
    async def token_balance(self, owner: str) -> int:
        pass

    @abstractmethod
    async def token_allowance(self, owner: str) -> int:
        """How much of ``owner``'s custody token the gateway may pull."""
        pass

    @abstractmethod
    async def estimate_bridge_gas(self, actor: str, amount: int, destination_chain_id: int) -> Dict[str, int]:
        """``gas``, ``maxFeePerGas`` and ``maxCostWei`` of a bridgeTokens call."""
        pass

    @abstractmethod
    async def block_number(self) -> int:
        pass

    @abstractmethod
    async def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        """Receipt of a mined transaction, or None while it is pending."""
        pass


class XrplLedger(Provider):
    """Read access to the XRP Ledger plus the master-account key rotation."""

    name = "xrpl"

    @abstractmethod
    async def get_transaction(self, tx_hash: str) -> Optional[XrplTransaction]:
        """Look up a transaction by hash; None when the node does not know it."""
        pass

    @abstractmethod
    async def set_regular_key(self, regular_key: str) -> XrplTransaction:
        """Assign ``regular_key`` to the master account and wait for validation."""
        pass
