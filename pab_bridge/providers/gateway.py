"""
PAB Gateway contract client.

Thin web3.py wrapper around the deployed PAB_Gateway. Each acting address
signs with its own eth-account ``LocalAccount``; calls are built, signed and
broadcast as raw transactions and the hash is returned immediately so the
confirmation watcher can track finality.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from .base import GatewayContract, TxReceipt
from ..core.bridge.constants import ERC20_ABI, GATEWAY_ABI
from ..core.bridge.encoding import is_zero_address, is_zero_bytes32, normalize_address, to_bytes32_hex
from ..core.bridge.models import Agent, BridgeRequest
from ..core.recovery.errors import (
    AuthorizationError,
    ErrorCategory,
    TransactionRevertedError,
    TransientSubmissionError,
    ValidationError,
    classify_error,
)

logger = logging.getLogger(__name__)

GAS_BUFFER = 1.2
FALLBACK_GAS = 300_000


class Web3GatewayContract(GatewayContract):
    timeout_s = 30

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        chain_id: int,
        signers: Optional[Iterable[LocalAccount]] = None,
        w3: Optional[AsyncWeb3] = None,
        token_address: Optional[str] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.w3 = w3 or AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": self.timeout_s})
        )
        self.contract_address = AsyncWeb3.to_checksum_address(contract_address)
        self.contract = self.w3.eth.contract(address=self.contract_address, abi=GATEWAY_ABI)
        self.token_address = AsyncWeb3.to_checksum_address(token_address) if token_address else None
        self.token = (
            self.w3.eth.contract(address=self.token_address, abi=ERC20_ABI) if self.token_address else None
        )
        self._signers: Dict[str, LocalAccount] = {}
        self._send_locks: Dict[str, asyncio.Lock] = {}
        for account in signers or []:
            self.add_signer(account)

    @classmethod
    def from_private_keys(
        cls,
        rpc_url: str,
        contract_address: str,
        chain_id: int,
        private_keys: Iterable[str],
        token_address: Optional[str] = None,
    ) -> "Web3GatewayContract":
        return cls(
            rpc_url,
            contract_address,
            chain_id,
            [Account.from_key(k) for k in private_keys],
            token_address=token_address,
        )

    def add_signer(self, account: LocalAccount) -> str:
        address = account.address.lower()
        self._signers[address] = account
        return address

    @property
    def signer_addresses(self) -> List[str]:
        return list(self._signers.keys())

    def _signer(self, actor: str) -> LocalAccount:
        account = self._signers.get(normalize_address(actor))
        if account is None:
            raise AuthorizationError(
                f"No signing key configured for {actor}",
                caller=actor,
            )
        return account

    def _send_lock(self, address: str) -> asyncio.Lock:
        if address not in self._send_locks:
            self._send_locks[address] = asyncio.Lock()
        return self._send_locks[address]

    async def ready(self) -> bool:
        try:
            return await self.w3.is_connected()
        except Exception:  # noqa: BLE001
            return False

    async def health_check(self) -> Dict[str, Any]:
        try:
            block = await self.w3.eth.block_number
            return {
                "status": "healthy",
                "chainId": self.chain_id,
                "blockNumber": block,
                "contract": self.contract_address,
            }
        except Exception as exc:  # noqa: BLE001
            return {"status": "error", "chainId": self.chain_id, "reason": str(exc)}

    # ---------------------------
    # Submission
    # ---------------------------
    def _map_error(self, exc: Exception, operation: str) -> Exception:
        if isinstance(exc, ContractLogicError):
            return TransactionRevertedError(
                f"{operation} reverted: {exc}",
                reason=str(getattr(exc, "message", None) or exc),
                chain_id=self.chain_id,
            )
        if isinstance(exc, (TimeExhausted, asyncio.TimeoutError)):
            return TransientSubmissionError(f"{operation} timed out: {exc}", operation=operation)
        context = classify_error(exc)
        if context.category == ErrorCategory.TRANSIENT_SUBMISSION:
            return TransientSubmissionError(
                f"{operation} failed: {exc}",
                operation=operation,
                retry_after=context.retry_after_seconds,
            )
        if context.category == ErrorCategory.TRANSACTION_REVERTED:
            return TransactionRevertedError(f"{operation} reverted: {exc}", reason=str(exc), chain_id=self.chain_id)
        return exc

    async def _fee_params(self) -> Dict[str, int]:
        latest_block = await self.w3.eth.get_block("latest")
        base_fee = latest_block.get("baseFeePerGas", 0)
        max_priority_fee = await self.w3.eth.max_priority_fee
        return {
            "maxFeePerGas": base_fee * 2 + max_priority_fee,
            "maxPriorityFeePerGas": max_priority_fee,
        }

    async def _transact(self, actor: str, operation: str, *args: Any, contract: Any = None) -> str:
        account = self._signer(actor)
        contract_fn = getattr((contract or self.contract).functions, operation)(*args)
        async with self._send_lock(account.address.lower()):
            try:
                nonce = await self.w3.eth.get_transaction_count(account.address, "pending")
                tx_params: Dict[str, Any] = {
                    "from": account.address,
                    "nonce": nonce,
                    "chainId": self.chain_id,
                    **await self._fee_params(),
                }

                try:
                    gas_estimate = await contract_fn.estimate_gas(tx_params)
                    tx_params["gas"] = int(gas_estimate * GAS_BUFFER)
                except ContractLogicError:
                    raise
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Gas estimation for %s failed (%s), using %d", operation, exc, FALLBACK_GAS)
                    tx_params["gas"] = FALLBACK_GAS

                built_tx = await contract_fn.build_transaction(tx_params)
                signed = account.sign_transaction(built_tx)
                tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception as exc:  # noqa: BLE001
                raise self._map_error(exc, operation) from exc

        hex_hash = AsyncWeb3.to_hex(tx_hash)
        logger.info("Gateway %s sent by %s: %s (nonce=%d)", operation, account.address, hex_hash, nonce)
        return hex_hash

    async def register(self, actor: str, xrpl_address: str, amount: int) -> str:
        return await self._transact(actor, "register", bytes.fromhex(to_bytes32_hex(xrpl_address)[2:]), amount)

    async def deposit(self, actor: str, amount: int) -> str:
        return await self._transact(actor, "deposit", amount)

    async def bridge_tokens(self, actor: str, amount: int, destination_chain_id: int) -> str:
        return await self._transact(actor, "bridgeTokens", amount, destination_chain_id)

    async def claim_bridge(self, actor: str, user: str) -> str:
        return await self._transact(actor, "claimBridge", AsyncWeb3.to_checksum_address(user))

    async def confirm_bridge(self, actor: str, user: str, xrpl_tx_hash: str) -> str:
        return await self._transact(
            actor,
            "confirmBridge",
            AsyncWeb3.to_checksum_address(user),
            bytes.fromhex(to_bytes32_hex(xrpl_tx_hash)[2:]),
        )

    async def force_receive(self, actor: str) -> str:
        return await self._transact(actor, "forceReceive")

    async def approve_forced_receive(self, actor: str, user: str) -> str:
        return await self._transact(actor, "approveForcedReceive", AsyncWeb3.to_checksum_address(user))

    async def withdraw(self, actor: str) -> str:
        return await self._transact(actor, "withdraw")

    async def add_supported_chain(self, actor: str, chain_id: int) -> str:
        return await self._transact(actor, "addSupportedChain", chain_id)

    async def remove_supported_chain(self, actor: str, chain_id: int) -> str:
        return await self._transact(actor, "removeSupportedChain", chain_id)

    # ---------------------------
    # Custody token
    # ---------------------------
    def _token(self) -> Any:
        if self.token is None:
            raise ValidationError("Custody token address is not configured", code="TOKEN_NOT_CONFIGURED")
        return self.token

    async def approve_token(self, actor: str, amount: int) -> str:
        return await self._transact(actor, "approve", self.contract_address, amount, contract=self._token())

    async def token_balance(self, owner: str) -> int:
        return int(await self._call("balanceOf", AsyncWeb3.to_checksum_address(owner), contract=self._token()))

    async def token_allowance(self, owner: str) -> int:
        return int(
            await self._call(
                "allowance",
                AsyncWeb3.to_checksum_address(owner),
                self.contract_address,
                contract=self._token(),
            )
        )

    async def estimate_bridge_gas(self, actor: str, amount: int, destination_chain_id: int) -> Dict[str, int]:
        """Gas and worst-case fee of a ``bridgeTokens`` call, without sending it."""
        contract_fn = self.contract.functions.bridgeTokens(amount, destination_chain_id)
        try:
            fees = await self._fee_params()
            gas = int(await contract_fn.estimate_gas({"from": AsyncWeb3.to_checksum_address(actor), **fees}))
        except Exception as exc:  # noqa: BLE001
            raise self._map_error(exc, "bridgeTokens") from exc
        return {"gas": gas, "maxFeePerGas": fees["maxFeePerGas"], "maxCostWei": gas * fees["maxFeePerGas"]}

    # ---------------------------
    # Reads
    # ---------------------------
    async def _call(self, operation: str, *args: Any, contract: Any = None) -> Any:
        try:
            return await getattr((contract or self.contract).functions, operation)(*args).call()
        except Exception as exc:  # noqa: BLE001
            raise self._map_error(exc, operation) from exc

    async def agents(self, address: str) -> Optional[Agent]:
        xrpl_address, deposit_amount, last_deposit_block = await self._call(
            "agents", AsyncWeb3.to_checksum_address(address)
        )
        xrpl_hex = to_bytes32_hex(bytes(xrpl_address))
        if is_zero_bytes32(xrpl_hex):
            return None
        return Agent(
            address=normalize_address(address),
            xrpl_address=xrpl_hex,
            deposit_amount=int(deposit_amount),
            last_deposit_block=int(last_deposit_block),
        )

    async def atomic_bridge(self, user: str) -> Optional[BridgeRequest]:
        (
            amount,
            destination_chain,
            claimed_block,
            agent_address,
            xrpl_tx_hash,
            requested_force_receive,
            force_received,
        ) = await self._call("atomicBridge", AsyncWeb3.to_checksum_address(user))
        if int(amount) == 0:
            return None
        tx_hash_hex = to_bytes32_hex(bytes(xrpl_tx_hash))
        return BridgeRequest(
            user=normalize_address(user),
            amount=int(amount),
            destination_chain_id=int(destination_chain),
            agent_address=None if is_zero_address(agent_address) else normalize_address(agent_address),
            claimed_block=None if is_zero_address(agent_address) else int(claimed_block),
            xrpl_tx_hash=None if is_zero_bytes32(tx_hash_hex) else tx_hash_hex,
            requested_force_receive=bool(requested_force_receive),
            force_received=bool(force_received),
        )

    async def get_supported_chains(self) -> List[int]:
        return [int(c) for c in await self._call("getSupportedChains")]

    async def is_chain_supported(self, chain_id: int) -> bool:
        return bool(await self._call("isChainSupported", chain_id))

    async def block_number(self) -> int:
        try:
            return int(await self.w3.eth.block_number)
        except Exception as exc:  # noqa: BLE001
            raise self._map_error(exc, "eth_blockNumber") from exc

    async def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        try:
            receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except Exception as exc:  # noqa: BLE001
            raise self._map_error(exc, "eth_getTransactionReceipt") from exc
        if receipt is None or receipt.get("blockNumber") is None:
            return None
        return TxReceipt(
            tx_hash=tx_hash,
            block_number=int(receipt["blockNumber"]),
            success=receipt["status"] == 1,
            gas_used=receipt.get("gasUsed"),
        )
