"""
Tests for the web3.py gateway client.

The node and contract are mocked; these cover transaction building, tuple
decoding and how client exceptions map onto the bridge error taxonomy.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from pab_bridge.core.recovery import (
    AuthorizationError,
    TransactionRevertedError,
    TransientSubmissionError,
    ValidationError,
)
from pab_bridge.providers.gateway import FALLBACK_GAS, Web3GatewayContract

from tests.fakes import AGENT, USER, XRPL_BINDING, XRPL_TX

CONTRACT = "0x" + "5e" * 20
ZERO_ADDRESS = "0x" + "00" * 20


async def _value(value):
    return value


@pytest.fixture
def w3():
    w3 = MagicMock()
    w3.eth.get_transaction_count = AsyncMock(return_value=5)
    w3.eth.get_block = AsyncMock(return_value={"baseFeePerGas": 10})
    w3.eth.send_raw_transaction = AsyncMock(return_value=bytes.fromhex("cd" * 32))
    return w3


@pytest.fixture
def signer():
    account = MagicMock()
    account.address = AGENT
    account.sign_transaction.return_value = MagicMock(raw_transaction=b"signed")
    return account


@pytest.fixture
def gateway(w3, signer) -> Web3GatewayContract:
    return Web3GatewayContract("http://localhost:8545", CONTRACT, 8453, signers=[signer], w3=w3)


def contract_fn(gateway: Web3GatewayContract, name: str) -> MagicMock:
    return getattr(gateway.contract.functions, name).return_value


class TestSigning:
    def test_from_private_keys(self):
        gateway = Web3GatewayContract.from_private_keys(
            "http://localhost:8545", CONTRACT, 8453, ["0x" + "11" * 32],
        )

        assert len(gateway.signer_addresses) == 1
        assert gateway.signer_addresses[0] == gateway.signer_addresses[0].lower()

    @pytest.mark.asyncio
    async def test_unknown_signer(self, gateway):
        with pytest.raises(AuthorizationError):
            await gateway.force_receive(USER)


class TestTransact:
    @pytest.mark.asyncio
    async def test_builds_eip1559_transaction(self, gateway, w3, signer):
        w3.eth.max_priority_fee = _value(2)
        fn = contract_fn(gateway, "claimBridge")
        fn.estimate_gas = AsyncMock(return_value=100_000)
        fn.build_transaction = AsyncMock(return_value={"data": "0x"})

        tx_hash = await gateway.claim_bridge(AGENT, USER)

        assert tx_hash == "0x" + "cd" * 32
        params = fn.build_transaction.call_args.args[0]
        assert params["nonce"] == 5
        assert params["chainId"] == 8453
        assert params["maxPriorityFeePerGas"] == 2
        assert params["maxFeePerGas"] == 22
        assert params["gas"] == 120_000
        signer.sign_transaction.assert_called_once_with({"data": "0x"})
        w3.eth.send_raw_transaction.assert_awaited_once_with(b"signed")

    @pytest.mark.asyncio
    async def test_gas_estimation_fallback(self, gateway, w3):
        w3.eth.max_priority_fee = _value(1)
        fn = contract_fn(gateway, "deposit")
        fn.estimate_gas = AsyncMock(side_effect=ValueError("estimation unavailable"))
        fn.build_transaction = AsyncMock(return_value={})

        await gateway.deposit(AGENT, 10)

        assert fn.build_transaction.call_args.args[0]["gas"] == FALLBACK_GAS

    @pytest.mark.asyncio
    async def test_contract_revert_during_estimation(self, gateway, w3):
        w3.eth.max_priority_fee = _value(1)
        fn = contract_fn(gateway, "confirmBridge")
        fn.estimate_gas = AsyncMock(side_effect=ContractLogicError("execution reverted: not the agent"))

        with pytest.raises(TransactionRevertedError):
            await gateway.confirm_bridge(AGENT, USER, XRPL_TX)

        w3.eth.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_register_passes_raw_bytes32(self, gateway, w3):
        w3.eth.max_priority_fee = _value(1)
        fn = contract_fn(gateway, "register")
        fn.estimate_gas = AsyncMock(return_value=50_000)
        fn.build_transaction = AsyncMock(return_value={})

        await gateway.register(AGENT, XRPL_BINDING, 1_000)

        args = gateway.contract.functions.register.call_args.args
        assert args == (bytes.fromhex("11" * 32), 1_000)


class TestErrorMapping:
    @pytest.mark.parametrize(
        "exc, expected",
        [
            (ContractLogicError("execution reverted"), TransactionRevertedError),
            (TimeExhausted("no receipt"), TransientSubmissionError),
            (ConnectionError("connection refused"), TransientSubmissionError),
            (ValueError("execution reverted: only owner"), TransactionRevertedError),
        ],
    )
    def test_maps_client_errors(self, gateway, exc, expected):
        assert isinstance(gateway._map_error(exc, "withdraw"), expected)

    def test_unknown_errors_pass_through(self, gateway):
        exc = KeyError("strange")
        assert gateway._map_error(exc, "withdraw") is exc


class TestReads:
    @pytest.mark.asyncio
    async def test_atomic_bridge_decodes_tuple(self, gateway):
        contract_fn(gateway, "atomicBridge").call = AsyncMock(
            return_value=(100, 137, 42, AGENT, bytes.fromhex("ab" * 32), True, False)
        )

        request = await gateway.atomic_bridge(USER)

        assert request.user == USER
        assert request.amount == 100
        assert request.destination_chain_id == 137
        assert request.agent_address == AGENT
        assert request.claimed_block == 42
        assert request.xrpl_tx_hash == XRPL_TX
        assert request.requested_force_receive is True

    @pytest.mark.asyncio
    async def test_empty_slot(self, gateway):
        contract_fn(gateway, "atomicBridge").call = AsyncMock(
            return_value=(0, 0, 0, ZERO_ADDRESS, bytes(32), False, False)
        )

        assert await gateway.atomic_bridge(USER) is None

    @pytest.mark.asyncio
    async def test_unclaimed_slot(self, gateway):
        contract_fn(gateway, "atomicBridge").call = AsyncMock(
            return_value=(5, 137, 0, ZERO_ADDRESS, bytes(32), False, False)
        )

        request = await gateway.atomic_bridge(USER)

        assert request.agent_address is None
        assert request.claimed_block is None
        assert request.xrpl_tx_hash is None

    @pytest.mark.asyncio
    async def test_agents(self, gateway):
        contract_fn(gateway, "agents").call = AsyncMock(return_value=(bytes.fromhex("11" * 32), 700, 12))

        agent = await gateway.agents(AGENT)

        assert agent.xrpl_address == XRPL_BINDING
        assert agent.deposit_amount == 700
        assert agent.last_deposit_block == 12

    @pytest.mark.asyncio
    async def test_unregistered_agent(self, gateway):
        contract_fn(gateway, "agents").call = AsyncMock(return_value=(bytes(32), 0, 0))

        assert await gateway.agents(AGENT) is None

    @pytest.mark.asyncio
    async def test_receipts(self, gateway, w3):
        w3.eth.get_transaction_receipt = AsyncMock(
            return_value={"blockNumber": 10, "status": 0, "gasUsed": 21_000}
        )
        receipt = await gateway.get_receipt("0x01")
        assert receipt.block_number == 10
        assert receipt.success is False

        w3.eth.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("pending"))
        assert await gateway.get_receipt("0x01") is None


TOKEN = "0x" + "70" * 20


@pytest.fixture
def token_gateway(w3, signer) -> Web3GatewayContract:
    return Web3GatewayContract(
        "http://localhost:8545", CONTRACT, 8453, signers=[signer], w3=w3, token_address=TOKEN,
    )


class TestCustodyToken:
    @pytest.mark.asyncio
    async def test_token_needs_address(self, gateway):
        assert gateway.token is None

        with pytest.raises(ValidationError) as exc_info:
            await gateway.token_balance(USER)

        assert exc_info.value.code == "TOKEN_NOT_CONFIGURED"

    @pytest.mark.asyncio
    async def test_approve_targets_gateway(self, token_gateway, w3):
        w3.eth.max_priority_fee = _value(1)
        fn = token_gateway.token.functions.approve.return_value
        fn.estimate_gas = AsyncMock(return_value=40_000)
        fn.build_transaction = AsyncMock(return_value={})

        await token_gateway.approve_token(AGENT, 500)

        args = token_gateway.token.functions.approve.call_args.args
        assert args == (token_gateway.contract_address, 500)
        w3.eth.send_raw_transaction.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_balance_and_allowance(self, token_gateway):
        token_gateway.token.functions.balanceOf.return_value.call = AsyncMock(return_value=900)
        token_gateway.token.functions.allowance.return_value.call = AsyncMock(return_value=250)

        assert await token_gateway.token_balance(USER) == 900
        assert await token_gateway.token_allowance(USER) == 250
        owner, spender = token_gateway.token.functions.allowance.call_args.args
        assert owner.lower() == USER
        assert spender == token_gateway.contract_address


class TestEstimateBridgeGas:
    @pytest.mark.asyncio
    async def test_estimate_includes_worst_case_fee(self, gateway, w3):
        w3.eth.max_priority_fee = _value(2)
        contract_fn(gateway, "bridgeTokens").estimate_gas = AsyncMock(return_value=80_000)

        estimate = await gateway.estimate_bridge_gas(USER, 100, 137)

        assert estimate == {"gas": 80_000, "maxFeePerGas": 22, "maxCostWei": 80_000 * 22}
        assert gateway.contract.functions.bridgeTokens.call_args.args == (100, 137)
        w3.eth.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_estimate_revert(self, gateway, w3):
        w3.eth.max_priority_fee = _value(1)
        contract_fn(gateway, "bridgeTokens").estimate_gas = AsyncMock(
            side_effect=ContractLogicError("execution reverted: unsupported chain")
        )

        with pytest.raises(TransactionRevertedError):
            await gateway.estimate_bridge_gas(USER, 100, 999)
