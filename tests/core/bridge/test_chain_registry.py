"""
Tests for the ChainRegistry

Owner gating, idempotent adds, removal and the chain-name table.
"""

import pytest

from pab_bridge.core.bridge import ChainRegistry
from pab_bridge.core.bridge.constants import CHAIN_NAMES, UNKNOWN_CHAIN_NAME, chain_name
from pab_bridge.core.recovery import (
    AuthorizationError,
    NotFoundError,
    UnsupportedChainError,
    ValidationError,
)

from tests.fakes import OWNER, STRANGER


@pytest.fixture
def registry() -> ChainRegistry:
    return ChainRegistry(OWNER)


class TestChainMutations:
    def test_add_then_remove_round_trip(self, registry: ChainRegistry):
        assert registry.add_chain(OWNER, 137) is True
        assert registry.is_supported(137)

        registry.remove_chain(OWNER, 137)

        assert not registry.is_supported(137)
        assert registry.list() == []

    def test_add_is_idempotent(self, registry: ChainRegistry):
        assert registry.add_chain(OWNER, 56) is True
        assert registry.add_chain(OWNER, 56) is False
        assert registry.list() == [56]

    def test_list_keeps_insertion_order(self, registry: ChainRegistry):
        for chain_id in (42161, 1, 137):
            registry.add_chain(OWNER, chain_id)
        registry.remove_chain(OWNER, 1)
        registry.add_chain(OWNER, 1)

        assert registry.list() == [42161, 137, 1]

    def test_owner_check_ignores_address_case(self, registry: ChainRegistry):
        assert registry.add_chain(OWNER.upper().replace("0X", "0x"), 10)

    def test_non_owner_cannot_add(self, registry: ChainRegistry):
        with pytest.raises(AuthorizationError):
            registry.add_chain(STRANGER, 137)
        assert registry.list() == []

    def test_non_owner_cannot_remove(self, registry: ChainRegistry):
        registry.add_chain(OWNER, 137)
        with pytest.raises(AuthorizationError):
            registry.remove_chain(STRANGER, 137)
        assert registry.is_supported(137)

    def test_remove_unknown_chain(self, registry: ChainRegistry):
        with pytest.raises(NotFoundError) as exc_info:
            registry.remove_chain(OWNER, 999)
        assert exc_info.value.code == "CHAIN_NOT_FOUND"

    def test_chain_zero_is_an_ordinary_id(self, registry: ChainRegistry):
        assert registry.add_chain(OWNER, 0)
        assert registry.is_supported(0)
        assert registry.chains()[0].name == "XRPL"

    @pytest.mark.parametrize("bad_id", [-1, "137", 1.5, True])
    def test_invalid_ids_rejected(self, registry: ChainRegistry, bad_id):
        with pytest.raises(ValidationError) as exc_info:
            registry.add_chain(OWNER, bad_id)
        assert exc_info.value.code == "INVALID_CHAIN_ID"


class TestChainQueries:
    def test_require_supported(self, registry: ChainRegistry):
        registry.add_chain(OWNER, 8453)
        registry.require_supported(8453)

        with pytest.raises(UnsupportedChainError) as exc_info:
            registry.require_supported(1)
        assert isinstance(exc_info.value, ValidationError)
        assert exc_info.value.chain_id == 1

    def test_check_add_reports_noop_without_mutating(self, registry: ChainRegistry):
        assert registry.check_add(OWNER, 137) is True
        assert registry.list() == []
        registry.add_chain(OWNER, 137)
        assert registry.check_add(OWNER, 137) is False

    def test_load_replaces_mirror(self, registry: ChainRegistry):
        registry.add_chain(OWNER, 1)
        registry.load([137, 8453, 137])

        assert registry.list() == [137, 8453]
        assert registry.chain_count == 2

    def test_chain_names(self):
        assert chain_name(8453) == "Base"
        assert chain_name(0) == "XRPL"
        assert chain_name(12345) == UNKNOWN_CHAIN_NAME
        assert set(CHAIN_NAMES) == {0, 1, 10, 56, 137, 8453, 42161}
