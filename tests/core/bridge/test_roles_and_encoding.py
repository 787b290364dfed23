"""
Tests for role resolution and the fixed-width encoding helpers
"""

import pytest

from pab_bridge.core.bridge import AgentDirectory, Role, RoleResolver
from pab_bridge.core.bridge.encoding import (
    decode_bytes32_string,
    encode_bytes32_string,
    is_zero_address,
    is_zero_bytes32,
    normalize_address,
    to_bytes32_hex,
)
from pab_bridge.core.recovery import AuthorizationError, ValidationError

from tests.fakes import AGENT, OWNER, USER, XRPL_BINDING


class TestRoleResolver:
    @pytest.mark.asyncio
    async def test_roles(self):
        agents = AgentDirectory()
        await agents.register(AGENT, XRPL_BINDING, 10)
        roles = RoleResolver(OWNER, agents)

        assert roles.roles_of(OWNER) == {Role.OWNER, Role.USER}
        assert roles.roles_of(AGENT) == {Role.AGENT, Role.USER}
        assert roles.roles_of(USER) == {Role.USER}

    def test_require(self):
        roles = RoleResolver(OWNER, AgentDirectory())

        assert roles.require_owner(OWNER.upper().replace("0X", "0x")) == OWNER
        with pytest.raises(AuthorizationError) as exc_info:
            roles.require(USER, Role.AGENT)
        assert exc_info.value.context.details["required"] == "agent"

    def test_owner_must_be_configured(self):
        with pytest.raises(ValidationError):
            RoleResolver("", AgentDirectory())


class TestEncoding:
    def test_normalize_address(self):
        assert normalize_address("  0xABCDEFabcdefABCDEFabcdefABCDEFabcdefABCD ") == (
            "0xabcdefabcdefabcdefabcdefabcdefabcdefabcd"
        )
        with pytest.raises(ValidationError):
            normalize_address("abcdef")

    def test_bytes32(self):
        assert to_bytes32_hex(bytes(range(32))) == "0x" + bytes(range(32)).hex()
        with pytest.raises(ValidationError):
            to_bytes32_hex(b"\x01" * 31)
        assert is_zero_bytes32("0x" + "00" * 32)
        assert is_zero_bytes32(None)
        assert is_zero_address("0x" + "00" * 20)

    def test_bytes32_strings(self):
        encoded = encode_bytes32_string("rPT1Sjq2YGrBMTttX4GZHjKu9dyfzb")

        assert len(encoded) == 66
        assert decode_bytes32_string(encoded) == "rPT1Sjq2YGrBMTttX4GZHjKu9dyfzb"

    def test_bytes32_string_limit(self):
        with pytest.raises(ValidationError):
            encode_bytes32_string("x" * 32)
