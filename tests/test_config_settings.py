from decimal import Decimal

from pab_bridge.config import Settings


def test_private_key_alias(monkeypatch):
    """Signer key should load from the PRIVATE_KEY alias when present."""

    monkeypatch.delenv("RELAYER_PRIVATE_KEY", raising=False)
    monkeypatch.setenv("PRIVATE_KEY", "0x" + "11" * 32)

    settings = Settings()

    assert settings.has_signer
    assert settings.relayer_private_key.get_secret_value() == "0x" + "11" * 32


def test_empty_private_key_is_not_a_signer(monkeypatch):
    monkeypatch.delenv("PRIVATE_KEY", raising=False)
    monkeypatch.setenv("RELAYER_PRIVATE_KEY", "")

    settings = Settings()

    assert not settings.has_signer


def test_rpc_url_alias_and_gateway(monkeypatch):
    """Gateway counts as configured once both the RPC URL and address are set."""

    monkeypatch.delenv("EVM_RPC_URL", raising=False)
    monkeypatch.setenv("RPC_URL", "https://mainnet.base.org")
    monkeypatch.setenv("GATEWAY_ADDRESS", "  0x5e5e5e5e5e5e5e5e5e5e5e5e5e5e5e5e5e5e5e5e  ")

    settings = Settings()

    assert settings.evm_rpc_url == "https://mainnet.base.org"
    assert settings.gateway_address == "0x5e5e5e5e5e5e5e5e5e5e5e5e5e5e5e5e5e5e5e5e"
    assert settings.has_gateway


def test_xrpl_master_seed_alias(monkeypatch):
    monkeypatch.setenv("XRPL_MASTER_ACCOUNT_SEED", "sEdTM1uX8pu2do5XvTnutH6HsouMaM2")

    settings = Settings()

    assert settings.has_xrpl_master


def test_bridge_config_snapshot(monkeypatch):
    """Engine config mirrors the environment, with the owner lower-cased."""

    monkeypatch.setenv("OWNER_ADDRESS", "0xABCDEFabcdefABCDEFabcdefABCDEFabcdefABCD")
    monkeypatch.setenv("EVM_CHAIN_ID", "137")
    monkeypatch.setenv("CONFIRMATION_DEPTH", "12")
    monkeypatch.setenv("STALL_TIMEOUT_BLOCKS", "50")
    monkeypatch.setenv("COLLATERAL_RATIO", "1.5")

    config = Settings().to_bridge_config()

    assert config.owner_address == "0xabcdefabcdefabcdefabcdefabcdefabcdefabcd"
    assert config.evm_chain_id == 137
    assert config.confirmation_depth == 12
    assert config.stall_timeout_blocks == 50
    assert config.collateral_ratio == Decimal("1.5")


def test_admin_api_key_alias(monkeypatch):
    monkeypatch.delenv("ADMIN_API_KEY", raising=False)
    monkeypatch.setenv("BRIDGE_ADMIN_API_KEY", "s3cret")

    settings = Settings()

    assert settings.has_admin_key
    assert settings.admin_api_key.get_secret_value() == "s3cret"


def test_admin_api_disabled_by_default(monkeypatch):
    monkeypatch.delenv("ADMIN_API_KEY", raising=False)
    monkeypatch.delenv("BRIDGE_ADMIN_API_KEY", raising=False)

    assert not Settings().has_admin_key


def test_custody_token_alias(monkeypatch):
    monkeypatch.delenv("XRP_TOKEN_ADDRESS", raising=False)
    monkeypatch.setenv("XRP_CONTRACT", "0x" + "70" * 20)

    assert Settings().xrp_token_address == "0x" + "70" * 20


def test_bridge_config_carries_custody_and_retention(monkeypatch):
    monkeypatch.setenv("TOKEN_AUTO_APPROVE", "true")
    monkeypatch.setenv("HISTORY_LIMIT", "25")
    monkeypatch.setenv("FACT_HISTORY_LIMIT", "40")

    config = Settings().to_bridge_config()

    assert config.token_auto_approve is True
    assert config.history_limit == 25
    assert config.fact_history_limit == 40
