from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.bridge.config import BridgeConfig


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Normalise addresses picked up from the environment."""

        super().model_post_init(__context)

        if self.gateway_address:
            object.__setattr__(self, "gateway_address", self.gateway_address.strip())
        if self.owner_address:
            object.__setattr__(self, "owner_address", self.owner_address.strip().lower())

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # EVM Gateway
    evm_rpc_url: str = Field(
        default="",
        description="JSON-RPC endpoint of the chain hosting the gateway contract",
        validation_alias=AliasChoices("evm_rpc_url", "EVM_RPC_URL", "RPC_URL"),
    )
    evm_chain_id: int = Field(default=8453, description="Chain ID of the gateway chain")
    gateway_address: str = Field(default="", description="Deployed PAB_Gateway contract address")
    owner_address: str = Field(default="", description="Gateway owner address")
    relayer_private_key: Optional[SecretStr] = Field(
        default=None,
        description="Private key used to sign gateway transactions",
        validation_alias=AliasChoices("relayer_private_key", "PRIVATE_KEY", "RELAYER_PRIVATE_KEY"),
    )

    xrp_token_address: str = Field(
        default="",
        description="ERC-20 the gateway takes custody of (custody checks are skipped when empty)",
        validation_alias=AliasChoices("xrp_token_address", "XRP_CONTRACT", "XRP_TOKEN_ADDRESS"),
    )
    token_auto_approve: bool = Field(
        default=False,
        description="Approve the gateway for the custody token when an allowance is short",
    )

    # XRP Ledger
    xrpl_rpc_url: str = Field(
        default="https://s.altnet.rippletest.net:51234/",
        description="rippled JSON-RPC endpoint",
    )
    xrpl_master_seed: Optional[SecretStr] = Field(
        default=None,
        description="Seed of the XRPL master account that agents are bound to",
        validation_alias=AliasChoices("xrpl_master_seed", "XRPL_MASTER_ACCOUNT_SEED"),
    )

    # Finality & arbitration
    confirmation_depth: int = Field(default=6, ge=1, description="Blocks before a gateway call is final")
    stall_timeout_blocks: int = Field(
        default=100,
        ge=1,
        description="Blocks after a claim before the user may request a force receive",
    )
    finality_timeout_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Seconds a submission may stay below confirmation depth before it is reported",
    )
    collateral_ratio: Decimal = Field(
        default=Decimal("1"),
        gt=0,
        description="Required agent collateral as a multiple of the bridged amount",
    )
    xrpl_amount_scale: int = Field(
        default=1,
        ge=1,
        description="XRPL drops delivered per smallest gateway token unit",
    )
    xrpl_lookup_max_attempts: int = Field(
        default=10,
        ge=1,
        description="XRPL lookups before an unvalidated confirmation is reported as a mismatch",
    )

    # Polling
    source_poll_interval_seconds: float = Field(default=4.0, gt=0, description="EVM watcher interval")
    destination_poll_interval_seconds: float = Field(default=5.0, gt=0, description="XRPL watcher interval")

    # Submission retry
    submission_max_attempts: int = Field(default=4, ge=1, description="Attempts per gateway submission")
    submission_initial_delay_seconds: float = Field(default=1.0, ge=0, description="First retry delay")
    submission_max_delay_seconds: float = Field(default=30.0, ge=0, description="Retry delay cap")

    # Runtime
    checkpoint_path: str = Field(
        default="",
        description="JSON file for watcher checkpoints (in-memory when empty)",
    )
    checkpoint_max_facts: int = Field(
        default=10_000,
        ge=1,
        description="Delivered-fact keys kept for de-duplication; the oldest are dropped first",
    )
    history_limit: int = Field(default=500, ge=1, description="Settled submissions kept for lookup")
    fact_history_limit: int = Field(default=1000, ge=1, description="Watcher facts kept for the API")
    relayer_enabled: bool = Field(
        default=True,
        description="Start the bridge watcher alongside FastAPI when the gateway is configured",
    )

    # Admin API
    admin_api_key: Optional[SecretStr] = Field(
        default=None,
        description="Shared secret for owner endpoints, sent as X-Admin-Key (disabled when unset)",
        validation_alias=AliasChoices("admin_api_key", "BRIDGE_ADMIN_API_KEY"),
    )

    @property
    def has_gateway(self) -> bool:
        return bool(self.evm_rpc_url and self.gateway_address)

    @property
    def has_signer(self) -> bool:
        return self.relayer_private_key is not None and bool(self.relayer_private_key.get_secret_value())

    @property
    def has_xrpl_master(self) -> bool:
        return self.xrpl_master_seed is not None and bool(self.xrpl_master_seed.get_secret_value())

    @property
    def has_admin_key(self) -> bool:
        return self.admin_api_key is not None and bool(self.admin_api_key.get_secret_value())

    def to_bridge_config(self) -> BridgeConfig:
        """Snapshot the settings the core engine is constructed with."""
        return BridgeConfig(
            owner_address=self.owner_address,
            evm_chain_id=self.evm_chain_id,
            confirmation_depth=self.confirmation_depth,
            stall_timeout_blocks=self.stall_timeout_blocks,
            finality_timeout_seconds=self.finality_timeout_seconds,
            collateral_ratio=self.collateral_ratio,
            xrpl_amount_scale=self.xrpl_amount_scale,
            xrpl_lookup_max_attempts=self.xrpl_lookup_max_attempts,
            source_poll_interval_seconds=self.source_poll_interval_seconds,
            destination_poll_interval_seconds=self.destination_poll_interval_seconds,
            submission_max_attempts=self.submission_max_attempts,
            submission_initial_delay_seconds=self.submission_initial_delay_seconds,
            submission_max_delay_seconds=self.submission_max_delay_seconds,
            token_auto_approve=self.token_auto_approve,
            history_limit=self.history_limit,
            fact_history_limit=self.fact_history_limit,
        )


# Global settings instance
settings = Settings()
