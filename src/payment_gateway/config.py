from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from solders.keypair import Keypair  # type: ignore
from solders.pubkey import Pubkey  # type: ignore

from .errors import ConfigurationError
from .ledger.solana import rpc_url_for_cluster
from .payments.types import VerificationMode

SolanaCluster = Literal["devnet", "mainnet-beta", "testnet"]

# Accepted spellings for the production cluster
CLUSTER_ALIASES = {"mainnet": "mainnet-beta"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Upstream
    target_api_url: str
    upstream_timeout_seconds: float = Field(30.0, gt=0)

    # Payment
    spg_wallet_keypair: list[int]  # JSON array of the 64-byte secret key
    facilitator_address: str
    fee_amount: Decimal = Field(..., gt=0)  # In SOL
    verification_mode: VerificationMode = VerificationMode.LENIENT

    # Ledger
    solana_cluster: SolanaCluster
    solana_rpc_url: str | None = None  # Overrides the cluster's public endpoint
    ledger_rpc_timeout_seconds: float = Field(10.0, gt=0)
    ledger_signature_limit: int = Field(10, ge=1, le=1000)

    # Verification polling
    payment_timeout_ms: int = Field(30_000, gt=0)
    payment_poll_interval_ms: int = Field(1_000, gt=0)
    payment_recency_window_seconds: float = Field(300.0, gt=0)

    # HTTP Server
    host: str = "0.0.0.0"
    port: int = Field(3000, ge=1, le=65535)
    log_level: str = "info"

    # OpenTelemetry Configuration
    otel_enabled: bool = False
    otel_service_name: str = "x402-payment-gateway"
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"

    @field_validator("solana_cluster", mode="before")
    @classmethod
    def normalize_cluster(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip().lower()
            return CLUSTER_ALIASES.get(value, value)
        return value

    @field_validator("target_api_url")
    @classmethod
    def validate_target_api_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("TARGET_API_URL must be an http(s) URL")
        return value

    @field_validator("solana_rpc_url")
    @classmethod
    def validate_solana_rpc_url(cls, value: str | None) -> str | None:
        if not value:
            return None
        if not value.startswith(("http://", "https://")):
            raise ValueError("SOLANA_RPC_URL must be an http(s) URL")
        return value

    @field_validator("spg_wallet_keypair")
    @classmethod
    def validate_wallet_keypair(cls, value: list[int]) -> list[int]:
        try:
            Keypair.from_bytes(bytes(value))
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid SPG_WALLET_KEYPAIR: {e}") from e
        return value

    @field_validator("facilitator_address")
    @classmethod
    def validate_facilitator_address(cls, value: str) -> str:
        try:
            Pubkey.from_string(value)
        except ValueError as e:
            raise ValueError(f"Invalid FACILITATOR_ADDRESS: {e}") from e
        return value

    @model_validator(mode="after")
    def validate_otel_config(self) -> "Settings":
        """Validate OpenTelemetry configuration."""
        if self.otel_enabled:
            if not self.otel_service_name.strip():
                raise ValueError("OTEL_SERVICE_NAME cannot be empty")
            if not self.otel_exporter_otlp_endpoint.startswith(("http://", "https://")):
                raise ValueError("OTEL_EXPORTER_OTLP_ENDPOINT must be a valid URL")
        return self

    @property
    def receiver_keypair(self) -> Keypair:
        return Keypair.from_bytes(bytes(self.spg_wallet_keypair))

    @property
    def receiver_address(self) -> str:
        """Base58 address payments must be sent to."""
        return str(self.receiver_keypair.pubkey())

    @property
    def ledger_rpc_url(self) -> str:
        return self.solana_rpc_url or rpc_url_for_cluster(self.solana_cluster)

    @property
    def payment_timeout_seconds(self) -> float:
        return self.payment_timeout_ms / 1000

    @property
    def payment_poll_interval_seconds(self) -> float:
        return self.payment_poll_interval_ms / 1000


def load_settings(**overrides) -> Settings:
    """
    Loads and validates settings from the environment.

    Raises:
        ConfigurationError: A required setting is missing or malformed
    """
    try:
        return Settings(**overrides)
    except ValueError as e:
        # pydantic ValidationError and pydantic-settings SettingsError are both
        # ValueError subclasses.
        raise ConfigurationError(str(e)) from e


@lru_cache
def get_settings() -> Settings:
    return load_settings()
