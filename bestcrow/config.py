"""Configuration settings for bestcrow."""

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from .errors import ConfigurationError
from .types import DeploymentScope, normalize_address

# Original deployment on Holesky
DEFAULT_CHAIN_ID = 17000
DEFAULT_CONTRACT_ADDRESS = "0x77C385fD50164Fde71A6c29732F9F7763AAC6753"
DEFAULT_START_BLOCK = 3081000


class DeploymentSettings(BaseModel):
    """An additional (chain, contract) deployment to index."""

    chain_id: int = Field(..., gt=0)
    contract_address: str
    start_block: int = Field(default=0, ge=0)
    rpc_url: Optional[str] = None  # falls back to the global rpc_url

    @field_validator("contract_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return normalize_address(v)


@dataclass(frozen=True)
class DeploymentConfig:
    """Resolved settings for one independent ingestion pipeline."""

    chain_id: int
    contract_address: str
    start_block: int
    rpc_url: str

    @property
    def scope(self) -> DeploymentScope:
        return DeploymentScope(self.chain_id, self.contract_address)


class Settings(BaseSettings):
    """Application settings loaded from environment (prefix ``BESTCROW_``)."""

    # Storage
    db_path: Path = Path("bestcrow.db")

    # Chain
    rpc_url: str = "http://127.0.0.1:8545"
    chain_id: int = DEFAULT_CHAIN_ID
    contract_address: str = DEFAULT_CONTRACT_ADDRESS
    start_block: int = DEFAULT_START_BLOCK
    deployments: List[DeploymentSettings] = []
    abi_path: Optional[Path] = None  # Hardhat artifact or raw ABI JSON

    # Ingestion
    batch_size: int = Field(default=1000, gt=0)
    poll_interval: float = Field(default=4.0, gt=0)
    rpc_timeout: float = Field(default=30.0, gt=0)  # reconnect timeout per request
    retry_max_attempts: int = Field(default=8, gt=0)
    retry_initial_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=60.0, gt=0)

    # Fees (basis points over 10000)
    fee_bps: int = Field(default=50, ge=0)
    collateral_bps: int = Field(default=5000, ge=0)

    # App
    log_level: str = "INFO"
    rate_limit: str = "60/minute"
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    class Config:
        env_prefix = "BESTCROW_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @field_validator("contract_address")
    @classmethod
    def validate_contract_address(cls, v: str) -> str:
        return normalize_address(v)

    def pipeline_configs(self) -> List[DeploymentConfig]:
        """One config per independent (chain, contract) pipeline.

        Raises:
            ConfigurationError: If the same deployment is configured twice.
        """
        configs = [
            DeploymentConfig(
                chain_id=self.chain_id,
                contract_address=self.contract_address,
                start_block=self.start_block,
                rpc_url=self.rpc_url,
            )
        ]
        for extra in self.deployments:
            configs.append(
                DeploymentConfig(
                    chain_id=extra.chain_id,
                    contract_address=extra.contract_address,
                    start_block=extra.start_block,
                    rpc_url=extra.rpc_url or self.rpc_url,
                )
            )

        seen = set()
        for config in configs:
            if config.scope in seen:
                raise ConfigurationError(f"Deployment configured twice: {config.scope}")
            seen.add(config.scope)
        return configs


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
