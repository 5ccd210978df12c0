"""Pydantic-settings configuration for the DeFi rebalancer.

Loads optimizer defaults, orchestration thresholds and the vault collaborator
connection parameters from a .env file, with sensible defaults for local
development. Every component reads these only as defaults; constructor
arguments always win.
"""

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Project
    project_name: str = "DeFi Rebalancer"
    debug: bool = False

    log_json: bool = False  # one JSON object per log line (API process)

    # CORS
    allowed_origins: str = ""  # Comma-separated extra CORS origins

    # Optimizer defaults
    default_model: str = "rl"
    max_single_allocation_bps: int = 7000  # 70% max in a single protocol
    min_diversification: int = 2  # at least 2 protocols
    default_risk_tolerance: float = 50.0
    exploration_rate: float = 0.10

    # Orchestration
    materiality_threshold_bps: int = 500  # 5% drift before a vault is repositioned
    whatif_portfolio_value: float = 1_000_000.0

    # Vault collaborator (HTTP)
    vault_api_url: str = "http://localhost:8080"
    vault_api_timeout_seconds: float = 30.0
    vault_api_max_retries: int = 3

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parsed list of extra CORS origins."""
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


# Singleton instance
settings = Settings()
