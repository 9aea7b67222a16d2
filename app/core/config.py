# app/core/config.py

from pathlib import Path
from typing import List
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Get the project root directory (where .env should be located)
BASE_DIR = Path(__file__).resolve().parent.parent.parent

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra="ignore"
    )

    # App Configuration
    APP_NAME: str = "Goal Stack API"
    DEBUG: bool = False
    VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Database Configuration
    DATABASE_URL: str
    AUTO_CREATE_TABLES: bool = True

    # JWT / Security Configuration
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 10080

    # CORS Configuration
    FRONTEND_URL: str = "http://localhost:3000"

    # Solana RPC Configuration
    SOLANA_RPC_URL: str = "https://api.mainnet-beta.solana.com"
    SOLANA_NETWORK: str = "mainnet"
    SOLANA_COMMITMENT: str = "confirmed"
    RPC_TIMEOUT_SECONDS: float = 30.0
    SUBMIT_MAX_RETRIES: int = 3
    SUBMIT_RETRY_DELAY_SECONDS: float = 0.5
    CONFIRM_TIMEOUT_SECONDS: float = 60.0
    CONFIRM_POLL_INTERVAL_SECONDS: float = 1.0
    # Fee headroom the user's wallet must hold before we hand out a swap (0.01 SOL)
    MIN_SOL_BALANCE_LAMPORTS: int = 10_000_000

    # Jupiter routing Configuration
    JUPITER_API_URL: str = "https://lite-api.jup.ag/swap/v1"
    JUPITER_API_KEY: str = ""
    QUOTE_TTL_SECONDS: int = 30

    # Slippage escalation ladder (bps)
    DEFAULT_SLIPPAGE_BPS: int = 50
    SLIPPAGE_LADDER_BPS: List[int] = [50, 100, 150, 200]
    SLIPPAGE_CEILING_BPS: int = 200

    # Investment flow
    DEPOSIT_ASSET: str = "USDC"
    MIN_INVEST_AMOUNT_USD: float = 0.00001
    SWAP_STRATEGY: str = "direct"  # "direct" or "two_leg"
    INTERMEDIATE_ASSET: str = "SOL"

    # Optional: Environment
    ENVIRONMENT: str = "development"

    @field_validator("SLIPPAGE_LADDER_BPS")
    @classmethod
    def validate_ladder(cls, value: List[int]) -> List[int]:
        if not value:
            raise ValueError("SLIPPAGE_LADDER_BPS must contain at least one step")
        if any(step <= 0 or step > 10_000 for step in value):
            raise ValueError("SLIPPAGE_LADDER_BPS steps must be within 1..10000")
        return sorted(set(value))

    @field_validator("SWAP_STRATEGY")
    @classmethod
    def validate_strategy(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in ("direct", "two_leg"):
            raise ValueError("SWAP_STRATEGY must be 'direct' or 'two_leg'")
        return normalized

    @property
    def is_devnet(self) -> bool:
        return self.SOLANA_NETWORK.lower() == "devnet"

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

# Create a global settings instance
settings = Settings()
