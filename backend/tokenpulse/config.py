import logging
import os
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables early
load_dotenv()


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


def _env_int(name: str, default: str) -> int:
    return int(os.getenv(name, default))


@dataclass(frozen=True)
class Settings:
    # --- Helius ---
    HELIUS_API_KEY: Optional[str] = os.getenv("HELIUS_API_KEY")
    HELIUS_RPC_BASE_URL: str = os.getenv("HELIUS_RPC_BASE_URL", "https://mainnet.helius-rpc.com/")
    HELIUS_API_BASE_URL: str = os.getenv("HELIUS_API_BASE_URL", "https://api.helius.xyz/v0")

    # --- Tracked token ---
    TOKEN_MINT: str = os.getenv("TOKEN_MINT", "DZJefTBdJ2Ui2YB1bWgi6Bv1TPPVZJMrvGrbCDjtjups")
    TOKEN_NAME: str = os.getenv("TOKEN_NAME", "JPG")
    TOKEN_SYMBOL: str = os.getenv("TOKEN_SYMBOL", "JPG")
    TOKEN_DECIMALS: int = _env_int("TOKEN_DECIMALS", "6")
    TOKEN_DESCRIPTION: str = os.getenv("TOKEN_DESCRIPTION", "Jupiter Printing Glitch Token")

    # --- Jupiter quote (USD conversion) ---
    JUPITER_QUOTE_URL: str = os.getenv("JUPITER_QUOTE_URL", "https://quote-api.jup.ag/v6/quote")
    USDC_MINT: str = os.getenv("USDC_MINT", "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")
    QUOTE_SLIPPAGE_BPS: int = _env_int("QUOTE_SLIPPAGE_BPS", "50")

    # --- API / CORS ---
    PORT: int = _env_int("PORT", "8000")
    CORS_ALLOW_ORIGINS: str = os.getenv("CORS_ALLOW_ORIGINS", "*")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # --- Tuning ---
    HTTP_TIMEOUT_SECONDS: float = _env_float("HTTP_TIMEOUT_SECONDS", "20")
    RETRY_MAX_ATTEMPTS: int = _env_int("RETRY_MAX_ATTEMPTS", "3")
    RETRY_BASE_DELAY_MS: int = _env_int("RETRY_BASE_DELAY_MS", "2000")
    QUEUE_BATCH_SIZE: int = _env_int("QUEUE_BATCH_SIZE", "5")
    QUEUE_BATCH_DELAY_MS: int = _env_int("QUEUE_BATCH_DELAY_MS", "200")
    PARSE_BATCH_SIZE: int = _env_int("PARSE_BATCH_SIZE", "3")
    PARSE_BATCH_DELAY_MS: int = _env_int("PARSE_BATCH_DELAY_MS", "1000")
    METADATA_CACHE_SECONDS: float = _env_float("METADATA_CACHE_SECONDS", "300")

    # --- Polling ---
    STATIC_REFRESH_SECONDS: float = _env_float("STATIC_REFRESH_SECONDS", "300")
    TRANSACTION_POLL_SECONDS: float = _env_float("TRANSACTION_POLL_SECONDS", "6")
    INITIAL_POLL_LIMIT: int = _env_int("INITIAL_POLL_LIMIT", "5")
    POLL_LIMIT: int = _env_int("POLL_LIMIT", "10")
    TRANSACTION_WINDOW_SIZE: int = _env_int("TRANSACTION_WINDOW_SIZE", "50")

    # --- Reward model (business assumptions, not on-chain values) ---
    DAILY_TURNOVER_RATE: float = _env_float("DAILY_TURNOVER_RATE", "1")
    SWAP_FEE_RATE: float = _env_float("SWAP_FEE_RATE", "25")
    LP_FEE_SHARE: float = _env_float("LP_FEE_SHARE", "0.5")

    @property
    def HELIUS_RPC_URL(self) -> str:
        return f"{self.HELIUS_RPC_BASE_URL}?api-key={self.HELIUS_API_KEY or ''}"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        return [o.strip() for o in self.CORS_ALLOW_ORIGINS.split(",") if o.strip()]


settings = Settings()


def validate_settings(cfg: Settings = settings) -> None:
    """
    Validate environment settings.
    The Helius key is mandatory: every RPC and REST call goes through it.
    """
    if not cfg.HELIUS_API_KEY:
        raise RuntimeError("Helius API key is not set. Add HELIUS_API_KEY to your .env file")
    if cfg.QUEUE_BATCH_SIZE < 1 or cfg.PARSE_BATCH_SIZE < 1:
        raise RuntimeError("Batch sizes must be at least 1")
    if cfg.RETRY_MAX_ATTEMPTS < 1:
        raise RuntimeError("RETRY_MAX_ATTEMPTS must be at least 1")


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
