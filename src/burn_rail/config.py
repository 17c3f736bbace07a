"""
Runtime Configuration

All settings come from environment variables. Settings are built once at
process start and passed to the services that need them.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

DEFAULT_RPC_URLS = [
    "https://api.mainnet-beta.solana.com",
    "https://rpc.ankr.com/solana",
    "https://solana.public-rpc.com",
]

DEFAULT_API_KEY = "dev-key-change-in-production"


def _env_list(name: str) -> List[str]:
    raw = os.environ.get(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_bool(name: str, default: bool = False) -> bool:
    return os.environ.get(name, str(default)).lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    """Service settings."""
    # Persistence
    database_url: str = "sqlite:///burn_rail.db"
    database_timeout_seconds: float = 10.0

    # Token
    token_mint_address: str = ""
    token_decimals: int = 6
    treasury_wallet_address: str = ""

    # Chain access
    solana_rpc_url: str = DEFAULT_RPC_URLS[0]
    fallback_rpc_urls: Tuple[str, ...] = tuple(DEFAULT_RPC_URLS)
    rpc_timeout_seconds: float = 30.0
    rpc_max_retries: int = 3
    rpc_backoff_seconds: float = 1.0
    rpc_health_interval_seconds: int = 60

    # Price oracle
    jupiter_api_url: str = "https://price.jup.ag/v4"
    jupiter_api_key: Optional[str] = None
    price_fetch_timeout_seconds: float = 10.0
    price_refresh_seconds: int = 60
    twap_window_minutes: float = 10.0
    burn_floor: Decimal = Decimal("0.05")
    burn_ceiling: Decimal = Decimal("50")
    price_cache_ttl_seconds: float = 60.0

    # Settlement
    settlement_poll_minutes: float = 5.0
    settlement_interval_minutes: float = 60.0
    settlement_threshold_tokens: Decimal = Decimal("1000")
    settlement_batch_size: int = 100
    settlement_confirm_timeout_seconds: float = 60.0

    # Keys
    backend_wallet_private_key: Optional[str] = field(default=None, repr=False)
    key_storage_path: str = ".keys"
    key_master_secret: Optional[str] = field(default=None, repr=False)

    # Service
    api_key: str = field(default=DEFAULT_API_KEY, repr=False)
    log_json: bool = False
    log_level: str = "INFO"
    cors_origins: Tuple[str, ...] = ("*",)
    port: int = 5000

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        env = os.environ.get
        primary = env("SOLANA_RPC_URL") or DEFAULT_RPC_URLS[0]
        fallbacks = _env_list("SOLANA_FALLBACK_RPC_URLS") or DEFAULT_RPC_URLS

        return cls(
            database_url=env("DATABASE_URL", "sqlite:///burn_rail.db"),
            database_timeout_seconds=float(env("DATABASE_TIMEOUT_SECONDS", "10")),
            token_mint_address=env("TOKEN_MINT_ADDRESS", ""),
            token_decimals=int(env("TOKEN_DECIMALS", "6")),
            treasury_wallet_address=env("TREASURY_WALLET_ADDRESS", ""),
            solana_rpc_url=primary,
            fallback_rpc_urls=tuple(u for u in fallbacks if u != primary),
            rpc_timeout_seconds=float(env("RPC_TIMEOUT_SECONDS", "30")),
            rpc_max_retries=int(env("RPC_MAX_RETRIES", "3")),
            rpc_backoff_seconds=float(env("RPC_BACKOFF_SECONDS", "1.0")),
            rpc_health_interval_seconds=int(env("RPC_HEALTH_INTERVAL_SECONDS", "60")),
            jupiter_api_url=env("JUPITER_API_URL", "https://price.jup.ag/v4").rstrip("/"),
            jupiter_api_key=env("JUPITER_API_KEY") or None,
            price_fetch_timeout_seconds=float(env("PRICE_FETCH_TIMEOUT_SECONDS", "10")),
            price_refresh_seconds=int(env("PRICE_REFRESH_SECONDS", "60")),
            twap_window_minutes=float(env("TWAP_WINDOW_MINUTES", "10")),
            burn_floor=Decimal(env("BURN_FLOOR", "0.05")),
            burn_ceiling=Decimal(env("BURN_CEILING", "50")),
            price_cache_ttl_seconds=float(env("PRICE_CACHE_TTL_SECONDS", "60")),
            settlement_poll_minutes=float(env("SETTLEMENT_POLL_MINUTES", "5")),
            settlement_interval_minutes=float(env("SETTLEMENT_INTERVAL_MINUTES", "60")),
            settlement_threshold_tokens=Decimal(env("SETTLEMENT_THRESHOLD_TOKENS", "1000")),
            settlement_batch_size=int(env("SETTLEMENT_BATCH_SIZE", "100")),
            settlement_confirm_timeout_seconds=float(env("SETTLEMENT_CONFIRM_TIMEOUT_SECONDS", "60")),
            backend_wallet_private_key=env("BACKEND_WALLET_PRIVATE_KEY") or None,
            key_storage_path=env("KEY_STORAGE_PATH", ".keys"),
            key_master_secret=env("KEY_MASTER_SECRET") or None,
            api_key=env("API_KEY", DEFAULT_API_KEY),
            log_json=_env_bool("LOG_JSON"),
            log_level=env("LOG_LEVEL", "INFO"),
            cors_origins=tuple(_env_list("CORS_ORIGINS") or ["*"]),
            port=int(env("PORT", "5000")),
        )

    @property
    def twap_window_seconds(self) -> float:
        return self.twap_window_minutes * 60

    @property
    def rpc_endpoints(self) -> List[str]:
        """Primary endpoint followed by fallbacks, without duplicates."""
        endpoints = [self.solana_rpc_url]
        for url in self.fallback_rpc_urls:
            if url not in endpoints:
                endpoints.append(url)
        return endpoints

    def validate(self) -> Tuple[List[str], List[str]]:
        """
        Validate settings.

        Returns (errors, warnings). Errors make settlement or deposits
        impossible; warnings flag degraded or unsafe setups.
        """
        errors: List[str] = []
        warnings: List[str] = []

        if not self.token_mint_address:
            errors.append("Missing TOKEN_MINT_ADDRESS (SPL token mint address)")
        if not self.treasury_wallet_address:
            errors.append("Missing TREASURY_WALLET_ADDRESS (treasury wallet for settlement)")
        if self.burn_floor <= 0 or self.burn_ceiling < self.burn_floor:
            errors.append(
                f"Invalid burn bounds: BURN_FLOOR={self.burn_floor} BURN_CEILING={self.burn_ceiling}"
            )
        if self.token_decimals < 0:
            errors.append(f"Invalid TOKEN_DECIMALS: {self.token_decimals}")

        if not self.backend_wallet_private_key and not self.key_master_secret:
            warnings.append("BACKEND_WALLET_PRIVATE_KEY not set. Settlement will not work.")
        if self.solana_rpc_url == DEFAULT_RPC_URLS[0]:
            warnings.append("SOLANA_RPC_URL not set. Using public RPC (rate limited).")
        if self.api_key == DEFAULT_API_KEY:
            warnings.append("API_KEY not set. Admin endpoints use the development key.")

        return errors, warnings

    def report(self) -> Dict[str, List[str]]:
        errors, warnings = self.validate()
        return {"errors": errors, "warnings": warnings}
