from functools import lru_cache
from pathlib import Path
import re
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment with defaults.

    Environment variable mapping follows pydantic's rules (e.g., APP_NAME, DEBUG,
    DATA_DIR, DB_FILENAME, RATES_CACHE_TTL_SECONDS, DEFAULT_BASE_CURRENCY).
    """

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Basic app metadata
    app_name: str = "Payroll FX Service"
    debug: bool = False
    version: str = "0.1.0"

    # Data & persistence
    data_dir: Path = Path("data")
    db_filename: str = "payroll_fx.sqlite3"
    db_path: Optional[Path] = None  # derived if not provided

    # Resolution cache
    rates_cache_ttl_seconds: int = 300  # 5 minutes

    # Organization defaults (applied when a currency config is lazily created)
    default_base_currency: str = "SRD"
    default_rounding_method: str = "half_up"
    default_decimal_places: int = 2

    # Listing limits
    historical_page_max: int = 500

    def init_post_load(self) -> None:
        """Finalize derived fields and ensure directories exist."""
        if self.db_path is None:
            self.db_path = self.data_dir / self.db_filename
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.default_base_currency = self.default_base_currency.upper()
        if not re.fullmatch(r"[A-Z]{3}", self.default_base_currency):
            raise ValueError(
                f"Invalid default_base_currency '{self.default_base_currency}'"
            )
        allowed = {"up", "down", "half_up", "half_down", "half_even"}
        if self.default_rounding_method not in allowed:
            raise ValueError(
                f"Unsupported default_rounding_method '{self.default_rounding_method}'. Allowed: {allowed}"
            )
        if self.rates_cache_ttl_seconds <= 0:
            raise ValueError("rates_cache_ttl_seconds must be positive")


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    settings.init_post_load()
    return settings
