from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables or .env file."""

    # General
    app_name: str = "MarketAnalysis Pattern Service"
    debug: bool = False
    log_level: str = "INFO"

    # Support / resistance
    sr_lookback: int = 20
    sr_tolerance: float = 0.005

    # Ranking and overlays
    top_patterns: int = 3
    max_overlay_patterns: int = 5
    max_overlay_levels: int = 3

    # Intraday gap-up scanner (percent)
    gap_min_pct: float = 0.3
    gap_core_pct: float = 0.5

    # EOD sharp-drop liquidity filters
    eod_min_avg_volume: float = 500_000
    eod_min_price: float = 3.0

    model_config = {"env_file": ".env", "env_prefix": "PE_"}


@lru_cache()
def get_settings() -> Settings:
    return Settings()
