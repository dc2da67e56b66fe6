"""
History Engine - Configuration.

============================================================
CONFIGURABLE POLICY
============================================================

All policy parameters are configurable:
- Outlier rejection width (MAD multiplier)
- Fusion deviation gate and source weights
- Compression threshold for stored chunks
- Refresh loop cadence and window
- Symbol -> provider id mapping

Configuration can be loaded from:
- Default values
- Environment variables (a .env file is honoured)
- YAML config file

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


logger = logging.getLogger(__name__)


# =============================================================
# POLICY CONSTANTS
# =============================================================

DAY_MS = 24 * 60 * 60 * 1000

# Bounds are median +/- MAD_MULTIPLIER * MAD
MAD_MULTIPLIER = 6.0

# Secondary prices further than this relative distance from primary are dropped
DEVIATION_GATE = 0.10
PRIMARY_WEIGHT = 1.0
SECONDARY_WEIGHT = 0.5
SINGLE_SOURCE_CONFIDENCE = 0.85

# Chunks of series spanning at least this many days are gzip-compressed
COMPRESSION_THRESHOLD_DAYS = 30

UPDATE_LOG_MAX_ENTRIES = 1000
STORAGE_VERSION = 1
KEY_NAMESPACE_VERSION = "v1"

# Seconds-vs-milliseconds cut-over for raw timestamps
SECONDS_THRESHOLD = 10_000_000_000


# =============================================================
# SYMBOL MAPPING
# =============================================================


def _default_symbols() -> dict[str, dict[str, str]]:
    return {
        "BTC": {"coingecko": "bitcoin", "cryptocompare": "BTC", "binance": "BTCUSDT"},
        "ETH": {"coingecko": "ethereum", "cryptocompare": "ETH", "binance": "ETHUSDT"},
        "SOL": {"coingecko": "solana", "cryptocompare": "SOL", "binance": "SOLUSDT"},
        "BNB": {"coingecko": "binancecoin", "cryptocompare": "BNB", "binance": "BNBUSDT"},
        "DOGE": {"coingecko": "dogecoin", "cryptocompare": "DOGE", "binance": "DOGEUSDT"},
        "XRP": {"coingecko": "ripple", "cryptocompare": "XRP", "binance": "XRPUSDT"},
    }


def _default_fallback_rates() -> dict[str, float]:
    return {"EUR": 1.08, "GBP": 1.27}


# =============================================================
# MAIN CONFIGURATION
# =============================================================


@dataclass
class FusionPolicy:
    """Weights and gates used when reconciling sources."""
    primary_source: str = "coingecko"
    deviation_gate: float = DEVIATION_GATE
    primary_weight: float = PRIMARY_WEIGHT
    secondary_weight: float = SECONDARY_WEIGHT
    single_source_confidence: float = SINGLE_SOURCE_CONFIDENCE
    mad_multiplier: float = MAD_MULTIPLIER

    def __post_init__(self) -> None:
        if not 0 < self.deviation_gate < 1:
            raise ValueError("deviation_gate must be in (0, 1)")
        if self.primary_weight <= 0 or self.secondary_weight <= 0:
            raise ValueError("source weights must be positive")
        if not 0 <= self.single_source_confidence <= 1:
            raise ValueError("single_source_confidence must be in [0, 1]")
        if self.mad_multiplier <= 0:
            raise ValueError("mad_multiplier must be positive")


@dataclass
class HistoryConfig:
    """
    Main configuration for the history engine.

    Combines fusion policy, storage, refresh and provider settings.
    """
    symbols: dict[str, dict[str, str]] = field(default_factory=_default_symbols)
    fusion: FusionPolicy = field(default_factory=FusionPolicy)

    # Storage
    redis_url: str = "redis://localhost:6379/0"
    compression_threshold_days: int = COMPRESSION_THRESHOLD_DAYS
    update_log_max_entries: int = UPDATE_LOG_MAX_ENTRIES

    # Refresh loop
    refresh_interval_seconds: float = 15.0
    refresh_days: int = 7

    # Providers
    source_timeout_seconds: float = 8.0
    coingecko_api_key: Optional[str] = None
    cryptocompare_api_key: Optional[str] = None
    cryptocompare_currency: str = "USD"

    # Currency conversion
    fx_fallback_rates: dict[str, float] = field(default_factory=_default_fallback_rates)
    fx_cache_seconds: float = 3600.0

    def provider_ids(self, symbol: str) -> Optional[dict[str, str]]:
        """Provider ids for a symbol, or None when the symbol is not configured."""
        return self.symbols.get(symbol.upper())

    def list_symbols(self) -> list[str]:
        return list(self.symbols.keys())

    @classmethod
    def from_env(cls) -> "HistoryConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - HISTORY_REDIS_URL
        - HISTORY_SYMBOLS (comma separated subset of the default symbols)
        - HISTORY_PRIMARY_SOURCE
        - HISTORY_COMPRESSION_THRESHOLD_DAYS
        - HISTORY_REFRESH_INTERVAL
        - HISTORY_REFRESH_DAYS
        - HISTORY_SOURCE_TIMEOUT
        - COINGECKO_API_KEY
        - CRYPTOCOMPARE_API_KEY
        - HISTORY_CRYPTOCOMPARE_CURRENCY
        """
        load_dotenv()
        config = cls()

        if os.getenv("HISTORY_REDIS_URL"):
            config.redis_url = os.getenv("HISTORY_REDIS_URL")
        if os.getenv("HISTORY_SYMBOLS"):
            wanted = [s.strip().upper() for s in os.getenv("HISTORY_SYMBOLS").split(",") if s.strip()]
            unknown = [s for s in wanted if s not in config.symbols]
            if unknown:
                logger.warning(f"Ignoring unknown symbols in HISTORY_SYMBOLS: {unknown}")
            config.symbols = {s: config.symbols[s] for s in wanted if s in config.symbols}
        if os.getenv("HISTORY_PRIMARY_SOURCE"):
            config.fusion.primary_source = os.getenv("HISTORY_PRIMARY_SOURCE")
        if os.getenv("HISTORY_COMPRESSION_THRESHOLD_DAYS"):
            config.compression_threshold_days = int(os.getenv("HISTORY_COMPRESSION_THRESHOLD_DAYS"))
        if os.getenv("HISTORY_REFRESH_INTERVAL"):
            config.refresh_interval_seconds = float(os.getenv("HISTORY_REFRESH_INTERVAL"))
        if os.getenv("HISTORY_REFRESH_DAYS"):
            config.refresh_days = int(os.getenv("HISTORY_REFRESH_DAYS"))
        if os.getenv("HISTORY_SOURCE_TIMEOUT"):
            config.source_timeout_seconds = float(os.getenv("HISTORY_SOURCE_TIMEOUT"))
        if os.getenv("HISTORY_CRYPTOCOMPARE_CURRENCY"):
            config.cryptocompare_currency = os.getenv("HISTORY_CRYPTOCOMPARE_CURRENCY").upper()

        config.coingecko_api_key = os.getenv("COINGECKO_API_KEY") or None
        config.cryptocompare_api_key = os.getenv("CRYPTOCOMPARE_API_KEY") or None

        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "HistoryConfig":
        """Load configuration from YAML file; falls back to defaults on error."""
        try:
            import yaml
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}

            config = cls()

            if "symbols" in data:
                config.symbols = {
                    str(symbol).upper(): {str(k): str(v) for k, v in ids.items()}
                    for symbol, ids in data["symbols"].items()
                }

            if "fusion" in data:
                f_data = data["fusion"]
                config.fusion = FusionPolicy(
                    primary_source=f_data.get("primary_source", "coingecko"),
                    deviation_gate=f_data.get("deviation_gate", DEVIATION_GATE),
                    primary_weight=f_data.get("primary_weight", PRIMARY_WEIGHT),
                    secondary_weight=f_data.get("secondary_weight", SECONDARY_WEIGHT),
                    single_source_confidence=f_data.get("single_source_confidence", SINGLE_SOURCE_CONFIDENCE),
                    mad_multiplier=f_data.get("mad_multiplier", MAD_MULTIPLIER),
                )

            for key in (
                "redis_url",
                "compression_threshold_days",
                "update_log_max_entries",
                "refresh_interval_seconds",
                "refresh_days",
                "source_timeout_seconds",
                "cryptocompare_currency",
            ):
                if key in data:
                    setattr(config, key, data[key])

            if "fx_fallback_rates" in data:
                config.fx_fallback_rates = {
                    str(k).upper(): float(v) for k, v in data["fx_fallback_rates"].items()
                }

            return config

        except Exception as e:
            logger.warning(f"Failed to load YAML config from {path}: {e}")
            return cls()


# =============================================================
# GLOBAL CONFIG SINGLETON
# =============================================================


_default_config: Optional[HistoryConfig] = None


def get_config() -> HistoryConfig:
    """Get the global history configuration."""
    global _default_config
    if _default_config is None:
        _default_config = HistoryConfig.from_env()
    return _default_config


def set_config(config: HistoryConfig) -> None:
    """Set the global history configuration."""
    global _default_config
    _default_config = config
