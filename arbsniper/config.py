"""Configuration management for the cross-venue arbitrage bot."""

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from .errors import ConfigurationError


class VenueConfig(BaseModel):
    """A single quote venue."""
    name: str
    type: str = "ccxt"  # Key into the venue registry
    enabled: bool = True
    exchange_id: Optional[str] = None  # ccxt id, defaults to name
    instruments: List[str] = []
    api_key: Optional[str] = None
    secret: Optional[str] = None
    password: Optional[str] = None
    sandbox: bool = True  # Default to sandbox for safety
    options: Dict[str, Any] = Field(default_factory=dict)


class MarketConfig(BaseModel):
    """Market data polling configuration."""
    polling_interval_ms: int = 5000
    fetch_timeout_ms: int = 10000
    instruments: List[str] = ["SOL/USDC", "BTC/USDC", "ETH/USDC"]


class DetectorConfig(BaseModel):
    """Opportunity detection configuration."""
    min_profit_threshold_pct: float = 0.5
    max_slippage_pct: float = 0.3
    trade_size_usd: float = 1000.0
    gas_cost_usd: float = 0.15
    max_quote_age_ms: int = 30000
    max_opportunities: int = 10  # 0 keeps every opportunity


class RegistryConfig(BaseModel):
    """Opportunity bookkeeping configuration."""
    retention_ms: int = 5 * 60 * 1000
    dedup_window_ms: int = 0  # 0 = dedup by id only
    expire_in_flight: bool = False
    event_buffer_size: int = 100


class SchedulerConfig(BaseModel):
    """Admission control configuration."""
    max_concurrent_trades: int = 1
    cooldown_ms: int = 2000
    max_daily_trades: int = 100
    min_trade_interval_ms: int = 5000
    min_profit_threshold_pct: Optional[float] = None  # Falls back to detector threshold
    priority_profit_multiplier: float = 1.5
    blacklist_instruments: List[str] = []
    blacklist_venues: List[str] = []
    priority_instruments: List[str] = []
    priority_venues: List[str] = []


class ExecutionConfig(BaseModel):
    """Trade execution configuration."""
    max_retries: int = 3
    retry_backoff_ms: int = 1000
    timeout_ms: int = 30000
    confirmation_level: Literal["processed", "confirmed", "finalized"] = "confirmed"
    slippage_tolerance: Optional[float] = None  # Fraction, e.g. 0.003


class WalletConfig(BaseModel):
    """Signer configuration. Balances, fees and latency apply to paper mode."""
    address: str = "paper-wallet"
    balance_asset: str = "USDC"
    # Checked at startup; the bot refuses to start below these
    min_balance: float = 0.0
    min_balances: Dict[str, float] = Field(default_factory=dict)
    initial_balances: Dict[str, float] = Field(default_factory=lambda: {
        "USDC": 10000.0, "SOL": 50.0, "BTC": 0.1, "ETH": 2.0,
    })
    fee_bps: float = 5.0
    slippage_bps: float = 2.0
    latency_ms: int = 250
    seed: Optional[int] = None


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = "arbsniper.log"
    file_level: str = "DEBUG"
    rotation: str = "10 MB"
    retention: str = "7 days"
    status_interval_s: int = 60


class Config(BaseModel):
    """Main configuration model."""
    mode: Literal["paper", "live"] = "paper"
    venues: List[VenueConfig] = []
    market: MarketConfig = Field(default_factory=MarketConfig)
    detector: DetectorConfig = Field(default_factory=DetectorConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def _sync_thresholds(self) -> "Config":
        # Scheduler re-checks against the detector threshold unless overridden
        if self.scheduler.min_profit_threshold_pct is None:
            self.scheduler.min_profit_threshold_pct = self.detector.min_profit_threshold_pct
        return self

    @property
    def enabled_venues(self) -> List[VenueConfig]:
        """Venues selected by configuration."""
        return [venue for venue in self.venues if venue.enabled]

    @property
    def slippage_tolerance(self) -> float:
        """Slippage tolerance as a fraction used for leg minimum outputs."""
        if self.execution.slippage_tolerance is not None:
            return self.execution.slippage_tolerance
        return self.detector.max_slippage_pct / 100

    def validate_startup(self) -> None:
        """Check settings that must hold before the bot may start."""
        enabled = self.enabled_venues
        if not enabled:
            raise ConfigurationError("No enabled venues configured")

        names = [venue.name for venue in self.venues]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate venue names: {', '.join(duplicates)}")

        if self.mode == "live":
            for venue in enabled:
                if venue.type == "ccxt" and not (_is_set(venue.api_key) and _is_set(venue.secret)):
                    raise ConfigurationError(
                        f"Live mode requires api_key and secret for venue '{venue.name}'"
                    )

    @classmethod
    def load_from_file(cls, config_path: str = "config.yaml") -> "Config":
        """Load configuration from YAML file with environment variable substitution."""
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        load_dotenv()

        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

        # Substitute environment variables
        config_str = yaml.dump(config_data)
        for key, value in os.environ.items():
            config_str = config_str.replace(f"${{{key}}}", value)

        config_data = yaml.safe_load(config_str)
        return cls(**config_data)


def _is_set(value: Optional[str]) -> bool:
    """True for a real secret, False for empty or unsubstituted ${VAR} values."""
    return bool(value) and not value.startswith("${")


def get_config(config_path: str = "config.yaml") -> Config:
    """Get configuration instance."""
    return Config.load_from_file(config_path)
