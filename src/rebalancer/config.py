"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class RebalanceSettings(BaseSettings):
    """Single-shot rebalancing calculator parameters."""

    model_config = SettingsConfigDict(env_prefix="REBALANCE_")

    fee_rate: Decimal = Decimal("0.005")  # 0.5% per trade, applied to trade value
    default_max_coins: int = 15
    max_coins_limit: int = 50
    min_trade_value: Decimal = Decimal("1")  # USD; smaller drifts are not traded


class BacktestSettings(BaseSettings):
    """Backtest engine configuration.

    Controls metric constants, the candidate universe pulled from the
    provider, and the bounded fan-out used while loading price history.
    All fields configurable via BACKTEST_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="BACKTEST_")

    default_initial_value: Decimal = Decimal("10000")
    risk_free_rate_pct: Decimal = Decimal("3")
    # Volatility is annualized with sqrt(12) whatever the rebalance frequency.
    annualization_periods: int = 12
    candidate_pool_size: int = 100

    # Data loading
    max_concurrent_fetches: int = 5
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    rate_limit_max_delay: float = 30.0


class MarketDataSettings(BaseSettings):
    """Market data provider configuration (CoinGecko, cache, SQLite history)."""

    model_config = SettingsConfigDict(env_prefix="MARKET_DATA_")

    base_url: str = "https://api.coingecko.com/api/v3"
    api_key: SecretStr = SecretStr("")
    request_timeout: float = 10.0
    cache_ttl_seconds: int = 300  # live rankings and prices
    history_cache_ttl_seconds: int = 3600  # price series change once a day
    db_path: str = "data/history.db"
    universe_policy: Literal["truncate_then_exclude", "exclude_then_truncate"] = (
        "truncate_then_exclude"
    )
    # "exchange" serves spot prices from exchange_id tickers; rankings and
    # history still come from CoinGecko.
    price_source: Literal["coingecko", "exchange"] = "coingecko"
    exchange_id: str = "binance"
    quote_currency: str = "USDT"


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    rebalance: RebalanceSettings = RebalanceSettings()
    backtest: BacktestSettings = BacktestSettings()
    market_data: MarketDataSettings = MarketDataSettings()
