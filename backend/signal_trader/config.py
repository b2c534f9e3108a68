from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Exchange API credentials (not needed when paper trading)
    exchange_api_key: str = ""
    exchange_api_secret: str = ""
    use_testnet: bool = True
    paper_trading: bool = True

    # Default instrument
    symbol: str = "BTCUSDT"
    timeframe: str = "5m"

    # Signal thresholds (+DI / -DI / ADX)
    plus_di_threshold: float = 25.0
    minus_di_threshold: float = 20.0
    adx_minimum: float = 20.0

    # Risk parameters
    take_profit_percent: float = 2.0
    stop_loss_percent: float = 1.0
    leverage: int = 10
    order_quantity: float = 0.001
    order_type: str = "MARKET"  # MARKET or LIMIT
    max_slippage: float = 0.5
    order_timeout_minutes: int = 60

    # Order history retention (newest first, oldest dropped)
    max_orders: int = 100

    # Execution queue pacing between orders (exchange rate limits)
    queue_pacing_seconds: float = 0.1

    # Price feed reconnection: delay = base * 2^(attempt - 1)
    reconnect_base_delay_seconds: float = 1.0
    max_reconnect_attempts: int = 5

    # Connection test during initialization
    connection_test_attempts: int = 3
    connection_test_delay_seconds: float = 2.0

    # Paper trading seed prices (JSON in env, e.g. {"BTCUSDT": 65000})
    paper_initial_prices: dict = {"BTCUSDT": 65000.0, "ETHUSDT": 3200.0}

    # Database
    database_url: str = "sqlite+aiosqlite:///./signal_trader.db"

    # Logging
    log_level: str = "INFO"

    # API
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Start real-time monitoring when the API starts
    auto_start_monitoring: bool = True

    @field_validator("order_type")
    @classmethod
    def normalize_order_type(cls, v: str) -> str:
        """Exchange order types are upper case"""
        return v.upper()

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
