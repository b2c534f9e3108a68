"""
System and exchange API routes

Handles system-level endpoints:
- Health check
- Trading configuration (thresholds and risk parameters)
- Real-time monitoring control (start/stop)
- Exchange connection control and account info
- Paper trading price injection
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends

from signal_trader.context import EngineContext
from signal_trader.exceptions import ExchangeUnavailableError, ValidationError
from signal_trader.exchange_clients.paper_trading_client import PaperTradingClient
from signal_trader.routers.dependencies import get_engine
from signal_trader.routers.schemas import PaperPriceUpdate, TradingConfigUpdate
from signal_trader.services.exchange_service import connect_with_retry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["system"])

# Settings exposed through /api/config (never credentials)
TRADING_CONFIG_FIELDS = [
    "symbol",
    "timeframe",
    "plus_di_threshold",
    "minus_di_threshold",
    "adx_minimum",
    "take_profit_percent",
    "stop_loss_percent",
    "leverage",
    "order_quantity",
    "order_type",
    "max_slippage",
    "order_timeout_minutes",
    "use_testnet",
    "paper_trading",
]


@router.get("/health")
async def health(engine: EngineContext = Depends(get_engine)):
    return {
        "status": "ok",
        "timestamp": datetime.utcnow().isoformat(),
        "exchangeConnected": engine.exchange.is_connected,
        "monitoringActive": engine.monitoring.is_active,
        "shutdown": engine.shutdown_manager.get_status(),
    }


@router.get("/config")
async def get_config(engine: EngineContext = Depends(get_engine)):
    return {field: getattr(engine.settings, field) for field in TRADING_CONFIG_FIELDS}


@router.post("/config")
async def update_config(update: TradingConfigUpdate, engine: EngineContext = Depends(get_engine)):
    """Update signal thresholds and risk parameters for new signals"""
    changes = update.model_dump(exclude_none=True)
    for field, value in changes.items():
        setattr(engine.settings, field, value)
    logger.info(f"Trading configuration updated: {changes}")
    return {
        "message": "Configuration saved successfully",
        "config": {field: getattr(engine.settings, field) for field in TRADING_CONFIG_FIELDS},
    }


@router.post("/realtime/start")
async def start_realtime(engine: EngineContext = Depends(get_engine)):
    """Connect and start real-time order monitoring"""
    if engine.monitoring.is_active:
        return {"message": "Real-time monitoring already active", "status": engine.monitoring.get_monitoring_status()}
    await engine.monitoring.initialize()
    return {"message": "Real-time monitoring started", "status": engine.monitoring.get_monitoring_status()}


@router.post("/realtime/stop")
async def stop_realtime(engine: EngineContext = Depends(get_engine)):
    if not engine.monitoring.is_active:
        return {"message": "Real-time monitoring not running"}
    await engine.monitoring.stop()
    return {"message": "Real-time monitoring stopped"}


@router.post("/exchange/connect")
async def connect_exchange(engine: EngineContext = Depends(get_engine)):
    await connect_with_retry(
        engine.exchange,
        attempts=engine.settings.connection_test_attempts,
        delay=engine.settings.connection_test_delay_seconds,
    )
    return {"message": "Exchange connected", "connected": engine.exchange.is_connected}


@router.post("/exchange/disconnect")
async def disconnect_exchange(engine: EngineContext = Depends(get_engine)):
    """Stop monitoring (if running) and close the exchange session"""
    if engine.monitoring.is_active:
        await engine.monitoring.stop()
    await engine.exchange.disconnect()
    return {"message": "Exchange disconnected", "connected": engine.exchange.is_connected}


@router.get("/exchange/account")
async def get_account(engine: EngineContext = Depends(get_engine)):
    if not engine.exchange.is_connected:
        raise ExchangeUnavailableError("Exchange not connected")
    return await engine.exchange.get_account_info()


@router.post("/exchange/paper/price")
async def publish_paper_price(update: PaperPriceUpdate, engine: EngineContext = Depends(get_engine)):
    """Push a simulated price tick (paper trading only)"""
    if not isinstance(engine.exchange, PaperTradingClient):
        raise ValidationError("Price injection is only available in paper trading mode")
    tick = engine.exchange.publish_price(update.symbol, update.price)
    return {"message": "Price published", "tick": tick.to_dict()}
