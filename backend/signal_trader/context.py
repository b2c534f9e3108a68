"""
Engine context

One EngineContext owns every engine instance for a process (exchange
client, store, event bus, monitoring service, signal processor). main.py
builds it at startup and keeps it on app.state; tests build their own.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from signal_trader.exchange_clients.base import ExchangeClient
from signal_trader.exchange_clients.factory import create_exchange_client
from signal_trader.services.event_bus import EventBus
from signal_trader.services.monitoring_service import MonitoringService
from signal_trader.services.order_store import OrderStore
from signal_trader.services.shutdown_manager import ShutdownManager
from signal_trader.services.websocket_manager import WebSocketManager
from signal_trader.trading_engine.scheduler import Scheduler
from signal_trader.trading_engine.signal_processor import SignalProcessor


@dataclass
class EngineContext:
    settings: object
    exchange: ExchangeClient
    store: OrderStore
    events: EventBus
    shutdown_manager: ShutdownManager
    ws_manager: WebSocketManager
    monitoring: MonitoringService
    processor: SignalProcessor


def build_engine_context(
    settings,
    session_maker: async_sessionmaker,
    exchange: Optional[ExchangeClient] = None,
    scheduler: Optional[Scheduler] = None,
    sleep=asyncio.sleep,
) -> EngineContext:
    """
    Wire the engine together.

    Args:
        settings: Settings instance
        session_maker: async_sessionmaker for the order store
        exchange: Exchange client (default: create_exchange_client(settings))
        scheduler: Scheduler (tests pass one with a fake clock)
        sleep: Sleep coroutine for pacing, backoff and connection retries
    """
    exchange = exchange if exchange is not None else create_exchange_client(settings)
    store = OrderStore(session_maker, max_orders=settings.max_orders)
    events = EventBus()
    shutdown_manager = ShutdownManager()
    ws_manager = WebSocketManager()
    events.subscribe_all(ws_manager.broadcast_event)

    monitoring = MonitoringService(
        exchange,
        store,
        events,
        settings,
        scheduler=scheduler,
        shutdown_manager=shutdown_manager,
        sleep=sleep,
    )
    processor = SignalProcessor(exchange, store, monitoring, settings, sleep=sleep)

    return EngineContext(
        settings=settings,
        exchange=exchange,
        store=store,
        events=events,
        shutdown_manager=shutdown_manager,
        ws_manager=ws_manager,
        monitoring=monitoring,
        processor=processor,
    )
