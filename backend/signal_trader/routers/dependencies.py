"""Router dependencies: the engine context built in main.py"""

from fastapi import Request

from signal_trader.context import EngineContext
from signal_trader.exceptions import ExchangeUnavailableError


def get_engine(request: Request) -> EngineContext:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise ExchangeUnavailableError("Trading engine not initialized")
    return engine
