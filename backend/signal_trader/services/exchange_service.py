"""
Exchange connection bootstrap

Connects the exchange client and verifies the session with a bounded
number of attempts before the engine starts using it.
"""

import asyncio
import logging
from typing import Awaitable, Callable

from signal_trader.exceptions import ExchangeConnectionError

logger = logging.getLogger(__name__)


async def connect_with_retry(
    exchange,
    attempts: int = 3,
    delay: float = 2.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """
    Connect and test the exchange session, retrying on failure.

    Args:
        exchange: ExchangeClient to connect
        attempts: Attempts before giving up
        delay: Seconds between attempts

    Raises:
        ExchangeConnectionError: every attempt failed
    """
    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            if not exchange.is_connected:
                await exchange.connect()
            await exchange.test_connection()
            logger.info(f"Exchange connection established (attempt {attempt})")
            return
        except Exception as e:
            last_error = e
            logger.warning(f"Exchange connection attempt {attempt}/{attempts} failed: {e}")
            if attempt < attempts:
                await sleep(delay)

    logger.error(f"Failed to connect to exchange after {attempts} attempts: {last_error}")
    raise ExchangeConnectionError()


async def ensure_connected(exchange, attempts: int = 3, delay: float = 2.0, sleep=asyncio.sleep) -> None:
    """Connect only if the client reports no live session"""
    if exchange.is_connected:
        return
    await connect_with_retry(exchange, attempts=attempts, delay=delay, sleep=sleep)
