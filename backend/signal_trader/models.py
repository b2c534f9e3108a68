"""
Database Models

Defines the SQLAlchemy ORM model for persisted orders. Column names match
the Order dataclass fields so records convert both ways without a mapping
table.
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Integer, String, Text

from signal_trader.database import Base


class OrderRecord(Base):
    """
    Order history row.

    Status and enum-like fields are stored as their string values. Rows for
    terminal orders are kept as history until trimmed to settings.max_orders.
    """
    __tablename__ = "orders"

    id = Column(String, primary_key=True)
    symbol = Column(String, index=True, nullable=False)
    side = Column(String, nullable=False)  # BUY / SELL
    type = Column(String, nullable=False, default="MARKET")  # MARKET / LIMIT
    quantity = Column(Float, nullable=False)
    price = Column(Float, nullable=True)
    status = Column(String, index=True, nullable=False, default="pending")
    execution_mode = Column(String, nullable=False, default="immediate")

    # Price targets (full precision)
    trigger_price = Column(Float, nullable=True)
    trigger_condition = Column(String, nullable=True)
    stop_loss = Column(Float, nullable=True)
    take_profit = Column(Float, nullable=True)
    scheduled_time = Column(DateTime, nullable=True)
    time_in_force = Column(String, default="GTC")

    # Display / signal context
    timeframe = Column(String, nullable=True)
    leverage = Column(String, nullable=True)
    price_entry = Column(String, nullable=True)  # 2dp display strings
    tp_price = Column(String, nullable=True)
    sl_price = Column(String, nullable=True)
    signal_data = Column(JSON, nullable=True)  # {plusDI, minusDI, adx}
    trailing_stop = Column(Float, nullable=True)
    max_slippage = Column(Float, nullable=True)
    allow_partial_fill = Column(Boolean, default=True)
    timeout_minutes = Column(Integer, nullable=True)

    # Exchange results
    exchange_order_id = Column(String, index=True, nullable=True)
    executed_price = Column(Float, nullable=True)
    executed_quantity = Column(Float, nullable=True)
    remaining_quantity = Column(Float, nullable=True)
    last_executed_price = Column(Float, nullable=True)
    commission = Column(Float, nullable=True)
    commission_asset = Column(String, nullable=True)
    executed_target = Column(String, nullable=True)  # trigger / stopLoss / takeProfit / entry
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, index=True, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
    executed_at = Column(DateTime, nullable=True)
    error_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    waiting_trigger_since = Column(DateTime, nullable=True)
