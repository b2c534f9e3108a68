"""
Trading Engine

Signal validation, order construction, trigger evaluation, serialized
execution and order status management.

Modules:
- signal_validator: +DI / -DI / ADX signal rules
- order_factory: orders with take-profit / stop-loss levels
- trigger_registry: price targets, at-most-once firing
- execution_queue: FIFO execution with pacing
- state_machine: order status transitions
- scheduler: timed entries
- signal_processor: webhook pipeline
"""
