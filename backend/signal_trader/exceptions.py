"""
Domain exceptions for the application.

Services raise these instead of fastapi.HTTPException to avoid coupling
the engine to the web framework. A global exception handler in main.py
translates them into HTTP responses.
"""


class AppError(Exception):
    """Base application error with an HTTP-equivalent status code."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ValidationError(AppError):
    """Malformed or insufficient signal (400). Raised before any state change."""

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class ConfigurationError(AppError):
    """Unrecoverable setup problem such as missing credentials (500)."""

    def __init__(self, message: str):
        super().__init__(message, status_code=500)


class ExchangeUnavailableError(AppError):
    """Exchange API unavailable (503)."""

    def __init__(self, message: str = "Exchange service unavailable"):
        super().__init__(message, status_code=503)


class ExchangeConnectionError(ExchangeUnavailableError):
    """Exchange or feed unreachable after the bounded connection retries."""

    def __init__(self, message: str = "Failed to establish connection after multiple attempts"):
        super().__init__(message)


class ShutdownInProgressError(AppError):
    """Execution refused because the process is shutting down (503)."""

    def __init__(self, message: str = "Shutdown in progress"):
        super().__init__(message, status_code=503)


class ExecutionError(AppError):
    """Order placement rejected by the exchange (502)."""

    def __init__(self, message: str):
        super().__init__(message, status_code=502)


class StreamError(AppError):
    """Price stream dropped mid-operation."""

    def __init__(self, message: str, symbol: str = None):
        self.symbol = symbol
        super().__init__(message, status_code=503)


class InvalidTransitionError(AppError):
    """Order status change not allowed from the current status (409)."""

    def __init__(self, order_id: str, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Order {order_id} cannot move from {current} to {requested}",
            status_code=409,
        )


class OrderNotActiveError(AppError):
    """Execution attempted for an order that is unknown or already terminal (409)."""

    def __init__(self, order_id: str, status: str = None):
        self.order_id = order_id
        self.status = status
        detail = f" (status: {status})" if status else ""
        super().__init__(f"Order {order_id} is not active{detail}", status_code=409)
