import logging

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from signal_trader.config import settings
from signal_trader.context import build_engine_context
from signal_trader.database import async_session_maker, close_db, init_db
from signal_trader.exceptions import AppError
from signal_trader.routers import orders_router, system_router, webhook_router

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="DMI Signal Trader")

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook_router.router)
app.include_router(orders_router.router)
app.include_router(system_router.router)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


# Startup/Shutdown events
@app.on_event("startup")
async def startup_event():
    logger.info("Initializing database...")
    await init_db()

    engine = build_engine_context(settings, async_session_maker)
    app.state.engine = engine
    mode = "paper trading" if settings.paper_trading else ("testnet" if settings.use_testnet else "live")
    logger.info(f"Trading engine ready ({mode}, {settings.symbol} {settings.timeframe})")

    if settings.auto_start_monitoring:
        try:
            await engine.monitoring.initialize()
        except AppError as e:
            # API stays up; monitoring can be started via /api/realtime/start
            logger.error(f"Real-time monitoring not started: {e.message}")


@app.on_event("shutdown")
async def shutdown_event():
    engine = getattr(app.state, "engine", None)
    if engine is None:
        return

    logger.info("Shutting down - waiting for in-flight executions...")
    shutdown_result = await engine.shutdown_manager.prepare_shutdown(timeout=60.0)
    if shutdown_result["ready"]:
        logger.info(shutdown_result["message"])
    else:
        logger.warning(shutdown_result["message"])

    if engine.monitoring.is_active:
        await engine.monitoring.stop()
    await engine.exchange.disconnect()
    await close_db()
    logger.info("Shutdown complete")


# WebSocket for real-time engine events
@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    engine = app.state.engine
    ws_manager = engine.ws_manager
    await ws_manager.connect(websocket, status=engine.monitoring.get_monitoring_status())
    try:
        while True:
            # Keep connection alive; clients only listen
            await websocket.receive_text()
    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)


def run():
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
