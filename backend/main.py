"""
Signage coordinator: FastAPI application entry point.

Loads the device config, starts discovery, the peer health monitor and the
addons on startup, and serves the REST API and WebSocket endpoint.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from api.routes import init_routes, install_error_handlers, router
from api.websocket import ConnectionManager
from config import API_HOST, APP_NAME, APP_VERSION, CONFIG_PATH
from coordinator.facade import CoordinatorFacade
from coordinator.store import ConfigStore

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# --- Service singletons ---
store = ConfigStore(CONFIG_PATH)
store.load()
coordinator = CoordinatorFacade(store)
ws_manager = ConnectionManager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start/stop background services."""
    logger.info("Starting signage coordinator services...")

    try:
        ws_manager.attach(coordinator.events)
        await coordinator.start()

        config = store.config
        logger.info(
            f"{config.display_name} ready, "
            f"API: {API_HOST}:{config.port}, "
            f"discovery: UDP {config.discovery_port}"
        )

        yield

    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        raise
    finally:
        logger.info("Shutting down signage coordinator services...")
        await coordinator.stop()


# --- FastAPI app ---
app = FastAPI(
    title=APP_NAME,
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Inject services into routes
init_routes(coordinator)
install_error_handlers(app)
app.include_router(router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    snapshot = {
        "config": coordinator.public_config(),
        "media": [m.model_dump() for m in coordinator.media_snapshot()],
        "addons": sorted(coordinator.addons.ids()),
    }
    await ws_manager.connect(websocket, snapshot)
    try:
        while True:
            # Keep the connection alive; we don't expect client messages
            await websocket.receive_text()
    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
    except Exception:
        await ws_manager.disconnect(websocket)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="127.0.0.1" if store.config.localhost_only else API_HOST,
        port=store.config.port,
        log_level="info",
    )
