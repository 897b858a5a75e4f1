import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.staticfiles import StaticFiles

from backend import redis_backend
from constants import CORS_ORIGINS, LOG_LEVEL, LOG_FILE, UPLOAD_DIR
from realtime.errors import ProtocolError, StoreUnavailable
from realtime.hub import protocol, registry, router
from realtime.registry import Connection
from routers.auth import auth_router
from routers.rooms import rooms_router
from routers.uploads import uploads_router
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await redis_backend.ping()
        logger.info("Redis reachable")
    except StoreUnavailable:
        # Keep serving; every store-backed call reports its own failure
        logger.error("Redis not reachable at startup")
    yield
    await redis_backend.close()
    logger.info("Redis connection closed")


app = FastAPI(title="RoomChat", lifespan=lifespan)

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(rooms_router)
app.include_router(uploads_router)

os.makedirs(UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")

logger.info("FastAPI application initialized")


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request, exc: StoreUnavailable):
    return JSONResponse(status_code=503, content={"detail": exc.content})


@app.get("/health")
async def health():
    try:
        redis_ok = await redis_backend.ping()
    except StoreUnavailable:
        redis_ok = False
    return {"status": "ok" if redis_ok else "degraded", "redis": redis_ok, "connections": registry.connection_count()}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Chat WebSocket: one connection per browser tab.

    The client logs in with a `login` frame, then joins a room and posts
    messages. Errors in a frame are answered with an `error` frame and the
    connection stays open.
    """
    await websocket.accept()
    connection = Connection(websocket)
    protocol.connect(connection)
    logger.info(f"WebSocket connection accepted: {connection.connection_id}")

    message_count = 0
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"WebSocket disconnected normally for connection {connection.connection_id}")
                break

            message_count += 1
            data = message.get("text")
            logger.debug(f"Received message #{message_count} from connection {connection.connection_id}")
            if data is None:
                await router.send_direct(connection, ProtocolError("Binary frames are not supported").to_event())
                continue

            try:
                await protocol.handle(connection, data)
            except Exception as e:
                logger.error(f"Error handling message from connection {connection.connection_id}: {e}", exc_info=True)
                await router.send_direct(connection, StoreUnavailable().to_event())
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection.connection_id}: {e}", exc_info=True)
    finally:
        await protocol.disconnect(connection)
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")
