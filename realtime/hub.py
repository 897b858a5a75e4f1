from backend import redis_backend
from realtime.broadcast import BroadcastRouter
from realtime.protocol import SessionProtocol
from realtime.registry import ConnectionRegistry

# One registry per process: connections are only ever reachable from the
# server instance that accepted them.
registry = ConnectionRegistry()
router = BroadcastRouter(registry)
protocol = SessionProtocol(
    registry,
    router,
    identity_store=redis_backend,
    room_store=redis_backend,
    message_log=redis_backend,
)
