from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type
import argparse
import asyncio
import json
import logging

from .config import CORS_ORIGINS, HOST, LOG_LEVEL, PORT
from .matchmaker import RELAYED_KINDS, SignalingCoordinator
from .models import JoinEvent, LeaveEvent, PrepareEvent, RelayEvent, RoomEvent, StatsResponse

logger = logging.getLogger(__name__)

# Error messages sent back to the offending connection only
INVALID_MESSAGE = "INVALID_MESSAGE"
UNKNOWN_EVENT = "UNKNOWN_EVENT"

Handler = Callable[[SignalingCoordinator, str, Any], Awaitable[None]]


# --- EVENT HANDLERS ---
async def on_join(coordinator: SignalingCoordinator, connection_id: str, event: JoinEvent):
    await coordinator.join(connection_id, event.display_name)


async def on_prepare(coordinator: SignalingCoordinator, connection_id: str, event: PrepareEvent):
    await coordinator.prepare(connection_id, event.room.room_id)


async def on_ready(coordinator: SignalingCoordinator, connection_id: str, event: RoomEvent):
    await coordinator.ready(connection_id, event.room_id)


async def on_get_room(coordinator: SignalingCoordinator, connection_id: str, event: RoomEvent):
    await coordinator.get_room(connection_id, event.room_id)


async def on_leave(coordinator: SignalingCoordinator, connection_id: str, event: LeaveEvent):
    await coordinator.leave(connection_id, event.room_id, event.display_name)


def _relay_handler(kind: str) -> Handler:
    async def on_relay(coordinator: SignalingCoordinator, connection_id: str, event: RelayEvent):
        await coordinator.relay(connection_id, kind, event.payload, event.room_id)
    return on_relay


EVENTS: Dict[str, Tuple[Type[BaseModel], Handler]] = {
    "join": (JoinEvent, on_join),
    "prepare": (PrepareEvent, on_prepare),
    "ready": (RoomEvent, on_ready),
    "get-room": (RoomEvent, on_get_room),
    "leave": (LeaveEvent, on_leave),
}
for _kind in RELAYED_KINDS:
    EVENTS[_kind] = (RelayEvent, _relay_handler(_kind))


async def dispatch(coordinator: SignalingCoordinator, connection_id: str, raw: str):
    """Parse one inbound frame and route it. Bad envelopes only get an error frame back."""
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        send_error(coordinator, connection_id, INVALID_MESSAGE)
        return
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        send_error(coordinator, connection_id, INVALID_MESSAGE)
        return

    kind = message["type"]
    entry = EVENTS.get(kind)
    if entry is None:
        logger.debug("unknown event type=%s conn=%s", kind, connection_id)
        send_error(coordinator, connection_id, UNKNOWN_EVENT)
        return

    schema, handler = entry
    try:
        event = schema.model_validate(message)
    except ValidationError as e:
        logger.debug("invalid %s from conn=%s: %s", kind, connection_id, e)
        send_error(coordinator, connection_id, INVALID_MESSAGE)
        return
    await handler(coordinator, connection_id, event)


def send_error(coordinator: SignalingCoordinator, connection_id: str, message: str):
    coordinator.connections.send(connection_id, {"type": "error", "message": message})


# --- APP ---
def create_app(coordinator: Optional[SignalingCoordinator] = None) -> FastAPI:
    app = FastAPI(title="Duet Signaling Relay")
    app.state.coordinator = coordinator or SignalingCoordinator()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    @app.get("/api/stats", response_model=StatsResponse)
    async def stats():
        return await app.state.coordinator.stats()

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        coordinator: SignalingCoordinator = app.state.coordinator
        connection_id = await coordinator.connect(websocket)
        try:
            while True:
                raw = await websocket.receive_text()
                await dispatch(coordinator, connection_id, raw)
        except WebSocketDisconnect:
            pass
        finally:
            # The handler task can be cancelled once the client is gone; the departure must still finish.
            await asyncio.shield(coordinator.disconnect(connection_id))

    return app


app = create_app()


def main(argv=None) -> int:
    import uvicorn

    parser = argparse.ArgumentParser(description="Duet WebRTC signaling relay")
    parser.add_argument("--host", default=HOST, help="Interface to bind")
    parser.add_argument("--port", type=int, default=PORT, help="Port to listen on")
    parser.add_argument("--log-level", default=None, help="Logging level (debug, info, warning, error)")
    args = parser.parse_args(argv)

    level = (args.log_level or LOG_LEVEL).upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logger.info("Server listening on %s:%s", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_level=level.lower())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
