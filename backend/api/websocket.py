import json
import logging

from fastapi import WebSocket, WebSocketDisconnect, APIRouter

log = logging.getLogger(__name__)
ws_router = APIRouter()

# Event types pushed to clients while an attack runs
ATTACK_EVENTS = ("intruder_progress", "intruder_result", "intruder_complete")


class ConnectionManager:
    """Keeps the open sockets and fans attack events out to all of them."""

    def __init__(self) -> None:
        self.clients: list[WebSocket] = []

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.clients.append(websocket)
        log.info("ws client connected (%d total)", len(self.clients))

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.clients:
            self.clients.remove(websocket)
        log.info("ws client disconnected (%d total)", len(self.clients))

    async def emit(self, event_type: str, session_id: str, **data) -> None:
        if event_type not in ATTACK_EVENTS:
            raise ValueError(f"Unknown attack event {event_type!r}")
        await self.broadcast({"type": event_type, "data": {"session_id": session_id, **data}})

    async def broadcast(self, message: dict) -> None:
        dead: list[WebSocket] = []
        for client in self.clients:
            try:
                await client.send_json(message)
            except Exception as e:
                log.debug("dropping ws client: %s", e)
                dead.append(client)
        for client in dead:
            self.disconnect(client)


manager = ConnectionManager()


def _handle_control(msg: dict) -> dict:
    """Apply an ``attack_control`` message and build the acknowledgement."""
    from api.routes import set_attack_signal

    session_id = msg.get("session_id", "")
    signal = msg.get("signal", "")
    if not isinstance(session_id, str) or not isinstance(signal, str):
        log.warning("malformed attack control message: %r", msg)
        return {"type": "attack_control_ack", "data": {"session_id": None, "signal": None, "ok": False}}
    ok = set_attack_signal(session_id, signal)
    if not ok:
        log.warning("attack control %r ignored for session %s", signal, session_id)
    return {"type": "attack_control_ack", "data": {"session_id": session_id, "signal": signal, "ok": ok}}


@ws_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    await manager.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                continue  # keep-alive pings
            try:
                if isinstance(msg, dict) and msg.get("type") == "attack_control":
                    await websocket.send_json(_handle_control(msg))
            except WebSocketDisconnect:
                raise
            except Exception:
                log.exception("error handling WS message")
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)
