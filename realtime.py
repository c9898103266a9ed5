"""
Realtime chat bridge.

A single WebSocket endpoint carries JSON frames of the form
``{"event": <name>, "data": <payload>}``. Clients join project rooms, send
chat messages (persisted before fan-out) and emit typing signals (never
persisted). Room membership lives in a ``Broadcaster`` created by the app
factory and injected wherever messages are fanned out.
"""
import logging
from typing import Any, Dict, List, Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pymongo.database import Database

from access import Caller, find_accessible_project
from auth import resolve_token
from chat import post_message
from errors import AppError, NotFound

logger = logging.getLogger(__name__)

router = APIRouter()

AUTH_FAILED_CLOSE_CODE = 4401


def project_room(project_id: Any) -> str:
    return f"project-{project_id}"


class Broadcaster:
    def __init__(self):
        self.rooms: Dict[str, List[WebSocket]] = {}

    def join(self, room: str, websocket: WebSocket):
        conns = self.rooms.setdefault(room, [])
        if websocket not in conns:
            conns.append(websocket)

    def leave(self, room: str, websocket: WebSocket):
        conns = self.rooms.get(room, [])
        if websocket in conns:
            conns.remove(websocket)
        if not conns and room in self.rooms:
            del self.rooms[room]

    def leave_all(self, websocket: WebSocket):
        for room in list(self.rooms):
            self.leave(room, websocket)

    def rooms_of(self, websocket: WebSocket) -> Set[str]:
        return {room for room, conns in self.rooms.items() if websocket in conns}

    async def broadcast(self, room: str, event: str, data: Any, exclude: Optional[WebSocket] = None):
        for ws in list(self.rooms.get(room, [])):
            if ws is exclude:
                continue
            try:
                await ws.send_json({"event": event, "data": data})
            except Exception:
                logger.warning("Dropping dead socket from room %s", room, exc_info=True)
                self.leave_all(ws)


async def emit(websocket: WebSocket, event: str, data: Any):
    await websocket.send_json({"event": event, "data": data})


async def emit_error(websocket: WebSocket, message: str):
    await emit(websocket, "error", {"message": message})


# -----------------------------
# Event handlers
# -----------------------------
async def on_join_project(db: Database, broadcaster: Broadcaster, websocket: WebSocket, user, data):
    project_id = data.get("projectId") if isinstance(data, dict) else data
    try:
        project = find_accessible_project(db, Caller.from_user(user), project_id)
    except AppError:
        await emit_error(websocket, "Project not found")
        return
    rooms = [project_room(project["_id"])]
    if project.get("chat_room"):
        rooms.append(project["chat_room"])
    for room in rooms:
        broadcaster.join(room, websocket)
    logger.info("User %s joined project %s", user["name"], project["_id"])
    await emit(websocket, "joined-project", {"projectId": str(project["_id"]), "rooms": rooms})


async def on_send_message(db: Database, broadcaster: Broadcaster, websocket: WebSocket, user, data):
    if not isinstance(data, dict):
        await emit_error(websocket, "Error sending message")
        return
    try:
        result = post_message(db, Caller.from_user(user), data)
    except NotFound:
        await emit_error(websocket, "Project not found")
        return
    except AppError as exc:
        await emit_error(websocket, exc.message)
        return

    message = result["message"]
    project = result["project"]
    await broadcaster.broadcast(project_room(project["_id"]), "new-message", message)
    # post_message only accepts a chatRoom equal to the project's own
    if data.get("chatRoom") and project.get("chat_room"):
        await broadcaster.broadcast(project["chat_room"], "new-message", message)


async def on_typing(db: Database, broadcaster: Broadcaster, websocket: WebSocket, user, data, stopped=False):
    if not isinstance(data, dict) or not data.get("projectId"):
        return
    room = project_room(data["projectId"])
    if room not in broadcaster.rooms_of(websocket):
        await emit_error(websocket, "Join the project before sending typing events")
        return
    payload = {"userId": str(user["_id"]), "taskId": data.get("taskId")}
    if not stopped:
        payload["userName"] = user.get("name")
    event = "user-stop-typing" if stopped else "user-typing"
    await broadcaster.broadcast(room, event, payload, exclude=websocket)


async def dispatch(db: Database, broadcaster: Broadcaster, websocket: WebSocket, user, frame):
    if not isinstance(frame, dict):
        await emit_error(websocket, "Malformed event")
        return
    event = frame.get("event")
    data = frame.get("data")
    if event == "join-project":
        try:
            await on_join_project(db, broadcaster, websocket, user, data)
        except Exception:
            logger.exception("join-project failed for %s", user["_id"])
            await emit_error(websocket, "Error joining project")
    elif event == "send-message":
        try:
            await on_send_message(db, broadcaster, websocket, user, data)
        except Exception:
            logger.exception("send-message failed for %s", user["_id"])
            await emit_error(websocket, "Error sending message")
    elif event == "typing":
        await on_typing(db, broadcaster, websocket, user, data)
    elif event == "stop-typing":
        await on_typing(db, broadcaster, websocket, user, data, stopped=True)
    else:
        await emit_error(websocket, f"Unknown event '{event}'")


@router.websocket("/ws")
async def chat_ws(websocket: WebSocket):
    db: Database = websocket.app.state.db
    broadcaster: Broadcaster = websocket.app.state.broadcaster

    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("authorization", "")
        if auth_header.lower().startswith("bearer "):
            token = auth_header.split(" ", 1)[1].strip()
    try:
        user = resolve_token(db, token)
    except AppError:
        logger.info("Rejected realtime connection: authentication error")
        await websocket.close(code=AUTH_FAILED_CLOSE_CODE)
        return

    await websocket.accept()
    logger.info("User %s connected", user["name"])
    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await emit_error(websocket, "Malformed event")
                continue
            await dispatch(db, broadcaster, websocket, user, frame)
    except WebSocketDisconnect:
        logger.info("User %s disconnected", user["name"])
    finally:
        broadcaster.leave_all(websocket)
