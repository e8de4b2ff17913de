import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from robojs.core.fanout import Connection, get_hub
from robojs.core.security import InvalidTokenError, decode_access_token
from robojs.schemas.fanout import ControlMessage

router = APIRouter(tags=["ws"])
logger = logging.getLogger(__name__)


@router.websocket("/ws")
async def fanout_socket(websocket: WebSocket):
    """
    Live entity changes for the authenticated user.

    client -> server: {type: "authenticate", payload: {token}} | {type: "close", payload: {token}}
    server -> client: {type, action, payload}
    """
    await websocket.accept()
    hub = get_hub()
    conn: Optional[Connection] = None

    async def _close() -> None:
        await websocket.close()

    try:
        while True:
            raw = await websocket.receive_json()
            try:
                msg = ControlMessage.model_validate(raw)
            except ValidationError as exc:
                logger.debug("ws: ignoring invalid frame: %s", exc)
                continue
            kind = msg.type

            if kind == "authenticate":
                try:
                    user_id = decode_access_token(msg.payload.get("token"))
                except InvalidTokenError as exc:
                    logger.info("ws: authentication rejected: %s", exc)
                    await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
                    return
                if conn is not None:
                    await hub.unregister(conn)
                conn = hub.register(user_id, websocket.send_json, close=_close)
            elif kind == "close":
                break
            else:
                logger.debug("ws: ignoring message type=%r", kind)
    except WebSocketDisconnect:
        pass
    except ValueError:
        # non-JSON frame
        logger.info("ws: malformed frame; closing")
    finally:
        if conn is not None:
            await hub.unregister(conn)

    if (
        websocket.client_state != WebSocketState.DISCONNECTED
        and websocket.application_state != WebSocketState.DISCONNECTED
    ):
        await websocket.close()
