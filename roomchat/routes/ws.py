import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query, status
from ..auth import authenticate_token
from ..errors import AuthenticationError
from ..dispatcher import dispatcher
from ..ws_manager import Connection, manager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket('/chat')
async def chat_ws(websocket: WebSocket, token: str = Query(None)):
    try:
        user_id = authenticate_token(token or websocket.headers.get('Authorization'))
    except AuthenticationError as e:
        logger.warning(f"WebSocket handshake rejected: {e.message}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return

    conn = Connection(user_id, websocket)
    try:
        await dispatcher.on_connect(conn)
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await dispatcher.reply(conn, 'error', {'code': 'invalid_json', 'message': 'frames must be JSON objects'})
                continue
            await dispatcher.handle(conn, frame)
    except WebSocketDisconnect:
        logger.info(f"WebSocket closed by user {user_id}")
    finally:
        await manager.disconnect(conn)
