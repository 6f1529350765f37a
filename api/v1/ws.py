import json

from fastapi import APIRouter, WebSocket, Depends, Query
from starlette import status
from starlette.websockets import WebSocketDisconnect

from api.deps import get_chat_service, get_current_user_from_token
from core.logger import ws_logger
from services.chat_gateway import ChatSession
from services.chat_service import ChatService
from services.websocket_manager import WebSocketManager

router = APIRouter(prefix="/api/v1/ws", tags=["Chat"])

ws_manager = WebSocketManager()


@router.websocket("/chat")
async def chat_ws(
        websocket: WebSocket,
        token: str = Query(None),
        service: ChatService = Depends(get_chat_service),
):
    await websocket.accept()

    current_user = await get_current_user_from_token(token)
    if not current_user:
        ws_logger.logger.error("❌ Rejected socket: invalid token or inactive user")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    session = ChatSession(websocket, current_user, service, ws_manager)

    try:
        await session.open()

        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                # فریم خراب هم ack خطا می‌گیرد
                data = None
            await session.handle(data)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        ws_logger.log_error("websocket_loop", e)
    finally:
        session.close()
        ws_logger.logger.info(f"🧹 Cleaned up connection: user={current_user.id}")
