"""
WebSocket endpoint for checkout clients.

Clients connect without authentication and only receive payment_update
pushes; the only messages they send are heartbeats.
"""

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from rest_api.routers._common.deps import get_ws_payment_engine
from rest_api.services.payments.engine import PaymentEngine
from shared.config.logging import ws_gateway_logger as logger
from ws_gateway.constants import WSCloseCode


router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def payments_websocket(
    websocket: WebSocket,
    engine: PaymentEngine | None = Depends(get_ws_payment_engine),
):
    """
    Payment status push channel.

    Server -> client: {"type": "payment_update", "payload": {id, status, orderId}}
    Client -> server: "ping" or {"type":"ping"}, answered with pong.
    """
    if engine is None:
        await websocket.close(code=WSCloseCode.SERVER_ERROR, reason="Payment engine not initialized")
        return

    manager = engine.notifier
    try:
        await manager.connect(websocket)
    except ConnectionError as e:
        logger.warning("WebSocket connection refused", reason=str(e))
        return

    try:
        while True:
            data = await websocket.receive_text()
            if not await manager.handle_message(websocket, data):
                break
    except WebSocketDisconnect as e:
        logger.debug("Checkout client disconnected", code=e.code)
    finally:
        await manager.disconnect(websocket)
