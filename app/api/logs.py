"""
Live build log WebSocket.

Protocol (JSON text frames):
- client -> server: {"action": "subscribe", "channel": "logs:<slug>"}
- server -> client: {"message": "Joined logs:<slug>"}
- server -> client: raw broker payloads, e.g. {"log": "Cloning repository..."}
- client -> server: {"action": "unsubscribe", "channel": "logs:<slug>"}
"""
from fastapi import APIRouter, Depends, WebSocket

from app.core.gateway import LogGateway

router = APIRouter(tags=["logs"])


def get_gateway(websocket: WebSocket) -> LogGateway:
    """Gateway started by the application lifespan."""
    return websocket.app.state.gateway


@router.websocket("/ws")
async def log_stream(websocket: WebSocket, gateway: LogGateway = Depends(get_gateway)):
    await gateway.serve(websocket)
