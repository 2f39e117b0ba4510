"""Chat router providing the WebSocket endpoint.

This module provides:
    - WebSocket /ws: real-time chat relay

Protocol Flow:
    1. Client connects → connection is pending (not on the roster)
    2. Client sends: {type: "join", data: {username}}
       → others get:  {type: "user_joined", data: {username, message, timestamp}}
       → joiner gets: {type: "online_users", data: [names]}
       → everyone:    {type: "users_update", data: [names]}
    3. Client sends: {type: "send_message", data: {text}}
       → everyone:    {type: "receive_message", data: {id, username, text, timestamp}}
    4. Client sends: {type: "typing", data: {isTyping}}
       → others get:  {type: "user_typing", data: {username, isTyping}}
    5. On disconnect → others get {type: "user_left", ...}, everyone gets users_update

Each socket runs two tasks: this endpoint reading frames, and a writer
draining the connection's outbox onto the socket.
"""
import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, status

from relay.config import get_config

from .coordinator import ConnectionCoordinator
from .manager import manager

logger = logging.getLogger(__name__)

router = APIRouter()


async def _pump_outbox(websocket: WebSocket, coordinator: ConnectionCoordinator) -> None:
    """Write the connection's outbox to the socket until it is closed."""
    connection = coordinator.connection
    try:
        await connection.outbox.drain(websocket.send_json)
    except Exception as e:
        logger.debug(f"[WS] Failed to send to {connection.id}: {e}")
        manager.close(coordinator, reason="send failed", discard_pending=True)
        return

    if connection.close_code is not None:
        try:
            await websocket.close(code=connection.close_code)
        except Exception as e:
            logger.debug(f"[WS] Failed to close {connection.id}: {e}")


@router.websocket("/ws")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for the chat relay.

    This endpoint handles the complete lifecycle of a single client. Whatever
    ends the connection (client close, network failure, an undecodable
    frame, or the client falling too far behind) runs the disconnect
    transition exactly once.

    Args:
        websocket: The WebSocket connection.
    """
    chat_config = get_config().chat

    # Enforce max_connections from config (0 = no limit)
    max_connections = chat_config.max_connections
    if max_connections > 0 and manager.connection_count() >= max_connections:
        logger.warning(
            f"[WS] Server is full ({max_connections} connections). "
            "Rejecting new connection."
        )
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    coordinator = manager.open(
        outbox_size=chat_config.outbox_size,
        report_protocol_errors=chat_config.report_protocol_errors,
    )
    connection = coordinator.connection
    writer = asyncio.create_task(_pump_outbox(websocket, coordinator))

    reason = "client closed"
    try:
        while not coordinator.closed:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            text = message.get("text")
            if text is None:
                logger.info(f"[WS] Non-text frame from {connection.id}; closing")
                reason = "malformed frame"
                break
            try:
                frame = json.loads(text)
            except json.JSONDecodeError:
                logger.info(f"[WS] Undecodable frame from {connection.id}; closing")
                reason = "malformed frame"
                break

            frame_type = frame.get("type", "?") if isinstance(frame, dict) else "?"
            logger.debug(f"[WS] {connection.id} received: type={frame_type}")
            coordinator.handle_frame(frame)

    finally:
        malformed = reason == "malformed frame"
        if malformed:
            connection.close_code = status.WS_1003_UNSUPPORTED_DATA
        manager.close(coordinator, reason=reason, discard_pending=malformed)
        # Cancelling this coroutine here also cancels the writer it awaits
        await writer
        logger.info(
            f"[WS] Connection {connection.id} finished "
            f"(close_code={connection.close_code}, reason={reason})"
        )
