import asyncio
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from housecup.core.logger import realtime_logger as logger
from housecup.security import identity_from_token
from housecup.services.broadcast import EventHub, Subscription

router = APIRouter(tags=["realtime"])


async def _pump(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        message = await subscription.queue.get()
        await websocket.send_json(message)


async def _watch(websocket: WebSocket) -> None:
    # Viewers send nothing meaningful; reading is how a disconnect surfaces.
    while True:
        await websocket.receive_text()


@router.websocket("/ws/events")
async def event_stream(websocket: WebSocket, token: Optional[str] = Query(None)):
    """
    Push election events to a connected viewer.

    Messages are ``{"event": <name>, "data": {...}}``. The stream carries
    deltas only: on (re)connect clients load ``GET /results`` first.
    """
    identity = identity_from_token(token)
    if identity is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    hub: EventHub = websocket.app.state.hub
    # Subscribe before accepting so no event published after the handshake is missed.
    subscription = hub.subscribe()
    tasks = []
    try:
        await websocket.accept()
        logger.info(f"Realtime stream opened for {identity.user_id}")
        tasks = [
            asyncio.create_task(_pump(websocket, subscription)),
            asyncio.create_task(_watch(websocket)),
        ]
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            task.result()
    except WebSocketDisconnect:
        logger.info(f"Realtime stream closed for {identity.user_id}")
    finally:
        for task in tasks:
            task.cancel()
        hub.unsubscribe(subscription)
