"""
Change feed over WebSockets.

Store dashboards connect to ``/ws/companies/{company_id}`` and drivers to
``/ws/drivers``, passing their token as the ``token`` query parameter. Each
event is sent as JSON ``{"table", "event", "new", "old"}``.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from orderdesk.core.exceptions import AppException
from orderdesk.core.security import company_by_token, driver_by_token
from orderdesk.database import async_session_maker
from orderdesk.services.realtime import ChangeFeed, company_channel, driver_channel, get_change_feed

logger = logging.getLogger(__name__)

router = APIRouter()


async def stream_channel(websocket: WebSocket, feed: ChangeFeed, channel: str) -> None:
    """Forward channel events until the client disconnects or a send fails."""
    queue = feed.subscribe(channel)

    async def forward():
        while True:
            await websocket.send_json(await queue.get())

    async def listen():
        # client frames are ignored; this only ends on disconnect
        while True:
            await websocket.receive_text()

    tasks = {asyncio.create_task(forward()), asyncio.create_task(listen())}
    logger.info(f"🔌 Realtime subscriber connected to {channel}")
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is None or isinstance(exc, WebSocketDisconnect):
                logger.info(f"Realtime subscriber left {channel}")
            else:
                logger.warning(f"Realtime stream on {channel} closed: {exc!r}")
    finally:
        for task in tasks:
            task.cancel()
        feed.unsubscribe(channel, queue)


@router.websocket("/ws/companies/{company_id}")
async def company_feed(
    websocket: WebSocket,
    company_id: str,
    token: Optional[str] = Query(None),
    feed: ChangeFeed = Depends(get_change_feed),
) -> None:
    try:
        async with async_session_maker() as db:
            company = await company_by_token(db, token)
    except AppException as exc:
        logger.warning(f"Realtime connection refused: {exc.message}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    if company.id != company_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    await stream_channel(websocket, feed, company_channel(company.id))


@router.websocket("/ws/drivers")
async def driver_feed(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    feed: ChangeFeed = Depends(get_change_feed),
) -> None:
    try:
        async with async_session_maker() as db:
            driver = await driver_by_token(db, token)
    except AppException as exc:
        logger.warning(f"Realtime connection refused: {exc.message}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    await stream_channel(websocket, feed, driver_channel(driver.id))
