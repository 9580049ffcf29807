"""WebSocket bridge from the in-process hub to connected observers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

from fastapi import WebSocket

from ..notifier import COUNT_EVENT, InMemoryHub

logger = logging.getLogger(__name__)


def _message(event: str, payload: Mapping[str, Any]) -> dict[str, Any]:
    return {"event": event, "payload": dict(payload)}


async def stream_room(
    websocket: WebSocket, hub: InMemoryHub, room: str, initial_count: int
) -> None:
    """Forward every event published to ``room`` until the client disconnects.

    The subscription is registered before the initial count is sent so no
    update published in between is lost. Hub callbacks may run on worker
    threads; they hand messages to this connection's event loop.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def forward(event: str, payload: Mapping[str, Any]) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, _message(event, payload))

    unsubscribe = hub.subscribe(room, forward)
    logger.debug(f"Observer joined {room}")
    receiver = asyncio.ensure_future(websocket.receive())
    try:
        await websocket.send_json(_message(COUNT_EVENT, {"count": initial_count}))
        while True:
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait(
                {receiver, getter}, return_when=asyncio.FIRST_COMPLETED
            )
            if receiver in done:
                getter.cancel()
                if receiver.result().get("type") == "websocket.disconnect":
                    break
                # Clients only listen; anything they send is ignored.
                receiver = asyncio.ensure_future(websocket.receive())
                continue
            await websocket.send_json(getter.result())
    finally:
        receiver.cancel()
        unsubscribe()
        logger.debug(f"Observer left {room}")


__all__ = ["stream_room"]
