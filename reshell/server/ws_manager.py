"""WebSocket channels: one ordered, single-writer outbound queue per socket."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from fastapi import WebSocket

log = logging.getLogger(__name__)


class ClientChannel:
    """
    Outbound side of one browser connection.

    ``send`` never blocks: messages are queued and a single writer task
    drains the queue, so messages leave in exactly the order they were
    produced and frames are never interleaved.
    """

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None
        self.closed = False

    def start(self) -> None:
        self._writer = asyncio.create_task(self._drain())

    def send(self, msg_type: str, **data: Any) -> None:
        """Queue a typed message for delivery."""
        if self.closed:
            return
        self._queue.put_nowait(json.dumps({"type": msg_type, **data}, default=str))

    async def _drain(self) -> None:
        while True:
            message = await self._queue.get()
            if message is None:
                return
            try:
                await self.websocket.send_text(message)
            except Exception as e:
                # Socket went away under us; the receive loop will notice too
                log.debug("Send failed, closing channel: %s", e)
                self.closed = True
                return

    async def close(self) -> None:
        """Flush what's queued, then stop the writer."""
        if self._writer is None:
            self.closed = True
            return
        self._queue.put_nowait(None)
        self.closed = True
        try:
            await asyncio.wait_for(self._writer, timeout=2.0)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            self._writer.cancel()


class ConnectionManager:
    """Tracks the live channel of every connected client."""

    def __init__(self):
        self.channels: dict[str, ClientChannel] = {}

    async def connect(self, client_id: str, websocket: WebSocket) -> ClientChannel:
        """Accept the socket and make it the client's live channel."""
        await websocket.accept()
        channel = ClientChannel(websocket)
        channel.start()
        previous = self.channels.get(client_id)
        self.channels[client_id] = channel
        if previous is not None:
            await previous.close()
        return channel

    async def disconnect(self, client_id: str, channel: ClientChannel) -> None:
        if self.channels.get(client_id) is channel:
            del self.channels[client_id]
        await channel.close()

    @property
    def client_count(self) -> int:
        return len(self.channels)
