import asyncio
import json
import logging
import os

import websockets
from websockets.exceptions import ConnectionClosedError

from ._internal import create_task, describe
from .event_handler import RealtimeEventHandler
from .events.base import ClientEvent

log = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-realtime-preview-2024-12-17"


class RealtimeAPI(RealtimeEventHandler):
    """
    Thin WebSocket connection to the Realtime API.

    Every event received is dispatched as ``server.<type>`` and ``server.*``; every event sent is dispatched as
    ``client.<type>`` and ``client.*``. When the connection ends, ``close`` is dispatched with ``{"error": bool}``.
    This class never reconnects by itself.
    """

    default_url = "wss://api.openai.com/v1/realtime"

    def __init__(self, url: str = None, api_key: str = None, *, debug: bool = False):
        """
        :param url: The WebSocket URL to connect to (default "wss://api.openai.com/v1/realtime").
        :param api_key: Your OpenAI API key. By default, the API key will be read from the `OPENAI_API_KEY` environment
            variable.
        :param debug: Whether to log every event sent and received at DEBUG level.
        """
        super().__init__()
        self.url = url or self.default_url
        self.api_key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY")
        self.debug = debug
        self.ws = None
        self._recv_task: asyncio.Task | None = None

    @property
    def is_connected(self) -> bool:
        return self.ws is not None

    # ==== lifecycle ====
    async def connect(self, model: str | None = DEFAULT_MODEL) -> bool:
        """Open the WebSocket and start dispatching server events."""
        if not self.api_key and self.url == self.default_url:
            log.warning(f"No API key provided for connection to {self.url!r}")
        if self.is_connected:
            raise RuntimeError("Already connected")

        url = f"{self.url}?model={model}" if model else self.url
        headers = {"OpenAI-Beta": "realtime=v1"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            ws = await websockets.connect(url, additional_headers=headers, max_size=None)
        except Exception:
            log.exception(f"Could not connect to {self.url!r}")
            raise
        log.debug(f"Connected to {self.url!r}")
        self.ws = ws
        self._recv_task = create_task(self._receive_loop(ws), name="realtime-ws")
        return True

    async def disconnect(self) -> bool:
        """Close the WebSocket, if open, and wait for the receive loop to finish."""
        ws, task = self.ws, self._recv_task
        self.ws = None
        self._recv_task = None
        if ws is not None:
            await ws.close()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return True

    async def _receive_loop(self, ws):
        """Main websocket receive loop."""
        error = False
        try:
            async for message in ws:
                try:
                    event = json.loads(message)
                except json.JSONDecodeError:
                    log.warning(f"Received a WS message that is not valid JSON: {describe(message)}")
                    continue
                if not isinstance(event, dict):
                    log.warning(f"Received a WS message that is not a JSON object: {describe(message)}")
                    continue
                self.receive(event.get("type"), event)
        except ConnectionClosedError as e:
            log.error(f"WS connection closed unexpectedly: {e}", exc_info=e)
            error = True
        finally:
            if self.ws is ws:
                self.ws = None
            log.debug(f"Disconnected from {self.url!r}")
            self.dispatch("close", {"error": error})

    # ==== iface ====
    def receive(self, event_name: str, event: dict) -> bool:
        """Dispatch an event received from the server as ``server.<event_name>`` and ``server.*``."""
        if self.debug:
            log.debug(f"<<< {event_name} {describe(event)}")
        self.dispatch(f"server.{event_name}", event)
        self.dispatch("server.*", event)
        return True

    async def send(self, event: ClientEvent) -> bool:
        """Send a client event to the websocket, dispatching it as ``client.<type>`` and ``client.*``."""
        if not self.is_connected:
            raise RuntimeError("RealtimeAPI is not connected - call connect() first")
        data = event.to_wire()
        self.dispatch(f"client.{event.type}", data)
        self.dispatch("client.*", data)
        if self.debug:
            log.debug(f">>> {event.type} {describe(data)}")
        await self.ws.send(json.dumps(data))
        return True
