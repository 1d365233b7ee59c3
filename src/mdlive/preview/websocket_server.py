import asyncio
import json
import logging
from http import HTTPStatus
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

import websockets
from websockets.asyncio.server import ServerConnection
from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response

from ..core.workspace import Subscription
from .channel import PanelDisposedError

logger = logging.getLogger(__name__)

SHELL_TEMPLATE = Path(__file__).parent / "templates" / "shell.html"


class BrowserPanel:
    """View handle for the preview shown in connected browsers.

    ``set_html`` replaces the iframe document, ``post_message`` delivers a
    message to it. Both only enqueue frames, so delivery order matches call
    order. Any use after ``dispose`` raises PanelDisposedError.
    """

    def __init__(self, server: 'PreviewWebSocketServer', title: str):
        self.server = server
        self._title = title
        self.html = ""
        self.disposed = False
        self.seen_client = False
        self._last_update: Optional[Dict[str, Any]] = None
        self._message_listeners: Set[Subscription] = set()
        self._dispose_listeners: Set[Subscription] = set()

    @property
    def title(self) -> str:
        return self._title

    @title.setter
    def title(self, value: str):
        self._check_open()
        self._title = value
        self.server.broadcast({"kind": "title", "title": value})

    def set_html(self, html: str):
        self._check_open()
        self.html = html
        self._last_update = None
        self.server.broadcast(self._html_frame())

    def post_message(self, payload: Dict[str, Any]):
        self._check_open()
        if payload.get("type") == "update":
            self._last_update = payload
        self.server.broadcast({"kind": "message", "payload": payload})

    def reveal(self):
        self._check_open()
        self.server.broadcast({"kind": "reveal"})

    def on_did_receive_message(self, callback: Callable[[Any], None]) -> Subscription:
        return Subscription(self._message_listeners, callback)

    def on_did_dispose(self, callback: Callable[[], None]) -> Subscription:
        return Subscription(self._dispose_listeners, callback)

    def dispose(self):
        if self.disposed:
            return
        self.disposed = True
        self.server.panel_disposed(self)
        for subscription in list(self._dispose_listeners):
            try:
                subscription.callback()
            except Exception as e:
                logger.error(f"Panel dispose listener failed: {e}")
        self._dispose_listeners.clear()
        self._message_listeners.clear()

    def receive(self, payload: Any):
        """Hand a message posted by the iframe to the listeners"""
        if self.disposed:
            return
        for subscription in list(self._message_listeners):
            try:
                subscription.callback(payload)
            except Exception as e:
                logger.error(f"Panel message listener failed: {e}")

    def frames_for_new_client(self) -> List[Dict[str, Any]]:
        """Current document plus the latest update, for a browser that just connected"""
        frames = [self._html_frame()]
        if self._last_update is not None:
            frames.append({"kind": "message", "payload": self._last_update})
        return frames

    def _html_frame(self) -> Dict[str, Any]:
        return {"kind": "html", "title": self._title, "html": self.html}

    def _check_open(self):
        if self.disposed:
            raise PanelDisposedError("preview panel has been disposed")


class PreviewWebSocketServer:
    """Serves the preview shell page and relays frames between it and the panel"""

    def __init__(self, host: str = "localhost", port: int = 8765, close_grace: float = 2.0):
        self.host = host
        self.port = port
        self.close_grace = close_grace
        self.clients: Dict[ServerConnection, asyncio.Queue] = {}
        self.panel: Optional[BrowserPanel] = None
        self._server = None
        self._close_timer: Optional[asyncio.TimerHandle] = None
        self._shell_html = SHELL_TEMPLATE.read_text(encoding="utf-8")

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/"

    async def start(self):
        """Start listening; port 0 picks a free port"""
        self._server = await websockets.serve(
            self._handle_client,
            self.host,
            self.port,
            process_request=self._process_request
        )
        if self.port == 0:
            self.port = next(iter(self._server.sockets)).getsockname()[1]
        logger.info(f"Preview server started on {self.url}")

    async def stop(self):
        self._cancel_close_timer()
        if self.panel is not None:
            self.panel.dispose()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    def create_panel(self, title: str) -> BrowserPanel:
        if self.panel is not None and not self.panel.disposed:
            self.panel.dispose()
        self.panel = BrowserPanel(self, title)
        if self.clients:
            self.panel.seen_client = True
        return self.panel

    def panel_disposed(self, panel: BrowserPanel):
        if self.panel is not panel:
            return
        self.panel = None
        self._cancel_close_timer()
        self.broadcast({"kind": "closed"})

    def broadcast(self, frame: Dict[str, Any]):
        """Queue a frame for every connected browser"""
        data = json.dumps(frame)
        for queue in self.clients.values():
            queue.put_nowait(data)

    def _process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        path = request.path.split("?", 1)[0]
        if path == "/ws":
            return None
        if path in ("/", "/index.html"):
            return self._html_response(self._shell_html)
        return connection.respond(HTTPStatus.NOT_FOUND, "Not found\n")

    @staticmethod
    def _html_response(html: str) -> Response:
        body = html.encode("utf-8")
        headers = Headers([
            ("Content-Type", "text/html; charset=utf-8"),
            ("Content-Length", str(len(body))),
            ("Cache-Control", "no-store"),
            ("Connection", "close"),
        ])
        return Response(HTTPStatus.OK.value, HTTPStatus.OK.phrase, headers, body)

    async def _handle_client(self, websocket: ServerConnection):
        """Handle individual browser connections"""
        queue: asyncio.Queue = asyncio.Queue()
        self.clients[websocket] = queue
        self._cancel_close_timer()
        if self.panel is not None:
            self.panel.seen_client = True
            for frame in self.panel.frames_for_new_client():
                queue.put_nowait(json.dumps(frame))
        else:
            queue.put_nowait(json.dumps({"kind": "closed"}))

        writer = asyncio.create_task(self._write_frames(websocket, queue))
        try:
            async for message in websocket:
                self._process_message(message)
        except ConnectionClosed:
            pass
        except Exception as e:
            logger.error(f"Error handling client: {e}")
        finally:
            writer.cancel()
            self.clients.pop(websocket, None)
            if not self.clients:
                self._schedule_panel_close()

    @staticmethod
    async def _write_frames(websocket: ServerConnection, queue: asyncio.Queue):
        try:
            while True:
                data = await queue.get()
                await websocket.send(data)
        except ConnectionClosed:
            pass

    def _process_message(self, message: Any):
        """Process frames sent by the shell page"""
        try:
            frame = json.loads(message)
        except (TypeError, json.JSONDecodeError):
            logger.warning(f"Invalid JSON received: {message!r}")
            return
        if not isinstance(frame, dict):
            logger.warning(f"Unexpected frame: {frame!r}")
            return

        handlers = {
            "message": self._handle_view_message,
            "close": self._handle_close
        }
        handler = handlers.get(frame.get("kind"))
        if handler:
            handler(frame)
        else:
            logger.warning(f"Unknown frame kind: {frame.get('kind')}")

    def _handle_view_message(self, frame: Dict[str, Any]):
        if self.panel is not None:
            self.panel.receive(frame.get("payload"))

    def _handle_close(self, frame: Dict[str, Any]):
        if self.panel is not None:
            logger.info("Preview closed from the browser")
            self.panel.dispose()

    def _schedule_panel_close(self):
        if self.panel is None or not self.panel.seen_client:
            return
        self._cancel_close_timer()
        loop = asyncio.get_running_loop()
        self._close_timer = loop.call_later(self.close_grace, self._close_if_abandoned)

    def _close_if_abandoned(self):
        self._close_timer = None
        if not self.clients and self.panel is not None:
            logger.info("All preview browsers disconnected, closing preview")
            self.panel.dispose()

    def _cancel_close_timer(self):
        if self._close_timer is not None:
            self._close_timer.cancel()
            self._close_timer = None
