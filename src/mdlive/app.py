import asyncio
import logging
import webbrowser
from pathlib import Path
from typing import List, Optional, Set

from .core.config_manager import ServerSettings
from .core.preview_config import (
    DEFAULT_EXTENSIONS,
    allowed_extensions,
    config_path_for,
    load_preview_config,
    should_open_for_document,
)
from .core.workspace import LANGUAGE_IDS, Subscription, TextDocument, Workspace
from .monitoring.metrics import MetricsTracker
from .preview.file_watcher import DocumentMonitor
from .preview.renderer import PreviewRenderer
from .preview.session_manager import SessionManager
from .preview.watcher_registry import WatcherRegistry
from .preview.websocket_server import PreviewWebSocketServer

logger = logging.getLogger(__name__)


class PreviewApplication:
    """Wires the workspace, the browser view server and the session manager"""

    def __init__(self, settings: ServerSettings, target: Path):
        self.settings = settings
        target = Path(target).resolve()
        if target.is_dir():
            self.folder = target
            self.initial_path: Optional[Path] = None
        else:
            self.folder = target.parent
            self.initial_path = target

        self.workspace = Workspace([self.folder])
        self.metrics = MetricsTracker()
        self.server = PreviewWebSocketServer(settings.host, settings.port)
        self.manager = SessionManager(
            self.workspace,
            self.server.create_panel,
            renderer=PreviewRenderer(),
            watcher_registry=WatcherRegistry(),
            notifier=self._warn,
            metrics=self.metrics
        )
        self.monitor = DocumentMonitor([self.folder])
        self._subscriptions: List[Subscription] = []
        self._tasks: Set[asyncio.Task] = set()

    async def run(self):
        """Serve the preview until cancelled"""
        await self.server.start()
        await self._register_document_handlers()
        self.metrics.subscribe(self._on_metric_alerts)

        document = self._initial_document()
        if document is not None:
            await self.manager.request_preview(document)
        else:
            logger.info(f"No markdown document found in {self.folder}, waiting for one")

        if self.settings.follow_active:
            self._subscriptions.append(self.workspace.on_did_change_any(self._on_any_document_changed))
        if self.settings.open_preview_on_open:
            self._subscriptions.append(self.workspace.on_did_open(self._on_document_opened))
        if self.settings.open_browser:
            webbrowser.open(self.server.url)

        try:
            await self.monitor.start()
        finally:
            await self.shutdown()

    async def shutdown(self):
        self.monitor.stop()
        for subscription in self._subscriptions:
            subscription.dispose()
        self._subscriptions = []
        for task in list(self._tasks):
            task.cancel()
        self.manager.dispose()
        await self.server.stop()
        summary = self.metrics.summary('preview_latency')
        if summary is not None:
            logger.info(f"Preview handshake latency: mean {summary.mean:.0f} ms, "
                        f"p95 {summary.p95:.0f} ms over {summary.count} load(s)")

    async def _register_document_handlers(self):
        config = await load_preview_config(config_path_for(self.folder))
        extensions = set(DEFAULT_EXTENSIONS) | set(LANGUAGE_IDS) | set(allowed_extensions(config))
        for extension in sorted(extensions):
            self.monitor.add_handler(extension, self._on_document_saved)

    def _initial_document(self) -> Optional[TextDocument]:
        path = self.initial_path
        if path is None:
            candidates = sorted(
                p for p in self.folder.iterdir()
                if p.is_file() and p.suffix.lower() in DEFAULT_EXTENSIONS
            )
            if not candidates:
                return None
            path = candidates[0]
        try:
            document = self.workspace.open_document(path)
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Cannot open {path}: {e}")
            return None
        self.monitor.remember(path, document.text)
        return document

    async def _on_document_saved(self, path: Path, content: str):
        self.workspace.update_document(path, content)

    def _on_any_document_changed(self, document: TextDocument):
        session = self.manager.session
        if session is None or session.document_id == document.uri:
            return
        self._spawn(self.manager.request_preview(document))

    def _on_document_opened(self, document: TextDocument):
        self._spawn(self._auto_open(document))

    async def _auto_open(self, document: TextDocument):
        if await should_open_for_document(self.workspace, document):
            await self.manager.request_preview(document)

    def _spawn(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _warn(self, message: str):
        logger.warning(message)

    def _on_metric_alerts(self, alerts: List[str]):
        for alert in alerts:
            logger.warning(alert)
