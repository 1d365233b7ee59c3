"""Keeps the single preview session in step with its document, view and assets.

All handlers run on one event loop. The only suspension points are the
configuration and asset reads; after each of them the manager re-checks that
the session it started with is still current (same object, same generation)
and drops its result otherwise.
"""
import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Set

from ..core.preview_config import (
    external_script_urls,
    is_previewable,
    load_preview_config,
    resolve_base_location,
)
from ..core.workspace import TextDocument, Workspace
from ..monitoring.metrics import MetricsTracker
from .assets import ResolvedAssets, load_assets, watch_paths
from .channel import MessageChannel
from .messages import (
    GlobalsMessage,
    LogMessage,
    ReadyMessage,
    RenderErrorMessage,
    RenderedMessage,
    UpdateMessage,
    ViewMessage,
)
from .renderer import PreviewRenderer
from .session import PreviewSession, SessionState
from .watcher_registry import WatcherRegistry

logger = logging.getLogger(__name__)
view_logger = logging.getLogger("mdlive.view")

CDN_WARNING = "Preview: configured CDN scripts not detected in the preview (check URLs)."

VIEW_LOG_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'log': logging.INFO,
    'warn': logging.WARNING,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}


def preview_title(document: TextDocument) -> str:
    return f"Markdown Preview: {document.file_name}"


class SessionManager:
    def __init__(self, workspace: Workspace, panel_factory: Callable[[str], Any],
                 renderer: Optional[PreviewRenderer] = None,
                 watcher_registry: Optional[WatcherRegistry] = None,
                 notifier: Optional[Callable[[str], None]] = None,
                 metrics: Optional[MetricsTracker] = None):
        self.workspace = workspace
        self.panel_factory = panel_factory
        self.renderer = renderer or PreviewRenderer()
        self.watcher_registry = watcher_registry or WatcherRegistry()
        self.notifier = notifier or logger.warning
        self.metrics = metrics or MetricsTracker()
        self.session: Optional[PreviewSession] = None
        self.generation = 0
        self._request_seq = 0
        self._tasks: Set[asyncio.Task] = set()

    # -- public operations ------------------------------------------------

    async def request_preview(self, document: TextDocument):
        """Create, re-target or focus the preview for a document"""
        try:
            await self._request_preview(document)
        except Exception as e:
            logger.error(f"Failed to show preview for {document.uri}: {e}")

    def on_document_changed(self, document_id: str, text: str):
        """Forward an edit of the previewed document, or buffer it until ready"""
        try:
            session = self.session
            if session is None or session.disposed or session.document_id != document_id:
                return
            if session.ready:
                self._send_update(session, document_id, text)
            else:
                session.buffer(text)
                self.metrics.record('buffered_edits')
                logger.debug(f"Preview not ready, buffered update for {document_id}")
        except Exception as e:
            logger.error(f"Error handling change of {document_id}: {e}")

    async def on_config_or_asset_event(self, changed_path: Optional[Path] = None):
        """Reload configuration and assets and replace the view's content"""
        try:
            await self._refresh(changed_path)
        except Exception as e:
            logger.error(f"Failed to refresh preview: {e}")

    def on_inbound_message(self, message: Any, source: Optional[PreviewSession] = None):
        """Dispatch a message posted by the view"""
        try:
            session = self.session
            if session is None or session.disposed:
                return
            if source is not None and source is not session:
                return
            if not isinstance(message, ViewMessage):
                message = MessageChannel.receive(message)
                if message is None:
                    return
            if message.nonce is not None and message.nonce != session.content_nonce:
                logger.debug(f"Ignoring {message.type} message from replaced content")
                return

            handlers = {
                ReadyMessage: self._handle_ready,
                RenderedMessage: self._handle_rendered,
                RenderErrorMessage: self._handle_render_error,
                GlobalsMessage: self._handle_globals,
                LogMessage: self._handle_log,
            }
            handlers[type(message)](session, message)
        except Exception as e:
            logger.error(f"Error handling view message: {e}")

    def dispose(self):
        """Close the preview, if any"""
        session = self.session
        if session is None:
            return
        try:
            session.view.dispose()
        except Exception as e:
            logger.warning(f"Error closing preview panel: {e}")
        # the panel normally reports its own disposal; make sure state is released
        self._on_view_disposed(session)

    # -- create / re-target / focus --------------------------------------

    async def _request_preview(self, document: TextDocument):
        self._request_seq += 1
        ticket = self._request_seq
        # a request made while a preview is open must not outlive that preview
        had_session = self.session

        base_location, config_path = resolve_base_location(self.workspace, document)
        config = await load_preview_config(config_path)
        if not self._request_still_valid(ticket, had_session, document):
            return
        if not is_previewable(document, config):
            logger.debug(f"Not previewing {document.uri}: not a markdown document")
            return
        if self._reveal_if_current(document):
            return

        assets = await load_assets(base_location, config)
        if not self._request_still_valid(ticket, had_session, document):
            return
        if self._reveal_if_current(document):
            return

        current = self.workspace.get_document(document.uri) or document
        session = self.session
        if session is None or session.disposed:
            self._create_session(current, base_location, config_path, config, assets)
        else:
            self._retarget(session, current, base_location, config_path, config, assets)

    def _request_still_valid(self, ticket: int, had_session: Optional[PreviewSession],
                             document: TextDocument) -> bool:
        if ticket != self._request_seq:
            logger.debug(f"Preview request for {document.uri} superseded")
            return False
        if had_session is not None and not self._is_current(had_session):
            logger.debug(f"Preview closed while handling request for {document.uri}")
            return False
        return True

    def _reveal_if_current(self, document: TextDocument) -> bool:
        session = self.session
        if session is None or session.disposed or session.document_id != document.uri:
            return False
        try:
            session.view.reveal()
        except Exception as e:
            logger.warning(f"Could not reveal preview panel: {e}")
        return True

    def _create_session(self, document: TextDocument, base_location: Path,
                        config_path: Optional[Path], config: Dict[str, Any],
                        assets: ResolvedAssets):
        view = self.panel_factory(preview_title(document))
        session = PreviewSession(
            view=view,
            channel=MessageChannel(view),
            document_id=document.uri,
            base_location=base_location,
            config=config,
            config_path=config_path
        )
        self.session = session
        self.generation += 1
        session.view_listeners = [
            view.on_did_receive_message(lambda raw: self.on_inbound_message(raw, source=session)),
            view.on_did_dispose(lambda: self._on_view_disposed(session)),
        ]
        self._load_content(session, document, assets)
        try:
            view.reveal()
        except Exception as e:
            logger.warning(f"Could not reveal preview panel: {e}")
        self._install_watchers(session)
        self._subscribe(session)
        logger.info(f"Opened preview for {document.uri}")

    def _retarget(self, session: PreviewSession, document: TextDocument, base_location: Path,
                  config_path: Optional[Path], config: Dict[str, Any], assets: ResolvedAssets):
        self.generation += 1
        self._unsubscribe(session)
        self._dispose_watchers(session)
        session.retarget(document.uri, base_location, config, config_path)
        session.view.title = preview_title(document)
        self._load_content(session, document, assets)
        self._install_watchers(session)
        self._subscribe(session)
        logger.info(f"Preview now follows {document.uri}")

    # -- refresh ------------------------------------------------------------

    def _schedule_refresh(self, changed_path: Path):
        task = asyncio.get_running_loop().create_task(self.on_config_or_asset_event(changed_path))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _on_watched_path_changed(self, changed_path: Path):
        # run the refresh in its own task; the watcher that fired is replaced by it
        self._schedule_refresh(changed_path)

    async def _refresh(self, changed_path: Optional[Path]):
        session = self.session
        if session is None or session.disposed:
            return
        generation = self.generation
        document_id = session.document_id
        if changed_path is not None:
            logger.info(f"{changed_path} changed, refreshing preview")

        config = await load_preview_config(session.config_path)
        if not self._is_current(session, generation, document_id):
            logger.debug("Discarding refresh: preview changed while reading config")
            return
        assets = await load_assets(session.base_location, config)
        if not self._is_current(session, generation, document_id):
            logger.debug("Discarding refresh: preview changed while reading assets")
            return

        document = self.workspace.get_document(document_id)
        if document is None:
            logger.warning(f"Previewed document {document_id} is no longer open")
            return
        self.generation += 1
        self._dispose_watchers(session)
        session.config = config
        self._load_content(session, document, assets)
        self._install_watchers(session)

    # -- handshake and messages --------------------------------------------

    def _handle_ready(self, session: PreviewSession, message: ReadyMessage):
        was_ready = session.ready
        pending = session.mark_ready()
        if not was_ready:
            latency_ms = (self.metrics.time() - session.content_loaded_at) * 1000
            self.metrics.record('preview_latency', latency_ms)
            logger.debug(f"Preview ready after {latency_ms:.0f} ms")
        if pending is not None:
            self._send_update(session, session.document_id, pending)

    def _handle_rendered(self, session: PreviewSession, message: RenderedMessage):
        logger.debug(f"Preview rendered HTML length: {len(message.html)}")
        self.metrics.record('render_html_length', len(message.html))

    def _handle_render_error(self, session: PreviewSession, message: RenderErrorMessage):
        logger.error(f"Preview render error: {message.error}")
        self.metrics.record_error('render_error', message.error)

    def _handle_globals(self, session: PreviewSession, message: GlobalsMessage):
        logger.debug(f"Preview globals: {message.globals}")
        if external_script_urls(session.config) and not any(v is True for v in message.globals.values()):
            self.notifier(CDN_WARNING)

    def _handle_log(self, session: PreviewSession, message: LogMessage):
        level = VIEW_LOG_LEVELS.get(message.level.lower(), logging.INFO)
        view_logger.log(level, message.message)

    def _send_update(self, session: PreviewSession, document_id: str, text: str) -> bool:
        # the panel may have been closed by an interleaved event since this send was decided
        if not self._is_current(session, document_id=document_id):
            return False
        sent = session.channel.send(UpdateMessage(text=text))
        if sent:
            self.metrics.record('updates_sent')
        return sent

    # -- resources ------------------------------------------------------------

    def _is_current(self, session: PreviewSession, generation: Optional[int] = None,
                    document_id: Optional[str] = None) -> bool:
        if self.session is not session or session.disposed:
            return False
        if generation is not None and generation != self.generation:
            return False
        if document_id is not None and document_id != session.document_id:
            return False
        return True

    def _load_content(self, session: PreviewSession, document: TextDocument, assets: ResolvedAssets):
        content = self.renderer.render_preview(preview_title(document), session.config, assets,
                                               document.get_text())
        session.load_content(content)

    def _install_watchers(self, session: PreviewSession):
        paths = watch_paths(session.base_location, session.config, session.config_path)
        session.watchers = self.watcher_registry.install(paths, self._on_watched_path_changed)

    def _dispose_watchers(self, session: PreviewSession):
        self.watcher_registry.dispose_all(session.watchers)
        session.watchers = None

    def _subscribe(self, session: PreviewSession):
        session.document_subscription = self.workspace.on_did_change_document(
            session.document_id,
            lambda document: self.on_document_changed(document.uri, document.get_text())
        )

    def _unsubscribe(self, session: PreviewSession):
        if session.document_subscription is not None:
            session.document_subscription.dispose()
            session.document_subscription = None

    def _on_view_disposed(self, session: PreviewSession):
        if self.session is not session:
            return
        self._unsubscribe(session)
        self._dispose_watchers(session)
        for listener in session.view_listeners:
            try:
                listener.dispose()
            except Exception as e:
                logger.debug(f"Error detaching panel listener: {e}")
        session.view_listeners = []
        session.state = SessionState.DISPOSED
        session.pending_text = None
        self.session = None
        self.generation += 1
        logger.info(f"Preview for {session.document_id} closed")
