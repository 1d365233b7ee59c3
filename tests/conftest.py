import json
from pathlib import Path
from typing import Any, Dict, List
from unittest.mock import Mock

import pytest

from mdlive.core.workspace import Subscription, Workspace
from mdlive.preview.channel import PanelDisposedError
from mdlive.preview.session_manager import SessionManager
from mdlive.preview.watcher_registry import WatchHandle, WatcherRegistry


class FakePanel:
    """Records what the session manager does to its view"""

    def __init__(self, title: str):
        self.title = title
        self.html_history: List[str] = []
        self.messages: List[Dict[str, Any]] = []
        self.reveals = 0
        self.disposed = False
        self._message_listeners = set()
        self._dispose_listeners = set()

    @property
    def html(self) -> str:
        return self.html_history[-1] if self.html_history else ""

    def set_html(self, html: str):
        if self.disposed:
            raise PanelDisposedError("disposed")
        self.html_history.append(html)

    def post_message(self, payload: Dict[str, Any]):
        if self.disposed:
            raise PanelDisposedError("disposed")
        self.messages.append(payload)

    def reveal(self):
        self.reveals += 1

    def on_did_receive_message(self, callback):
        return Subscription(self._message_listeners, callback)

    def on_did_dispose(self, callback):
        return Subscription(self._dispose_listeners, callback)

    def receive(self, payload: Any):
        for subscription in list(self._message_listeners):
            subscription.callback(payload)

    def dispose(self):
        if self.disposed:
            return
        self.disposed = True
        for subscription in list(self._dispose_listeners):
            subscription.callback()
        self._dispose_listeners.clear()
        self._message_listeners.clear()


class PanelFactory:
    def __init__(self):
        self.panels: List[FakePanel] = []

    def __call__(self, title: str) -> FakePanel:
        panel = FakePanel(title)
        self.panels.append(panel)
        return panel

    @property
    def open_panels(self) -> List[FakePanel]:
        return [panel for panel in self.panels if not panel.disposed]


class RecordingWatchFactory:
    """Creates inert watch handles and keeps their change callbacks"""

    def __init__(self):
        self.callbacks: Dict[Path, Any] = {}

    def __call__(self, path: Path, on_change) -> WatchHandle:
        self.callbacks[path] = on_change
        return WatchHandle(path)


def write_file(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def write_config(folder: Path, config: Dict[str, Any]) -> Path:
    return write_file(folder / ".mdlive.json", json.dumps(config))


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def workspace(workspace_root: Path) -> Workspace:
    return Workspace([workspace_root])


@pytest.fixture
def panel_factory() -> PanelFactory:
    return PanelFactory()


@pytest.fixture
def watch_factory() -> RecordingWatchFactory:
    return RecordingWatchFactory()


@pytest.fixture
def watcher_registry(watch_factory) -> WatcherRegistry:
    return WatcherRegistry(watch_factory=watch_factory)


@pytest.fixture
def notifier() -> Mock:
    return Mock()


@pytest.fixture
def session_manager(workspace, panel_factory, watcher_registry, notifier) -> SessionManager:
    return SessionManager(
        workspace,
        panel_factory,
        watcher_registry=watcher_registry,
        notifier=notifier
    )
