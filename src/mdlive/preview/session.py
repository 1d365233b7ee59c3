import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.workspace import Subscription
from .channel import MessageChannel
from .renderer import RenderedContent
from .watcher_registry import WatcherSet


class SessionState(Enum):
    INITIALIZING = "initializing"
    ACTIVE = "active"
    DISPOSED = "disposed"


@dataclass
class PreviewSession:
    """The single unit of synchronized preview state.

    Mutated only by the SessionManager that owns it. ``ready`` and
    ``pending_text`` are only ever changed together through ``load_content``,
    ``buffer`` and ``mark_ready`` so the handshake invariants hold between any
    two events.
    """
    view: Any
    channel: MessageChannel
    document_id: str
    base_location: Path
    config: Dict[str, Any] = field(default_factory=dict)
    config_path: Optional[Path] = None
    state: SessionState = SessionState.INITIALIZING
    ready: bool = False
    pending_text: Optional[str] = None
    watchers: Optional[WatcherSet] = None
    document_subscription: Optional[Subscription] = None
    content_nonce: Optional[str] = None
    content_loaded_at: float = 0.0
    view_listeners: List[Any] = field(default_factory=list)

    @property
    def disposed(self) -> bool:
        return self.state is SessionState.DISPOSED

    def load_content(self, content: RenderedContent):
        """Replace the view's whole document; the handshake starts over"""
        self.view.set_html(content.html)
        self.content_nonce = content.nonce
        self.content_loaded_at = time.monotonic()
        self.ready = False
        self.pending_text = None
        self.state = SessionState.ACTIVE

    def buffer(self, text: str):
        # last write wins, nothing is queued
        self.pending_text = text

    def mark_ready(self) -> Optional[str]:
        """Complete the handshake, handing back the buffered text to flush"""
        pending, self.pending_text = self.pending_text, None
        self.ready = True
        return pending

    def retarget(self, document_id: str, base_location: Path, config: Dict[str, Any],
                 config_path: Optional[Path]):
        self.document_id = document_id
        self.base_location = base_location
        self.config = config
        self.config_path = config_path
        self.ready = False
        self.pending_text = None
