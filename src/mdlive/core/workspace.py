import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

LANGUAGE_IDS = {
    '.md': 'markdown',
    '.markdown': 'markdown',
    '.mdown': 'markdown',
    '.mkd': 'markdown',
}

DocumentCallback = Callable[['TextDocument'], None]


def document_uri(path: Path) -> str:
    """Stable identity for a document on disk"""
    return Path(path).resolve().as_uri()


def language_id_for(path: Path) -> str:
    return LANGUAGE_IDS.get(Path(path).suffix.lower(), 'plaintext')


@dataclass
class TextDocument:
    uri: str
    path: Path
    language_id: str
    text: str
    version: int = 1

    @property
    def file_name(self) -> str:
        return self.path.name

    def get_text(self) -> str:
        return self.text


class Subscription:
    """Registration of a callback; disposing it detaches the callback"""

    def __init__(self, registry: Set['Subscription'], callback: Callable[..., None]):
        self._registry = registry
        self.callback = callback
        self.disposed = False
        registry.add(self)

    def dispose(self):
        if self.disposed:
            return
        self.disposed = True
        self._registry.discard(self)


class Workspace:
    """In-memory view of the documents under a set of workspace folders"""

    def __init__(self, folders: Optional[List[Path]] = None):
        self.folders: List[Path] = [Path(f).resolve() for f in (folders or [])]
        self.documents: Dict[str, TextDocument] = {}
        self._change_listeners: Dict[str, Set[Subscription]] = {}
        self._any_change_listeners: Set[Subscription] = set()
        self._open_listeners: Set[Subscription] = set()

    def workspace_folder_for(self, path: Path) -> Optional[Path]:
        """Return the innermost workspace folder containing path, if any"""
        resolved = Path(path).resolve()
        candidates = [f for f in self.folders if resolved == f or f in resolved.parents]
        if not candidates:
            return None
        return max(candidates, key=lambda f: len(f.parts))

    def get_document(self, uri: str) -> Optional[TextDocument]:
        return self.documents.get(uri)

    def open_document(self, path: Path) -> TextDocument:
        """Read a document from disk, or return the already open one"""
        path = Path(path).resolve()
        uri = document_uri(path)
        document = self.documents.get(uri)
        if document is not None:
            return document
        return self._add_document(path, path.read_text(encoding='utf-8'))

    def update_document(self, path: Path, text: str) -> TextDocument:
        """Record new text for a document and notify listeners when it changed"""
        uri = document_uri(path)
        document = self.documents.get(uri)
        if document is None:
            document = self._add_document(Path(path).resolve(), text)
            self._emit(self._any_change_listeners, document)
            return document
        if document.text == text:
            return document

        document.text = text
        document.version += 1
        self._emit(self._change_listeners.get(uri, set()), document)
        self._emit(self._any_change_listeners, document)
        return document

    def _add_document(self, path: Path, text: str) -> TextDocument:
        document = TextDocument(
            uri=document_uri(path),
            path=path,
            language_id=language_id_for(path),
            text=text
        )
        self.documents[document.uri] = document
        self._emit(self._open_listeners, document)
        return document

    def on_did_change_document(self, uri: str, callback: DocumentCallback) -> Subscription:
        """Subscribe to text changes of a single document"""
        listeners = self._change_listeners.setdefault(uri, set())
        return Subscription(listeners, callback)

    def on_did_change_any(self, callback: DocumentCallback) -> Subscription:
        return Subscription(self._any_change_listeners, callback)

    def on_did_open(self, callback: DocumentCallback) -> Subscription:
        return Subscription(self._open_listeners, callback)

    def _emit(self, listeners: Set[Subscription], document: TextDocument):
        for subscription in list(listeners):
            if subscription.disposed:
                continue
            try:
                subscription.callback(document)
            except Exception as e:
                logger.error(f"Document listener failed for {document.uri}: {e}")
