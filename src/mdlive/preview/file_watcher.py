import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, Set

from watchfiles import Change, awatch

logger = logging.getLogger(__name__)

DocumentHandler = Callable[[Path, str], Awaitable[None]]


class DocumentMonitor:
    """Reports saved documents under the workspace folders.

    Handlers are registered per file extension (lower case, with the dot).
    A file whose content hash did not change since the last report is skipped.
    """

    def __init__(self, paths: Iterable[Path] = (), debounce: int = 100):
        self.watched_paths: Set[Path] = {Path(p) for p in paths}
        self.debounce = debounce
        self._stop_event = asyncio.Event()
        self._file_hashes: Dict[str, str] = {}
        self._handlers: Dict[str, DocumentHandler] = {}

    def add_path(self, path: Path):
        """Add a path to watch"""
        self.watched_paths.add(Path(path))

    def add_handler(self, extension: str, handler: DocumentHandler):
        """Add a handler for a file extension"""
        self._handlers[extension.lower()] = handler

    def remember(self, path: Path, content: str):
        """Record content already known, so an identical save is not reported"""
        self._file_hashes[str(Path(path).resolve())] = self._hash(content)

    async def start(self):
        """Watch until stop() is called"""
        if not self.watched_paths:
            logger.warning("Document monitor has nothing to watch")
            return
        try:
            async for changes in awatch(*self.watched_paths, stop_event=self._stop_event,
                                        debounce=self.debounce):
                for change_type, file_path in changes:
                    if change_type in {Change.added, Change.modified}:
                        await self.handle_file_change(Path(file_path))
        except Exception as e:
            logger.error(f"Error in document monitor: {e}")

    def stop(self):
        """Stop watching for changes"""
        self._stop_event.set()

    async def handle_file_change(self, path: Path):
        # skip vanished and hidden files
        if not path.is_file() or path.name.startswith('.'):
            return
        handler = self._handlers.get(path.suffix.lower())
        if handler is None:
            return

        try:
            content = await asyncio.to_thread(path.read_text, encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read {path}: {e}")
            return

        key = str(path.resolve())
        new_hash = self._hash(content)
        if new_hash == self._file_hashes.get(key):
            return
        self._file_hashes[key] = new_hash

        try:
            await handler(path, content)
        except Exception as e:
            logger.error(f"Error handling file {path}: {e}")

    @staticmethod
    def _hash(content: str) -> str:
        return hashlib.sha256(content.encode()).hexdigest()
