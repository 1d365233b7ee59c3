import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List, Optional

from watchfiles import awatch

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Path], Awaitable[None]]


class WatchHandle:
    """A running watch on a single path"""

    def __init__(self, path: Path, task: Optional[asyncio.Task] = None,
                 stop_event: Optional[asyncio.Event] = None):
        self.path = path
        self.task = task
        self.stop_event = stop_event
        self.disposed = False

    def dispose(self):
        if self.disposed:
            return
        self.disposed = True
        if self.stop_event is not None:
            self.stop_event.set()
        if self.task is not None and not self.task.done():
            self.task.cancel()


@dataclass
class WatcherSet:
    generation: int
    handles: List[WatchHandle] = field(default_factory=list)
    disposed: bool = False

    @property
    def paths(self) -> List[Path]:
        return [handle.path for handle in self.handles]

    def __len__(self) -> int:
        return len(self.handles)


class WatcherRegistry:
    """Installs and disposes sets of file watches.

    ``install`` never touches previously installed sets; the caller disposes
    the old set in the same step. Paths that cannot be watched are skipped.
    """

    def __init__(self, watch_factory: Optional[Callable[[Path, ChangeCallback], WatchHandle]] = None,
                 debounce: int = 200):
        self.generation = 0
        self.debounce = debounce
        self.live_sets: List[WatcherSet] = []
        self._watch_factory = watch_factory or self._spawn_watch

    def install(self, paths: Iterable[Path], on_change: ChangeCallback) -> WatcherSet:
        self.generation += 1
        handles = []
        for path in sorted({Path(p) for p in paths}):
            try:
                handles.append(self._watch_factory(path, on_change))
            except Exception as e:
                logger.warning(f"Skipping watch for {path}: {e}")

        watcher_set = WatcherSet(generation=self.generation, handles=handles)
        self.live_sets.append(watcher_set)
        logger.debug(f"Installed {len(handles)} watcher(s), generation {self.generation}")
        return watcher_set

    def dispose_all(self, watcher_set: Optional[WatcherSet]):
        if watcher_set is None or watcher_set.disposed:
            return
        watcher_set.disposed = True
        for handle in watcher_set.handles:
            try:
                handle.dispose()
            except Exception as e:
                logger.warning(f"Error disposing watcher for {handle.path}: {e}")
        if watcher_set in self.live_sets:
            self.live_sets.remove(watcher_set)

    def _spawn_watch(self, path: Path, on_change: ChangeCallback) -> WatchHandle:
        # Watch the directory so creation and deletion of the file are seen too
        directory = path.parent
        if not directory.is_dir():
            raise FileNotFoundError(f"directory {directory} does not exist")
        stop_event = asyncio.Event()
        task = asyncio.get_running_loop().create_task(
            self._watch(path, directory, stop_event, on_change)
        )
        return WatchHandle(path, task, stop_event)

    async def _watch(self, path: Path, directory: Path, stop_event: asyncio.Event,
                     on_change: ChangeCallback):
        target = path.resolve()
        try:
            async for changes in awatch(directory, stop_event=stop_event, recursive=False,
                                        watch_filter=None, debounce=self.debounce):
                if stop_event.is_set():
                    break
                if not any(Path(changed).resolve() == target for _, changed in changes):
                    continue
                try:
                    await on_change(path)
                except Exception as e:
                    logger.error(f"Change handler failed for {path}: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in watcher for {path}: {e}")
