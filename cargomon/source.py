"""
File change source built on watchdog.

All roots share one Observer. Roots are canonicalised and a root that lives
inside another root is dropped, so every change is reported once.
"""

import os
import queue
from typing import Callable, Iterable, Iterator, List, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .events import ChangeEvent, ChangeKind
from .exceptions import WatchError

EVENT_KINDS = {
    'created': ChangeKind.CREATED,
    'modified': ChangeKind.MODIFIED,
    'deleted': ChangeKind.REMOVED,
    'moved': ChangeKind.RENAMED,
}

_STOP = object()


def _decode(path):
    return os.fsdecode(path) if isinstance(path, bytes) else path


def canonical_roots(roots: Iterable[str]) -> List[str]:
    """Resolve, deduplicate and drop roots nested inside another root."""
    resolved = []
    for root in roots:
        path = os.path.realpath(os.path.abspath(os.path.expanduser(os.fspath(root))))
        if path not in resolved:
            resolved.append(path)

    def _nested(path):
        return any(
            other != path and path.startswith(other.rstrip(os.sep) + os.sep)
            for other in resolved
        )

    return [path for path in resolved if not _nested(path)]


class _Handler(FileSystemEventHandler):
    def __init__(self, source):
        super().__init__()
        self.source = source

    def on_any_event(self, event):
        kind = EVENT_KINDS.get(event.event_type)
        if kind is None:
            # opened / closed / closed_no_write
            return

        src_path = _decode(event.src_path)
        if event.is_directory:
            if kind in (ChangeKind.REMOVED, ChangeKind.RENAMED) and src_path in self.source.roots:
                self.source._fail(WatchError(f"Watched directory disappeared: {src_path}"))
            return

        if kind == ChangeKind.RENAMED:
            change = ChangeEvent(_decode(event.dest_path), kind, src_path=src_path)
        else:
            change = ChangeEvent(src_path, kind)
        self.source._deliver(change)


class ChangeSource:
    """
    Produces ChangeEvents for every file change under the watch roots.

    Use ``start(on_event, on_error)`` to receive events on watchdog's thread,
    or iterate ``events()`` for a blocking, unbounded stream.
    """

    def __init__(self, roots: Iterable[str]):
        self.roots = canonical_roots(roots)
        if not self.roots:
            raise WatchError("No directories to watch")
        self._observer = None
        self._on_event: Optional[Callable] = None
        self._on_error: Optional[Callable] = None
        self._failed: Optional[WatchError] = None
        self._inbox = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self, on_event: Callable[[ChangeEvent], None],
              on_error: Optional[Callable[[WatchError], None]] = None):
        if self._observer is not None:
            return
        self._on_event = on_event
        self._on_error = on_error
        observer = Observer()
        handler = _Handler(self)
        try:
            for root in self.roots:
                if not os.path.isdir(root):
                    raise WatchError(f"Not a directory: {root}")
                observer.schedule(handler, root, recursive=True)
            observer.start()
        except OSError as e:
            # inotify watch/instance limits end up here
            raise WatchError(f"Could not watch {', '.join(self.roots)}: {e}") from e
        self._observer = observer

    def check(self):
        """Raise WatchError if the backend died or a root went away."""
        if self._failed is not None:
            raise self._failed
        if self._observer is None:
            return
        if not self._observer.is_alive():
            raise WatchError("File watcher stopped unexpectedly")
        if not all(emitter.is_alive() for emitter in self._observer.emitters):
            # An emitter thread dies alone when its backend read fails.
            raise WatchError("File watcher lost a watched directory")
        for root in self.roots:
            if not os.path.isdir(root):
                raise WatchError(f"Watched directory disappeared: {root}")

    def stop(self):
        observer, self._observer = self._observer, None
        if self._inbox is not None:
            self._inbox.put(_STOP)
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=5)

    def events(self) -> Iterator[ChangeEvent]:
        """
        Yield changes until ``stop()`` is called.

        Raises WatchError when the backend fails.
        """
        inbox = self._inbox = queue.SimpleQueue()
        self.start(inbox.put, inbox.put)
        try:
            while True:
                try:
                    item = inbox.get(timeout=1.0)
                except queue.Empty:
                    if self._observer is None:
                        return
                    self.check()
                    continue
                if item is _STOP:
                    return
                if isinstance(item, WatchError):
                    raise item
                yield item
        finally:
            self._inbox = None
            self.stop()

    def _deliver(self, change):
        if self._on_event is not None:
            self._on_event(change)

    def _fail(self, error):
        self._failed = error
        if self._on_error is not None:
            self._on_error(error)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.stop()
        return False
