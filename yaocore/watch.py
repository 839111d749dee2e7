"""Directory watching with change callbacks."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

log = logging.getLogger(__name__)

_OPS = {
    "created": "create",
    "modified": "write",
    "deleted": "remove",
    "moved": "rename",
}


class _Forwarder(FileSystemEventHandler):
    def __init__(self, callback: Callable[[str, str], None]) -> None:
        self._callback = callback

    def on_any_event(self, event: FileSystemEvent) -> None:
        op = _OPS.get(event.event_type)
        if op is None or (op == "write" and event.is_directory):
            return
        self._callback(op, os.fsdecode(event.src_path))
        if event.event_type == "moved":
            self._callback("create", os.fsdecode(event.dest_path))


def watch(root: str, callback: Callable[[str, str], None]) -> BaseObserver:
    """Watch root and its subdirectories, calling callback(op, path) on changes.

    op is one of "create", "write", "remove" or "rename". The returned observer
    runs in the background; stop it with stop() followed by join().
    """
    os.stat(root)
    observer = Observer()
    observer.schedule(_Forwarder(callback), root, recursive=True)
    observer.start()
    log.info("Watching: %s", root)
    return observer