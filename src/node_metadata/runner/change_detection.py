#!/usr/bin/env python3
"""
change_detection.py
- Watches the operator settings file.
- Reloads settings and requests a resync when it changes.
- Includes debouncing to avoid rapid repeated triggers.
"""

import time
from pathlib import Path
from threading import Event, Lock

from loguru import logger
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from node_metadata.core.config import OPERATOR_CONFIG
from node_metadata.core.constants import DEBOUNCE_TIME
from node_metadata.runner import label_sync

debounce_tracker = {}
debounce_lock = Lock()


class ConfigChangeHandler(FileSystemEventHandler):
    def __init__(self, config_path=OPERATOR_CONFIG, on_change=None):
        super().__init__()
        self.config_path = Path(config_path).resolve()
        self.on_change = on_change or (lambda: label_sync.reload_settings(str(self.config_path)))

    def _handle(self, event):
        if event.is_directory:
            return
        path = Path(getattr(event, "dest_path", "") or event.src_path).resolve()
        if path != self.config_path:
            return

        now = time.time()
        with debounce_lock:
            last_trigger = debounce_tracker.get(path, 0)
            if now - last_trigger < DEBOUNCE_TIME:
                logger.debug(f"[watcher] Debounced {path.name} (last trigger {now - last_trigger:.2f}s ago)")
                return
            debounce_tracker[path] = now

        logger.info(f"[watcher] Detected change in {path.name}, reloading settings.")
        try:
            self.on_change()
        except Exception as e:
            logger.error(f"[watcher] Failed to handle {path.name}: {e}")

    on_modified = _handle
    on_created = _handle
    on_moved = _handle


def run(config_path=OPERATOR_CONFIG, stop_event=None):
    config_dir = Path(config_path).resolve().parent
    if not config_dir.is_dir():
        logger.warning(f"[watcher] {config_dir} does not exist; settings changes will not be detected.")
        return

    stop_event = stop_event or Event()
    observer = Observer()
    observer.schedule(ConfigChangeHandler(config_path), str(config_dir), recursive=False)
    observer.start()
    logger.info(f"[watcher] Watching {config_path} for changes...")
    try:
        while not stop_event.wait(1):
            pass
    finally:
        observer.stop()
        observer.join()
