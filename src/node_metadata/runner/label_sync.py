#!/usr/bin/env python3
"""
label_sync.py
- Delivers reconcile triggers to the label propagation reconciler.
- Polling: full resync of every MachineSet in the watched namespaces every resync_interval,
  with failed MachineSets retried in between according to the retry cooldowns.
- Event mode additionally watches MachineSets and triggers a pass per change.
- Passes for the same MachineSet never overlap; different MachineSets may run concurrently.
"""

import asyncio
import threading
import time
from collections import defaultdict

from loguru import logger

from node_metadata.core import config
from node_metadata.core.config_loader import load_operator_settings, preview_yaml
from node_metadata.core.constants import RETRY_CHECK_INTERVAL
from node_metadata.core.errors import PropagationError
from node_metadata.core.kube_client import init_kubernetes_client
from node_metadata.core.objects import ObjectKind
from node_metadata.core.retry_state import clear_retry, pending_retries, record_retry, should_retry
from node_metadata.lib.store.kubernetes import KubernetesStore
from node_metadata.lib.sync.label_propagation import MachineSetLabelReconciler

should_run = True
stop_event = threading.Event()
resync_requested = threading.Event()

settings = None
_store = None
_reconciler = None
_pass_locks = defaultdict(threading.Lock)
_locks_guard = threading.Lock()


def build_reconciler(store, operator_settings):
    return MachineSetLabelReconciler(
        store,
        protected_node_label_prefixes=operator_settings["protected_node_label_prefixes"],
        annotation=operator_settings["propagated_labels_annotation"],
        dry_run=operator_settings["dry_run"],
    )


def configure(store=None, operator_settings=None):
    """
    Wire the store and reconciler used by every trigger.
    Defaults to the Kubernetes API and the settings file named by OPERATOR_CONFIG.
    """
    global settings, _store, _reconciler
    settings = operator_settings or load_operator_settings()
    if store is None:
        store = KubernetesStore(*init_kubernetes_client())
    _store = store
    _reconciler = build_reconciler(store, settings)
    logger.info(
        f"[runner] Watching namespaces {settings['namespaces']} "
        f"(resync every {settings['resync_interval']}s, dry_run={settings['dry_run']})"
    )
    return _reconciler


def get_reconciler():
    if _reconciler is None:
        configure()
    return _reconciler


def reload_settings(path=None):
    """Re-read the settings file, rebuild the reconciler and request an immediate resync."""
    global settings, _reconciler
    settings = load_operator_settings(path)
    if _store is not None:
        _reconciler = build_reconciler(_store, settings)
    logger.info("[runner] Settings reloaded.")
    request_resync()


def request_resync():
    resync_requested.set()


def stop():
    global should_run
    should_run = False
    stop_event.set()


def _lock_for(key):
    with _locks_guard:
        return _pass_locks[key]


def _forget_lock(key):
    """Drop the pass lock of a MachineSet that no longer exists, unless a pass is waiting on it."""
    with _locks_guard:
        lock = _pass_locks.get(key)
        if lock is not None and not lock.locked():
            del _pass_locks[key]


def trigger(key, reconciler=None):
    """Run one pass for `key`, serialized with any other pass for the same key."""
    reconciler = reconciler or get_reconciler()
    with _lock_for(key):
        outcome = reconciler.reconcile(key, cancel=stop_event)
    if outcome.missing:
        _forget_lock(key)
    if outcome.ok:
        clear_retry(key)
    else:
        record_retry(key)
    return outcome


def resync_all(reconciler=None, namespaces=None):
    """Reconcile every MachineSet in the watched namespaces."""
    reconciler = reconciler or get_reconciler()
    namespaces = namespaces or settings["namespaces"]
    outcomes = []

    for namespace in namespaces:
        try:
            machine_sets = reconciler.store.list(ObjectKind.MACHINE_SET, namespace=namespace)
        except PropagationError as e:
            logger.error(f"[runner] Could not list MachineSets in {namespace}: {e}")
            continue

        logger.debug(f"[runner] Resyncing {len(machine_sets)} MachineSet(s) in {namespace}")
        for machine_set in machine_sets:
            if stop_event.is_set():
                return outcomes
            outcomes.append(trigger(machine_set.key, reconciler))
    return outcomes


def retry_failed(reconciler=None):
    """Re-run passes whose cooldown has elapsed."""
    outcomes = []
    for key in pending_retries():
        if stop_event.is_set():
            break
        if should_retry(key):
            logger.info(f"[runner] Retrying {key} after failed pass.")
            outcomes.append(trigger(key, reconciler))
    return outcomes


def watch_namespace(namespace):
    """Blocking event loop for one namespace; re-opens the watch after errors until stopped."""
    while not stop_event.is_set():
        try:
            for key in _store.watch_machine_set_keys(namespace, stop_event=stop_event):
                logger.debug(f"[runner] Change event for {key}")
                trigger(key)
        except PropagationError as e:
            logger.error(f"[runner] Event watch on {namespace} failed: {e}")
            stop_event.wait(RETRY_CHECK_INTERVAL)


def start_watchers():
    threads = []
    for namespace in settings["namespaces"]:
        t = threading.Thread(target=watch_namespace, args=(namespace,), name=f"watch-{namespace}", daemon=True)
        t.start()
        threads.append(t)
    return threads


async def run():
    """
    Run the trigger loop until stop() is called (or once, with RUN_ONCE).
    """
    preview_yaml(config.OPERATOR_CONFIG, name="operator config")
    get_reconciler()

    if config.EVENT_MODE:
        if hasattr(_store, "watch_machine_set_keys"):
            start_watchers()
        else:
            logger.warning("[runner] Event mode requested but the store cannot watch; polling only.")
    elif not config.POLLING_MODE:
        logger.warning("[runner] Neither polling nor event mode enabled; running a single resync.")

    next_resync = 0.0
    while should_run:
        if resync_requested.is_set() or time.monotonic() >= next_resync:
            resync_requested.clear()
            await asyncio.to_thread(resync_all, get_reconciler())
            next_resync = time.monotonic() + settings["resync_interval"]
            if config.RUN_ONCE or not (config.POLLING_MODE or config.EVENT_MODE):
                break
        else:
            await asyncio.to_thread(retry_failed, get_reconciler())
        await asyncio.sleep(RETRY_CHECK_INTERVAL)


if __name__ == "__main__":
    asyncio.run(run())
