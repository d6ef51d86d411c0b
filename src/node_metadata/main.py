#!/usr/bin/env python3
"""
main.py
- Main asynchronous entrypoint for the managed-node-metadata operator.
- Launches:
    - HTTP API (health, manual sync, Prometheus metrics) in a background thread
    - Settings file watcher in a background thread
    - Label propagation trigger loop (polling and/or event mode)
"""
import asyncio
import os
import signal
from threading import Thread

import sentry_sdk
import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from loguru import logger

from node_metadata.core.config import API_PORT, OPERATOR_CONFIG, configure_logging
from node_metadata.core.config_loader import load_operator_settings
from node_metadata.core.objects import object_key
from node_metadata.lib.sync import label_propagation
from node_metadata.runner import change_detection, label_sync


def init_sentry():
    dsn = os.getenv("SENTRY_DSN")
    if dsn:
        sentry_sdk.init(dsn=dsn, traces_sample_rate=1.0)
        logger.info("[node-metadata] Sentry error reporting enabled.")


def render_metrics():
    return f"""# HELP reconcile_passes_total Total label propagation passes
# TYPE reconcile_passes_total counter
reconcile_passes_total {label_propagation.reconcile_passes_total}
# HELP reconcile_errors_total Total passes that ended in an error
# TYPE reconcile_errors_total counter
reconcile_errors_total {label_propagation.reconcile_errors_total}
# HELP machine_label_updates_total Total Machine label updates written
# TYPE machine_label_updates_total counter
machine_label_updates_total {label_propagation.machine_label_updates_total}
# HELP node_label_updates_total Total Node label updates written
# TYPE node_label_updates_total counter
node_label_updates_total {label_propagation.node_label_updates_total}
# HELP reconcile_last_duration_seconds Duration of the last pass in seconds
# TYPE reconcile_last_duration_seconds gauge
reconcile_last_duration_seconds {label_propagation.reconcile_last_duration_seconds}
"""


def create_app():
    api = FastAPI(title="managed-node-metadata")

    @api.get("/healthz")
    async def health():
        return {"status": "ok"}

    @api.post("/sync/{namespace}/{name}")
    async def sync_now(namespace: str, name: str):
        outcome = await asyncio.to_thread(label_sync.trigger, object_key(namespace, name))
        return outcome.to_dict()

    @api.post("/resync")
    async def resync():
        label_sync.request_resync()
        return {"status": "triggered"}

    @api.get("/metrics")
    async def metrics():
        return PlainTextResponse(render_metrics(), media_type="text/plain")

    return api


def start_api(port=API_PORT):
    uvicorn.run(create_app(), host="0.0.0.0", port=port, log_level="warning")


def handle_exit(signum, frame):
    logger.info(f"[node-metadata] Received signal {signum}, shutting down.")
    label_sync.stop()


def main(config_path=None):
    configure_logging()
    init_sentry()
    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    config_path = config_path or OPERATOR_CONFIG
    label_sync.configure(operator_settings=load_operator_settings(config_path))

    Thread(target=start_api, daemon=True, name="api").start()
    Thread(
        target=change_detection.run,
        args=(config_path, label_sync.stop_event),
        daemon=True,
        name="watcher",
    ).start()

    try:
        asyncio.run(label_sync.run())
    except asyncio.CancelledError:
        logger.info("[node-metadata] Shutting down label sync cleanly...")


if __name__ == "__main__":
    main()
