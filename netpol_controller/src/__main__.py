from __future__ import annotations

import json
import logging
import os
import re
import signal
import threading
from collections.abc import Sequence

from netpol_controller.src.channel import EventChannel
from netpol_controller.src.config import load_settings
from netpol_controller.src.health import start_health_server
from netpol_controller.src.kube import NamespaceClient, build_clients, load_kube_configuration
from netpol_controller.src.metrics import METRICS
from netpol_controller.src.reconciler import Reconciler
from netpol_controller.src.watcher import NamespaceWatcher, WatchFatalError

RUNTIME_VERSION = "0.1.0"
_REDACTION_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._~+/=-]+)"),
        r"\1[REDACTED]",
    ),
    (
        re.compile(
            r"(?i)(\b(?:authorization|token|password|passwd|secret|api[_-]?key)\b\s*[:=]\s*)([^\s,;]+)"
        ),
        r"\1[REDACTED]",
    ),
)


def redact_sensitive_text(value: str) -> str:
    redacted = value
    for pattern, replacement in _REDACTION_RULES:
        redacted = pattern.sub(replacement, redacted)
    return redacted


class JSONFormatter(logging.Formatter):
    """Emit logs as single-line JSON objects for structured log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": redact_sensitive_text(record.getMessage()),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["error"] = redact_sensitive_text(self.formatException(record.exc_info))
        return json.dumps(log_entry)


def configure_logging(level: str) -> None:
    log_handler = logging.StreamHandler()
    log_handler.setFormatter(JSONFormatter())
    logging.root.addHandler(log_handler)
    logging.root.setLevel(getattr(logging, level, logging.INFO))


def main(argv: Sequence[str] | None = None) -> None:
    """Controller entrypoint: watch namespaces in a background thread and reconcile in this one.

    Exits with status 1 when the watcher hits a fatal list/watch error.
    Otherwise runs until SIGTERM or SIGINT.
    """
    settings = load_settings(argv)
    configure_logging(settings.log_level)
    logger = logging.getLogger(__name__)
    METRICS.build_info.info(
        {
            "version": os.getenv("APP_VERSION", RUNTIME_VERSION),
            "revision": os.getenv("GIT_SHA", "unknown"),
        }
    )

    load_kube_configuration(
        master_url=settings.master_url,
        kubeconfig_path=settings.kubeconfig_path,
    )
    core_api, networking_api = build_clients()

    channel = EventChannel(capacity=settings.channel_capacity)
    watcher = NamespaceWatcher(
        source=NamespaceClient(core_api),
        channel=channel,
        min_watch_timeout_seconds=settings.min_watch_timeout_seconds,
    )
    reconciler = Reconciler(networking_api=networking_api, channel=channel)
    health_server = start_health_server(ready=watcher.ready, port=settings.health_port)

    shutdown_event = threading.Event()
    watch_failed = threading.Event()

    def _handle_signal(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down", signum)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    def _run_watcher() -> None:
        try:
            watcher.run_forever(shutdown_event=shutdown_event)
        except WatchFatalError:
            logger.exception("Namespace watcher stopped on a fatal error")
            watch_failed.set()
        except Exception:
            logger.exception("Namespace watcher crashed")
            watch_failed.set()
        finally:
            shutdown_event.set()

    threading.Thread(target=_run_watcher, name="namespace-watcher", daemon=True).start()
    reconciler.run_forever(shutdown_event=shutdown_event)

    health_server.shutdown()
    if watch_failed.is_set():
        logger.error("Controller terminating after fatal namespace watch error")
        raise SystemExit(1)
    logger.info("Controller stopped")


if __name__ == "__main__":
    main()
