from __future__ import annotations

import json
import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum

from kubernetes.client import ApiException, NetworkingV1Api

from netpol_controller.src.channel import EventChannel
from netpol_controller.src.kube import build_default_network_policy, create_network_policy
from netpol_controller.src.metrics import METRICS
from netpol_controller.src.models import Namespace

HTTP_STATUS_CONFLICT = 409
ALREADY_EXISTS_REASON = "AlreadyExists"


class ReconcileOutcome(Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    FAILED = "failed"


@dataclass(frozen=True)
class ReconcileResult:
    """Immutable record of one default-policy create attempt."""

    namespace: str
    outcome: ReconcileOutcome


def is_already_exists(exc: ApiException) -> bool:
    """Return True if *exc* rejected a create because the name is taken.

    The API server answers with ``409`` and a ``Status`` body whose reason
    is ``AlreadyExists``.  A 409 without a parseable body is treated the same,
    since a create request has no other conflict to report.
    """
    if exc.status != HTTP_STATUS_CONFLICT:
        return False
    try:
        status = json.loads(exc.body or "{}")
    except (TypeError, ValueError):
        return True
    if not isinstance(status, dict):
        return True
    return status.get("reason", ALREADY_EXISTS_REASON) == ALREADY_EXISTS_REASON


class Reconciler:
    """Creates the ``default`` NetworkPolicy for each namespace taken off the channel.

    Namespaces are handled one at a time in channel order.  A failed create
    is logged and dropped: it is not retried or re-queued, and it never
    stops the loop.  A create rejected because the policy already exists
    counts as success, since the same namespace can be delivered again
    after a relist or a controller restart.
    """

    def __init__(
        self,
        networking_api: NetworkingV1Api,
        channel: EventChannel,
        logger: logging.Logger | None = None,
        poll_interval_seconds: float = 1.0,
    ) -> None:
        self.networking_api = networking_api
        self.channel = channel
        self.logger = logger or logging.getLogger(__name__)
        self.poll_interval_seconds = poll_interval_seconds

    def reconcile(self, namespace: Namespace) -> ReconcileResult:
        self.logger.info("Creating default network policy in namespace %s", namespace.name)
        try:
            create_network_policy(
                networking_api=self.networking_api,
                namespace=namespace.name,
                body=build_default_network_policy(namespace.name),
            )
            outcome = ReconcileOutcome.CREATED
        except ApiException as exc:
            if is_already_exists(exc):
                self.logger.info(
                    "Default network policy already exists in namespace %s", namespace.name
                )
                outcome = ReconcileOutcome.ALREADY_EXISTS
            else:
                self.logger.exception(
                    "Failed to create default network policy in namespace %s (status=%s)",
                    namespace.name,
                    exc.status,
                )
                outcome = ReconcileOutcome.FAILED
        except Exception:
            self.logger.exception(
                "Unexpected error creating default network policy in namespace %s",
                namespace.name,
            )
            outcome = ReconcileOutcome.FAILED

        METRICS.policies_total.labels(outcome=outcome.value).inc()
        return ReconcileResult(namespace=namespace.name, outcome=outcome)

    def run_forever(self, shutdown_event: threading.Event | None = None) -> None:
        """Consume the channel until *shutdown_event* is set."""
        stop = shutdown_event or threading.Event()
        while not stop.is_set():
            try:
                namespace = self.channel.pop(timeout=self.poll_interval_seconds)
            except queue.Empty:
                continue
            self.reconcile(namespace)
