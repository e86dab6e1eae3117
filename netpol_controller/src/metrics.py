from __future__ import annotations

from dataclasses import dataclass, field

from prometheus_client import Counter, Gauge, Info


@dataclass(frozen=True)
class ControllerMetrics:
    """Prometheus metrics exported by the controller on ``/metrics``.

    Policy outcomes share one counter with an ``outcome`` label so the
    ratio of created to already-existing policies can be graphed directly.
    """

    watch_events_total: Counter = field(
        default_factory=lambda: Counter(
            "netpol_controller_watch_events_total",
            "Total namespace watch events observed",
            ["type"],
        )
    )
    watch_streams_total: Counter = field(
        default_factory=lambda: Counter(
            "netpol_controller_watch_streams_total",
            "Total namespace watch streams opened",
        )
    )
    relists_total: Counter = field(
        default_factory=lambda: Counter(
            "netpol_controller_relists_total",
            "Total full namespace relists after an expired resource version",
        )
    )
    watch_fatal_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "netpol_controller_watch_fatal_errors_total",
            "Total unrecoverable list or watch errors",
        )
    )
    ignored_objects_total: Counter = field(
        default_factory=lambda: Counter(
            "netpol_controller_ignored_objects_total",
            "Total watch events skipped because the payload was not a Namespace",
        )
    )
    namespaces_forwarded_total: Counter = field(
        default_factory=lambda: Counter(
            "netpol_controller_namespaces_forwarded_total",
            "Total added namespaces handed to the reconciler",
        )
    )
    channel_depth: Gauge = field(
        default_factory=lambda: Gauge(
            "netpol_controller_channel_depth",
            "Current number of namespaces waiting for reconciliation",
        )
    )
    policies_total: Counter = field(
        default_factory=lambda: Counter(
            "netpol_controller_policies_total",
            "Total default NetworkPolicy create attempts by outcome",
            ["outcome"],
        )
    )
    build_info: Info = field(
        default_factory=lambda: Info(
            "netpol_controller",
            "Build information for the controller",
        )
    )


METRICS = ControllerMetrics()
