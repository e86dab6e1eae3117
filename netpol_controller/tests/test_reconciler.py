from __future__ import annotations

import threading

from kubernetes.client import ApiException

from netpol_controller.src.channel import EventChannel
from netpol_controller.src.models import Namespace
from netpol_controller.src.reconciler import (
    ReconcileOutcome,
    ReconcileResult,
    Reconciler,
    is_already_exists,
)
from netpol_controller.tests.fakes import FakeNetworkingApi, status_exception


def _ns(name: str) -> Namespace:
    return Namespace(name=name, resource_version="1")


def test_reconcile_creates_default_policy() -> None:
    api = FakeNetworkingApi()
    reconciler = Reconciler(networking_api=api, channel=EventChannel())

    result = reconciler.reconcile(_ns("team-a"))

    assert result == ReconcileResult(namespace="team-a", outcome=ReconcileOutcome.CREATED)
    assert len(api.creates) == 1
    namespace, body = api.creates[0]
    assert namespace == "team-a"
    assert body["metadata"]["name"] == "default"
    assert body["spec"]["ingress"] == [{"from": [{"podSelector": {}}]}]
    assert body["spec"]["policyTypes"] == ["Ingress"]


def test_reconcile_treats_already_exists_as_success() -> None:
    api = FakeNetworkingApi(failures={"team-b": status_exception(409, "AlreadyExists")})
    reconciler = Reconciler(networking_api=api, channel=EventChannel())

    result = reconciler.reconcile(_ns("team-b"))

    assert result.outcome is ReconcileOutcome.ALREADY_EXISTS


def test_reconcile_reports_other_api_errors_as_failed() -> None:
    api = FakeNetworkingApi(failures={"team-b": status_exception(403, "Forbidden")})
    reconciler = Reconciler(networking_api=api, channel=EventChannel())

    result = reconciler.reconcile(_ns("team-b"))

    assert result.outcome is ReconcileOutcome.FAILED


def test_reconcile_absorbs_unexpected_errors() -> None:
    api = FakeNetworkingApi(failures={"team-b": ConnectionError("connection refused")})
    reconciler = Reconciler(networking_api=api, channel=EventChannel())

    result = reconciler.reconcile(_ns("team-b"))

    assert result.outcome is ReconcileOutcome.FAILED


def test_is_already_exists_variants() -> None:
    bare = ApiException(status=409, reason="Conflict")
    unparseable = ApiException(status=409, reason="Conflict")
    unparseable.body = "<html>conflict</html>"

    assert is_already_exists(status_exception(409, "AlreadyExists"))
    assert is_already_exists(bare)
    assert is_already_exists(unparseable)
    assert not is_already_exists(status_exception(409, "Conflict"))
    assert not is_already_exists(status_exception(500, "InternalError"))


def test_run_forever_continues_after_already_exists_and_failures() -> None:
    shutdown_event = threading.Event()
    channel = EventChannel()
    api = FakeNetworkingApi(
        failures={
            "team-b": status_exception(409, "AlreadyExists"),
            "team-c": status_exception(500, "InternalError"),
        },
        stop_after="team-d",
        stop_event=shutdown_event,
    )
    for name in ("team-b", "team-c", "team-d"):
        channel.push(_ns(name))
    reconciler = Reconciler(networking_api=api, channel=channel, poll_interval_seconds=0.05)

    reconciler.run_forever(shutdown_event=shutdown_event)

    assert [namespace for namespace, _ in api.creates] == ["team-b", "team-c", "team-d"]
    assert channel.qsize() == 0


def test_failed_namespace_is_not_retried() -> None:
    shutdown_event = threading.Event()
    channel = EventChannel()
    api = FakeNetworkingApi(
        failures={"team-b": status_exception(500, "InternalError")},
        stop_after="team-b",
        stop_event=shutdown_event,
    )
    channel.push(_ns("team-b"))
    reconciler = Reconciler(networking_api=api, channel=channel, poll_interval_seconds=0.05)

    reconciler.run_forever(shutdown_event=shutdown_event)

    assert [namespace for namespace, _ in api.creates] == ["team-b"]
    assert channel.qsize() == 0


def test_run_forever_returns_when_stopped_while_idle() -> None:
    shutdown_event = threading.Event()
    reconciler = Reconciler(
        networking_api=FakeNetworkingApi(),
        channel=EventChannel(),
        poll_interval_seconds=0.01,
    )
    timer = threading.Timer(0.05, shutdown_event.set)
    timer.start()

    reconciler.run_forever(shutdown_event=shutdown_event)

    timer.join()
    assert shutdown_event.is_set()
