from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from kubernetes import client, config, watch
from kubernetes.client import ApiException, CoreV1Api, NetworkingV1Api
from kubernetes.config.config_exception import ConfigException

from netpol_controller.src.models import EventKind, ResourceEvent, WatchErrorDetail

LOGGER = logging.getLogger(__name__)

DEFAULT_POLICY_NAME = "default"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "netpol-controller"


def load_kube_configuration(master_url: str = "", kubeconfig_path: str = "") -> None:
    """Load Kubernetes client configuration.

    With neither a master URL nor a kubeconfig path, in-cluster config is
    tried first (running inside a pod), falling back to the local kubeconfig
    for development.  An explicit kubeconfig path is always loaded, and an
    explicit master URL overrides the server address it names.
    """
    if not master_url and not kubeconfig_path:
        try:
            config.load_incluster_config()
            LOGGER.info("Loaded in-cluster Kubernetes configuration")
            return
        except ConfigException:
            LOGGER.info("Not running in a cluster; falling back to local kubeconfig")

    configuration = client.Configuration()
    try:
        config.load_kube_config(
            config_file=kubeconfig_path or None,
            client_configuration=configuration,
        )
        LOGGER.info("Loaded kubeconfig %s", kubeconfig_path or "from default location")
    except ConfigException:
        if kubeconfig_path or not master_url:
            raise
        LOGGER.warning("No kubeconfig found; connecting to %s without credentials", master_url)

    if master_url:
        configuration.host = master_url
    client.Configuration.set_default(configuration)


def build_clients() -> tuple[CoreV1Api, NetworkingV1Api]:
    """Return CoreV1 and NetworkingV1 API clients using the active kube configuration."""
    return client.CoreV1Api(), client.NetworkingV1Api()


class NamespaceClient:
    """List/watch access to the cluster's namespace collection."""

    def __init__(self, core_api: CoreV1Api) -> None:
        self.core_api = core_api

    def list_namespaces(self) -> tuple[list[Any], str]:
        """Return every namespace plus the collection's resource version."""
        result = self.core_api.list_namespace()
        resource_version = getattr(getattr(result, "metadata", None), "resource_version", None)
        if not resource_version:
            raise ValueError("Namespace list response carried no resourceVersion")
        return list(getattr(result, "items", None) or []), resource_version

    def watch_namespaces(self, resource_version: str, timeout_seconds: int) -> Iterator[ResourceEvent]:
        """Stream namespace events starting after *resource_version*.

        The stream ends on its own once *timeout_seconds* elapse.  The client
        library raises ERROR events as :class:`ApiException`; those, and API
        errors returned when the request is made, are yielded as a final
        ``ERROR`` event so the caller sees a single error path.
        """
        watcher = watch.Watch()
        try:
            stream = watcher.stream(
                self.core_api.list_namespace,
                resource_version=resource_version,
                timeout_seconds=timeout_seconds,
            )
            for event in stream:
                event_type = str(event.get("type", ""))
                try:
                    kind = EventKind(event_type)
                except ValueError:
                    LOGGER.debug("Skipping namespace watch event of unknown type %r", event_type)
                    continue

                if kind is EventKind.ERROR:
                    raw = event.get("raw_object") or event.get("object")
                    yield ResourceEvent(kind=kind, payload=WatchErrorDetail.from_status(raw))
                    return

                yield ResourceEvent(kind=kind, payload=event.get("object"))
        except ApiException as exc:
            yield ResourceEvent(kind=EventKind.ERROR, payload=WatchErrorDetail.from_api_exception(exc))
        finally:
            watcher.stop()


def build_default_network_policy(namespace: str) -> dict[str, Any]:
    """Return the ``default`` NetworkPolicy body for *namespace*.

    The empty ``podSelector`` selects every pod in the namespace, and the
    single ingress rule admits traffic only from pods of that same
    namespace.  Only ``Ingress`` is listed, so egress stays unrestricted.
    """
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "NetworkPolicy",
        "metadata": {
            "name": DEFAULT_POLICY_NAME,
            "namespace": namespace,
            "labels": {MANAGED_BY_LABEL: MANAGED_BY_VALUE},
        },
        "spec": {
            "podSelector": {},
            "ingress": [{"from": [{"podSelector": {}}]}],
            "policyTypes": ["Ingress"],
        },
    }


def create_network_policy(
    networking_api: NetworkingV1Api,
    namespace: str,
    body: dict[str, Any],
) -> None:
    networking_api.create_namespaced_network_policy(namespace=namespace, body=body)
