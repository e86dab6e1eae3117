from __future__ import annotations

import argparse
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from netpol_controller.src.channel import DEFAULT_CAPACITY
from netpol_controller.src.watcher import DEFAULT_MIN_WATCH_TIMEOUT_SECONDS


class ConfigError(ValueError):
    """Raised when the controller configuration is invalid."""


@dataclass(frozen=True)
class ControllerSettings:
    """Immutable controller configuration loaded at startup.

    Attributes:
        master_url:       Kubernetes API server URL (``--master``); empty means
                          take it from the kube configuration.
        kubeconfig_path:  Path to a kubeconfig file (``--kubeconfig``); empty
                          means in-cluster config with local fallback.
        min_watch_timeout_seconds: Lower bound of each watch attempt's timeout.
        channel_capacity: Bound of the watcher-to-reconciler channel.
        health_port:      Port of the health and metrics server.
        log_level:        Root log level name.
    """

    master_url: str = ""
    kubeconfig_path: str = ""
    min_watch_timeout_seconds: int = DEFAULT_MIN_WATCH_TIMEOUT_SECONDS
    channel_capacity: int = DEFAULT_CAPACITY
    health_port: int = 8080
    log_level: str = "INFO"


def env_int(
    name: str,
    default: int,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    values = env if env is not None else os.environ
    raw = values.get(name)
    if raw is None:
        value = default
    else:
        try:
            value = int(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be an integer") from exc

    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got: {value}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be <= {maximum}, got: {value}")
    return value


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create a default NetworkPolicy in every new namespace"
    )
    parser.add_argument("--master", default="", help="kubernetes api server url")
    parser.add_argument("--kubeconfig", default="", help="path to kubeconfig file")
    return parser.parse_args(argv)


def load_settings(
    argv: Sequence[str] | None = None,
    env: Mapping[str, str] | None = None,
) -> ControllerSettings:
    """Load settings from command-line flags and the environment.

    Environment variables (with defaults):
        ``MIN_WATCH_TIMEOUT_SECONDS`` — shortest watch attempt (``300``).
        ``EVENT_CHANNEL_CAPACITY``    — pending namespaces before the watch blocks (``128``).
        ``HEALTH_PORT``               — health and metrics port (``8080``).
        ``LOG_LEVEL``                 — log level (``INFO``).
    """
    values = env if env is not None else os.environ
    args = parse_args(argv)

    return ControllerSettings(
        master_url=args.master.strip(),
        kubeconfig_path=args.kubeconfig.strip(),
        min_watch_timeout_seconds=env_int(
            "MIN_WATCH_TIMEOUT_SECONDS",
            DEFAULT_MIN_WATCH_TIMEOUT_SECONDS,
            minimum=1,
            env=values,
        ),
        channel_capacity=env_int("EVENT_CHANNEL_CAPACITY", DEFAULT_CAPACITY, minimum=1, env=values),
        health_port=env_int("HEALTH_PORT", 8080, minimum=1, maximum=65535, env=values),
        log_level=values.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )
