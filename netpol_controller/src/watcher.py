from __future__ import annotations

import logging
import random
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from kubernetes.client import ApiException

from netpol_controller.src.channel import EventChannel
from netpol_controller.src.metrics import METRICS
from netpol_controller.src.models import (
    EventKind,
    Namespace,
    ResourceEvent,
    WatchErrorDetail,
    WatchSession,
)

HTTP_STATUS_GONE = 410
EXPIRED_REASONS = frozenset({"Expired", "Gone"})
DEFAULT_MIN_WATCH_TIMEOUT_SECONDS = 300


class NamespaceSource(Protocol):
    def list_namespaces(self) -> tuple[list[Any], str]: ...

    def watch_namespaces(
        self, resource_version: str, timeout_seconds: int
    ) -> Iterator[ResourceEvent]: ...


class WatchState(Enum):
    LISTING = "listing"
    WATCHING = "watching"
    RELISTING = "relisting"
    FATAL = "fatal"


class WatchOutcome(Enum):
    RELIST = "relist"
    FATAL = "fatal"


class WatchFatalError(RuntimeError):
    """Raised when the namespace list/watch cannot continue."""


@dataclass(frozen=True)
class WatchStep:
    """Result of one state-machine transition.

    ``error`` holds the cause of a ``RELISTING`` or ``FATAL`` transition:
    a :class:`WatchErrorDetail` from the stream or the exception raised.
    """

    session: WatchSession | None
    state: WatchState
    error: Any = None


def classify_watch_error(error: Any) -> WatchOutcome:
    """Map a list/watch failure to the action the watcher takes.

    Only an expired resource version (``410 Gone``, reason ``Expired`` or
    ``Gone``) can be recovered, by relisting.  Everything else, including
    errors that are not API errors at all, is fatal.
    """
    if isinstance(error, ApiException):
        error = WatchErrorDetail.from_api_exception(error)
    if not isinstance(error, WatchErrorDetail):
        return WatchOutcome.FATAL
    if error.code == HTTP_STATUS_GONE or error.reason in EXPIRED_REASONS:
        return WatchOutcome.RELIST
    return WatchOutcome.FATAL


def draw_watch_timeout(min_seconds: int, rng: random.Random) -> int:
    """Return a timeout in ``[min_seconds, 2 * min_seconds)``.

    Spreading timeouts keeps many controller replicas from reconnecting to
    the API server in lockstep.
    """
    return int(min_seconds * (1.0 + rng.random()))


class NamespaceWatcher:
    """List-then-watch namespaces and forward every added one to an :class:`EventChannel`.

    The watcher cycles through :class:`WatchState`:

    ``LISTING``
        Full listing; its resource version starts a new :class:`WatchSession`.
    ``WATCHING``
        One time-bounded watch from the session position.  Every event
        advances the position; only ``ADDED`` namespaces are forwarded.
        When the stream times out the next watch resumes from where it
        stopped, with a fresh random timeout.
    ``RELISTING``
        Entered when the position has expired server-side.  The old session
        is discarded and a new listing is taken.
    ``FATAL``
        Any other failure.  :meth:`run_forever` raises
        :class:`WatchFatalError` and issues no further API calls.

    Forwarding blocks while the channel is full, so a slow reconciler holds
    back both watch consumption and position advancement.
    """

    def __init__(
        self,
        source: NamespaceSource,
        channel: EventChannel,
        min_watch_timeout_seconds: int = DEFAULT_MIN_WATCH_TIMEOUT_SECONDS,
        rng: random.Random | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if min_watch_timeout_seconds < 1:
            raise ValueError(
                f"min_watch_timeout_seconds must be >= 1, got: {min_watch_timeout_seconds}"
            )
        self.source = source
        self.channel = channel
        self.min_watch_timeout_seconds = min_watch_timeout_seconds
        self.rng = rng or random.Random()  # noqa: S311
        self.logger = logger or logging.getLogger(__name__)
        self.ready = threading.Event()

    def next_watch_timeout_seconds(self) -> int:
        return draw_watch_timeout(self.min_watch_timeout_seconds, self.rng)

    def list_session(self) -> WatchStep:
        """Take a full listing and start a new session from its resource version."""
        try:
            items, resource_version = self.source.list_namespaces()
        except Exception as exc:
            self.logger.exception("Namespace list failed")
            return WatchStep(session=None, state=WatchState.FATAL, error=exc)

        self.ready.set()
        self.logger.info(
            "Listed %d namespaces at resourceVersion %s", len(items), resource_version
        )
        session = WatchSession(
            resource_version=resource_version,
            min_watch_timeout_seconds=self.min_watch_timeout_seconds,
        )
        return WatchStep(session=session, state=WatchState.WATCHING)

    def _error_step(self, session: WatchSession, error: Any) -> WatchStep:
        if classify_watch_error(error) is WatchOutcome.RELIST:
            self.logger.warning(
                "Namespace watch from resourceVersion %s expired (%s); relisting",
                session.resource_version,
                error,
            )
            return WatchStep(session=session, state=WatchState.RELISTING, error=error)

        self.logger.error(
            "Namespace watch from resourceVersion %s failed: %s",
            session.resource_version,
            error,
        )
        return WatchStep(session=session, state=WatchState.FATAL, error=error)

    def handle_event(self, session: WatchSession, event: ResourceEvent) -> WatchStep:
        """Apply one watch event to *session* and return the resulting step."""
        METRICS.watch_events_total.labels(type=event.kind.value).inc()

        if event.kind is EventKind.ERROR:
            return self._error_step(session, event.payload)

        namespace = Namespace.from_object(event.payload)
        if namespace is None:
            METRICS.ignored_objects_total.inc()
            self.logger.warning(
                "Ignoring %s watch event with unexpected object %s",
                event.kind.value,
                type(event.payload).__name__,
            )
            return WatchStep(session=session, state=WatchState.WATCHING)

        session = session.advance(namespace.resource_version)

        if event.kind is EventKind.ADDED:
            self.channel.push(namespace)
            METRICS.namespaces_forwarded_total.inc()

        return WatchStep(session=session, state=WatchState.WATCHING)

    def watch_once(
        self, session: WatchSession, stop: threading.Event | None = None
    ) -> WatchStep:
        """Consume one watch stream from the session position until it ends."""
        timeout_seconds = self.next_watch_timeout_seconds()
        self.logger.info(
            "Watching namespaces since resourceVersion %s for %ds",
            session.resource_version,
            timeout_seconds,
        )
        METRICS.watch_streams_total.inc()

        try:
            for event in self.source.watch_namespaces(session.resource_version, timeout_seconds):
                step = self.handle_event(session, event)
                if step.state is not WatchState.WATCHING:
                    return step
                session = step.session
                if stop is not None and stop.is_set():
                    break
        except Exception as exc:
            return self._error_step(session, exc)

        return WatchStep(session=session, state=WatchState.WATCHING)

    def run_forever(self, shutdown_event: threading.Event | None = None) -> None:
        """Run the list/watch state machine until shutdown or a fatal error."""
        stop = shutdown_event or threading.Event()
        step = WatchStep(session=None, state=WatchState.LISTING)

        while not stop.is_set():
            if step.state is WatchState.LISTING:
                step = self.list_session()
            elif step.state is WatchState.RELISTING:
                METRICS.relists_total.inc()
                step = self.list_session()
            elif step.state is WatchState.WATCHING:
                step = self.watch_once(step.session, stop)
            else:
                self.ready.clear()
                METRICS.watch_fatal_errors_total.inc()
                message = f"Namespace list/watch failed: {step.error}"
                if isinstance(step.error, BaseException):
                    raise WatchFatalError(message) from step.error
                raise WatchFatalError(message)

        self.ready.clear()
