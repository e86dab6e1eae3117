from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from kubernetes.client import ApiException


class EventKind(str, Enum):
    """Watch event types as sent by the API server in the ``type`` field."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class WatchSession:
    """Position of one list/watch session.

    A session starts from a full listing and is advanced by every watch
    event observed, whatever its type.  A relist replaces it entirely.
    """

    resource_version: str
    min_watch_timeout_seconds: int

    def advance(self, resource_version: str) -> WatchSession:
        return WatchSession(
            resource_version=resource_version,
            min_watch_timeout_seconds=self.min_watch_timeout_seconds,
        )


@dataclass(frozen=True)
class WatchErrorDetail:
    """The ``Status`` carried by a watch ERROR event."""

    code: int | None
    reason: str
    message: str

    @classmethod
    def from_status(cls, status: Any) -> WatchErrorDetail:
        """Build from a raw ``Status`` dict or a ``V1Status``-like object."""
        if isinstance(status, dict):
            code = status.get("code")
            reason = status.get("reason")
            message = status.get("message")
        else:
            code = getattr(status, "code", None)
            reason = getattr(status, "reason", None)
            message = getattr(status, "message", None)
        return cls(
            code=int(code) if code is not None else None,
            reason=str(reason or ""),
            message=str(message or ""),
        )

    @classmethod
    def from_api_exception(cls, exc: ApiException) -> WatchErrorDetail:
        # The client raises ERROR events as ApiException(reason="<Reason>: <message>").
        reason, _, message = str(exc.reason or "").partition(": ")
        return cls(code=exc.status, reason=reason, message=message)


@dataclass(frozen=True)
class ResourceEvent:
    kind: EventKind
    payload: Any


@dataclass(frozen=True)
class Namespace:
    """Immutable snapshot of a namespace as seen on the watch stream."""

    name: str
    resource_version: str

    @classmethod
    def from_object(cls, obj: Any) -> Namespace | None:
        """Return a :class:`Namespace` for *obj*, or ``None`` if it is not one.

        Accepts the client's ``V1Namespace`` models as well as plain
        attribute objects.  Objects that declare a different ``kind`` or lack
        a name or resource version are rejected so that version skew on the
        stream is tolerated rather than fatal.
        """
        kind = getattr(obj, "kind", None)
        if kind is not None and kind != "Namespace":
            return None

        metadata = getattr(obj, "metadata", None)
        if metadata is None:
            return None

        name = getattr(metadata, "name", None)
        resource_version = getattr(metadata, "resource_version", None)
        if not isinstance(name, str) or not name:
            return None
        if not isinstance(resource_version, str) or not resource_version:
            return None
        return cls(name=name, resource_version=resource_version)
