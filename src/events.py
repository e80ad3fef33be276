"""
Event recording - Kubernetes-style events about configuration resources.

Every event is logged and the most recent ones are kept in memory.
"""

import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from resources import Resource

logger = logging.getLogger(__name__)

EVENT_NORMAL = "Normal"
EVENT_WARNING = "Warning"

# Reasons used across the engine, coordinator and health reporting
REASON_FINALIZER_ADDED = "FinalizerAdded"
REASON_CLEANUP_FAILED = "CleanupFailed"
REASON_DELETED = "Deleted"
REASON_SECRET_ERROR = "SecretResolutionFailed"
REASON_CONNECTION_FAILED = "ConnectionFailed"
REASON_APPLY_FAILED = "ApplyFailed"
REASON_SYNCED = "Synced"
REASON_DIRECT_APPLY_FAILED = "DirectApplyFailed"
REASON_HEALTH_ERROR = "HealthError"
REASON_HEALTH_WARNING = "HealthWarning"
REASON_REGISTERED = "Registered"
REASON_REGISTRATION_FAILED = "RegistrationFailed"
REASON_REGISTRATION_CONFLICT = "RegistrationConflict"
REASON_UNREGISTERED = "Unregistered"


@dataclass
class Event:
    """Something worth telling an operator about a resource."""

    type: str
    reason: str
    message: str
    kind: str
    namespace: str
    name: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def involved_object(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class EventRecorder:
    """
    Records events against resources.

    Only the most recent ``history_size`` events are kept.
    """

    def __init__(self, history_size: int = 512):
        self._history: Deque[Event] = deque(maxlen=history_size)

    def event(
        self, resource: Resource, event_type: str, reason: str, message: str
    ) -> Event:
        """
        Record an event about a resource.

        Args:
            resource: The resource the event is about
            event_type: ``Normal`` or ``Warning``
            reason: Short CamelCase reason
            message: Human readable detail

        Returns:
            The recorded event
        """
        recorded = Event(
            type=event_type,
            reason=reason,
            message=message,
            kind=resource.kind,
            namespace=resource.namespace,
            name=resource.name,
        )
        log = logger.warning if event_type == EVENT_WARNING else logger.info
        log(f"[{recorded.involved_object}] {reason}: {message}")

        self._history.append(recorded)
        return recorded

    def normal(self, resource: Resource, reason: str, message: str) -> Event:
        return self.event(resource, EVENT_NORMAL, reason, message)

    def warning(self, resource: Resource, reason: str, message: str) -> Event:
        return self.event(resource, EVENT_WARNING, reason, message)

    def history(
        self, resource: Optional[Resource] = None, reason: Optional[str] = None
    ) -> List[Event]:
        """Recent events, optionally only those about a resource or with a reason."""
        events = list(self._history)
        if resource is not None:
            events = [
                e
                for e in events
                if (e.kind, e.namespace, e.name)
                == (resource.kind, resource.namespace, resource.name)
            ]
        if reason is not None:
            events = [e for e in events if e.reason == reason]
        return events

