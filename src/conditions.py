"""
Status conditions.

Conditions form an ordered list keyed by type. ``set_condition`` is the only
way the controller changes that list: an existing entry of the same type is
replaced in place, a new type is appended, and ``last_transition_time`` only
moves when the status value itself changes.
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# Condition types
CONDITION_READY = "Ready"
CONDITION_CONNECTED = "Connected"
CONDITION_SYNCED = "Synced"

# Condition status values
STATUS_TRUE = "True"
STATUS_FALSE = "False"
STATUS_UNKNOWN = "Unknown"

# Reasons
REASON_SECRET_RESOLUTION_FAILED = "SecretResolutionFailed"
REASON_ADAPTER_NOT_FOUND = "AdapterNotFound"
REASON_CONNECTION_FAILED = "ConnectionFailed"
REASON_CONNECTED = "Connected"
REASON_DISCOVERY_FAILED = "DiscoveryFailed"
REASON_COMPILATION_FAILED = "CompilationFailed"
REASON_STATE_FETCH_FAILED = "StateFetchFailed"
REASON_DIFF_FAILED = "DiffFailed"
REASON_APPLY_FAILED = "ApplyFailed"
REASON_PARTIALLY_APPLIED = "PartiallyApplied"
REASON_SYNCED = "Synced"
REASON_IN_SYNC = "InSync"
REASON_READY = "Ready"
REASON_INVALID_SPEC = "InvalidSpec"


def utcnow() -> datetime:
    """Timezone-aware current time; conditions are compared across writes."""
    return datetime.now(timezone.utc)


class Condition(BaseModel):
    """A named, timestamped health signal attached to a resource status."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str
    status: str
    reason: str = ""
    message: str = ""
    observed_generation: Optional[int] = None
    last_transition_time: Optional[datetime] = None


def find_condition(
    conditions: List[Condition], condition_type: str
) -> Optional[Condition]:
    """Return the condition of the given type, or None."""
    for condition in conditions:
        if condition.type == condition_type:
            return condition
    return None


def is_condition_true(conditions: List[Condition], condition_type: str) -> bool:
    condition = find_condition(conditions, condition_type)
    return condition is not None and condition.status == STATUS_TRUE


def set_condition(
    conditions: List[Condition],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    observed_generation: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[Condition]:
    """
    Merge a condition into a condition list.

    The input list is not modified. Ordering of existing entries is kept.

    Args:
        conditions: Current condition list.
        condition_type: Type key (Ready, Connected, Synced, ...).
        status: "True", "False" or "Unknown".
        reason: CamelCase machine-readable reason.
        message: Human-readable detail.
        observed_generation: Resource generation this condition describes.
        now: Transition timestamp to use when the status changes.

    Returns:
        A new list containing the merged condition.
    """
    if now is None:
        now = utcnow()

    existing = find_condition(conditions, condition_type)
    if existing is not None and existing.status == status:
        transition_time = existing.last_transition_time or now
    else:
        transition_time = now

    updated = Condition(
        type=condition_type,
        status=status,
        reason=reason,
        message=message,
        observed_generation=observed_generation,
        last_transition_time=transition_time,
    )

    if existing is None:
        return list(conditions) + [updated]

    return [updated if c.type == condition_type else c for c in conditions]

