"""
Status condition bookkeeping.

Conditions are kept in an insertion-ordered mapping keyed by condition
type, so a status can never hold two entries of the same type. The
transition timestamp of an entry only moves when its status value flips.
"""

from datetime import UTC, datetime

from identity_claim_operator.constants import CONDITION_TRUE
from identity_claim_operator.models.common import Condition


def utcnow() -> datetime:
    """Current time in UTC, truncated to whole seconds like metav1.Time."""
    return datetime.now(UTC).replace(microsecond=0)


def upsert_condition(
    conditions: dict[str, Condition],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    observed_generation: int | None = None,
    now: datetime | None = None,
) -> bool:
    """
    Add or update a condition in place.

    A new type is appended. When the status value differs from the current
    one the entry is replaced with a fresh lastTransitionTime; otherwise
    reason, message and observedGeneration are updated and the timestamp
    is left alone. Existing types keep their position.

    Args:
        conditions: Conditions keyed by type, modified in place
        condition_type: Condition type (e.g. "Ready")
        status: "True", "False" or "Unknown"
        reason: CamelCase reason
        message: Human-readable message
        observed_generation: Generation the condition was computed from
        now: Transition time to use for new or flipped entries

    Returns:
        True if the stored condition changed
    """
    current = conditions.get(condition_type)

    if current is None or current.status != status:
        conditions[condition_type] = Condition(
            type=condition_type,
            status=status,
            reason=reason,
            message=message,
            observed_generation=observed_generation,
            last_transition_time=now or utcnow(),
        )
        return True

    if (
        current.reason == reason
        and current.message == message
        and current.observed_generation == observed_generation
    ):
        return False

    conditions[condition_type] = current.model_copy(
        update={
            "reason": reason,
            "message": message,
            "observed_generation": observed_generation,
        }
    )
    return True


def get_condition(
    conditions: dict[str, Condition], condition_type: str
) -> Condition | None:
    """Get a specific status condition."""
    return conditions.get(condition_type)


def is_condition_true(conditions: dict[str, Condition], condition_type: str) -> bool:
    """Check whether a condition exists with status True."""
    condition = conditions.get(condition_type)
    return condition is not None and condition.status == CONDITION_TRUE
