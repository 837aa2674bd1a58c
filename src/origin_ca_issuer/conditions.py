import logging
from datetime import datetime
from typing import Optional

from .models import Condition

logger = logging.getLogger(__name__)


def get_condition(status, condition_type: str) -> Optional[Condition]:
    for condition in status.conditions:
        if condition.type == condition_type:
            return condition
    return None


def has_condition(status, condition_type: str, want_status: str) -> bool:
    condition = get_condition(status, condition_type)
    return condition is not None and condition.status == want_status


def set_condition(
    status,
    condition_type: str,
    condition_status: str,
    reason: str,
    message: str,
    now: datetime,
) -> Condition:
    """
    Set a condition on ``status``, keeping one condition per type.

    lastTransitionTime moves to ``now`` only when the condition is new or its
    status changed; otherwise just reason and message are refreshed.
    """
    now = now.replace(microsecond=0)
    new = Condition(
        type=condition_type,
        status=condition_status,
        lastTransitionTime=now,
        reason=reason,
        message=message,
    )

    for i, existing in enumerate(status.conditions):
        if existing.type != condition_type:
            continue

        if existing.status == condition_status:
            new.lastTransitionTime = existing.lastTransitionTime
        else:
            logger.info(
                f"Condition {condition_type} changed from {existing.status} "
                f"to {condition_status}: {reason}"
            )
        new.extra = dict(existing.extra)
        status.conditions[i] = new
        return new

    logger.info(
        f"Setting lastTransitionTime for condition {condition_type} "
        f"to {condition_status}: {reason}"
    )
    status.conditions.append(new)
    return new
