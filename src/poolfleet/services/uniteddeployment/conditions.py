""" Status conditions of a UnitedDeployment.
"""

from datetime import datetime, timezone

from poolfleet.crd.base import CRDCondition
from poolfleet.models.uniteddeployment import ConditionType


def new_condition(cond_type, status, reason="", message=""):
    return CRDCondition(
        type=ConditionType(cond_type).value,
        status=status,
        reason=reason,
        message=message,
        lastTransitionTime=datetime.now(timezone.utc).replace(microsecond=0),
    )


def set_condition(status, condition):
    """ Set ``condition`` on ``status``, replacing one of the same type.

    Nothing changes when status and reason are the same as before. When only
    the reason or message changes, the previous transition time is kept.
    """
    current = status.get_condition(condition.type)
    if current is not None and current.status == condition.status and current.reason == condition.reason:
        return
    if current is not None and current.status == condition.status:
        condition = condition.model_copy(update={"lastTransitionTime": current.lastTransitionTime})
    status.conditions = [c for c in status.conditions if c.type != condition.type] + [condition]


def remove_condition(status, cond_type):
    cond_type = ConditionType(cond_type).value
    status.conditions = [c for c in status.conditions if c.type != cond_type]
