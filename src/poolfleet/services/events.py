""" Kubernetes events about a UnitedDeployment.
"""

import logging

import kopf

logger = logging.getLogger(__name__)

EVENT_NORMAL = "Normal"
EVENT_WARNING = "Warning"


class EventRecorder:
    """Fire-and-forget event recorder posting through kopf."""

    def record(self, obj, severity, reason, message):
        """Post an event about ``obj`` (a UnitedDeployment model or body)."""
        ref = _object_ref(obj)
        logger.debug(f"Event {severity}/{reason} on {ref['metadata'].get('name')}: {message}")
        kopf.event(ref, type=severity, reason=reason, message=message)


def _object_ref(obj):
    if hasattr(obj, "metadata") and hasattr(obj, "apiVersion"):
        return {
            "apiVersion": obj.apiVersion,
            "kind": obj.kind,
            "metadata": {
                "name": obj.metadata.name,
                "namespace": obj.metadata.namespace,
                "uid": obj.metadata.uid,
            },
        }
    return obj
