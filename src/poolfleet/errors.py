"""Errors raised by the poolfleet reconciliation core."""

import json

from kubernetes.client.exceptions import ApiException


def status_reason(error):
    """ Reason of the Kubernetes Status carried in an API error body.

    ``ApiException.reason`` only holds the HTTP reason phrase ("Conflict" for
    every 409), the machine-readable reason lives in the body.
    """
    body = getattr(error, "body", None)
    if not body:
        return None
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    try:
        status = json.loads(body)
    except ValueError:
        return None
    if not isinstance(status, dict):
        return None
    return status.get("reason")


def is_already_exists(error):
    """True when the store rejected a create because the name is taken."""
    return (
        isinstance(error, ApiException)
        and error.status == 409
        and status_reason(error) == "AlreadyExists"
    )


def is_not_found(error):
    return isinstance(error, ApiException) and error.status == 404


def is_timeout(error):
    """True when the store accepted the request but timed out answering it."""
    return isinstance(error, ApiException) and (
        error.status == 504 or status_reason(error) == "Timeout"
    )


class AggregateError(Exception):
    """Several independent failures reported as one."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__(self._format())

    def _format(self):
        if len(self.errors) == 1:
            return str(self.errors[0])
        return "[" + ", ".join(str(e) for e in self.errors) + "]"

    @classmethod
    def from_errors(cls, errors):
        """Build an aggregate, or return None when there is nothing to report."""
        errors = [e for e in errors if e is not None]
        if not errors:
            return None
        return cls(errors)


class TemplateNotSpecifiedError(Exception):
    """The resource selects neither workload template kind."""


class RevisionSyncError(Exception):
    """Revision history could not be reconciled.

    Carries the last known collision count so the caller can persist it.
    """

    def __init__(self, message, collision_count):
        super().__init__(message)
        self.collision_count = collision_count


class RevisionCollisionError(RevisionSyncError):
    """Revision naming kept colliding past the configured retry limit."""


class ReconcileError(Exception):
    """A reconciliation pass failed after computing a new status."""

    def __init__(self, message, status):
        super().__init__(message)
        self.status = status
