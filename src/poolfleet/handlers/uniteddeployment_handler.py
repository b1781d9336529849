"""Handlers for UnitedDeployment custom resources."""

import logging

import kopf
from pydantic import ValidationError

from poolfleet.config import get_resync_interval
from poolfleet.crd.registry import CRDRegistry
from poolfleet.errors import ReconcileError, TemplateNotSpecifiedError
from poolfleet.models.uniteddeployment import GROUP, KIND, VERSION, UnitedDeployment
from poolfleet.services.events import EventRecorder
from poolfleet.services.store import KubernetesObjectStore
from poolfleet.services.uniteddeployment import UnitedDeploymentReconciler

logger = logging.getLogger(__name__)

PLURAL = CRDRegistry().get_model_by_key(GROUP, VERSION, KIND)["plural"]

# Built on first use, once the Kubernetes config is loaded.
_reconciler = None


def get_reconciler():
    global _reconciler
    if _reconciler is None:
        _reconciler = UnitedDeploymentReconciler(KubernetesObjectStore(), EventRecorder())
    return _reconciler


def set_reconciler(reconciler):
    """Replace the reconciler used by the handlers."""
    global _reconciler
    _reconciler = reconciler


def reconcile_handler(body, patch):
    """ Reconcile one UnitedDeployment and write its status.

    Raises:
        kopf.PermanentError: the resource is invalid and retrying cannot help
        kopf.TemporaryError: the pass failed, kopf retries it later
    """
    try:
        ud = UnitedDeployment.from_body(body)
    except ValidationError as e:
        logger.error(f"Invalid UnitedDeployment {body.get('metadata', {}).get('name')}: {e}")
        raise kopf.PermanentError(f"invalid UnitedDeployment: {e}")

    if ud.is_deleting():
        logger.info(f"UnitedDeployment {ud.namespace}/{ud.name} is being deleted, skipping")
        return

    try:
        status = get_reconciler().reconcile(ud)
    except TemplateNotSpecifiedError as e:
        raise kopf.PermanentError(str(e))
    except ReconcileError as e:
        patch.status.update(e.status.to_patch())
        raise kopf.TemporaryError(f"UnitedDeployment {ud.namespace}/{ud.name}: {e}", delay=get_resync_interval())

    patch.status.update(status.to_patch())
    logger.info(
        f"UnitedDeployment {ud.namespace}/{ud.name} reconciled: "
        f"{status.readyReplicas}/{status.replicas} ready, revision {status.currentRevision}"
    )


@kopf.on.create(GROUP, VERSION, PLURAL)
@kopf.on.update(GROUP, VERSION, PLURAL)
@kopf.on.resume(GROUP, VERSION, PLURAL)
def uniteddeployment_create_update(body, patch, **kwargs):
    """Handle UnitedDeployment create, update, and resume (on operator restart)."""
    reconcile_handler(body, patch)


@kopf.timer(GROUP, VERSION, PLURAL, interval=get_resync_interval(), initial_delay=get_resync_interval())
def uniteddeployment_resync(body, patch, **kwargs):
    """Periodic pass, so drift of the pools gets corrected."""
    reconcile_handler(body, patch)


@kopf.on.delete(GROUP, VERSION, PLURAL, optional=True)
def uniteddeployment_delete(name, namespace, **kwargs):
    # Pools and revisions carry owner references and are garbage collected.
    logger.info(f"UnitedDeployment {namespace}/{name} deleted")
