""" One reconciliation pass of a UnitedDeployment.
"""

import logging

from kubernetes.client.exceptions import ApiException

from poolfleet.errors import (
    AggregateError,
    ReconcileError,
    RevisionSyncError,
    TemplateNotSpecifiedError,
)
from poolfleet.models.uniteddeployment import ConditionType
from poolfleet.services.adapters import WORKLOAD_ADAPTERS, template_type_of
from poolfleet.services.adapters.common import pool_patch_content
from poolfleet.services.events import EVENT_WARNING
from poolfleet.services.uniteddeployment.conditions import (
    new_condition,
    remove_condition,
    set_condition,
)
from poolfleet.services.uniteddeployment.pool_control import PoolControl
from poolfleet.services.uniteddeployment.pool_update import NextPoolState, PoolSetManager
from poolfleet.services.uniteddeployment.revision import RevisionManager

logger = logging.getLogger(__name__)

EVENT_REASON_TEMPLATE_NOT_SPECIFIED = "TemplateNotSpecified"
EVENT_REASON_REVISION_FAILED = "RevisionFailed"


def get_next_pool_states(ud):
    """ Replicas and patch content every topology pool should end up with.

    A ``spec.replicas`` set by the pool patch wins over the pool's replicas.
    """
    next_states = {}
    for pool in ud.spec.topology.pools:
        replicas = pool.replicas or 0
        patch_replicas = ((pool.patch or {}).get("spec") or {}).get("replicas")
        if isinstance(patch_replicas, int):
            replicas = patch_replicas
        next_states[pool.name] = NextPoolState(replicas=replicas, patch=pool_patch_content(pool))
    return next_states


class UnitedDeploymentReconciler:
    """Drives UnitedDeployments toward their desired topology."""

    def __init__(self, store, recorder):
        self.store = store
        self.recorder = recorder
        self.pool_controls = {
            template_type: PoolControl(store, adapter_class(store))
            for template_type, adapter_class in WORKLOAD_ADAPTERS.items()
        }
        self.revisions = RevisionManager(store)
        self.pool_sets = PoolSetManager(self.pool_controls, recorder)

    def reconcile(self, ud):
        """ Run one pass over ``ud``.

        Returns:
            The new status

        Raises:
            TemplateNotSpecifiedError: no workload template is set
            ReconcileError: the pass failed, carries the status to persist
        """
        logger.info(f"Reconcile UnitedDeployment {ud.namespace}/{ud.name}")

        pool_type = template_type_of(ud.spec)
        if pool_type is None:
            message = f"UnitedDeployment {ud.namespace}/{ud.name} has no template specified"
            self.recorder.record(ud, EVENT_WARNING, EVENT_REASON_TEMPLATE_NOT_SPECIFIED, message)
            raise TemplateNotSpecifiedError(message)

        try:
            current_revision, update_revision, collision_count = self.revisions.reconcile_revisions(ud)
        except RevisionSyncError as e:
            logger.error(f"Fail to get ControllerRevision of UnitedDeployment {ud.namespace}/{ud.name}: {e}")
            self.recorder.record(ud, EVENT_WARNING, EVENT_REASON_REVISION_FAILED, str(e))
            status = ud.status.model_copy(deep=True)
            status.collisionCount = e.collision_count
            raise ReconcileError(str(e), status) from e

        control = self.pool_controls[pool_type]
        next_states = get_next_pool_states(ud)
        logger.debug(f"Get UnitedDeployment {ud.namespace}/{ud.name} next pool states {next_states}")

        expected_revision = update_revision or current_revision
        try:
            name_to_pool = {pool.name: pool for pool in control.get_all_pools(ud)}
        except (ApiException, AggregateError, ValueError) as e:
            logger.error(f"Fail to get Pools of UnitedDeployment {ud.namespace}/{ud.name}: {e}")
            status = ud.status.model_copy(deep=True)
            status.collisionCount = collision_count
            raise ReconcileError(f"fail to get pools: {e}", status) from e

        new_status, error = self.pool_sets.manage_pools(
            ud, name_to_pool, next_states, expected_revision, pool_type
        )
        status = self.calculate_status(
            ud,
            new_status,
            name_to_pool,
            next_states,
            current_revision,
            update_revision,
            collision_count,
            pool_type,
            updated=error is None,
        )
        if error is not None:
            raise ReconcileError(str(error), status)
        return status

    def calculate_status(
        self,
        ud,
        new_status,
        name_to_pool,
        next_states,
        current_revision,
        update_revision,
        collision_count,
        pool_type,
        updated,
    ):
        new_status.observedGeneration = ud.metadata.generation
        new_status.collisionCount = collision_count
        new_status.templateType = pool_type
        new_status.poolReplicas = {name: state.replicas for name, state in next_states.items()}

        new_status.replicas = 0
        new_status.readyReplicas = 0
        for pool in name_to_pool.values():
            new_status.replicas += pool.replicasInfo.replicas
            new_status.readyReplicas += pool.replicasInfo.readyReplicas

        control = self.pool_controls[pool_type]
        failure = None
        for name in sorted(name_to_pool):
            failure = control.get_pool_failure(name_to_pool[name])
            if failure:
                break
        if failure:
            set_condition(new_status, new_condition(ConditionType.POOL_FAILURE, "True", "Error", failure))
        else:
            remove_condition(new_status, ConditionType.POOL_FAILURE)

        if updated:
            new_status.currentRevision = update_revision["metadata"]["name"]
        else:
            new_status.currentRevision = current_revision["metadata"]["name"]
        return new_status
