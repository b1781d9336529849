""" Diff the desired topology against live pools and converge them.
"""

import logging

from pydantic import BaseModel

from poolfleet.config import get_slow_start_initial_batch_size
from poolfleet.errors import AggregateError
from poolfleet.models.uniteddeployment import ConditionType
from poolfleet.services.events import EVENT_NORMAL, EVENT_WARNING
from poolfleet.services.uniteddeployment.conditions import new_condition, set_condition
from poolfleet.utils.batch import slow_start_batch

logger = logging.getLogger(__name__)

EVENT_REASON_SUCCESSFUL_POOLS_UPDATE = "SuccessfulPoolsUpdate"
EVENT_REASON_FAILED_POOLS_UPDATE = "FailedPoolsUpdate"


class NextPoolState(BaseModel):
    """What one pool should look like after this pass."""

    replicas: int = 0
    patch: str = ""


class PoolSetManager:
    """Creates, updates and deletes the pools of a UnitedDeployment."""

    def __init__(self, pool_controls, recorder):
        self.pool_controls = pool_controls
        self.recorder = recorder

    def manage_pools(self, ud, name_to_pool, next_states, expected_revision, pool_type):
        """ Converge the pools and report the outcome as conditions.

        Args:
            ud: The UnitedDeployment
            name_to_pool: Live pools of the active kind, by pool name
            next_states: NextPoolState per topology pool name
            expected_revision: Revision object the pools should run
            pool_type: Active TemplateType

        Returns:
            (status, error): a new status carrying the conditions, and the
            provisioning or update error of this pass (None on success)
        """
        new_status = ud.status.model_copy(deep=True)

        try:
            exists, provisioned = self.manage_pool_provision(
                ud, name_to_pool, next_states, expected_revision, pool_type
            )
        except AggregateError as e:
            set_condition(new_status, new_condition(ConditionType.POOL_PROVISIONED, "False", "Error", str(e)))
            logger.error(f"UnitedDeployment {ud.namespace}/{ud.name} fail to manage Pool provision: {e}")
            return new_status, e

        set_condition(new_status, new_condition(ConditionType.POOL_PROVISIONED, "True"))
        if provisioned:
            logger.info(f"UnitedDeployment {ud.namespace}/{ud.name} provisioned its pools")

        revision = expected_revision["metadata"]["name"]
        control = self.pool_controls[pool_type]
        need_update = [
            name
            for name in sorted(exists)
            if control.is_expected(name_to_pool[name], revision)
            or name_to_pool[name].replicasInfo.replicas != next_states[name].replicas
            or name_to_pool[name].patchInfo != next_states[name].patch
        ]

        update_error = None
        if need_update:
            failures = {}

            def update(index):
                name = need_update[index]
                pool = name_to_pool[name]
                replicas = next_states[name].replicas
                logger.info(
                    f"UnitedDeployment {ud.namespace}/{ud.name} needs to update Pool ({pool_type.value}) "
                    f"{pool.namespace}/{pool.name} with revision {revision}, replicas {replicas}"
                )
                try:
                    control.update_pool(pool, ud, revision, replicas)
                except Exception as e:
                    failures[name] = e
                    raise

            updated, update_error = slow_start_batch(
                len(need_update), get_slow_start_initial_batch_size(), update
            )
            for name, error in failures.items():
                self.recorder.record(
                    ud,
                    EVENT_WARNING,
                    EVENT_REASON_FAILED_POOLS_UPDATE,
                    f"Error updating Pool ({pool_type.value}) {name} when updating: {error}",
                )
            if update_error is None:
                self.recorder.record(
                    ud,
                    EVENT_NORMAL,
                    EVENT_REASON_SUCCESSFUL_POOLS_UPDATE,
                    f"Update {updated} Pool ({pool_type.value})",
                )

        if update_error is None:
            set_condition(new_status, new_condition(ConditionType.POOL_UPDATED, "True"))
        else:
            set_condition(
                new_status, new_condition(ConditionType.POOL_UPDATED, "False", "Error", str(update_error))
            )
        return new_status, update_error

    def manage_pool_provision(self, ud, name_to_pool, next_states, expected_revision, workload_type):
        """ Create missing pools, delete unexpected ones, clean other kinds.

        Returns:
            (exists, changed): names both expected and live before this pass,
            and whether anything was created or deleted

        Raises:
            AggregateError: every failure of this pass
        """
        expected_pools = {pool.name for pool in ud.spec.topology.pools}
        got_pools = set(name_to_pool)
        logger.debug(
            f"UnitedDeployment {ud.namespace}/{ud.name} has pools {sorted(got_pools)}, "
            f"expects pools {sorted(expected_pools)}"
        )

        creates = sorted(expected_pools - got_pools)
        deletes = sorted(got_pools - expected_pools)
        revision = expected_revision["metadata"]["name"]
        control = self.pool_controls[workload_type]

        errors = []
        if creates:
            logger.info(
                f"UnitedDeployment {ud.namespace}/{ud.name} needs creating pool ({workload_type.value}) "
                f"with name: {creates}"
            )

            create_failures = {}

            def create(index):
                name = creates[index]
                try:
                    control.create_pool(ud, name, revision, next_states[name].replicas)
                except Exception as e:
                    error = RuntimeError(f"fail to create Pool ({workload_type.value}) {name}: {e}")
                    create_failures[name] = error
                    raise error from e

            created, create_error = slow_start_batch(len(creates), get_slow_start_initial_batch_size(), create)
            if create_error is None:
                self.recorder.record(
                    ud,
                    EVENT_NORMAL,
                    EVENT_REASON_SUCCESSFUL_POOLS_UPDATE,
                    f"Create {created} Pool ({workload_type.value})",
                )
            else:
                errors.extend(create_failures[name] for name in sorted(create_failures))

        if deletes:
            logger.info(
                f"UnitedDeployment {ud.namespace}/{ud.name} needs deleting pool ({workload_type.value}) "
                f"with name: {deletes}"
            )
            delete_errors = []
            for name in deletes:
                pool = name_to_pool[name]
                try:
                    control.delete_pool(pool)
                except Exception as e:
                    delete_errors.append(
                        RuntimeError(
                            f"fail to delete Pool ({workload_type.value}) {pool.namespace}/{pool.name} "
                            f"for {name}: {e}"
                        )
                    )
            if delete_errors:
                errors.extend(delete_errors)
            else:
                self.recorder.record(
                    ud,
                    EVENT_NORMAL,
                    EVENT_REASON_SUCCESSFUL_POOLS_UPDATE,
                    f"Delete {len(deletes)} Pool ({workload_type.value})",
                )

        # The template kind may have been switched since the pools were made.
        cleaned = False
        for other_type, other_control in self.pool_controls.items():
            if other_type == workload_type:
                continue
            try:
                pools = other_control.get_owned_pools(ud)
            except Exception as e:
                errors.append(
                    RuntimeError(
                        f"fail to list Pool of other type {other_type.value} for UnitedDeployment "
                        f"{ud.namespace}/{ud.name}: {e}"
                    )
                )
                continue
            for pool in pools:
                cleaned = True
                try:
                    other_control.delete_pool(pool)
                except Exception as e:
                    errors.append(
                        RuntimeError(
                            f"fail to delete Pool {pool.name} of other type {other_type.value} for "
                            f"UnitedDeployment {ud.namespace}/{ud.name}: {e}"
                        )
                    )

        for error in errors:
            self.recorder.record(ud, EVENT_WARNING, EVENT_REASON_FAILED_POOLS_UPDATE, str(error))

        error = AggregateError.from_errors(errors)
        if error is not None:
            raise error
        return expected_pools & got_pools, bool(creates or deletes or cleaned)
