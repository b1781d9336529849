""" Create, read, update and delete pools of one workload kind.
"""

import logging
from typing import Any, Dict

from kubernetes.client.exceptions import ApiException
from pydantic import BaseModel, Field

from poolfleet.config import get_pool_update_retries
from poolfleet.errors import is_timeout
from poolfleet.models.uniteddeployment import ANNOTATION_PATCH_KEY
from poolfleet.services.adapters.base import ReplicasInfo
from poolfleet.services.adapters.common import get_pool_name_from
from poolfleet.services.refmanager import RefManager, get_controller_of
from poolfleet.services.store import PROPAGATION_BACKGROUND
from poolfleet.utils.labels import selector_to_string

logger = logging.getLogger(__name__)


class Pool(BaseModel):
    """Read-model over one live pool workload."""

    name: str
    namespace: str
    pool_ref: Dict[str, Any] = Field(..., description="The live workload object")
    observedGeneration: int = 0
    replicasInfo: ReplicasInfo = Field(default_factory=ReplicasInfo)
    patchInfo: str = ""


class PoolControl:
    """Pool operations backed by one WorkloadAdapter."""

    def __init__(self, store, adapter):
        self.store = store
        self.adapter = adapter

    @property
    def template_type(self):
        return self.adapter.template_type

    def get_all_pools(self, ud):
        """ Return the pools of this kind owned by ``ud``.

        Lists workloads matching the resource selector and claims them,
        adopting orphans and releasing the ones that stopped matching.

        Raises:
            ValueError: the selector is malformed
            ApiException: the list call failed
            AggregateError: claiming some workloads failed
        """
        selector = ud.spec.selector.model_dump()
        objs = self.store.list(
            self.adapter.api_version,
            self.adapter.kind,
            ud.namespace,
            selector_to_string(selector),
        )
        manager = RefManager(self.store, selector, ud.owner_reference(), owner_deleting=ud.is_deleting())
        claimed = manager.claim_owned_objects(objs)
        return [self.convert_to_pool(obj) for obj in claimed]

    def get_owned_pools(self, ud):
        """ Return every pool of this kind controlled by ``ud``, whatever its labels.
        """
        objs = self.store.list(self.adapter.api_version, self.adapter.kind, ud.namespace)
        pools = []
        for obj in objs:
            controller = get_controller_of(obj)
            if controller is None or controller.get("uid") != ud.metadata.uid:
                continue
            try:
                pools.append(self.convert_to_pool(obj))
            except ValueError:
                # Owned but unlabelled, still has to go.
                meta = obj.get("metadata") or {}
                pools.append(
                    Pool(name=meta.get("name") or "", namespace=meta.get("namespace") or "", pool_ref=obj)
                )
        return pools

    def convert_to_pool(self, obj):
        meta = obj.get("metadata") or {}
        return Pool(
            name=get_pool_name_from(obj),
            namespace=meta.get("namespace") or "",
            pool_ref=obj,
            observedGeneration=self.adapter.get_status_observed_generation(obj),
            replicasInfo=self.adapter.get_details(obj),
            patchInfo=(meta.get("annotations") or {}).get(ANNOTATION_PATCH_KEY, ""),
        )

    def create_pool(self, ud, pool_name, revision, replicas):
        """ Create the workload of one pool.

        A timeout from the store means the object may still get created,
        so it is logged and not reported.
        """
        obj = self.adapter.new_object()
        self.adapter.apply_pool_template(ud, pool_name, revision, replicas, obj)
        logger.debug(
            f"Have {replicas} replicas when creating Pool {pool_name} for UnitedDeployment {ud.namespace}/{ud.name}"
        )
        try:
            return self.store.create(obj)
        except ApiException as e:
            if is_timeout(e):
                logger.warning(
                    f"Timed out creating Pool ({self.adapter.kind}) {pool_name} for UnitedDeployment "
                    f"{ud.namespace}/{ud.name}, it may still appear: {e.reason}"
                )
                return None
            raise

    def update_pool(self, pool, ud, revision, replicas):
        """ Read-modify-write the workload of a pool, retrying a few times.

        Every attempt starts from a fresh read so that changes made by others
        are kept. The adapter's post-update hook runs once the update persists.
        """
        update_error = None
        updated = None
        for attempt in range(get_pool_update_retries()):
            obj = self.store.get(
                self.adapter.api_version, self.adapter.kind, pool.namespace, self._object_name(pool)
            )
            obj.setdefault("apiVersion", self.adapter.api_version)
            obj.setdefault("kind", self.adapter.kind)
            self.adapter.apply_pool_template(ud, pool.name, revision, replicas, obj)
            try:
                updated = self.store.update(obj)
                update_error = None
                break
            except ApiException as e:
                logger.debug(f"Update of Pool {pool.name} failed (attempt {attempt + 1}): {e.reason}")
                update_error = e

        if update_error is not None:
            raise update_error

        self.adapter.post_update(ud, updated or obj, revision)
        return updated

    def delete_pool(self, pool):
        """ Delete the workload of a pool; its pods go away in the background.
        """
        logger.info(f"Deleting Pool ({self.adapter.kind}) {pool.namespace}/{self._object_name(pool)}")
        self.store.delete(pool.pool_ref, propagation_policy=PROPAGATION_BACKGROUND)

    def get_pool_failure(self, pool):
        return self.adapter.get_pool_failure(pool.pool_ref)

    def is_expected(self, pool, revision):
        return self.adapter.is_expected(pool.pool_ref, revision)

    @staticmethod
    def _object_name(pool):
        return (pool.pool_ref.get("metadata") or {}).get("name")
