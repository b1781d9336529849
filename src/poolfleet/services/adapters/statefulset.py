"""Adapter for pools made of StatefulSets."""

import logging
import re

from poolfleet.errors import TemplateNotSpecifiedError
from poolfleet.models.uniteddeployment import CONTROLLER_REVISION_HASH_LABEL_KEY, TemplateType
from poolfleet.services.adapters import common
from poolfleet.services.adapters.base import WorkloadAdapter
from poolfleet.services.refmanager import RefManager, controller_reference
from poolfleet.services.store import PROPAGATION_BACKGROUND
from poolfleet.utils.labels import selector_to_string

logger = logging.getLogger(__name__)

COPIED_SPEC_FIELDS = (
    "updateStrategy",
    "podManagementPolicy",
    "serviceName",
    "volumeClaimTemplates",
)

ORDINAL_RE = re.compile(r"^(.*)-(\d+)$")


def get_ordinal(pod):
    """Ordinal suffix of a StatefulSet pod name, -1 when there is none."""
    match = ORDINAL_RE.match((pod.get("metadata") or {}).get("name") or "")
    return int(match.group(2)) if match else -1


def is_pod_ready(pod):
    for condition in (pod.get("status") or {}).get("conditions") or []:
        if condition.get("type") == "Ready":
            return condition.get("status") == "True"
    return False


def is_pod_stuck_for_rolling_update(pod, revision, partition):
    """A pod due for an update that is not ready blocks the rolling update."""
    if get_ordinal(pod) < partition:
        return False
    labels = (pod.get("metadata") or {}).get("labels") or {}
    if labels.get(CONTROLLER_REVISION_HASH_LABEL_KEY) == revision:
        return False
    return not is_pod_ready(pod)


class StatefulSetAdapter(WorkloadAdapter):
    """Builds and inspects the StatefulSet of one pool."""

    kind = "StatefulSet"
    template_type = TemplateType.STATEFULSET

    def get_pool_failure(self, obj):
        # StatefulSet status has no failure condition.
        return None

    def apply_pool_template(self, ud, pool_name, revision, replicas, obj):
        pool = common.get_pool(ud, pool_name)
        template = ud.spec.workloadTemplate.statefulSetTemplate
        if template is None:
            raise TemplateNotSpecifiedError(
                f"UnitedDeployment({ud.namespace}/{ud.name}) has no statefulSetTemplate"
            )

        common.apply_pool_metadata(ud, template, pool_name, revision, obj)

        spec = obj.setdefault("spec", {})
        spec["selector"] = common.pool_selector(ud, pool_name)
        spec["replicas"] = replicas
        common.copy_spec_fields(template.spec, spec, COPIED_SPEC_FIELDS)
        spec["template"] = common.stamp_pod_template(template.spec.get("template"), pool_name, revision)
        if ud.spec.revisionHistoryLimit is not None:
            spec["revisionHistoryLimit"] = ud.spec.revisionHistoryLimit

        common.attach_node_affinity_and_tolerations(spec["template"]["spec"], pool)
        common.apply_pool_patch(pool, obj)

    def post_update(self, ud, obj, revision):
        """Delete pods stuck in a rolling update.

        A RollingUpdate StatefulSet never replaces a pod that is not ready,
        so a broken revision would block the pool forever.
        """
        strategy = (obj.get("spec") or {}).get("updateStrategy") or {}
        if strategy.get("type") == "OnDelete":
            return

        partition = (strategy.get("rollingUpdate") or {}).get("partition") or 0
        for pod in self._get_statefulset_pods(obj):
            if is_pod_stuck_for_rolling_update(pod, revision, partition):
                meta = pod["metadata"]
                logger.info(f"Delete pod {meta.get('namespace')}/{meta.get('name')} at stuck state")
                self.store.delete(pod, propagation_policy=PROPAGATION_BACKGROUND)

    def _get_statefulset_pods(self, obj):
        selector = (obj.get("spec") or {}).get("selector") or {}
        meta = obj.get("metadata") or {}
        pods = self.store.list("v1", "Pod", meta.get("namespace"), selector_to_string(selector))
        manager = RefManager(
            self.store,
            selector,
            controller_reference(obj),
            owner_deleting=bool(meta.get("deletionTimestamp")),
        )
        return manager.claim_owned_objects(pods)

    def is_expected(self, obj, revision):
        return common.revision_label_differs(obj, revision)
