"""Adapter for pools made of Deployments."""

import logging

from poolfleet.errors import TemplateNotSpecifiedError
from poolfleet.models.uniteddeployment import TemplateType
from poolfleet.services.adapters import common
from poolfleet.services.adapters.base import WorkloadAdapter

logger = logging.getLogger(__name__)

COPIED_SPEC_FIELDS = ("strategy", "minReadySeconds", "paused", "progressDeadlineSeconds")


class DeploymentAdapter(WorkloadAdapter):
    """Builds and inspects the Deployment of one pool."""

    kind = "Deployment"
    template_type = TemplateType.DEPLOYMENT

    def get_pool_failure(self, obj):
        """Message of a true ReplicaFailure condition, if any."""
        for condition in (obj.get("status") or {}).get("conditions") or []:
            if condition.get("type") == "ReplicaFailure" and condition.get("status") == "True":
                return condition.get("message") or condition.get("reason") or "ReplicaFailure"
        return None

    def apply_pool_template(self, ud, pool_name, revision, replicas, obj):
        pool = common.get_pool(ud, pool_name)
        template = ud.spec.workloadTemplate.deploymentTemplate
        if template is None:
            raise TemplateNotSpecifiedError(
                f"UnitedDeployment({ud.namespace}/{ud.name}) has no deploymentTemplate"
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
        # Deployments roll their pods on their own.
        return None

    def is_expected(self, obj, revision):
        return common.revision_label_differs(obj, revision)
