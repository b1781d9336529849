""" Workload adapters, one per supported pool workload kind.
"""

from poolfleet.models.uniteddeployment import TemplateType

from .base import ReplicasInfo, WorkloadAdapter
from .deployment import DeploymentAdapter
from .statefulset import StatefulSetAdapter

WORKLOAD_ADAPTERS = {
    TemplateType.STATEFULSET: StatefulSetAdapter,
    TemplateType.DEPLOYMENT: DeploymentAdapter,
}


def template_type_of(spec):
    """ TemplateType selected by a UnitedDeployment spec, or None.
    """
    template = spec.workloadTemplate
    if template.statefulSetTemplate is not None:
        return TemplateType.STATEFULSET
    if template.deploymentTemplate is not None:
        return TemplateType.DEPLOYMENT
    return None


__all__ = [
    "ReplicasInfo",
    "WorkloadAdapter",
    "DeploymentAdapter",
    "StatefulSetAdapter",
    "WORKLOAD_ADAPTERS",
    "template_type_of",
]
