"""Workload adapter interface.

An adapter hides one concrete workload kind (Deployment, StatefulSet)
behind the capabilities pool orchestration needs.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class ReplicasInfo(BaseModel):
    replicas: int = 0
    readyReplicas: int = 0


class WorkloadAdapter(ABC):
    """Capabilities of one pool workload kind."""

    api_version = "apps/v1"

    def __init__(self, store):
        self.store = store

    @property
    @abstractmethod
    def kind(self):
        """Workload kind managed by this adapter."""

    @property
    @abstractmethod
    def template_type(self):
        """TemplateType tag selecting this adapter."""

    def new_object(self):
        """Empty pool workload object."""
        return {"apiVersion": self.api_version, "kind": self.kind, "metadata": {}, "spec": {}}

    def new_object_list(self):
        """Empty list of pool workload objects."""
        return {
            "apiVersion": self.api_version,
            "kind": f"{self.kind}List",
            "metadata": {},
            "items": [],
        }

    @staticmethod
    def get_status_observed_generation(obj):
        return (obj.get("status") or {}).get("observedGeneration") or 0

    @staticmethod
    def get_details(obj):
        """Desired and ready replicas of a pool workload."""
        return ReplicasInfo(
            replicas=(obj.get("spec") or {}).get("replicas") or 0,
            readyReplicas=(obj.get("status") or {}).get("readyReplicas") or 0,
        )

    @abstractmethod
    def get_pool_failure(self, obj):
        """Failure summary read from the workload's own status, or None."""

    @abstractmethod
    def apply_pool_template(self, ud, pool_name, revision, replicas, obj):
        """Overwrite ``obj`` so it runs ``revision`` of the template for a pool."""

    def post_update(self, ud, obj, revision):
        """Follow-up work once an update of ``obj`` persisted."""

    @abstractmethod
    def is_expected(self, obj, revision):
        """True when ``obj`` does not run ``revision`` yet and must be updated."""
