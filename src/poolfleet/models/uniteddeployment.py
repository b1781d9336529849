"""UnitedDeployment CRD models."""

import copy
import re
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from poolfleet.config import get_default_revision_history_limit
from poolfleet.crd.base import CRDMetadata, CRDSpec, CRDStatus
from poolfleet.crd.registry import CRDRegistry

GROUP = "apps.poolfleet.io"
VERSION = "v1alpha1"
KIND = "UnitedDeployment"
PLURAL = "uniteddeployments"

# Stamped on every pool workload and its pod template.
POOL_NAME_LABEL_KEY = "apps.poolfleet.io/pool-name"
CONTROLLER_REVISION_HASH_LABEL_KEY = "apps.poolfleet.io/controller-revision-hash"

# Raw content of the patch last applied to a pool workload.
ANNOTATION_PATCH_KEY = "apps.poolfleet.io/patch"

DNS_LABEL_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


class TemplateType(str, Enum):
    STATEFULSET = "StatefulSet"
    DEPLOYMENT = "Deployment"


class ConditionType(str, Enum):
    # All expected pools exist and unexpected ones are deleted.
    POOL_PROVISIONED = "PoolProvisioned"
    # All pools run the expected revision and replicas.
    POOL_UPDATED = "PoolUpdated"
    # One of the pools reports a failure of its own.
    POOL_FAILURE = "PoolFailure"


class LabelSelectorRequirement(CRDSpec):
    """A single set-based label requirement."""

    key: str = Field(..., description="Label key the requirement applies to")
    operator: str = Field(
        ..., description="One of In, NotIn, Exists, DoesNotExist"
    )
    values: List[str] = Field(default_factory=list)


class LabelSelector(CRDSpec):
    """Label query over pods and pool workloads."""

    matchLabels: Dict[str, str] = Field(default_factory=dict)
    matchExpressions: List[LabelSelectorRequirement] = Field(default_factory=list)


class WorkloadTemplateSpec(CRDSpec):
    """Metadata and spec of the workload each pool is built from."""

    metadata: Dict[str, Any] = Field(default_factory=dict)
    spec: Dict[str, Any] = Field(..., description="Workload spec")

    @property
    def labels(self):
        return self.metadata.get("labels") or {}

    @property
    def annotations(self):
        return self.metadata.get("annotations") or {}


class WorkloadTemplate(CRDSpec):
    """Pool workload template. Only one of its members may be specified."""

    statefulSetTemplate: Optional[WorkloadTemplateSpec] = None
    deploymentTemplate: Optional[WorkloadTemplateSpec] = None

    @model_validator(mode="after")
    def check_single_kind(self):
        if self.statefulSetTemplate is not None and self.deploymentTemplate is not None:
            raise ValueError(
                "only one of statefulSetTemplate and deploymentTemplate may be set"
            )
        return self


class Pool(CRDSpec):
    """One named pool of the topology."""

    name: str = Field(
        ...,
        description="DNS label, used in the pool workload name prefix "
        "'<deployment-name>-<pool-name>-'",
    )
    nodeSelectorTerm: Dict[str, Any] = Field(
        default_factory=dict,
        description="Node selector term forming the pool (not updatable)",
    )
    tolerations: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Tolerations of the pods in this pool (not updatable)",
    )
    replicas: Optional[int] = Field(default=None, ge=0)
    patch: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Strategic merge patch over the pool workload. "
        "Replicas set by the patch win over the replicas field",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if len(v) > 63 or not DNS_LABEL_RE.match(v):
            raise ValueError(f"pool name {v!r} is not a valid DNS label")
        return v


class Topology(CRDSpec):
    """Spread of the workload over pools."""

    pools: List[Pool] = Field(default_factory=list)

    @field_validator("pools")
    @classmethod
    def validate_unique_names(cls, pools):
        seen = set()
        duplicated = []
        for pool in pools:
            if pool.name in seen:
                duplicated.append(pool.name)
            seen.add(pool.name)
        if duplicated:
            raise ValueError(f"duplicated pool names: {duplicated}")
        return pools

    def get_pool(self, name):
        return next((p for p in self.pools if p.name == name), None)


@CRDRegistry.register(GROUP, VERSION, KIND, PLURAL)
class UnitedDeploymentSpec(CRDSpec):
    """UnitedDeployment CRD specification."""

    selector: LabelSelector = Field(
        ..., description="Label query that must match every pool's pods"
    )
    workloadTemplate: WorkloadTemplate = Field(default_factory=WorkloadTemplate)
    topology: Topology = Field(default_factory=Topology)
    revisionHistoryLimit: Optional[int] = Field(
        default=None,
        ge=0,
        description="Number of template revisions to keep (defaults to 10)",
    )


class UnitedDeploymentStatus(CRDStatus):
    """Observed state of a UnitedDeployment."""

    collisionCount: Optional[int] = None
    currentRevision: str = ""
    poolReplicas: Dict[str, int] = Field(default_factory=dict)
    readyReplicas: int = 0
    replicas: int = 0
    templateType: Optional[TemplateType] = None

    def get_condition(self, cond_type):
        cond_type = ConditionType(cond_type).value
        return next((c for c in self.conditions if c.type == cond_type), None)

    def to_patch(self):
        """Dump only the fields owned by the controller."""
        return self.model_dump(
            mode="json", include=set(UnitedDeploymentStatus.model_fields)
        )


class UnitedDeployment(BaseModel):
    """A full UnitedDeployment object as read from the cluster."""

    apiVersion: str = f"{GROUP}/{VERSION}"
    kind: str = KIND
    metadata: CRDMetadata
    spec: UnitedDeploymentSpec
    status: UnitedDeploymentStatus = Field(default_factory=UnitedDeploymentStatus)

    class Config:
        extra = "ignore"

    @classmethod
    def from_body(cls, body):
        """Build the model from a kopf body or a plain manifest dict."""
        body = copy.deepcopy(dict(body))
        return cls.model_validate(
            {
                "apiVersion": body.get("apiVersion", f"{GROUP}/{VERSION}"),
                "kind": body.get("kind", KIND),
                "metadata": body.get("metadata") or {},
                "spec": body.get("spec") or {},
                "status": body.get("status") or {},
            }
        )

    @property
    def name(self):
        return self.metadata.name

    @property
    def namespace(self):
        return self.metadata.namespace

    @property
    def revision_history_limit(self):
        if self.spec.revisionHistoryLimit is None:
            return get_default_revision_history_limit()
        return self.spec.revisionHistoryLimit

    def owner_reference(self):
        """Controller owner reference pointing at this resource."""
        return {
            "apiVersion": self.apiVersion,
            "kind": self.kind,
            "name": self.metadata.name,
            "uid": self.metadata.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }

    def is_deleting(self):
        return self.metadata.deletionTimestamp is not None
