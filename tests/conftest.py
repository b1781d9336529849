"""
Shared fixtures for the poolfleet unit tests.

The in-memory object store mimics the parts of the Kubernetes API the
operator relies on: generated names, uids, resourceVersion conflicts,
label selector filtering, merge patches and ApiException failures.
"""

import copy
import itertools
import json
from unittest.mock import Mock

import pytest
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic.exceptions import api_exception

from poolfleet.models.uniteddeployment import UnitedDeployment
from poolfleet.services.store import ObjectStore


HTTP_REASONS = {
    404: "Not Found",
    409: "Conflict",
    500: "Internal Server Error",
    504: "Gateway Timeout",
}


def api_error(status, reason):
    """Error shaped like the dynamic client raises it.

    The HTTP phrase is in ``reason``, the Kubernetes Status in ``body``.
    """
    body = json.dumps(
        {"kind": "Status", "apiVersion": "v1", "status": "Failure", "reason": reason, "code": status}
    )
    http_resp = Mock(status=status, reason=HTTP_REASONS.get(status, reason), data=body)
    http_resp.getheaders.return_value = {}
    return api_exception(ApiException(http_resp=http_resp))


def _parse_selector(label_selector):
    requirements = []
    for part in filter(None, (label_selector or "").split(",")):
        if "!=" in part:
            key, value = part.split("!=", 1)
            requirements.append(lambda labels, k=key, v=value: labels.get(k) != v)
        elif "=" in part:
            key, value = part.split("=", 1)
            requirements.append(lambda labels, k=key, v=value: labels.get(k) == v)
        elif part.startswith("!"):
            requirements.append(lambda labels, k=part[1:]: k not in labels)
        else:
            requirements.append(lambda labels, k=part: k in labels)
    return requirements


def _merge_patch(target, patch):
    for key, value in patch.items():
        if value is None:
            target.pop(key, None)
        elif isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge_patch(target[key], value)
        else:
            target[key] = copy.deepcopy(value)
    return target


class FakeObjectStore(ObjectStore):
    """In-memory ObjectStore."""

    def __init__(self):
        self.objects = {}
        self.calls = []
        self.failures = {}
        self._counter = itertools.count(1)

    # Test helpers

    def fail(self, verb, kind, *errors):
        """Make the next calls of ``verb`` on ``kind`` raise ``errors`` in order."""
        self.failures.setdefault((verb, kind), []).extend(errors)

    def add(self, obj):
        """Store ``obj`` as if it had been created, and return the stored copy."""
        return self._insert(copy.deepcopy(obj))

    def all(self, kind):
        return [copy.deepcopy(o) for key, o in sorted(self.objects.items()) if key[1] == kind]

    def verbs(self, verb, kind=None):
        return [c for c in self.calls if c[0] == verb and (kind is None or c[1] == kind)]

    def _check(self, verb, kind, name):
        self.calls.append((verb, kind, name))
        pending = self.failures.get((verb, kind))
        if pending:
            raise pending.pop(0)

    @staticmethod
    def _key(obj):
        meta = obj.get("metadata") or {}
        return obj.get("apiVersion"), obj.get("kind"), meta.get("namespace"), meta.get("name")

    def _insert(self, obj):
        meta = obj.setdefault("metadata", {})
        n = next(self._counter)
        if not meta.get("name"):
            meta["name"] = f"{meta.get('generateName', 'obj-')}{n:05d}"
        meta.setdefault("uid", f"uid-{n}")
        meta.setdefault("creationTimestamp", f"2024-01-01T00:{n // 60:02d}:{n % 60:02d}Z")
        meta["resourceVersion"] = str(n)
        self.objects[self._key(obj)] = obj
        return copy.deepcopy(obj)

    # ObjectStore

    def list(self, api_version, kind, namespace, label_selector=None):
        self._check("list", kind, label_selector)
        requirements = _parse_selector(label_selector)
        items = []
        for (av, k, ns, _), obj in sorted(self.objects.items()):
            if av != api_version or k != kind or ns != namespace:
                continue
            labels = (obj.get("metadata") or {}).get("labels") or {}
            if all(r(labels) for r in requirements):
                items.append(copy.deepcopy(obj))
        return items

    def get(self, api_version, kind, namespace, name):
        self._check("get", kind, name)
        obj = self.objects.get((api_version, kind, namespace, name))
        if obj is None:
            raise api_error(404, "NotFound")
        return copy.deepcopy(obj)

    def create(self, obj):
        meta = obj.get("metadata") or {}
        self._check("create", obj.get("kind"), meta.get("name") or meta.get("generateName"))
        if meta.get("name") and self._key(obj) in self.objects:
            raise api_error(409, "AlreadyExists")
        return self._insert(copy.deepcopy(obj))

    def update(self, obj):
        key = self._key(obj)
        self._check("update", obj.get("kind"), key[3])
        current = self.objects.get(key)
        if current is None:
            raise api_error(404, "NotFound")
        version = (obj.get("metadata") or {}).get("resourceVersion")
        if version and version != current["metadata"]["resourceVersion"]:
            raise api_error(409, "Conflict")
        obj = copy.deepcopy(obj)
        obj["metadata"]["resourceVersion"] = str(next(self._counter))
        self.objects[key] = obj
        return copy.deepcopy(obj)

    def patch(self, obj, body):
        key = self._key(obj)
        self._check("patch", obj.get("kind"), key[3])
        current = self.objects.get(key)
        if current is None:
            raise api_error(404, "NotFound")
        _merge_patch(current, body)
        current["metadata"]["resourceVersion"] = str(next(self._counter))
        return copy.deepcopy(current)

    def delete(self, obj, propagation_policy=None):
        key = self._key(obj)
        self._check("delete", obj.get("kind"), key[3])
        self.calls[-1] = ("delete", obj.get("kind"), key[3], propagation_policy)
        if key not in self.objects:
            raise api_error(404, "NotFound")
        del self.objects[key]


class FakeRecorder:
    """Event recorder keeping (severity, reason, message) tuples."""

    def __init__(self):
        self.events = []

    def record(self, obj, severity, reason, message):
        self.events.append((severity, reason, message))

    def reasons(self):
        return [e[1] for e in self.events]


DEPLOYMENT_TEMPLATE = {
    "metadata": {"labels": {"app": "web"}, "annotations": {"team": "edge"}},
    "spec": {
        "selector": {"matchLabels": {"app": "web"}},
        "strategy": {"type": "RollingUpdate"},
        "template": {
            "metadata": {"labels": {"app": "web"}},
            "spec": {"containers": [{"name": "web", "image": "nginx:1.25"}]},
        },
    },
}

STATEFULSET_TEMPLATE = {
    "metadata": {"labels": {"app": "web"}},
    "spec": {
        "selector": {"matchLabels": {"app": "web"}},
        "serviceName": "web",
        "updateStrategy": {"type": "RollingUpdate"},
        "template": {
            "metadata": {"labels": {"app": "web"}},
            "spec": {"containers": [{"name": "web", "image": "nginx:1.25"}]},
        },
    },
}


def build_body(
    name="web",
    namespace="default",
    uid="ud-uid",
    kind="Deployment",
    pools=None,
    image="nginx:1.25",
    status=None,
    revision_history_limit=None,
    generation=1,
):
    """Plain UnitedDeployment manifest."""
    if kind == "Deployment":
        template = {"deploymentTemplate": copy.deepcopy(DEPLOYMENT_TEMPLATE)}
        template["deploymentTemplate"]["spec"]["template"]["spec"]["containers"][0]["image"] = image
    elif kind == "StatefulSet":
        template = {"statefulSetTemplate": copy.deepcopy(STATEFULSET_TEMPLATE)}
        template["statefulSetTemplate"]["spec"]["template"]["spec"]["containers"][0]["image"] = image
    else:
        template = {}

    if pools is None:
        pools = [{"name": "beijing", "replicas": 2}, {"name": "hangzhou", "replicas": 1}]

    spec = {
        "selector": {"matchLabels": {"app": "web"}},
        "workloadTemplate": template,
        "topology": {"pools": pools},
    }
    if revision_history_limit is not None:
        spec["revisionHistoryLimit"] = revision_history_limit

    return {
        "apiVersion": "apps.poolfleet.io/v1alpha1",
        "kind": "UnitedDeployment",
        "metadata": {"name": name, "namespace": namespace, "uid": uid, "generation": generation},
        "spec": spec,
        "status": status or {},
    }


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def recorder():
    return FakeRecorder()


@pytest.fixture
def make_body():
    """Factory of UnitedDeployment manifests."""
    return build_body


@pytest.fixture
def make_ud():
    """Factory of UnitedDeployment models."""

    def _make(**kwargs):
        return UnitedDeployment.from_body(build_body(**kwargs))

    return _make


@pytest.fixture
def status_error():
    """Factory of API errors carrying a Kubernetes Status."""
    return api_error
