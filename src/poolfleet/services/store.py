""" Object store access for pool workloads, pods and revisions.

Objects are plain dicts in Kubernetes JSON shape. Failures surface as
``kubernetes.client.exceptions.ApiException``.
"""

import logging
from abc import ABC, abstractmethod

from kubernetes import client, dynamic

logger = logging.getLogger(__name__)

PROPAGATION_BACKGROUND = "Background"


class ObjectStore(ABC):
    """List/get/create/update/patch/delete over namespaced objects."""

    @abstractmethod
    def list(self, api_version, kind, namespace, label_selector=None):
        """Return the objects of a kind matching an (optional) selector string."""

    @abstractmethod
    def get(self, api_version, kind, namespace, name):
        pass

    @abstractmethod
    def create(self, obj):
        """Create ``obj``; ``metadata.generateName`` is honoured. Returns the stored object."""

    @abstractmethod
    def update(self, obj):
        """Replace ``obj``; a stale ``resourceVersion`` is rejected with 409."""

    @abstractmethod
    def patch(self, obj, body):
        """Apply a JSON merge patch to ``obj``."""

    @abstractmethod
    def delete(self, obj, propagation_policy=None):
        pass


class KubernetesObjectStore(ObjectStore):
    """ObjectStore backed by the Kubernetes dynamic client."""

    def __init__(self, api_client=None):
        self._client = dynamic.DynamicClient(api_client or client.ApiClient())

    def _resource(self, api_version, kind):
        return self._client.resources.get(api_version=api_version, kind=kind)

    @staticmethod
    def _ref(obj):
        meta = obj.get("metadata", {})
        return obj["apiVersion"], obj["kind"], meta.get("namespace"), meta.get("name")

    def list(self, api_version, kind, namespace, label_selector=None):
        resource = self._resource(api_version, kind)
        result = resource.get(namespace=namespace, label_selector=label_selector or None)
        items = result.to_dict().get("items") or []
        for item in items:
            item.setdefault("apiVersion", api_version)
            item.setdefault("kind", kind)
        logger.debug(f"Listed {len(items)} {kind} in {namespace} ({label_selector!r})")
        return items

    def get(self, api_version, kind, namespace, name):
        resource = self._resource(api_version, kind)
        return resource.get(name=name, namespace=namespace).to_dict()

    def create(self, obj):
        api_version, kind, namespace, _ = self._ref(obj)
        resource = self._resource(api_version, kind)
        return resource.create(body=obj, namespace=namespace).to_dict()

    def update(self, obj):
        api_version, kind, namespace, _ = self._ref(obj)
        resource = self._resource(api_version, kind)
        return resource.replace(body=obj, namespace=namespace).to_dict()

    def patch(self, obj, body):
        api_version, kind, namespace, name = self._ref(obj)
        resource = self._resource(api_version, kind)
        return resource.patch(
            body=body,
            name=name,
            namespace=namespace,
            content_type="application/merge-patch+json",
        ).to_dict()

    def delete(self, obj, propagation_policy=None):
        api_version, kind, namespace, name = self._ref(obj)
        resource = self._resource(api_version, kind)
        body = {"propagationPolicy": propagation_policy} if propagation_policy else None
        resource.delete(name=name, namespace=namespace, body=body)
