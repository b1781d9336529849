"""Static registry mapping custom resource kinds to their models."""

import logging

logger = logging.getLogger(__name__)


class CRDRegistry:
    """Global registry for CRD models.

    Models register themselves at import time with the ``register``
    decorator, so the registry is complete as soon as ``poolfleet.models``
    has been imported. Nothing is discovered at runtime.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._models = {}
        return cls._instance

    @classmethod
    def register(cls, group, version, kind, plural=None):
        """Decorator to register CRD models.

        Args:
            group: API group (e.g., 'apps.poolfleet.io')
            version: API version (e.g., 'v1alpha1')
            kind: Kind name (e.g., 'UnitedDeployment')
            plural: Plural name (defaults to kind.lower() + 's')
        """

        def decorator(model_class):
            if not hasattr(model_class, "__annotations__"):
                raise ValueError(
                    f"CRD model {model_class.__name__} must have type annotations"
                )

            key = f"{group}/{version}/{kind}"
            cls()._models[key] = {
                "model": model_class,
                "group": group,
                "version": version,
                "kind": kind,
                "plural": plural or f"{kind.lower()}s",
            }

            logger.debug(f"Registered CRD: {key}")
            return model_class

        return decorator

    def get_model_by_key(self, group, version, kind):
        """Get a specific CRD model by its key."""
        key = f"{group}/{version}/{kind}"
        return self._models.get(key)
