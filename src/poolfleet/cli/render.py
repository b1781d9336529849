""" Offline rendering of the workload a pool would get.
"""

from pathlib import Path

import yaml

from poolfleet.models.uniteddeployment import UnitedDeployment
from poolfleet.services.adapters import WORKLOAD_ADAPTERS, template_type_of
from poolfleet.services.uniteddeployment.reconciler import get_next_pool_states


def load_manifest(path: Path, namespace: str = "default"):
    """ Read a UnitedDeployment manifest, filling in the namespace if absent.
    """
    with open(path, "r") as f:
        body = yaml.safe_load(f)
    if not isinstance(body, dict):
        raise ValueError(f"{path} does not hold a single manifest")
    body.setdefault("metadata", {})
    body["metadata"].setdefault("namespace", namespace)
    return UnitedDeployment.from_body(body)


def render_pool(ud, pool_name, revision):
    """ Build the workload object of one pool at ``revision``.

    Raises:
        ValueError: unknown pool or no workload template
    """
    template_type = template_type_of(ud.spec)
    if template_type is None:
        raise ValueError(f"UnitedDeployment {ud.name} has no template specified")

    next_states = get_next_pool_states(ud)
    if pool_name not in next_states:
        raise ValueError(f"UnitedDeployment {ud.name} has no pool {pool_name}")

    adapter = WORKLOAD_ADAPTERS[template_type](store=None)
    obj = adapter.new_object()
    adapter.apply_pool_template(ud, pool_name, revision, next_states[pool_name].replicas, obj)
    return obj


def dump_yaml(obj):
    return yaml.safe_dump(obj, sort_keys=False, default_flow_style=False)
