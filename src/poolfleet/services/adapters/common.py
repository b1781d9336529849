""" Template application steps shared by all workload adapters.
"""

import copy
import logging
import re

from poolfleet.models.uniteddeployment import (
    ANNOTATION_PATCH_KEY,
    CONTROLLER_REVISION_HASH_LABEL_KEY,
    POOL_NAME_LABEL_KEY,
)
from poolfleet.services.refmanager import set_controller_reference
from poolfleet.utils.hashing import canonical_json
from poolfleet.utils.patch import strategic_merge

logger = logging.getLogger(__name__)

DNS_SUBDOMAIN_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
DNS_SUBDOMAIN_MAX_LEN = 253


def get_pool_prefix(controller_name, pool_name):
    """ Generated-name prefix of a pool workload.

    Falls back to ``<controller-name>-`` when the full prefix could not
    produce a valid name.
    """
    prefix = f"{controller_name}-{pool_name}-"
    # A generated suffix gets appended to the prefix.
    candidate = prefix + "a"
    if len(candidate) > DNS_SUBDOMAIN_MAX_LEN or not DNS_SUBDOMAIN_RE.match(candidate):
        prefix = f"{controller_name}-"
    return prefix


def get_pool_name_from(obj):
    """ Read the pool name label of a pool workload.

    Raises:
        ValueError: the label is missing
    """
    labels = (obj.get("metadata") or {}).get("labels") or {}
    name = labels.get(POOL_NAME_LABEL_KEY)
    if not name:
        raise ValueError(
            f"fail to get pool name from label of {obj.get('kind')} "
            f"{(obj.get('metadata') or {}).get('name')}"
        )
    return name


def get_pool(ud, pool_name):
    pool = ud.spec.topology.get_pool(pool_name)
    if pool is None:
        raise ValueError(f"fail to find pool config {pool_name}")
    return pool


def pool_selector(ud, pool_name):
    """ The resource selector narrowed to one pool.
    """
    selector = ud.spec.selector.model_dump(exclude_defaults=True)
    selector.setdefault("matchLabels", {})[POOL_NAME_LABEL_KEY] = pool_name
    return selector


def apply_pool_metadata(ud, template, pool_name, revision, obj):
    """ Namespace, labels, annotations, name prefix and controller of a pool workload.
    """
    meta = obj.setdefault("metadata", {})
    meta["namespace"] = ud.namespace

    labels = dict(meta.get("labels") or {})
    labels.update(template.labels)
    labels.update(ud.spec.selector.matchLabels)
    labels[CONTROLLER_REVISION_HASH_LABEL_KEY] = revision
    labels[POOL_NAME_LABEL_KEY] = pool_name
    meta["labels"] = labels

    annotations = dict(meta.get("annotations") or {})
    annotations.update(template.annotations)
    meta["annotations"] = annotations

    meta["generateName"] = get_pool_prefix(ud.name, pool_name)
    set_controller_reference(ud.owner_reference(), obj)


def stamp_pod_template(pod_template, pool_name, revision):
    """ Copy of the pod template labelled with the pool and revision.
    """
    pod_template = copy.deepcopy(pod_template or {})
    meta = pod_template.setdefault("metadata", {})
    labels = dict(meta.get("labels") or {})
    labels[POOL_NAME_LABEL_KEY] = pool_name
    labels[CONTROLLER_REVISION_HASH_LABEL_KEY] = revision
    meta["labels"] = labels
    pod_template.setdefault("spec", {})
    return pod_template


def copy_spec_fields(source, target, fields):
    """ Copy fields from the template spec, dropping the ones it leaves unset.
    """
    for field in fields:
        if source.get(field) is not None:
            target[field] = copy.deepcopy(source[field])
        else:
            target.pop(field, None)


def attach_node_affinity_and_tolerations(pod_spec, pool):
    attach_node_affinity(pod_spec, pool)
    attach_tolerations(pod_spec, pool)


def attach_node_affinity(pod_spec, pool):
    """ AND the pool's node selector term into every required node affinity term.
    """
    term = pool.nodeSelectorTerm or {}
    expressions = term.get("matchExpressions") or []
    fields = term.get("matchFields") or []
    if not expressions and not fields:
        return

    affinity = pod_spec.setdefault("affinity", {}) or {}
    pod_spec["affinity"] = affinity
    node_affinity = affinity.setdefault("nodeAffinity", {}) or {}
    affinity["nodeAffinity"] = node_affinity
    required = node_affinity.setdefault("requiredDuringSchedulingIgnoredDuringExecution", {}) or {}
    node_affinity["requiredDuringSchedulingIgnoredDuringExecution"] = required

    terms = required.get("nodeSelectorTerms") or [{}]
    for t in terms:
        if expressions:
            t["matchExpressions"] = list(t.get("matchExpressions") or []) + copy.deepcopy(expressions)
        if fields:
            t["matchFields"] = list(t.get("matchFields") or []) + copy.deepcopy(fields)
    required["nodeSelectorTerms"] = terms


def attach_tolerations(pod_spec, pool):
    if not pool.tolerations:
        return
    tolerations = list(pod_spec.get("tolerations") or [])
    tolerations.extend(copy.deepcopy(pool.tolerations))
    pod_spec["tolerations"] = tolerations


def pool_patch_content(pool):
    """ Canonical patch content of a pool, "" when it has none.
    """
    if not pool.patch:
        return ""
    return canonical_json(pool.patch)


def pool_has_patch(pool, obj):
    """ Record the pool patch in the applied-patch annotation.

    Returns:
        bool: whether the pool carries a patch
    """
    annotations = obj.setdefault("metadata", {}).setdefault("annotations", {})
    if not pool.patch:
        annotations.pop(ANNOTATION_PATCH_KEY, None)
        return False
    annotations[ANNOTATION_PATCH_KEY] = pool_patch_content(pool)
    return True


def apply_pool_patch(pool, obj):
    """ Merge the pool patch over the fully built workload object in place.
    """
    meta = obj.get("metadata") or {}
    if not pool_has_patch(pool, obj):
        logger.debug(
            f"{obj.get('kind')}[{meta.get('namespace')}/{meta.get('generateName')}] has no patches"
        )
        return

    patched = strategic_merge(obj, pool.patch)
    obj.clear()
    obj.update(patched)
    logger.info(
        f"{obj.get('kind')}[{meta.get('namespace')}/{meta.get('generateName')}] "
        f"patched: {pool_patch_content(pool)}"
    )


def revision_label_differs(obj, revision):
    labels = (obj.get("metadata") or {}).get("labels") or {}
    return labels.get(CONTROLLER_REVISION_HASH_LABEL_KEY) != revision
