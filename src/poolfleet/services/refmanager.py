""" Ownership claims over objects selected by a label selector.

An owner claims the objects it controls that still match its selector,
adopts matching orphans and releases objects that stopped matching.
"""

import logging

from kubernetes.client.exceptions import ApiException

from poolfleet.errors import AggregateError, is_not_found
from poolfleet.utils.labels import selector_matches

logger = logging.getLogger(__name__)


def get_controller_of(obj):
    """ Return the controller owner reference of ``obj``, if any.
    """
    refs = (obj.get("metadata") or {}).get("ownerReferences") or []
    return next((ref for ref in refs if ref.get("controller")), None)


def controller_reference(owner):
    """ Build a controller owner reference pointing at a plain object.
    """
    meta = owner.get("metadata") or {}
    return {
        "apiVersion": owner["apiVersion"],
        "kind": owner["kind"],
        "name": meta.get("name"),
        "uid": meta.get("uid"),
        "controller": True,
        "blockOwnerDeletion": True,
    }


def set_controller_reference(owner_ref, obj):
    """ Make ``owner_ref`` the controller of ``obj``.

    Raises:
        ValueError: ``obj`` is already controlled by another owner
    """
    meta = obj.setdefault("metadata", {})
    refs = [dict(ref) for ref in meta.get("ownerReferences") or []]
    existing = next((ref for ref in refs if ref.get("controller")), None)
    if existing and existing.get("uid") != owner_ref.get("uid"):
        raise ValueError(
            f"object {meta.get('name') or meta.get('generateName')} is already owned by "
            f"{existing.get('kind')} {existing.get('name')}"
        )

    refs = [ref for ref in refs if ref.get("uid") != owner_ref.get("uid")]
    refs.append(dict(owner_ref))
    meta["ownerReferences"] = refs


class RefManager:
    """Adopts and releases objects on behalf of one owner."""

    def __init__(self, store, selector, owner_ref, owner_deleting=False):
        self.store = store
        self.selector = selector
        self.owner_ref = owner_ref
        self.owner_deleting = owner_deleting

    def claim_owned_objects(self, objs, filters=()):
        """ Return the subset of ``objs`` owned by the owner after claiming.

        Args:
            objs: Candidate objects (mutated in place when adopted or released)
            filters: Extra predicates an object must satisfy to match

        Raises:
            AggregateError: some adopt or release calls failed
        """

        def match(obj):
            labels = (obj.get("metadata") or {}).get("labels") or {}
            if not selector_matches(self.selector, labels):
                return False
            return all(f(obj) for f in filters)

        claimed = []
        errors = []
        for obj in objs:
            try:
                if self.claim_object(obj, match):
                    claimed.append(obj)
            except ApiException as e:
                errors.append(e)

        error = AggregateError.from_errors(errors)
        if error is not None:
            raise error
        return claimed

    def claim_object(self, obj, match):
        controller = get_controller_of(obj)
        if controller is not None:
            if controller.get("uid") != self.owner_ref.get("uid"):
                # Owned by someone else.
                return False
            if match(obj):
                return True
            if self.owner_deleting:
                return False
            self._release(obj)
            return False

        # Orphan.
        if self.owner_deleting or not match(obj):
            return False
        if (obj.get("metadata") or {}).get("deletionTimestamp"):
            return False
        return self._adopt(obj)

    def _adopt(self, obj):
        meta = obj["metadata"]
        refs = list(meta.get("ownerReferences") or []) + [dict(self.owner_ref)]
        try:
            self.store.patch(obj, {"metadata": {"ownerReferences": refs, "uid": meta.get("uid")}})
        except ApiException as e:
            if is_not_found(e):
                return False
            raise
        meta["ownerReferences"] = refs
        logger.info(
            f"{self.owner_ref['kind']} {self.owner_ref['name']} adopted {obj.get('kind')} {meta.get('name')}"
        )
        return True

    def _release(self, obj):
        meta = obj["metadata"]
        refs = [
            ref for ref in meta.get("ownerReferences") or []
            if ref.get("uid") != self.owner_ref.get("uid")
        ]
        try:
            self.store.patch(obj, {"metadata": {"ownerReferences": refs, "uid": meta.get("uid")}})
        except ApiException as e:
            if is_not_found(e):
                return
            raise
        meta["ownerReferences"] = refs
        logger.info(
            f"{self.owner_ref['kind']} {self.owner_ref['name']} released {obj.get('kind')} {meta.get('name')}"
        )
