""" Template revision history of a UnitedDeployment.

Each revision is a ControllerRevision holding the workload template as a
replace patch. Revisions are content-addressed: identical templates share
one revision object, and a template returning to an older content reuses
that older revision with a bumped sequence number.
"""

import copy
import logging

from kubernetes.client.exceptions import ApiException

from poolfleet.config import get_revision_collision_retry_limit
from poolfleet.errors import (
    AggregateError,
    RevisionCollisionError,
    RevisionSyncError,
    TemplateNotSpecifiedError,
    is_already_exists,
)
from poolfleet.services.refmanager import RefManager
from poolfleet.utils.hashing import canonical_json, hash_revision_data, revision_name
from poolfleet.utils.labels import selector_to_string
from poolfleet.utils.patch import PATCH_DIRECTIVE

logger = logging.getLogger(__name__)

REVISION_API_VERSION = "apps/v1"
REVISION_KIND = "ControllerRevision"

# Hash of a ControllerRevision's data.
CONTROLLER_REVISION_HASH_LABEL = "controller.kubernetes.io/hash"


def get_united_deployment_patch(ud):
    """ Revision content: a patch replacing the whole workload template.
    """
    template = ud.spec.workloadTemplate.model_dump(mode="json", exclude_none=True)
    template[PATCH_DIRECTIVE] = "replace"
    return {"spec": {"workloadTemplate": template}}


def revision_content(revision):
    return canonical_json(revision.get("data") or {})


def equal_revision(a, b):
    """ True when both revisions hold byte-identical content.

    Hash labels are not compared: they also cover the collision counter.
    """
    if a is None or b is None:
        return a is b
    return revision_content(a) == revision_content(b)


def find_equal_revisions(revisions, needle):
    return [r for r in revisions if equal_revision(r, needle)]


def sort_revisions(revisions):
    """ Sort in place by sequence number, then creation time, then name.
    """
    revisions.sort(
        key=lambda r: (
            r.get("revision") or 0,
            str((r.get("metadata") or {}).get("creationTimestamp") or ""),
            (r.get("metadata") or {}).get("name") or "",
        )
    )
    return revisions


def next_revision(revisions):
    """ Sequence number following ``revisions`` (sorted), 1 when there are none.
    """
    if not revisions:
        return 1
    return (revisions[-1].get("revision") or 0) + 1


class RevisionManager:
    """Maintains the ControllerRevision history of UnitedDeployments."""

    def __init__(self, store):
        self.store = store

    def controlled_histories(self, ud):
        """ Return the revisions matching the selector that ``ud`` owns.
        """
        selector = ud.spec.selector.model_dump()
        histories = self.store.list(
            REVISION_API_VERSION, REVISION_KIND, ud.namespace, selector_to_string(selector)
        )
        logger.debug(f"List controller revision of UnitedDeployment {ud.namespace}/{ud.name}: count {len(histories)}")
        manager = RefManager(self.store, selector, ud.owner_reference(), owner_deleting=ud.is_deleting())
        return manager.claim_owned_objects([copy.deepcopy(h) for h in histories])

    def reconcile_revisions(self, ud):
        """ Bring the revision history in line with the present template.

        Returns:
            (current, update, collision_count): the revision the pools were
            last rolled to, the revision they should run, and the collision
            counter to persist

        Raises:
            RevisionSyncError: a store call failed, carries the collision counter
            TemplateNotSpecifiedError: no workload template is set
        """
        collision_count = ud.status.collisionCount or 0

        try:
            revisions = sort_revisions(self.controlled_histories(ud))
            revisions = self.clean_expired_revisions(ud, revisions)
        except (ApiException, AggregateError, ValueError) as e:
            raise RevisionSyncError(f"fail to list or prune revisions: {e}", collision_count) from e

        update_revision = self.new_revision(ud, next_revision(revisions), collision_count)

        equal_revisions = find_equal_revisions(revisions, update_revision)
        try:
            if equal_revisions and equal_revision(revisions[-1], equal_revisions[-1]):
                # The template did not change since the latest revision.
                update_revision = revisions[-1]
            elif equal_revisions:
                # Rolling back to an older template: reuse its revision with a new sequence number.
                rolled_back = equal_revisions[-1]
                rolled_back["revision"] = update_revision["revision"]
                update_revision = self.store.update(rolled_back)
                logger.info(
                    f"UnitedDeployment {ud.namespace}/{ud.name} rolled back to revision "
                    f"{rolled_back['metadata']['name']} ({rolled_back['revision']})"
                )
            else:
                update_revision, collision_count = self.create_controller_revision(
                    ud, update_revision, collision_count
                )
        except ApiException as e:
            raise RevisionSyncError(f"fail to store revision: {e}", collision_count) from e

        current_revision = next(
            (r for r in revisions if r["metadata"]["name"] == ud.status.currentRevision),
            None,
        )
        if current_revision is None:
            current_revision = update_revision

        return current_revision, update_revision, collision_count

    def clean_expired_revisions(self, ud, sorted_revisions):
        """ Delete the oldest revisions beyond the history limit.

        The revision currently rolled out is never deleted.

        Returns:
            The remaining revisions, still sorted
        """
        exceed = len(sorted_revisions) - ud.revision_history_limit
        if exceed <= 0:
            return sorted_revisions

        live = ud.status.currentRevision
        kept = []
        for revision in sorted_revisions:
            name = revision["metadata"]["name"]
            if exceed > 0 and name != live:
                logger.info(f"Pruning revision {ud.namespace}/{name} of UnitedDeployment {ud.name}")
                try:
                    self.store.delete(revision)
                except ApiException as e:
                    logger.error(f"Failed to prune revision {ud.namespace}/{name}: {e.reason}")
                    raise
                exceed -= 1
                continue
            kept.append(revision)
        return kept

    def new_revision(self, ud, revision, collision_count):
        """ Build (without storing) a revision of the present template.
        """
        template_type_template = (
            ud.spec.workloadTemplate.statefulSetTemplate or ud.spec.workloadTemplate.deploymentTemplate
        )
        if template_type_template is None:
            logger.error(f"UnitedDeployment({ud.namespace}/{ud.name}) need specific WorkloadTemplate")
            raise TemplateNotSpecifiedError(
                f"UnitedDeployment({ud.namespace}/{ud.name}) need specific WorkloadTemplate"
            )

        data = get_united_deployment_patch(ud)
        hash_ = hash_revision_data(data, collision_count)
        labels = dict(template_type_template.labels)
        labels[CONTROLLER_REVISION_HASH_LABEL] = hash_
        return {
            "apiVersion": REVISION_API_VERSION,
            "kind": REVISION_KIND,
            "metadata": {
                "name": revision_name(ud.name, hash_),
                "namespace": ud.namespace,
                "labels": labels,
                "annotations": {},
                "ownerReferences": [ud.owner_reference()],
            },
            "data": data,
            "revision": revision,
        }

    def create_controller_revision(self, ud, revision, collision_count):
        """ Store ``revision`` under a name derived from its content.

        When the name is taken by a revision with the same content, that one
        is returned. When it is taken by another content, the collision
        counter goes up and a new name is tried.

        Returns:
            (stored revision, collision count)

        Raises:
            RevisionCollisionError: too many collisions in a row
            RevisionSyncError: the store failed, carries the collision counter reached
        """
        clone = copy.deepcopy(revision)
        limit = get_revision_collision_retry_limit()
        for _ in range(limit + 1):
            hash_ = hash_revision_data(revision["data"], collision_count)
            clone["metadata"]["name"] = revision_name(ud.name, hash_)
            clone["metadata"]["labels"][CONTROLLER_REVISION_HASH_LABEL] = hash_
            try:
                created = self.store.create(clone)
            except ApiException as e:
                if not is_already_exists(e):
                    raise RevisionSyncError(f"fail to create revision: {e}", collision_count) from e
                try:
                    exists = self.store.get(
                        REVISION_API_VERSION, REVISION_KIND, ud.namespace, clone["metadata"]["name"]
                    )
                except ApiException as e:
                    raise RevisionSyncError(
                        f"fail to get revision {ud.namespace}/{clone['metadata']['name']}: {e}", collision_count
                    ) from e
                if revision_content(exists) == revision_content(clone):
                    logger.info(f"Reusing existing revision {ud.namespace}/{clone['metadata']['name']}")
                    return exists, collision_count
                collision_count += 1
                logger.info(
                    f"Revision name {clone['metadata']['name']} collides, retrying with collision count {collision_count}"
                )
                continue
            logger.info(f"Created revision {ud.namespace}/{clone['metadata']['name']} ({clone['revision']})")
            return created or clone, collision_count

        raise RevisionCollisionError(
            f"revision name of UnitedDeployment {ud.namespace}/{ud.name} collided more than {limit} times",
            collision_count,
        )
