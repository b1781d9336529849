"""
Unit tests for the pool diff and provisioning.
"""

from unittest.mock import MagicMock

import pytest
from kubernetes.client.exceptions import ApiException

from poolfleet.models.uniteddeployment import (
    ANNOTATION_PATCH_KEY,
    CONTROLLER_REVISION_HASH_LABEL_KEY,
    POOL_NAME_LABEL_KEY,
    TemplateType,
)
from poolfleet.services.adapters import WORKLOAD_ADAPTERS
from poolfleet.services.uniteddeployment import (
    NextPoolState,
    PoolControl,
    PoolSetManager,
    get_next_pool_states,
)

REVISION = {"metadata": {"name": "web-rev1"}}


@pytest.fixture
def controls(store):
    return {t: PoolControl(store, adapter(store)) for t, adapter in WORKLOAD_ADAPTERS.items()}


@pytest.fixture
def manager(controls, recorder):
    return PoolSetManager(controls, recorder)


def live_pools(controls, ud, template_type=TemplateType.DEPLOYMENT):
    return {p.name: p for p in controls[template_type].get_all_pools(ud)}


def pool_names(store, kind="Deployment"):
    return sorted(o["metadata"]["labels"][POOL_NAME_LABEL_KEY] for o in store.all(kind))


class TestManagePoolProvision:
    def test_diff(self, manager, controls, store, recorder, make_ud):
        old = make_ud(pools=[{"name": n, "replicas": 1} for n in ("b", "c", "d")])
        for name in ("b", "c", "d"):
            controls[TemplateType.DEPLOYMENT].create_pool(old, name, "web-rev1", 1)
        ud = make_ud(pools=[{"name": n, "replicas": 1} for n in ("a", "b", "c")])

        exists, changed = manager.manage_pool_provision(
            ud, live_pools(controls, ud), get_next_pool_states(ud), REVISION, TemplateType.DEPLOYMENT
        )

        assert exists == {"b", "c"}
        assert changed
        assert pool_names(store) == ["a", "b", "c"]
        assert recorder.events == [
            ("Normal", "SuccessfulPoolsUpdate", "Create 1 Pool (Deployment)"),
            ("Normal", "SuccessfulPoolsUpdate", "Delete 1 Pool (Deployment)"),
        ]

    def test_nothing_to_do(self, manager, controls, store, recorder, make_ud):
        ud = make_ud()
        for pool in ud.spec.topology.pools:
            controls[TemplateType.DEPLOYMENT].create_pool(ud, pool.name, "web-rev1", pool.replicas)

        exists, changed = manager.manage_pool_provision(
            ud, live_pools(controls, ud), get_next_pool_states(ud), REVISION, TemplateType.DEPLOYMENT
        )

        assert exists == {"beijing", "hangzhou"}
        assert not changed
        assert recorder.events == []

    def test_cross_kind_cleanup(self, manager, controls, store, recorder, make_ud):
        sts_ud = make_ud(kind="StatefulSet")
        controls[TemplateType.STATEFULSET].create_pool(sts_ud, "beijing", "web-rev1", 2)
        # The old workload no longer matches the selector.
        obj = store.all("StatefulSet")[0]
        obj["metadata"]["labels"]["app"] = "old"
        store.objects[store._key(obj)] = obj

        ud = make_ud()
        exists, changed = manager.manage_pool_provision(
            ud, {}, get_next_pool_states(ud), REVISION, TemplateType.DEPLOYMENT
        )

        assert changed
        assert exists == set()
        assert store.all("StatefulSet") == []
        assert pool_names(store) == ["beijing", "hangzhou"]

    def test_create_failure_is_reported(self, manager, controls, store, recorder, make_ud):
        store.fail("create", "Deployment", ApiException(status=500, reason="Boom"))
        ud = make_ud()

        with pytest.raises(Exception) as excinfo:
            manager.manage_pool_provision(ud, {}, get_next_pool_states(ud), REVISION, TemplateType.DEPLOYMENT)

        assert "fail to create Pool (Deployment) beijing" in str(excinfo.value)
        # The first batch failed, so the second pool was never tried.
        assert pool_names(store) == []
        assert recorder.reasons() == ["FailedPoolsUpdate"]

    def test_every_create_failure_in_a_batch_is_reported(
        self, manager, controls, store, recorder, make_ud, monkeypatch
    ):
        monkeypatch.setenv("SLOW_START_INITIAL_BATCH_SIZE", "2")
        store.fail(
            "create", "Deployment", ApiException(status=500, reason="Boom"), ApiException(status=500, reason="Bang")
        )
        ud = make_ud()

        with pytest.raises(Exception) as excinfo:
            manager.manage_pool_provision(ud, {}, get_next_pool_states(ud), REVISION, TemplateType.DEPLOYMENT)

        assert "fail to create Pool (Deployment) beijing" in str(excinfo.value)
        assert "fail to create Pool (Deployment) hangzhou" in str(excinfo.value)
        assert recorder.reasons() == ["FailedPoolsUpdate", "FailedPoolsUpdate"]

    def test_delete_failures_do_not_stop_other_deletes(self, manager, controls, store, recorder, make_ud):
        old = make_ud(pools=[{"name": n, "replicas": 1} for n in ("x", "y")])
        for name in ("x", "y"):
            controls[TemplateType.DEPLOYMENT].create_pool(old, name, "web-rev1", 1)
        ud = make_ud(pools=[])
        store.fail("delete", "Deployment", ApiException(status=500, reason="Boom"))

        with pytest.raises(Exception) as excinfo:
            manager.manage_pool_provision(
                ud, live_pools(controls, ud), get_next_pool_states(ud), REVISION, TemplateType.DEPLOYMENT
            )

        assert "fail to delete Pool (Deployment)" in str(excinfo.value)
        assert len(store.verbs("delete", "Deployment")) == 2
        assert len(store.all("Deployment")) == 1
        assert recorder.reasons() == ["FailedPoolsUpdate"]


class TestManagePools:
    def test_updates_only_what_differs(self, manager, controls, store, recorder, make_ud):
        ud = make_ud(
            pools=[
                {"name": "same", "replicas": 1},
                {"name": "scaled", "replicas": 1},
                {"name": "patched", "replicas": 1},
            ]
        )
        for pool in ud.spec.topology.pools:
            controls[TemplateType.DEPLOYMENT].create_pool(ud, pool.name, "web-rev1", 1)
        target = make_ud(
            pools=[
                {"name": "same", "replicas": 1},
                {"name": "scaled", "replicas": 4},
                {"name": "patched", "replicas": 1, "patch": {"metadata": {"labels": {"x": "y"}}}},
            ]
        )

        status, error = manager.manage_pools(
            target, live_pools(controls, target), get_next_pool_states(target), REVISION, TemplateType.DEPLOYMENT
        )

        assert error is None
        assert len(store.verbs("update", "Deployment")) == 2
        objs = {o["metadata"]["labels"][POOL_NAME_LABEL_KEY]: o for o in store.all("Deployment")}
        assert objs["scaled"]["spec"]["replicas"] == 4
        assert ANNOTATION_PATCH_KEY in objs["patched"]["metadata"]["annotations"]
        assert status.get_condition("PoolProvisioned").status == "True"
        assert status.get_condition("PoolUpdated").status == "True"
        assert ("Normal", "SuccessfulPoolsUpdate", "Update 2 Pool (Deployment)") in recorder.events

    def test_new_revision_updates_every_pool(self, manager, controls, store, make_ud):
        ud = make_ud()
        for pool in ud.spec.topology.pools:
            controls[TemplateType.DEPLOYMENT].create_pool(ud, pool.name, "web-rev1", pool.replicas)

        manager.manage_pools(
            ud, live_pools(controls, ud), get_next_pool_states(ud), {"metadata": {"name": "web-rev2"}},
            TemplateType.DEPLOYMENT,
        )

        labels = [o["metadata"]["labels"][CONTROLLER_REVISION_HASH_LABEL_KEY] for o in store.all("Deployment")]
        assert labels == ["web-rev2", "web-rev2"]

    def test_update_failure_sets_condition(self, manager, controls, store, recorder, make_ud):
        ud = make_ud()
        for pool in ud.spec.topology.pools:
            controls[TemplateType.DEPLOYMENT].create_pool(ud, pool.name, "web-rev1", pool.replicas)
        controls[TemplateType.DEPLOYMENT].update_pool = MagicMock(side_effect=RuntimeError("conflict storm"))

        status, error = manager.manage_pools(
            ud, live_pools(controls, ud), get_next_pool_states(ud), {"metadata": {"name": "web-rev2"}},
            TemplateType.DEPLOYMENT,
        )

        assert str(error) == "conflict storm"
        condition = status.get_condition("PoolUpdated")
        assert (condition.status, condition.reason, condition.message) == ("False", "Error", "conflict storm")
        assert recorder.reasons() == ["FailedPoolsUpdate"]
        # Slow start: only the first pool was tried.
        assert controls[TemplateType.DEPLOYMENT].update_pool.call_count == 1

    def test_provision_failure_skips_updates(self, manager, controls, store, make_ud):
        store.fail("create", "Deployment", ApiException(status=500, reason="Boom"))
        ud = make_ud()

        status, error = manager.manage_pools(
            ud, {}, get_next_pool_states(ud), REVISION, TemplateType.DEPLOYMENT
        )

        assert error is not None
        condition = status.get_condition("PoolProvisioned")
        assert (condition.status, condition.reason) == ("False", "Error")
        assert status.get_condition("PoolUpdated") is None

    def test_status_is_a_copy(self, manager, make_ud):
        ud = make_ud(pools=[])

        status, _ = manager.manage_pools(ud, {}, {}, REVISION, TemplateType.DEPLOYMENT)

        assert status.conditions
        assert ud.status.conditions == []


class TestNextPoolStates:
    def test_patch_replicas_win(self, make_ud):
        ud = make_ud(
            pools=[
                {"name": "plain", "replicas": 3},
                {"name": "patched", "replicas": 3, "patch": {"spec": {"replicas": 5}}},
                {"name": "unset"},
            ]
        )

        states = get_next_pool_states(ud)

        assert states["plain"] == NextPoolState(replicas=3, patch="")
        assert states["patched"] == NextPoolState(replicas=5, patch='{"spec":{"replicas":5}}')
        assert states["unset"].replicas == 0
