"""Tests for applying and deleting rendered manifests."""

from __future__ import annotations

import asyncio

import pytest

from clustermanager.errors import ControlPlaneError
from clustermanager.models import RelatedResourceMeta
from clustermanager.resourceapply import (
    EventRecorder,
    ResourceCache,
    apply_directly,
    delete_manifest,
    guess_resource,
    object_key,
    parse_object,
    related_resource_meta,
    set_related_resources_statuses_with_obj,
)
from hub_mock import FakeControlPlane

MANIFESTS = {
    "ns.yaml": b"apiVersion: v1\nkind: Namespace\nmetadata:\n  name: hub\n",
    "sa.yaml": (
        b"apiVersion: v1\nkind: ServiceAccount\nmetadata:\n  name: sa\n  namespace: hub\n"
    ),
    "role.yaml": (
        b"apiVersion: rbac.authorization.k8s.io/v1\nkind: ClusterRole\n"
        b"metadata:\n  name: role\nrules: []\n"
    ),
    "svc.yaml": (
        b"apiVersion: v1\nkind: Service\nmetadata:\n  name: svc\n  namespace: hub\n"
    ),
    "broken.yaml": b"kind: [unclosed\n",
    "nameless.yaml": b"apiVersion: v1\nkind: ConfigMap\nmetadata: {}\n",
}


def manifest_func(name: str) -> bytes:
    return MANIFESTS[name]


class TestParseObject:
    """Tests for parse_object."""

    def test_valid(self) -> None:
        obj = parse_object(MANIFESTS["sa.yaml"])
        assert object_key(obj) == ("v1", "ServiceAccount", "hub", "sa")

    def test_invalid_yaml(self) -> None:
        with pytest.raises(ValueError, match="invalid YAML"):
            parse_object(MANIFESTS["broken.yaml"])

    def test_missing_name(self) -> None:
        with pytest.raises(ValueError, match="metadata.name"):
            parse_object(MANIFESTS["nameless.yaml"])

    def test_not_a_mapping(self) -> None:
        with pytest.raises(ValueError, match="mapping"):
            parse_object(b"- a\n- b\n")


class TestRelatedResources:
    """Tests for related resource bookkeeping."""

    @pytest.mark.parametrize(
        "kind,expected",
        [
            ("Namespace", "namespaces"),
            ("ClusterRole", "clusterroles"),
            ("Endpoints", "endpoints"),
            ("Ingress", "ingresses"),
            ("NetworkPolicy", "networkpolicies"),
        ],
    )
    def test_guess_resource(self, kind: str, expected: str) -> None:
        assert guess_resource(kind) == expected

    def test_core_group_is_empty(self) -> None:
        meta = related_resource_meta(parse_object(MANIFESTS["sa.yaml"]))
        assert meta == RelatedResourceMeta(
            group="", version="v1", resource="serviceaccounts", namespace="hub", name="sa"
        )

    def test_named_group(self) -> None:
        meta = related_resource_meta(parse_object(MANIFESTS["role.yaml"]))
        assert meta.group == "rbac.authorization.k8s.io"
        assert meta.version == "v1"
        assert meta.namespace == ""

    def test_recorded_once(self) -> None:
        related: list[RelatedResourceMeta] = []
        set_related_resources_statuses_with_obj(related, MANIFESTS["ns.yaml"])
        set_related_resources_statuses_with_obj(related, MANIFESTS["ns.yaml"])
        set_related_resources_statuses_with_obj(related, MANIFESTS["svc.yaml"])

        assert [m.resource for m in related] == ["namespaces", "services"]


class TestResourceCache:
    """Tests for ResourceCache."""

    def test_record_and_hit(self) -> None:
        cache = ResourceCache()
        key = ("v1", "Namespace", "", "hub")
        cache.record(key, "abc", "7")

        assert cache.lookup(key, "abc") == "7"
        assert cache.lookup(key, "def") is None

    def test_expired_entry_is_a_miss(self) -> None:
        cache = ResourceCache(ttl_seconds=-1)
        key = ("v1", "Namespace", "", "hub")
        cache.record(key, "abc", "7")

        assert cache.lookup(key, "abc") is None
        assert len(cache) == 0

    def test_forget(self) -> None:
        cache = ResourceCache()
        key = ("v1", "Namespace", "", "hub")
        cache.record(key, "abc", "7")
        cache.forget(key)
        cache.forget(key)

        assert cache.lookup(key, "abc") is None


class TestApplyDirectly:
    """Tests for apply_directly."""

    @pytest.mark.asyncio
    async def test_one_result_per_manifest_in_order(self) -> None:
        plane = FakeControlPlane()
        files = ("ns.yaml", "sa.yaml", "role.yaml", "svc.yaml")

        results = await apply_directly(
            plane, EventRecorder(), ResourceCache(), manifest_func, *files
        )

        assert [r.file for r in results] == list(files)
        assert all(r.success and r.changed for r in results)
        assert [r.type for r in results] == ["Namespace", "ServiceAccount", "ClusterRole", "Service"]
        assert plane.object_count == 4

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_other_applies(self) -> None:
        plane = FakeControlPlane()
        plane.fail_apply(kind="ServiceAccount", error=ControlPlaneError("forbidden"))
        recorder = EventRecorder()

        results = await apply_directly(
            plane, recorder, ResourceCache(), manifest_func, "ns.yaml", "sa.yaml", "svc.yaml"
        )

        assert [r.success for r in results] == [True, False, True]
        assert str(results[1].error) == "forbidden"
        assert results[1].type == "ServiceAccount"
        assert plane.has("v1", "Service", "hub", "svc")
        assert any(e.reason == "ServiceAccountApplyFailed" and e.warning for e in recorder.events)

    @pytest.mark.asyncio
    async def test_render_failure_captured(self) -> None:
        plane = FakeControlPlane()

        results = await apply_directly(
            plane, EventRecorder(), ResourceCache(), manifest_func, "broken.yaml", "ns.yaml"
        )

        assert results[0].error is not None
        assert results[0].type == "unknown"
        assert results[1].success
        assert len(plane.applies) == 1

    @pytest.mark.asyncio
    async def test_missing_manifest_captured(self) -> None:
        results = await apply_directly(
            FakeControlPlane(), EventRecorder(), ResourceCache(), manifest_func, "absent.yaml"
        )
        assert isinstance(results[0].error, KeyError)

    @pytest.mark.asyncio
    async def test_unchanged_object_skipped(self) -> None:
        plane = FakeControlPlane()
        cache = ResourceCache()
        recorder = EventRecorder()

        await apply_directly(plane, recorder, cache, manifest_func, "ns.yaml")
        results = await apply_directly(plane, recorder, cache, manifest_func, "ns.yaml")

        assert len(plane.applies) == 1
        assert plane.gets == [("v1", "Namespace", "", "hub")]
        assert results[0].success
        assert results[0].changed is False
        assert results[0].result["metadata"]["resourceVersion"] == "1"

    @pytest.mark.asyncio
    async def test_object_removed_from_control_plane_is_reapplied(self) -> None:
        plane = FakeControlPlane()
        cache = ResourceCache()

        await apply_directly(plane, EventRecorder(), cache, manifest_func, "ns.yaml")
        plane.remove("v1", "Namespace", "", "hub")
        results = await apply_directly(plane, EventRecorder(), cache, manifest_func, "ns.yaml")

        assert len(plane.applies) == 2
        assert results[0].changed is True
        assert plane.has("v1", "Namespace", "", "hub")

    @pytest.mark.asyncio
    async def test_object_changed_on_control_plane_is_reapplied(self) -> None:
        plane = FakeControlPlane()
        cache = ResourceCache()

        await apply_directly(plane, EventRecorder(), cache, manifest_func, "ns.yaml")
        edited = plane.stored("v1", "Namespace", "", "hub")
        edited["metadata"]["resourceVersion"] = "99"
        results = await apply_directly(plane, EventRecorder(), cache, manifest_func, "ns.yaml")

        assert len(plane.applies) == 2
        assert results[0].changed is True

    @pytest.mark.asyncio
    async def test_get_failure_is_captured(self) -> None:
        plane = FakeControlPlane()
        cache = ResourceCache()
        await apply_directly(plane, EventRecorder(), cache, manifest_func, "ns.yaml")

        async def broken_get(obj):
            raise ControlPlaneError("unreachable")

        plane.get = broken_get
        results = await apply_directly(plane, EventRecorder(), cache, manifest_func, "ns.yaml")

        assert isinstance(results[0].error, ControlPlaneError)
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_failed_apply_retried_next_time(self) -> None:
        plane = FakeControlPlane()
        cache = ResourceCache()
        plane.fail_apply(kind="Namespace")

        first = await apply_directly(plane, EventRecorder(), cache, manifest_func, "ns.yaml")
        plane.clear_failures()
        second = await apply_directly(plane, EventRecorder(), cache, manifest_func, "ns.yaml")

        assert not first[0].success
        assert second[0].success
        assert len(plane.applies) == 2

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self) -> None:
        plane = FakeControlPlane(apply_delay=0.01)

        await apply_directly(
            plane,
            EventRecorder(),
            ResourceCache(),
            manifest_func,
            "ns.yaml",
            "sa.yaml",
            "role.yaml",
            "svc.yaml",
            max_concurrency=2,
        )

        assert 1 <= plane.max_in_flight <= 2

    @pytest.mark.asyncio
    async def test_rendering_happens_in_manifest_order(self) -> None:
        rendered: list[str] = []

        def recording_func(name: str) -> bytes:
            rendered.append(name)
            return MANIFESTS[name]

        files = ("svc.yaml", "ns.yaml", "role.yaml")
        await apply_directly(
            FakeControlPlane(apply_delay=0.01),
            EventRecorder(),
            ResourceCache(),
            recording_func,
            *files,
        )

        assert rendered == list(files)

    @pytest.mark.asyncio
    async def test_timeout_propagates(self) -> None:
        plane = FakeControlPlane()
        plane.fail_apply(kind="Namespace", error=TimeoutError())

        with pytest.raises(TimeoutError):
            await apply_directly(plane, EventRecorder(), ResourceCache(), manifest_func, "ns.yaml")

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self) -> None:
        plane = FakeControlPlane(apply_delay=10)

        task = asyncio.ensure_future(
            apply_directly(plane, EventRecorder(), ResourceCache(), manifest_func, "ns.yaml")
        )
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestDeleteManifest:
    """Tests for delete_manifest."""

    @pytest.mark.asyncio
    async def test_deletes_existing_object(self) -> None:
        plane = FakeControlPlane()
        plane.seed(parse_object(MANIFESTS["sa.yaml"]))
        recorder = EventRecorder()

        deleted = await delete_manifest(plane, recorder, manifest_func, "sa.yaml")

        assert deleted is True
        assert not plane.has("v1", "ServiceAccount", "hub", "sa")
        assert recorder.events[-1].reason == "ServiceAccountDeleted"

    @pytest.mark.asyncio
    async def test_absent_object_is_success(self) -> None:
        deleted = await delete_manifest(FakeControlPlane(), EventRecorder(), manifest_func, "sa.yaml")
        assert deleted is False

    @pytest.mark.asyncio
    async def test_other_errors_raised(self) -> None:
        plane = FakeControlPlane()
        plane.fail_delete(kind="ServiceAccount", error=ControlPlaneError("forbidden"))

        with pytest.raises(ControlPlaneError, match="forbidden"):
            await delete_manifest(plane, EventRecorder(), manifest_func, "sa.yaml")

    @pytest.mark.asyncio
    async def test_delete_forgets_cached_digest(self) -> None:
        plane = FakeControlPlane()
        cache = ResourceCache()
        await apply_directly(plane, EventRecorder(), cache, manifest_func, "sa.yaml")

        await delete_manifest(plane, EventRecorder(), manifest_func, "sa.yaml", cache=cache)
        await apply_directly(plane, EventRecorder(), cache, manifest_func, "sa.yaml")

        assert len(plane.applies) == 2
        assert plane.has("v1", "ServiceAccount", "hub", "sa")


class TestEventRecorder:
    def test_events_bounded(self) -> None:
        recorder = EventRecorder()
        for i in range(1100):
            recorder.event("Reason", f"message {i}")

        assert len(recorder.events) == 1000
        assert recorder.events[-1].message == "message 1099"
