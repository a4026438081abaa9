"""Unit tests for reconciler.py - the Emitter reconcile state machine."""

import asyncio

import pytest
from kubernetes.client import ApiException

from conftest import make_emitter
from errors import ErrorKind
from manifest import ManifestLoader
from models import ObjectKey
from reconciler import (
    ACTION_CREATED,
    ACTION_DELETED,
    ACTION_NONE,
    ACTION_SKIPPED,
    GENERATED_ANNOTATION,
    GENERATED_VALUE,
    OWNER_ANNOTATION,
    EmitterReconciler,
    ReconcileResult,
)

KEY = ObjectKey("default", "e1")
DEPLOYMENT_KEY = ObjectKey("default", "emitter-foo")


class TestReconcileResult:
    """Tests for ReconcileResult dataclass."""

    def test_default_values(self):
        result = ReconcileResult()
        assert result.success is True
        assert result.action == ACTION_NONE
        assert result.message == ""
        assert result.error_kind is None
        assert result.requeue is False

    def test_failure_requeues(self):
        result = ReconcileResult(success=False, error_kind=ErrorKind.TRANSIENT)
        assert result.requeue is True


class TestReconcilerInit:
    """Tests for EmitterReconciler construction."""

    def test_keeps_injected_empty_tracker(self, store, loader, tracker):
        reconciler = EmitterReconciler(store=store, loader=loader, tracker=tracker)
        assert reconciler.tracker is tracker

    def test_default_tracker(self, store, loader):
        reconciler = EmitterReconciler(store=store, loader=loader)
        assert reconciler.tracker is not None


# ==================== Emitter present ====================


@pytest.mark.asyncio
class TestEmitterPresent:
    """Reconciling an Emitter that exists."""

    async def test_creates_paired_deployment(self, reconciler, store):
        store.add_emitter(make_emitter(pair_name="foo"))

        result = await reconciler.reconcile(KEY)

        assert result.success is True
        assert result.action == ACTION_CREATED
        assert store.created == [DEPLOYMENT_KEY]

        deployment = store.deployments[DEPLOYMENT_KEY]
        assert deployment["metadata"]["namespace"] == "default"
        assert deployment["metadata"]["name"] == "emitter-foo"
        annotations = deployment["metadata"]["annotations"]
        assert annotations[GENERATED_ANNOTATION] == GENERATED_VALUE
        assert annotations[OWNER_ANNOTATION] == "e1"
        # Template body is preserved
        assert deployment["spec"]["replicas"] == 1

    async def test_created_in_emitter_namespace(self, reconciler, store):
        store.add_emitter(make_emitter(namespace="team-a", pair_name="bar"))

        await reconciler.reconcile(ObjectKey("team-a", "e1"))

        assert store.created == [ObjectKey("team-a", "emitter-bar")]

    async def test_second_reconcile_is_noop(self, reconciler, store):
        store.add_emitter(make_emitter(pair_name="foo"))

        await reconciler.reconcile(KEY)
        result = await reconciler.reconcile(KEY)

        assert result.success is True
        assert result.action == ACTION_NONE
        assert store.created == [DEPLOYMENT_KEY]

    async def test_existing_deployment_untouched(self, reconciler, store):
        store.add_emitter(make_emitter(pair_name="foo"))
        store.add_deployment("default", "emitter-foo")

        result = await reconciler.reconcile(KEY)

        assert result.action == ACTION_NONE
        assert store.created == []
        assert store.deleted == []

    async def test_records_tracking_entry(self, reconciler, store, tracker):
        store.add_emitter(make_emitter(pair_name="foo"))

        await reconciler.reconcile(KEY)

        assert await tracker.lookup(KEY) == "emitter-foo"

    async def test_empty_pair_name_skips(self, reconciler, store, tracker):
        store.add_emitter(make_emitter(pair_name=""))

        result = await reconciler.reconcile(KEY)

        assert result.success is True
        assert result.action == ACTION_SKIPPED
        assert store.created == []
        # Entry is still recorded before the pair name check
        assert await tracker.lookup(KEY) == "emitter-"

    async def test_empty_pair_name_leaves_existing_deployment(self, reconciler, store):
        store.add_emitter(make_emitter(pair_name=""))
        store.add_deployment("default", "emitter-foo")
        store.add_deployment("default", "emitter-")

        result = await reconciler.reconcile(KEY)

        assert result.action == ACTION_SKIPPED
        assert store.deleted == []
        assert store.created == []

    async def test_create_pair_flag_not_consulted(self, reconciler, store):
        store.add_emitter(make_emitter(pair_name="foo", create_pair=False))

        result = await reconciler.reconcile(KEY)

        assert result.action == ACTION_CREATED

    async def test_pair_name_change_does_not_replace(self, reconciler, store):
        store.add_emitter(make_emitter(pair_name="foo"))
        await reconciler.reconcile(KEY)

        store.add_emitter(make_emitter(pair_name="bar"))
        await reconciler.reconcile(KEY)

        # Old deployment is left in place, a new one is created
        assert DEPLOYMENT_KEY in store.deployments
        assert store.deleted == []
        assert store.created == [DEPLOYMENT_KEY, ObjectKey("default", "emitter-bar")]

    async def test_deployment_fetch_error_is_retryable(self, reconciler, store):
        store.add_emitter(make_emitter(pair_name="foo"))
        store.errors["get_deployment"] = ApiException(status=500, reason="Internal")

        result = await reconciler.reconcile(KEY)

        assert result.success is False
        assert result.error_kind == ErrorKind.TRANSIENT
        assert store.created == []

    async def test_unclassifiable_fetch_error_does_not_raise(self, reconciler, store):
        store.add_emitter(make_emitter(pair_name="foo"))
        store.errors["get_deployment"] = RuntimeError("connection reset")

        result = await reconciler.reconcile(KEY)

        assert result.success is False
        assert result.error_kind == ErrorKind.TRANSIENT
        assert store.created == []

    async def test_create_error_is_retryable(self, reconciler, store):
        store.add_emitter(make_emitter(pair_name="foo"))
        store.errors["create_deployment"] = ApiException(status=403, reason="Forbidden")

        result = await reconciler.reconcile(KEY)

        assert result.success is False
        assert result.error_kind == ErrorKind.TRANSIENT
        assert "Unable to create deployment" in result.message

    async def test_create_not_found_is_suppressed(self, reconciler, store):
        store.add_emitter(make_emitter(pair_name="foo"))
        store.errors["create_deployment"] = ApiException(status=404, reason="Not Found")

        result = await reconciler.reconcile(KEY)

        assert result.success is True
        assert store.created == []


@pytest.mark.asyncio
class TestManifestFailures:
    """Reconciling when the deployment template is unusable."""

    async def test_missing_manifest(self, store, tracker, tmp_path):
        reconciler = EmitterReconciler(
            store=store,
            loader=ManifestLoader(str(tmp_path / "missing.yaml")),
            tracker=tracker,
        )
        store.add_emitter(make_emitter(pair_name="foo"))

        result = await reconciler.reconcile(KEY)

        assert result.success is False
        assert result.error_kind == ErrorKind.DECODE
        assert store.created == []

    async def test_malformed_manifest_never_creates(self, store, tracker, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("apiVersion: v1\nkind: ConfigMap\n")
        reconciler = EmitterReconciler(
            store=store, loader=ManifestLoader(str(path)), tracker=tracker
        )
        store.add_emitter(make_emitter(pair_name="foo"))

        for _ in range(3):
            result = await reconciler.reconcile(KEY)
            assert result.success is False
            assert result.error_kind == ErrorKind.DECODE

        assert store.created == []
        assert await tracker.snapshot() == {KEY: "emitter-foo"}


# ==================== Emitter gone ====================


@pytest.mark.asyncio
class TestEmitterDeleted:
    """Reconciling an Emitter that no longer exists."""

    async def test_deletes_tracked_deployment(self, reconciler, store, tracker):
        store.add_emitter(make_emitter(pair_name="foo"))
        await reconciler.reconcile(KEY)
        store.remove_emitter(KEY)

        result = await reconciler.reconcile(KEY)

        assert result.success is True
        assert result.action == ACTION_DELETED
        assert store.deleted == [DEPLOYMENT_KEY]
        assert await tracker.lookup(KEY) is None

    async def test_second_reconcile_after_delete_is_noop(self, reconciler, store):
        store.add_emitter(make_emitter(pair_name="foo"))
        await reconciler.reconcile(KEY)
        store.remove_emitter(KEY)
        await reconciler.reconcile(KEY)

        result = await reconciler.reconcile(KEY)

        assert result.success is True
        assert result.action == ACTION_NONE
        assert store.deleted == [DEPLOYMENT_KEY]

    async def test_tracked_deployment_already_gone(self, reconciler, store, tracker):
        await tracker.record(KEY, "emitter-foo")

        result = await reconciler.reconcile(KEY)

        assert result.success is True
        assert result.action == ACTION_NONE
        assert store.deleted == []
        assert await tracker.lookup(KEY) is None

    async def test_never_seen_emitter_is_noop(self, reconciler, store):
        store.add_deployment("default", "emitter-foo")

        result = await reconciler.reconcile(KEY)

        assert result.success is True
        assert result.action == ACTION_NONE
        assert store.deleted == []

    async def test_other_namespace_not_affected(self, reconciler, store):
        store.add_emitter(make_emitter(pair_name="foo"))
        await reconciler.reconcile(KEY)
        store.add_deployment("other", "emitter-foo")
        store.remove_emitter(KEY)

        await reconciler.reconcile(KEY)

        assert store.deleted == [DEPLOYMENT_KEY]
        assert ObjectKey("other", "emitter-foo") in store.deployments

    async def test_annotated_deployment_found_after_restart(self, loader, store):
        # A fresh reconciler has an empty tracking table
        store.add_deployment(
            "default",
            "emitter-foo",
            annotations={GENERATED_ANNOTATION: GENERATED_VALUE, OWNER_ANNOTATION: "e1"},
        )
        store.add_deployment(
            "default",
            "emitter-other",
            annotations={GENERATED_ANNOTATION: GENERATED_VALUE, OWNER_ANNOTATION: "e2"},
        )
        reconciler = EmitterReconciler(store=store, loader=loader)

        result = await reconciler.reconcile(KEY)

        assert result.action == ACTION_DELETED
        assert store.deleted == [DEPLOYMENT_KEY]

    async def test_earlier_pair_removed_in_same_pass(self, reconciler, store, tracker):
        store.add_emitter(make_emitter(pair_name="foo"))
        await reconciler.reconcile(KEY)
        store.add_emitter(make_emitter(pair_name="bar"))
        await reconciler.reconcile(KEY)
        store.remove_emitter(KEY)

        result = await reconciler.reconcile(KEY)

        assert result.action == ACTION_DELETED
        assert "emitter-bar" in result.message
        assert "emitter-foo" in result.message
        assert store.deleted == [ObjectKey("default", "emitter-bar"), DEPLOYMENT_KEY]
        assert store.deployments == {}
        assert await tracker.lookup(KEY) is None

        again = await reconciler.reconcile(KEY)
        assert again.action == ACTION_NONE
        assert len(store.deleted) == 2

    async def test_sweep_error_after_tracked_delete(self, reconciler, store, tracker):
        await tracker.record(KEY, "emitter-foo")
        store.add_deployment("default", "emitter-foo")
        store.errors["list_deployments"] = ApiException(status=503, reason="Unavailable")

        result = await reconciler.reconcile(KEY)

        assert result.success is False
        assert store.deleted == [DEPLOYMENT_KEY]

    async def test_delete_error_is_retryable(self, reconciler, store, tracker):
        await tracker.record(KEY, "emitter-foo")
        store.add_deployment("default", "emitter-foo")
        store.errors["delete_deployment"] = ApiException(status=500, reason="Internal")

        result = await reconciler.reconcile(KEY)

        assert result.success is False
        assert result.error_kind == ErrorKind.TRANSIENT
        # Entry kept so the retry can find the deployment again
        assert await tracker.lookup(KEY) == "emitter-foo"

    async def test_list_error_is_retryable(self, reconciler, store):
        store.errors["list_deployments"] = ApiException(status=503, reason="Unavailable")

        result = await reconciler.reconcile(KEY)

        assert result.success is False
        assert result.error_kind == ErrorKind.TRANSIENT

    async def test_emitter_fetch_error_skips_cleanup(self, reconciler, store, tracker):
        await tracker.record(KEY, "emitter-foo")
        store.add_deployment("default", "emitter-foo")
        store.errors["get_emitter"] = ApiException(status=500, reason="Internal")

        result = await reconciler.reconcile(KEY)

        assert result.success is False
        assert store.deleted == []
        assert await tracker.lookup(KEY) == "emitter-foo"


@pytest.mark.asyncio
class TestScenario:
    """End-to-end lifecycle of a single Emitter."""

    async def test_create_reconcile_delete(self, reconciler, store):
        store.add_emitter(make_emitter(namespace="default", name="e1", pair_name="foo"))

        first = await reconciler.reconcile(KEY)
        assert first.action == ACTION_CREATED
        assert DEPLOYMENT_KEY in store.deployments
        annotations = store.deployments[DEPLOYMENT_KEY]["metadata"]["annotations"]
        assert annotations["generated"] == "hello-operator"

        second = await reconciler.reconcile(KEY)
        assert second.action == ACTION_NONE
        assert len(store.created) == 1

        store.remove_emitter(KEY)
        third = await reconciler.reconcile(KEY)
        assert third.action == ACTION_DELETED
        assert DEPLOYMENT_KEY not in store.deployments

    async def test_concurrent_distinct_emitters(self, reconciler, store, tracker):
        for i in range(5):
            store.add_emitter(make_emitter(name=f"e{i}", pair_name=f"p{i}"))

        results = await asyncio.gather(
            *(reconciler.reconcile(ObjectKey("default", f"e{i}")) for i in range(5))
        )

        assert all(r.action == ACTION_CREATED for r in results)
        assert len(store.created) == 5
        assert len(await tracker.snapshot()) == 5

