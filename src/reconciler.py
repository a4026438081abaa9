"""
Emitter Reconciler - keeps each Emitter's paired deployment in step with it.

One call to reconcile() handles one Emitter identity and takes at most one
corrective action:

    Emitter present, pairName set, no deployment  -> create deployment
    Emitter present, pairName empty               -> nothing
    Emitter present, deployment exists            -> nothing
    Emitter gone, deployment known and present    -> delete deployment
    Emitter gone, deployments carry its owner     -> delete them too

NotFound lookups are the normal steady state and are never reported as
failures. Every other failure is logged and returned as a failed
ReconcileResult so the controller can retry it with backoff.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from errors import ErrorKind, ManifestError, classify, is_not_found
from manifest import ManifestLoader
from models import Emitter, ObjectKey
from store import ResourceStore
from tracking import DeploymentTracker

logger = logging.getLogger(__name__)

GENERATED_ANNOTATION = "generated"
GENERATED_VALUE = "hello-operator"
OWNER_ANNOTATION = "hello-operator/emitter"

ACTION_NONE = "none"
ACTION_SKIPPED = "skipped"
ACTION_CREATED = "created"
ACTION_DELETED = "deleted"


@dataclass
class ReconcileResult:
    """Outcome of a single reconcile invocation."""

    success: bool = True
    action: str = ACTION_NONE
    message: str = ""
    error_kind: Optional[ErrorKind] = None

    @property
    def requeue(self) -> bool:
        """Whether the trigger should retry this key with backoff."""
        return not self.success


def _result_for_error(exc: BaseException, message: str) -> ReconcileResult:
    """Turn a caught error into a result, suppressing NotFound."""
    if is_not_found(exc):
        return ReconcileResult(message=f"{message}: not found")
    return ReconcileResult(
        success=False,
        message=f"{message}: {exc}",
        error_kind=classify(exc),
    )


def render_deployment(
    loader: ManifestLoader, key: ObjectKey, deployment_name: str
) -> Dict[str, Any]:
    """
    Render the paired deployment for an Emitter from the template.

    Raises:
        ManifestError: If the template cannot be loaded or decoded.
    """
    deployment = loader.load_deployment()
    metadata = deployment["metadata"]
    metadata["namespace"] = key.namespace
    metadata["name"] = deployment_name
    metadata["annotations"] = {
        GENERATED_ANNOTATION: GENERATED_VALUE,
        OWNER_ANNOTATION: key.name,
    }
    return deployment


class EmitterReconciler:
    """Reconciles Emitter resources against their paired deployments."""

    def __init__(
        self,
        store: ResourceStore,
        loader: ManifestLoader,
        tracker: Optional[DeploymentTracker] = None,
    ):
        self.store = store
        self.loader = loader
        self.tracker = tracker if tracker is not None else DeploymentTracker()

    async def reconcile(self, key: ObjectKey) -> ReconcileResult:
        """
        Converge the paired deployment for one Emitter identity.

        Args:
            key: Namespace/name of the Emitter.

        Returns:
            ReconcileResult describing the action taken. A failed result
            means the key should be retried.
        """
        try:
            emitter = await self.store.get_emitter(key)
        except Exception as e:
            if is_not_found(e):
                return await self._cleanup_dangling(key)
            logger.error(f"Unable to fetch emitter {key}: {e}")
            return _result_for_error(e, "Unable to fetch emitter")

        return await self._ensure_pair(key, emitter)

    def build_deployment(self, key: ObjectKey, deployment_name: str) -> Dict[str, Any]:
        """Render the paired deployment for an Emitter from the template."""
        return render_deployment(self.loader, key, deployment_name)

    # ==================== Emitter present ====================

    async def _ensure_pair(self, key: ObjectKey, emitter: Emitter) -> ReconcileResult:
        deployment_name = emitter.deployment_name
        await self.tracker.record(key, deployment_name)

        if not emitter.spec.pair_name:
            logger.info(f"No emitter pair name found for {key}, skipping")
            return ReconcileResult(action=ACTION_SKIPPED, message="No pair name set")

        try:
            await self.store.get_deployment(key.namespace, deployment_name)
        except Exception as e:
            if not is_not_found(e):
                logger.error(
                    f"Unable to fetch deployment {key.namespace}/{deployment_name}: {e}"
                )
                return _result_for_error(e, "Unable to fetch deployment")
        else:
            logger.debug(f"Deployment {deployment_name} already exists for {key}")
            return ReconcileResult(message="Paired deployment exists")

        logger.info(f"Deployment {deployment_name} not found for {key}, creating")
        return await self._create_pair(key, deployment_name)

    async def _create_pair(self, key: ObjectKey, deployment_name: str) -> ReconcileResult:
        try:
            deployment = self.build_deployment(key, deployment_name)
        except ManifestError as e:
            logger.error(f"Unable to create deployment for {key}: {e}")
            return _result_for_error(e, "Unable to load deployment manifest")

        try:
            await self.store.create_deployment(key.namespace, deployment)
        except Exception as e:
            logger.error(
                f"Unable to create deployment {key.namespace}/{deployment_name}: {e}"
            )
            return _result_for_error(e, "Unable to create deployment")

        return ReconcileResult(
            action=ACTION_CREATED,
            message=f"Created deployment {deployment_name}",
        )

    # ==================== Emitter gone ====================

    async def _cleanup_dangling(self, key: ObjectKey) -> ReconcileResult:
        logger.info(
            f"Unable to fetch emitter {key}, checking for dangling deployments..."
        )
        result = ReconcileResult(message="No dangling deployment")
        deployment_name = await self.tracker.lookup(key)
        if deployment_name:
            result = await self._delete_tracked(key, deployment_name)
            if not result.success:
                return result

        # Deployments left over from an earlier pairName, or from before a restart
        swept = await self._delete_annotated(key, skip=deployment_name)
        if not swept.success or result.action != ACTION_DELETED:
            return swept
        if swept.action == ACTION_DELETED:
            result.message = f"{result.message}; {swept.message}"
        return result

    async def _delete_tracked(self, key: ObjectKey, deployment_name: str) -> ReconcileResult:
        try:
            await self.store.get_deployment(key.namespace, deployment_name)
        except Exception as e:
            if is_not_found(e):
                await self.tracker.forget(key)
                return ReconcileResult(message="No dangling deployment")
            logger.error(
                f"Unable to fetch deployment {key.namespace}/{deployment_name}: {e}"
            )
            return _result_for_error(e, "Unable to fetch deployment")

        return await self._delete(key, deployment_name)

    async def _delete_annotated(
        self, key: ObjectKey, skip: Optional[str] = None
    ) -> ReconcileResult:
        """
        Delete deployments owned by the Emitter through their annotations.

        Args:
            key: Namespace/name of the deleted Emitter.
            skip: Deployment name already handled through the tracking table.
        """
        try:
            owned = await self.store.list_deployments(
                key.namespace,
                annotations={
                    GENERATED_ANNOTATION: GENERATED_VALUE,
                    OWNER_ANNOTATION: key.name,
                },
            )
        except Exception as e:
            logger.error(f"Unable to list deployments in {key.namespace}: {e}")
            return _result_for_error(e, "Unable to list deployments")

        deleted = []
        for deployment in owned:
            name = deployment["metadata"]["name"]
            if name == skip:
                continue
            result = await self._delete(key, name)
            if not result.success:
                return result
            if result.action == ACTION_DELETED:
                deleted.append(name)

        if not deleted:
            return ReconcileResult(message="No dangling deployment")
        return ReconcileResult(
            action=ACTION_DELETED,
            message=f"Deleted deployment {', '.join(deleted)}",
        )

    async def _delete(self, key: ObjectKey, deployment_name: str) -> ReconcileResult:
        logger.info(f"Deleting dangling deployment {key.namespace}/{deployment_name}")
        try:
            await self.store.delete_deployment(key.namespace, deployment_name)
        except Exception as e:
            if is_not_found(e):
                await self.tracker.forget(key)
                return ReconcileResult(message="No dangling deployment")
            logger.error(
                f"Unable to delete deployment {key.namespace}/{deployment_name}: {e}"
            )
            return _result_for_error(e, "Unable to delete deployment")

        await self.tracker.forget(key)
        return ReconcileResult(
            action=ACTION_DELETED,
            message=f"Deleted deployment {deployment_name}",
        )
