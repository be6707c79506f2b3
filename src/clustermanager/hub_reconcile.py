"""Hub stage of ClusterManager reconciliation.

One pass:
1. Remove the resources of disabled features (fail fast on error)
2. Select the manifests for the current mode and HubConfig
3. Render and apply each of them, recording related resources
4. Remove legacy APIService registrations (best effort)
5. Fold every apply and cleanup error into one AggregateError and a
   failed Applied condition, or continue with no condition written

The success condition is left to the caller, which only knows the whole
ClusterManager is applied once every later stage has run.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import NamedTuple

from .catalog import ResourceSetSelector
from .cleanup import LegacyAPIServiceCleaner
from .conditions import (
    CONDITION_APPLIED,
    REASON_HUB_RESOURCE_APPLY_FAILED,
    set_status_condition,
)
from .decommission import FeatureDecommissioner
from .errors import AggregateError, ApplyError, DecommissionError, aggregate
from .manifests import ManifestRenderer
from .models import ClusterManager, Condition, ConditionStatus, HubConfig
from .resourceapply import (
    APIServiceClient,
    ControlPlaneClient,
    EventRecorder,
    ResourceCache,
    apply_directly,
    delete_manifest,
    set_related_resources_statuses_with_obj,
)

logger = logging.getLogger(__name__)


class ReconcileState(str, Enum):
    """Whether the outer loop should run the next stage of this pass."""

    CONTINUE = "Continue"
    STOP = "Stop"


class StageOutcome(NamedTuple):
    cluster_manager: ClusterManager
    state: ReconcileState
    error: Exception | None = None


class HubReconciler:
    """Converges the hub resources of a ClusterManager."""

    def __init__(
        self,
        client: ControlPlaneClient,
        api_service_client: APIServiceClient | None,
        *,
        recorder: EventRecorder | None = None,
        cache: ResourceCache | None = None,
        selector: ResourceSetSelector | None = None,
        manifests_dir: Path | None = None,
        max_concurrent_applies: int = 4,
    ) -> None:
        self._client = client
        self._recorder = recorder or EventRecorder()
        self._cache = cache or ResourceCache()
        self._selector = selector or ResourceSetSelector()
        self._manifests_dir = manifests_dir
        self._max_concurrent_applies = max_concurrent_applies

        self._decommissioner = FeatureDecommissioner(
            client,
            self._recorder,
            self._selector,
            cache=self._cache,
            manifests_dir=manifests_dir,
        )
        self._legacy_cleaner = LegacyAPIServiceCleaner(api_service_client)

    @property
    def name(self) -> str:
        return "hub"

    @property
    def selector(self) -> ResourceSetSelector:
        return self._selector

    async def reconcile(self, cluster_manager: ClusterManager, config: HubConfig) -> StageOutcome:
        try:
            await self._decommissioner.decommission(config)
        except DecommissionError as e:
            logger.error(
                "Failed to remove resources of disabled feature",
                extra={
                    "cluster_manager": cluster_manager.metadata.name,
                    "feature": e.feature,
                    "manifest": e.identifier,
                    "error": str(e.cause),
                },
            )
            return StageOutcome(cluster_manager, ReconcileState.STOP, e)

        hub_resources = self._selector.select(cluster_manager.mode, config)
        renderer = ManifestRenderer(config, self._manifests_dir)
        related_resources = cluster_manager.status.related_resources

        def manifest_func(name: str) -> bytes:
            data = renderer(name)
            set_related_resources_statuses_with_obj(related_resources, data)
            return data

        results = await apply_directly(
            self._client,
            self._recorder,
            self._cache,
            manifest_func,
            *hub_resources,
            max_concurrency=self._max_concurrent_applies,
        )

        applied_errors: list[Exception] = [
            ApplyError(result.file, result.type, result.error)
            for result in results
            if result.error is not None
        ]

        cleanup_error = await self._legacy_cleaner.cleanup()
        if cleanup_error is not None:
            applied_errors.append(cleanup_error)

        combined = aggregate(applied_errors)
        if combined is not None:
            self._set_apply_failed(cluster_manager, combined)
            logger.warning(
                "Hub resources not fully applied",
                extra={
                    "cluster_manager": cluster_manager.metadata.name,
                    "desired": len(hub_resources),
                    "failed": len(combined.apply_errors),
                    "cleanup_failed": bool(combined.cleanup_errors),
                },
            )
            return StageOutcome(cluster_manager, ReconcileState.STOP, combined)

        logger.info(
            "Hub resources applied",
            extra={
                "cluster_manager": cluster_manager.metadata.name,
                "mode": cluster_manager.mode.value,
                "resources": len(hub_resources),
                "changed": sum(1 for result in results if result.changed),
            },
        )
        return StageOutcome(cluster_manager, ReconcileState.CONTINUE, None)

    async def clean(self, cluster_manager: ClusterManager, config: HubConfig) -> StageOutcome:
        """Remove every hub resource the current mode and config would select."""
        hub_resources = self._selector.select(cluster_manager.mode, config)
        renderer = ManifestRenderer(config, self._manifests_dir)

        for name in hub_resources:
            try:
                await delete_manifest(
                    self._client, self._recorder, renderer, name, cache=self._cache
                )
            except TimeoutError:
                raise
            except Exception as e:
                logger.error(
                    "Failed to remove hub resource",
                    extra={
                        "cluster_manager": cluster_manager.metadata.name,
                        "manifest": name,
                        "error": str(e),
                    },
                )
                return StageOutcome(cluster_manager, ReconcileState.STOP, e)

        return StageOutcome(cluster_manager, ReconcileState.CONTINUE, None)

    def _set_apply_failed(self, cluster_manager: ClusterManager, error: AggregateError) -> None:
        set_status_condition(
            cluster_manager.status.conditions,
            Condition(
                type=CONDITION_APPLIED,
                status=ConditionStatus.FALSE,
                reason=REASON_HUB_RESOURCE_APPLY_FAILED,
                message=f"Failed to apply hub resources: {error}",
                observed_generation=cluster_manager.metadata.generation,
            ),
        )
