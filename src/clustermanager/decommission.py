"""Removal of the resource groups owned by disabled features."""

from __future__ import annotations

import logging
from pathlib import Path

from .catalog import ResourceSetSelector
from .errors import DecommissionError
from .manifests import ManifestRenderer
from .models import HubConfig, HubFeature
from .resourceapply import ControlPlaneClient, EventRecorder, ResourceCache, delete_manifest

logger = logging.getLogger(__name__)


class FeatureDecommissioner:
    """Deletes every resource of each feature that is currently disabled.

    Runs on every pass, not only on the pass where a flag flips, so a removal
    that failed part way is retried until the feature's objects are gone.
    Missing objects count as removed.
    """

    def __init__(
        self,
        client: ControlPlaneClient,
        recorder: EventRecorder,
        selector: ResourceSetSelector,
        cache: ResourceCache | None = None,
        manifests_dir: Path | None = None,
    ) -> None:
        self._client = client
        self._recorder = recorder
        self._selector = selector
        self._cache = cache
        self._manifests_dir = manifests_dir

    async def decommission(self, config: HubConfig) -> list[tuple[HubFeature, str]]:
        """Remove the resources of every disabled feature.

        Returns:
            (feature, manifest) pairs that were actually deleted this call.

        Raises:
            DecommissionError: On the first removal that fails for a reason
                other than the object being absent.
        """
        renderer = ManifestRenderer(config, self._manifests_dir)
        removed: list[tuple[HubFeature, str]] = []

        for feature, group in self._selector.disabled_feature_groups(config):
            for name in group:
                try:
                    deleted = await delete_manifest(
                        self._client, self._recorder, renderer, name, cache=self._cache
                    )
                except TimeoutError:
                    raise
                except Exception as e:
                    raise DecommissionError(feature.value, name, e) from e
                if deleted:
                    removed.append((feature, name))

        if removed:
            logger.info(
                "Removed resources of disabled features",
                extra={
                    "cluster_manager": config.cluster_manager_name,
                    "removed": [name for _, name in removed],
                },
            )
        return removed
