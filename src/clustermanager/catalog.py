"""Static catalog of hub manifests and the selector over it.

Every manifest the hub reconciler can apply belongs to exactly one group:
- the baseline (namespace plus the always-on RBAC triads),
- one feature group (gated by a single HubFeature),
- one mode group (default or hosted webhook exposure, plus the hosted
  endpoint objects that only apply to IP-formatted webhook addresses).

The catalog is immutable and versioned. ResourceSetSelector is a pure
function over it: the same mode and HubConfig always yield the same
identifiers in the same order.
"""

from __future__ import annotations

from dataclasses import dataclass

from .models import HubConfig, HubFeature, InstallMode

HUB_MANIFEST_PREFIX = "cluster-manager/hub"


def _triad(component: str) -> tuple[str, ...]:
    """ClusterRole, ClusterRoleBinding and ServiceAccount of one hub component."""
    return (
        f"{HUB_MANIFEST_PREFIX}/cluster-manager-{component}-clusterrole.yaml",
        f"{HUB_MANIFEST_PREFIX}/cluster-manager-{component}-clusterrolebinding.yaml",
        f"{HUB_MANIFEST_PREFIX}/cluster-manager-{component}-serviceaccount.yaml",
    )


@dataclass(frozen=True)
class ResourceCatalog:
    """Versioned, immutable set of manifest groups."""

    version: str
    namespace: str
    hub_rbac: tuple[str, ...]
    add_on_manager_rbac: tuple[str, ...]
    mw_replica_set_rbac: tuple[str, ...]
    default_webhook_services: tuple[str, ...]
    hosted_webhook_services: tuple[str, ...]
    hosted_registration_webhook_endpoint: str
    hosted_work_webhook_endpoint: str

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for identifier in self.all_identifiers():
            if identifier in seen:
                raise ValueError(
                    f"Manifest {identifier!r} appears in more than one group "
                    f"of catalog {self.version}"
                )
            seen.add(identifier)

    def feature_group(self, feature: HubFeature) -> tuple[str, ...]:
        match feature:
            case HubFeature.ADD_ON_MANAGER:
                return self.add_on_manager_rbac
            case HubFeature.MANIFEST_WORK_REPLICA_SET:
                return self.mw_replica_set_rbac
            case _:
                raise ValueError(f"No resource group for feature: {feature}")

    def all_identifiers(self) -> tuple[str, ...]:
        """Every manifest in the catalog, baseline first."""
        return (
            self.namespace,
            *self.hub_rbac,
            *self.add_on_manager_rbac,
            *self.mw_replica_set_rbac,
            *self.default_webhook_services,
            *self.hosted_webhook_services,
            self.hosted_registration_webhook_endpoint,
            self.hosted_work_webhook_endpoint,
        )


HUB_RESOURCE_CATALOG = ResourceCatalog(
    version="v1",
    namespace="cluster-manager/cluster-manager-namespace.yaml",
    hub_rbac=(
        *_triad("registration"),
        *_triad("registration-webhook"),
        *_triad("work-webhook"),
        *_triad("placement"),
    ),
    add_on_manager_rbac=_triad("addon-manager"),
    mw_replica_set_rbac=_triad("manifestworkreplicaset"),
    default_webhook_services=(
        f"{HUB_MANIFEST_PREFIX}/cluster-manager-registration-webhook-service.yaml",
        f"{HUB_MANIFEST_PREFIX}/cluster-manager-work-webhook-service.yaml",
    ),
    hosted_webhook_services=(
        f"{HUB_MANIFEST_PREFIX}/cluster-manager-registration-webhook-service-hosted.yaml",
        f"{HUB_MANIFEST_PREFIX}/cluster-manager-work-webhook-service-hosted.yaml",
    ),
    hosted_registration_webhook_endpoint=(
        f"{HUB_MANIFEST_PREFIX}/cluster-manager-registration-webhook-endpoint-hosted.yaml"
    ),
    hosted_work_webhook_endpoint=(
        f"{HUB_MANIFEST_PREFIX}/cluster-manager-work-webhook-endpoint-hosted.yaml"
    ),
)

# APIService registrations left behind by the retired aggregated webhook setup.
# They are removed on every pass so upgraded hubs converge.
LEGACY_WEBHOOK_API_SERVICES: tuple[str, ...] = (
    "v1.admission.cluster.open-cluster-management.io",
    "v1.admission.work.open-cluster-management.io",
)

# Order in which disabled feature groups are removed
DECOMMISSION_ORDER: tuple[HubFeature, ...] = (
    HubFeature.ADD_ON_MANAGER,
    HubFeature.MANIFEST_WORK_REPLICA_SET,
)


class ResourceSetSelector:
    """Computes the manifests a hub must converge toward."""

    def __init__(self, catalog: ResourceCatalog = HUB_RESOURCE_CATALOG) -> None:
        self._catalog = catalog

    @property
    def catalog(self) -> ResourceCatalog:
        return self._catalog

    def select(self, mode: InstallMode, config: HubConfig) -> tuple[str, ...]:
        """Ordered manifest identifiers for a deployment mode and HubConfig."""
        catalog = self._catalog
        resources: list[str] = [catalog.namespace, *catalog.hub_rbac]

        if config.add_on_manager_enabled:
            resources.extend(catalog.add_on_manager_rbac)

        if config.mw_replica_set_enabled:
            resources.extend(catalog.mw_replica_set_rbac)

        if mode == InstallMode.HOSTED:
            resources.extend(catalog.hosted_webhook_services)
            # Endpoints are only needed where the webhook is addressed by IP
            if config.registration_webhook.is_ip_format:
                resources.append(catalog.hosted_registration_webhook_endpoint)
            if config.work_webhook.is_ip_format:
                resources.append(catalog.hosted_work_webhook_endpoint)
        else:
            resources.extend(catalog.default_webhook_services)

        return tuple(resources)

    def disabled_feature_groups(self, config: HubConfig) -> list[tuple[HubFeature, tuple[str, ...]]]:
        """Resource groups of every feature the HubConfig has turned off."""
        return [
            (feature, self._catalog.feature_group(feature))
            for feature in DECOMMISSION_ORDER
            if not config.feature_enabled(feature)
        ]
