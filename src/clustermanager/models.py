"""Pydantic models for the ClusterManager descriptor and its derived config.

These models provide:
1. Type-safe YAML parsing of the ClusterManager resource
2. Validation at the boundary (fail fast, fail loudly)
3. Derivation of the HubConfig that drives resource selection and rendering
"""

from __future__ import annotations

import ipaddress
import logging
from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)

CLUSTER_MANAGER_API_VERSION = "operator.open-cluster-management.io/v1"

# Hub components live here unless the cluster manager is hosted
DEFAULT_HUB_NAMESPACE = "open-cluster-management-hub"

DEFAULT_REGISTRATION_IMAGE = "quay.io/open-cluster-management/registration:latest"
DEFAULT_WORK_IMAGE = "quay.io/open-cluster-management/work:latest"
DEFAULT_PLACEMENT_IMAGE = "quay.io/open-cluster-management/placement:latest"
DEFAULT_ADDON_MANAGER_IMAGE = "quay.io/open-cluster-management/addon-manager:latest"


class InstallMode(str, Enum):
    """Deployment topologies of the cluster manager."""

    DEFAULT = "Default"
    HOSTED = "Hosted"


class FeatureGateMode(str, Enum):
    ENABLE = "Enable"
    DISABLE = "Disable"


class HubFeature(str, Enum):
    """Feature gates that own a group of hub resources."""

    ADD_ON_MANAGER = "AddonManagement"
    MANIFEST_WORK_REPLICA_SET = "ManifestWorkReplicaSet"


# Default state of each known feature gate when the descriptor is silent
FEATURE_GATE_DEFAULTS: dict[HubFeature, bool] = {
    HubFeature.ADD_ON_MANAGER: False,
    HubFeature.MANIFEST_WORK_REPLICA_SET: False,
}


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


# =============================================================================
# Spec
# =============================================================================


class FeatureGate(BaseModel):
    """A single feature gate toggle."""

    model_config = {"extra": "ignore"}

    feature: Annotated[str, Field(min_length=1)]
    mode: FeatureGateMode = FeatureGateMode.DISABLE


class ComponentConfiguration(BaseModel):
    """Per-component configuration carrying feature gates."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    feature_gates: list[FeatureGate] = Field(default_factory=list, alias="featureGates")


class WebhookConfiguration(BaseModel):
    """Externally reachable address of a hub webhook in hosted mode."""

    model_config = {"extra": "ignore"}

    address: Annotated[str, Field(min_length=1)]
    port: Annotated[int, Field(ge=1, le=65535)] = 443


class HostedClusterManagerConfiguration(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    registration_webhook_configuration: WebhookConfiguration = Field(
        alias="registrationWebhookConfiguration"
    )
    work_webhook_configuration: WebhookConfiguration = Field(
        alias="workWebhookConfiguration"
    )


class ClusterManagerDeployOption(BaseModel):
    """Deployment mode plus the settings the hosted mode needs."""

    model_config = {"extra": "ignore"}

    mode: InstallMode = InstallMode.DEFAULT
    hosted: HostedClusterManagerConfiguration | None = None

    @model_validator(mode="after")
    def validate_hosted(self) -> ClusterManagerDeployOption:
        if self.mode == InstallMode.HOSTED and self.hosted is None:
            raise ValueError("deployOption.hosted is required when mode is Hosted")
        return self


class ClusterManagerSpec(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    registration_image_pull_spec: str = Field(
        DEFAULT_REGISTRATION_IMAGE, alias="registrationImagePullSpec"
    )
    work_image_pull_spec: str = Field(DEFAULT_WORK_IMAGE, alias="workImagePullSpec")
    placement_image_pull_spec: str = Field(
        DEFAULT_PLACEMENT_IMAGE, alias="placementImagePullSpec"
    )
    addon_manager_image_pull_spec: str = Field(
        DEFAULT_ADDON_MANAGER_IMAGE, alias="addOnManagerImagePullSpec"
    )
    deploy_option: ClusterManagerDeployOption = Field(
        default_factory=ClusterManagerDeployOption, alias="deployOption"
    )
    registration_configuration: ComponentConfiguration | None = Field(
        None, alias="registrationConfiguration"
    )
    work_configuration: ComponentConfiguration | None = Field(
        None, alias="workConfiguration"
    )
    add_on_manager_configuration: ComponentConfiguration | None = Field(
        None, alias="addOnManagerConfiguration"
    )


# =============================================================================
# Status
# =============================================================================


class Condition(BaseModel):
    """A typed status record. At most one condition exists per type."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    type: Annotated[str, Field(min_length=1)]
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    observed_generation: int = Field(0, alias="observedGeneration")
    last_transition_time: datetime | None = Field(None, alias="lastTransitionTime")


class RelatedResourceMeta(BaseModel):
    """Identity of an object managed on behalf of the cluster manager."""

    model_config = {"extra": "ignore", "frozen": True}

    group: str = ""
    version: str
    resource: str
    namespace: str = ""
    name: str


class ClusterManagerStatus(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    observed_generation: int = Field(0, alias="observedGeneration")
    conditions: list[Condition] = Field(default_factory=list)
    related_resources: list[RelatedResourceMeta] = Field(
        default_factory=list, alias="relatedResources"
    )


class ObjectMeta(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=63)]
    generation: int = 0
    labels: dict[str, str] = Field(default_factory=dict)
    deletion_timestamp: datetime | None = Field(None, alias="deletionTimestamp")


class ClusterManager(BaseModel):
    """The desired-state descriptor driving hub reconciliation."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    api_version: str = Field(CLUSTER_MANAGER_API_VERSION, alias="apiVersion")
    kind: str = "ClusterManager"
    metadata: ObjectMeta
    spec: ClusterManagerSpec = Field(default_factory=ClusterManagerSpec)
    status: ClusterManagerStatus = Field(default_factory=ClusterManagerStatus)

    @property
    def mode(self) -> InstallMode:
        return self.spec.deploy_option.mode

    @property
    def being_deleted(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def to_document(self) -> dict[str, Any]:
        """Serialize back to the camelCase document shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Derived configuration
# =============================================================================


def is_ip_format(address: str) -> bool:
    """Check whether a webhook address is an IP literal rather than a hostname."""
    try:
        ipaddress.ip_address(address)
    except ValueError:
        return False
    return True


def hub_namespace(name: str, mode: InstallMode) -> str:
    """Namespace holding the hub components of a cluster manager."""
    if mode == InstallMode.HOSTED:
        return name
    return DEFAULT_HUB_NAMESPACE


def resolve_feature_gates(
    configuration: ComponentConfiguration | None,
) -> dict[HubFeature, bool]:
    """Resolve the known feature gates of one component against their defaults."""
    resolved = dict(FEATURE_GATE_DEFAULTS)
    if configuration is None:
        return resolved

    for gate in configuration.feature_gates:
        try:
            feature = HubFeature(gate.feature)
        except ValueError:
            logger.warning("Ignoring unknown feature gate", extra={"feature": gate.feature})
            continue
        resolved[feature] = gate.mode == FeatureGateMode.ENABLE

    return resolved


class WebhookTarget(BaseModel):
    """Where a hub webhook is reached, as seen by the templates."""

    model_config = {"frozen": True}

    address: str = ""
    port: int = 443
    is_ip_format: bool = False


class HubConfig(BaseModel):
    """Configuration derived from a ClusterManager for one reconcile pass.

    Holds the feature flags and webhook addressing consulted by resource
    selection, and the values substituted into manifest templates.
    """

    model_config = {"frozen": True}

    cluster_manager_name: str
    cluster_manager_namespace: str
    operator_namespace: str
    registration_image: str = DEFAULT_REGISTRATION_IMAGE
    work_image: str = DEFAULT_WORK_IMAGE
    placement_image: str = DEFAULT_PLACEMENT_IMAGE
    addon_manager_image: str = DEFAULT_ADDON_MANAGER_IMAGE
    hosted_mode: bool = False
    registration_webhook: WebhookTarget = Field(default_factory=WebhookTarget)
    work_webhook: WebhookTarget = Field(default_factory=WebhookTarget)
    add_on_manager_enabled: bool = False
    mw_replica_set_enabled: bool = False

    @classmethod
    def from_cluster_manager(
        cls,
        cluster_manager: ClusterManager,
        operator_namespace: str = "open-cluster-management",
    ) -> HubConfig:
        spec = cluster_manager.spec
        mode = cluster_manager.mode
        name = cluster_manager.metadata.name

        registration_webhook = WebhookTarget()
        work_webhook = WebhookTarget()
        if mode == InstallMode.HOSTED and spec.deploy_option.hosted is not None:
            hosted = spec.deploy_option.hosted
            registration = hosted.registration_webhook_configuration
            work = hosted.work_webhook_configuration
            registration_webhook = WebhookTarget(
                address=registration.address,
                port=registration.port,
                is_ip_format=is_ip_format(registration.address),
            )
            work_webhook = WebhookTarget(
                address=work.address,
                port=work.port,
                is_ip_format=is_ip_format(work.address),
            )

        addon_gates = resolve_feature_gates(spec.add_on_manager_configuration)
        work_gates = resolve_feature_gates(spec.work_configuration)

        return cls(
            cluster_manager_name=name,
            cluster_manager_namespace=hub_namespace(name, mode),
            operator_namespace=operator_namespace,
            registration_image=spec.registration_image_pull_spec,
            work_image=spec.work_image_pull_spec,
            placement_image=spec.placement_image_pull_spec,
            addon_manager_image=spec.addon_manager_image_pull_spec,
            hosted_mode=mode == InstallMode.HOSTED,
            registration_webhook=registration_webhook,
            work_webhook=work_webhook,
            add_on_manager_enabled=addon_gates[HubFeature.ADD_ON_MANAGER],
            mw_replica_set_enabled=work_gates[HubFeature.MANIFEST_WORK_REPLICA_SET],
        )

    def feature_enabled(self, feature: HubFeature) -> bool:
        match feature:
            case HubFeature.ADD_ON_MANAGER:
                return self.add_on_manager_enabled
            case HubFeature.MANIFEST_WORK_REPLICA_SET:
                return self.mw_replica_set_enabled
            case _:
                raise ValueError(f"Unknown hub feature: {feature}")

    def template_values(self) -> dict[str, str]:
        """Values available to manifest templates as ${Name} placeholders."""

        def service_type(webhook: WebhookTarget) -> str:
            return "ClusterIP" if webhook.is_ip_format else "ExternalName"

        def external_name(webhook: WebhookTarget) -> str:
            return "" if webhook.is_ip_format else webhook.address

        return {
            "ClusterManagerName": self.cluster_manager_name,
            "ClusterManagerNamespace": self.cluster_manager_namespace,
            "OperatorNamespace": self.operator_namespace,
            "RegistrationImage": self.registration_image,
            "WorkImage": self.work_image,
            "PlacementImage": self.placement_image,
            "AddOnManagerImage": self.addon_manager_image,
            "RegistrationWebhookAddress": self.registration_webhook.address,
            "RegistrationWebhookPort": str(self.registration_webhook.port),
            "RegistrationWebhookServiceType": service_type(self.registration_webhook),
            "RegistrationWebhookExternalName": external_name(self.registration_webhook),
            "WorkWebhookAddress": self.work_webhook.address,
            "WorkWebhookPort": str(self.work_webhook.port),
            "WorkWebhookServiceType": service_type(self.work_webhook),
            "WorkWebhookExternalName": external_name(self.work_webhook),
        }
