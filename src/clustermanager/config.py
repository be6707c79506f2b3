"""Configuration management with validation.

All settings come from environment variables and are validated at load time,
so a misconfigured operator fails at startup rather than in the middle of a
reconcile pass.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_RECONCILE_INTERVAL_SECONDS = 300
MIN_RECONCILE_INTERVAL_SECONDS = 10
MAX_RECONCILE_INTERVAL_SECONDS = 3600

DEFAULT_RECONCILE_TIMEOUT_SECONDS = 300
DEFAULT_KUBECTL_TIMEOUT_SECONDS = 60

DEFAULT_MAX_CONCURRENT_APPLIES = 4
MAX_CONCURRENT_APPLIES_LIMIT = 32

DEFAULT_OPERATOR_NAMESPACE = "open-cluster-management"
DEFAULT_CLUSTER_MANAGER_SPEC = "/etc/cluster-manager/clustermanager.yaml"

# Size limits for files read from disk
MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max descriptor file
MAX_MANIFEST_FILE_SIZE_BYTES = 256 * 1024  # 256KB max manifest template

# Kubernetes namespace names are DNS-1123 labels
VALID_NAMESPACE_PATTERN = r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$"


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Descriptor source and status sink
    cluster_manager_path: Path = field(
        default_factory=lambda: Path(DEFAULT_CLUSTER_MANAGER_SPEC)
    )
    status_path: Path | None = None

    operator_namespace: str = DEFAULT_OPERATOR_NAMESPACE

    # Overrides the packaged manifests when set
    manifests_dir: Path | None = None

    # Timing
    reconcile_interval_seconds: int = DEFAULT_RECONCILE_INTERVAL_SECONDS
    reconcile_timeout_seconds: int = DEFAULT_RECONCILE_TIMEOUT_SECONDS

    max_concurrent_applies: int = DEFAULT_MAX_CONCURRENT_APPLIES

    # Control plane access
    kubectl_path: str = "kubectl"
    kubeconfig: Path | None = None
    kubectl_timeout_seconds: int = DEFAULT_KUBECTL_TIMEOUT_SECONDS

    # Behavior
    dry_run: bool = False
    enable_audit_logging: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        import re

        errors: list[str] = []

        if not self.cluster_manager_path.exists():
            errors.append(
                f"CLUSTER_MANAGER_SPEC file does not exist: {self.cluster_manager_path}"
            )

        if self.status_path is not None:
            if not self.status_path.parent.exists():
                errors.append(
                    f"STATUS_PATH directory does not exist: {self.status_path.parent}"
                )
            elif self.status_path.resolve() == self.cluster_manager_path.resolve():
                # Status documents carry no spec
                errors.append(
                    f"STATUS_PATH must differ from CLUSTER_MANAGER_SPEC: {self.status_path}"
                )

        if not self.operator_namespace:
            errors.append("OPERATOR_NAMESPACE is required")
        elif not re.match(VALID_NAMESPACE_PATTERN, self.operator_namespace):
            errors.append(
                f"OPERATOR_NAMESPACE must be a valid namespace name: {self.operator_namespace}"
            )

        if self.manifests_dir is not None and not self.manifests_dir.is_dir():
            errors.append(f"Manifests directory does not exist: {self.manifests_dir}")

        if not (
            MIN_RECONCILE_INTERVAL_SECONDS
            <= self.reconcile_interval_seconds
            <= MAX_RECONCILE_INTERVAL_SECONDS
        ):
            errors.append(
                f"RECONCILE_INTERVAL must be between {MIN_RECONCILE_INTERVAL_SECONDS} "
                f"and {MAX_RECONCILE_INTERVAL_SECONDS} seconds"
            )

        if self.reconcile_timeout_seconds < 1:
            errors.append("RECONCILE_TIMEOUT must be at least 1 second")

        if self.kubectl_timeout_seconds < 1:
            errors.append("KUBECTL_TIMEOUT must be at least 1 second")

        if not (1 <= self.max_concurrent_applies <= MAX_CONCURRENT_APPLIES_LIMIT):
            errors.append(
                f"MAX_CONCURRENT_APPLIES must be between 1 and {MAX_CONCURRENT_APPLIES_LIMIT}"
            )

        if self.kubeconfig is not None and not self.kubeconfig.exists():
            errors.append(f"KUBECONFIG file does not exist: {self.kubeconfig}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            CLUSTER_MANAGER_SPEC: Path to the ClusterManager YAML
                (default: /etc/cluster-manager/clustermanager.yaml)
            STATUS_PATH: Where to write the reconciled status (default: unset)
            OPERATOR_NAMESPACE: Namespace the operator runs in
                (default: open-cluster-management)
            MANIFESTS_DIR: Directory overriding the packaged manifests
            RECONCILE_INTERVAL: Seconds between reconcile passes (default: 300)
            RECONCILE_TIMEOUT: Upper bound for one pass in seconds (default: 300)
            MAX_CONCURRENT_APPLIES: Parallel object applies per pass (default: 4)
            KUBECTL_PATH: kubectl binary (default: kubectl)
            KUBECONFIG: kubeconfig file passed to kubectl (default: unset)
            KUBECTL_TIMEOUT: Timeout for one kubectl call in seconds (default: 60)
            DRY_RUN: If "true", apply with server-side dry run (default: false)
            ENABLE_AUDIT_LOGGING: Log a provenance record per pass (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_path(key: str) -> Path | None:
            value = os.environ.get(key)
            return Path(value) if value else None

        return cls(
            cluster_manager_path=Path(
                os.environ.get("CLUSTER_MANAGER_SPEC", DEFAULT_CLUSTER_MANAGER_SPEC)
            ),
            status_path=get_path("STATUS_PATH"),
            operator_namespace=os.environ.get("OPERATOR_NAMESPACE", DEFAULT_OPERATOR_NAMESPACE),
            manifests_dir=get_path("MANIFESTS_DIR"),
            reconcile_interval_seconds=get_int(
                "RECONCILE_INTERVAL", DEFAULT_RECONCILE_INTERVAL_SECONDS
            ),
            reconcile_timeout_seconds=get_int(
                "RECONCILE_TIMEOUT", DEFAULT_RECONCILE_TIMEOUT_SECONDS
            ),
            max_concurrent_applies=get_int(
                "MAX_CONCURRENT_APPLIES", DEFAULT_MAX_CONCURRENT_APPLIES
            ),
            kubectl_path=os.environ.get("KUBECTL_PATH", "kubectl"),
            kubeconfig=get_path("KUBECONFIG"),
            kubectl_timeout_seconds=get_int("KUBECTL_TIMEOUT", DEFAULT_KUBECTL_TIMEOUT_SECONDS),
            dry_run=get_bool("DRY_RUN", False),
            enable_audit_logging=get_bool("ENABLE_AUDIT_LOGGING", True),
        )
