"""Reconcile provenance records for audit.

Every pass is stamped with a structured record answering:
- "Which ClusterManager, in which mode, with which features?"
- "Which stages ran, and did the pass leave it Applied?"
- "Which operator version and source revision ran it?"
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

# Version is set at build time or falls back to dev
OPERATOR_VERSION = os.environ.get("OPERATOR_VERSION", "dev")


@dataclass
class ReconcileProvenance:
    """Provenance record for one reconcile pass."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Identity
    cluster_manager: str = ""
    generation: int = 0
    operator_version: str = OPERATOR_VERSION
    operator_instance_id: str = ""
    git_commit_sha: str = ""

    # Desired state
    mode: str = ""
    features: dict[str, bool] = field(default_factory=dict)
    deleting: bool = False

    # Outcome
    state: str = ""
    stages_run: list[str] = field(default_factory=list)
    applied: bool = False

    duration_seconds: float = 0.0

    error: str | None = None
    error_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


class ProvenanceLogger:
    """Logs provenance records to the structured log."""

    def __init__(self, enabled: bool = True) -> None:
        self._enabled = enabled
        self._git_commit_sha = os.environ.get("GIT_COMMIT_SHA", "")
        self._instance_id = os.environ.get("POD_NAME", "")

    def create_provenance(self, cluster_manager: str, generation: int = 0) -> ReconcileProvenance:
        return ReconcileProvenance(
            cluster_manager=cluster_manager,
            generation=generation,
            operator_version=OPERATOR_VERSION,
            operator_instance_id=self._instance_id,
            git_commit_sha=self._git_commit_sha,
        )

    def log_provenance(self, provenance: ReconcileProvenance) -> None:
        if not self._enabled:
            return

        log_level = logging.ERROR if provenance.error else logging.INFO
        logger.log(
            log_level,
            "Reconciliation provenance",
            extra={
                "provenance": provenance.to_dict(),
                # Flatten key fields for easier querying
                "cluster_manager": provenance.cluster_manager,
                "mode": provenance.mode,
                "state": provenance.state,
                "applied": provenance.applied,
                "operator_version": provenance.operator_version,
                "duration_seconds": provenance.duration_seconds,
            },
        )


_provenance_logger: ProvenanceLogger | None = None


def get_provenance_logger(enabled: bool = True) -> ProvenanceLogger:
    """Get the global provenance logger instance."""
    global _provenance_logger
    if _provenance_logger is None:
        _provenance_logger = ProvenanceLogger(enabled=enabled)
    return _provenance_logger
