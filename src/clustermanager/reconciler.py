"""ClusterManager reconciliation loop.

Each cycle:
1. Load the ClusterManager descriptor and the status of the previous pass
2. Derive the HubConfig for this pass
3. If the ClusterManager is being deleted, run every stage's teardown
   in reverse order; otherwise run every stage in order, stopping at the
   first one that asks to stop
4. Mark the ClusterManager Applied when every stage ran and none reported
   an error
5. Persist the status and log a provenance record
6. Repeat on interval

Passes for one ClusterManager never overlap: the loop is the only caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from .conditions import (
    CONDITION_APPLIED,
    REASON_CLUSTER_MANAGER_APPLIED,
    set_status_condition,
)
from .config import Config
from .errors import AggregateError, ControlPlaneError, DecommissionError
from .hub_reconcile import ReconcileState, StageOutcome
from .models import ClusterManager, Condition, ConditionStatus, HubConfig, HubFeature
from .provenance import get_provenance_logger
from .spec_loader import SpecLoadError, load_cluster_manager, load_status, write_status

logger = logging.getLogger(__name__)

# Circuit breaker constants
MAX_CONSECUTIVE_FAILURES = 5
CIRCUIT_BREAKER_RESET_SECONDS = 300  # 5 minutes


class ReconcileStage(Protocol):
    """One stage of ClusterManager reconciliation."""

    @property
    def name(self) -> str: ...

    async def reconcile(
        self, cluster_manager: ClusterManager, config: HubConfig
    ) -> StageOutcome: ...

    async def clean(self, cluster_manager: ClusterManager, config: HubConfig) -> StageOutcome: ...


@dataclass
class ReconcileResult:
    """Result of a single reconciliation cycle."""

    cluster_manager: str = ""
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    deleting: bool = False
    state: ReconcileState = ReconcileState.CONTINUE
    stages_run: list[str] = field(default_factory=list)
    applied: bool = False
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if reconciliation succeeded."""
        return self.error is None


class ClusterManagerReconciler:
    """Runs the reconcile stages for one ClusterManager on an interval.

    A circuit breaker pauses reconciliation after MAX_CONSECUTIVE_FAILURES
    failed passes, for CIRCUIT_BREAKER_RESET_SECONDS.
    """

    def __init__(self, config: Config, stages: Sequence[ReconcileStage]) -> None:
        if not stages:
            raise ValueError("At least one reconcile stage is required")
        self._config = config
        self._stages = list(stages)
        self._shutdown_event = asyncio.Event()

        # Circuit breaker state
        self._consecutive_failures = 0
        self._circuit_open_until: datetime | None = None

    @property
    def config(self) -> Config:
        return self._config

    async def run(self) -> None:
        """Run reconcile passes until shutdown is requested."""
        logger.info(
            "Starting reconciler",
            extra={
                "cluster_manager_path": str(self._config.cluster_manager_path),
                "interval_seconds": self._config.reconcile_interval_seconds,
                "stages": [stage.name for stage in self._stages],
                "dry_run": self._config.dry_run,
            },
        )

        while not self._shutdown_event.is_set():
            if self._circuit_open_until is not None:
                now = datetime.now(UTC)
                if now < self._circuit_open_until:
                    remaining = (self._circuit_open_until - now).total_seconds()
                    logger.warning(
                        "Circuit breaker open, skipping reconciliation",
                        extra={
                            "remaining_seconds": remaining,
                            "consecutive_failures": self._consecutive_failures,
                        },
                    )
                    await self._wait(min(remaining, self._config.reconcile_interval_seconds))
                    continue

                logger.info("Circuit breaker reset, resuming reconciliation")
                self._circuit_open_until = None
                self._consecutive_failures = 0

            result = await self.reconcile_once()
            self._log_result(result)

            if result.error is not None:
                self._consecutive_failures += 1
                if self._consecutive_failures >= MAX_CONSECUTIVE_FAILURES:
                    self._circuit_open_until = datetime.now(UTC) + timedelta(
                        seconds=CIRCUIT_BREAKER_RESET_SECONDS
                    )
                    logger.error(
                        "Circuit breaker opened after consecutive failures",
                        extra={
                            "consecutive_failures": self._consecutive_failures,
                            "reset_seconds": CIRCUIT_BREAKER_RESET_SECONDS,
                        },
                    )
            else:
                self._consecutive_failures = 0

            await self._wait(self._config.reconcile_interval_seconds)

        logger.info("Reconciler shutdown complete")

    def shutdown(self) -> None:
        """Signal the reconciler to stop."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except TimeoutError:
            pass

    async def reconcile_once(self) -> ReconcileResult:
        """Execute a single reconcile pass."""
        result = ReconcileResult()
        provenance_logger = get_provenance_logger(self._config.enable_audit_logging)
        provenance = None

        try:
            cluster_manager = load_cluster_manager(self._config.cluster_manager_path)
            result.cluster_manager = cluster_manager.metadata.name
            result.deleting = cluster_manager.being_deleted
            self._restore_status(cluster_manager)

            hub_config = HubConfig.from_cluster_manager(
                cluster_manager, operator_namespace=self._config.operator_namespace
            )

            provenance = provenance_logger.create_provenance(
                cluster_manager.metadata.name, cluster_manager.metadata.generation
            )
            provenance.mode = cluster_manager.mode.value
            provenance.deleting = result.deleting
            provenance.features = {
                feature.value: hub_config.feature_enabled(feature) for feature in HubFeature
            }

            await asyncio.wait_for(
                self._run_stages(cluster_manager, hub_config, result),
                timeout=self._config.reconcile_timeout_seconds,
            )

        except SpecLoadError as e:
            logger.error("Failed to load ClusterManager", extra={"error": str(e)})
            result.error = e
        except DecommissionError as e:
            logger.error("Feature decommission failed", extra={"error": str(e)})
            result.error = e
        except AggregateError as e:
            logger.error(
                "Hub resources failed to apply",
                extra={"error": str(e), "failures": len(e)},
            )
            result.error = e
        except ControlPlaneError as e:
            logger.error("Control plane error", extra={"error": str(e)})
            result.error = e
        except TimeoutError as e:
            logger.error(
                "Reconcile pass timed out",
                extra={"timeout_seconds": self._config.reconcile_timeout_seconds},
            )
            result.error = e
        except OSError as e:
            logger.error("Failed to write status", extra={"error": str(e)})
            result.error = e
        except Exception as e:
            logger.exception("Unexpected error during reconciliation")
            result.error = e

        result.end_time = datetime.now(UTC)

        if provenance is not None:
            provenance.state = result.state.value
            provenance.stages_run = list(result.stages_run)
            provenance.applied = result.applied
            provenance.duration_seconds = result.duration_seconds
            if result.error is not None:
                provenance.error = str(result.error)
                provenance.error_type = type(result.error).__name__
            provenance_logger.log_provenance(provenance)

        return result

    def _restore_status(self, cluster_manager: ClusterManager) -> None:
        """Carry the status written by the previous pass into this one."""
        if self._config.status_path is None:
            return
        try:
            status = load_status(self._config.status_path, cluster_manager.metadata.name)
        except SpecLoadError as e:
            # Overwritten at the end of this pass
            logger.warning("Discarding unreadable status", extra={"error": str(e)})
            return
        if status is not None:
            cluster_manager.status = status

    async def _run_stages(
        self,
        cluster_manager: ClusterManager,
        hub_config: HubConfig,
        result: ReconcileResult,
    ) -> None:
        """Run the stages, raising the first stage error once all have had their turn."""
        errors: list[Exception] = []

        if cluster_manager.being_deleted:
            for stage in reversed(self._stages):
                result.stages_run.append(stage.name)
                cluster_manager, state, err = await stage.clean(cluster_manager, hub_config)
                result.state = state
                if err is not None:
                    errors.append(err)
                if state == ReconcileState.STOP:
                    break
        else:
            completed = True
            for stage in self._stages:
                result.stages_run.append(stage.name)
                cluster_manager, state, err = await stage.reconcile(cluster_manager, hub_config)
                result.state = state
                if err is not None:
                    errors.append(err)
                if state == ReconcileState.STOP:
                    completed = False
                    break

            if completed and not errors:
                set_status_condition(
                    cluster_manager.status.conditions,
                    Condition(
                        type=CONDITION_APPLIED,
                        status=ConditionStatus.TRUE,
                        reason=REASON_CLUSTER_MANAGER_APPLIED,
                        message="Components of cluster manager are applied",
                        observed_generation=cluster_manager.metadata.generation,
                    ),
                )
                result.applied = True

        # Status is persisted whether or not a stage failed
        cluster_manager.status.observed_generation = cluster_manager.metadata.generation
        if self._config.status_path is not None:
            write_status(self._config.status_path, cluster_manager)

        if errors:
            raise errors[0] if len(errors) == 1 else AggregateError(errors)

    def _log_result(self, result: ReconcileResult) -> None:
        """Log reconciliation result with structured data."""
        extra: dict[str, Any] = {
            "cluster_manager": result.cluster_manager,
            "duration_seconds": result.duration_seconds,
            "deleting": result.deleting,
            "state": result.state.value,
            "stages_run": result.stages_run,
            "applied": result.applied,
        }

        if result.error is not None:
            extra["error"] = str(result.error)
            logger.error("Reconciliation failed", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)
