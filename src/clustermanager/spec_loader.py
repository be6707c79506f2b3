"""ClusterManager descriptor loading and status persistence.

SECURITY: All file operations enforce size limits to prevent DoS attacks
via large files. Input validation is performed at the boundary.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES
from .models import ClusterManager, ClusterManagerStatus

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when descriptor loading or validation fails."""

    pass


def load_cluster_manager(spec_path: Path) -> ClusterManager:
    """Load and validate a ClusterManager from YAML.

    Args:
        spec_path: Path to the ClusterManager document.

    Returns:
        Validated ClusterManager.

    Raises:
        SpecLoadError: If the file cannot be loaded or fails validation.
    """
    if not spec_path.exists():
        raise SpecLoadError(f"Spec file not found: {spec_path}")

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = spec_path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat spec file {spec_path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Spec file exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {spec_path}"
        )

    try:
        content = spec_path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read spec file {spec_path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {spec_path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Spec file must contain a YAML mapping: {spec_path}")

    kind = raw_data.get("kind", "ClusterManager")
    if kind != "ClusterManager":
        raise SpecLoadError(f"Expected kind ClusterManager, got {kind!r}: {spec_path}")

    try:
        cluster_manager = ClusterManager.model_validate(raw_data)
    except ValidationError as e:
        # Format Pydantic validation errors for readability
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {spec_path}:\n{error_list}") from e

    logger.info(
        "Loaded ClusterManager '%s' from %s",
        cluster_manager.metadata.name,
        spec_path,
    )
    return cluster_manager


def load_status(status_path: Path, name: str) -> ClusterManagerStatus | None:
    """Load the status last written for the named ClusterManager.

    Returns:
        The persisted status, or None if no status has been written yet or
        the file belongs to a different ClusterManager.

    Raises:
        SpecLoadError: If the file exists but cannot be read or validated.
    """
    if not status_path.exists():
        return None

    try:
        file_size = status_path.stat().st_size
        if file_size > MAX_SPEC_FILE_SIZE_BYTES:
            raise SpecLoadError(
                f"Status file exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: "
                f"{status_path}"
            )
        raw_data = yaml.safe_load(status_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise SpecLoadError(f"Failed to read status file {status_path}: {e}") from e
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {status_path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Status file must contain a YAML mapping: {status_path}")

    owner = (raw_data.get("metadata") or {}).get("name")
    if owner != name:
        logger.info(
            "Ignoring status of '%s' in %s while reconciling '%s'", owner, status_path, name
        )
        return None

    try:
        return ClusterManagerStatus.model_validate(raw_data.get("status") or {})
    except ValidationError as e:
        raise SpecLoadError(f"Invalid status in {status_path}: {e}") from e


def write_status(status_path: Path, cluster_manager: ClusterManager) -> None:
    """Persist the status block of a ClusterManager as YAML.

    Written to a temporary file first and renamed, so readers never observe
    a partially written status.
    """
    document = {
        "apiVersion": cluster_manager.api_version,
        "kind": cluster_manager.kind,
        "metadata": {"name": cluster_manager.metadata.name},
        "status": cluster_manager.status.model_dump(mode="json", by_alias=True, exclude_none=True),
    }

    tmp_path = status_path.with_name(status_path.name + ".tmp")
    tmp_path.write_text(yaml.safe_dump(document, sort_keys=False), encoding="utf-8")
    os.replace(tmp_path, status_path)

    logger.debug("Wrote status for '%s' to %s", cluster_manager.metadata.name, status_path)
