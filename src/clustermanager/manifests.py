"""Manifest template loading and rendering.

Templates are YAML files shipped with the package under manifests/, addressed
by their path relative to that directory (the resource identifiers used by the
catalog). Placeholders use ${Name} syntax and are filled from
HubConfig.template_values().

SECURITY: Template reads are size-limited and confined to the manifests root.
"""

from __future__ import annotations

import logging
from pathlib import Path
from string import Template

from .config import MAX_MANIFEST_FILE_SIZE_BYTES
from .models import HubConfig

logger = logging.getLogger(__name__)

MANIFESTS_DIR = Path(__file__).parent / "manifests"


class ManifestLoadError(Exception):
    """Raised when a manifest template cannot be read."""

    pass


class ManifestRenderError(Exception):
    """Raised when a manifest template cannot be rendered."""

    pass


def load_manifest(name: str, manifests_dir: Path | None = None) -> bytes:
    """Read the raw template for a manifest identifier.

    Args:
        name: Path of the manifest relative to the manifests root.
        manifests_dir: Manifests root (default: the packaged manifests).

    Returns:
        Raw template bytes.

    Raises:
        ManifestLoadError: If the manifest is missing, too large, unreadable,
            or resolves outside the manifests root.
    """
    root = (manifests_dir or MANIFESTS_DIR).resolve()
    path = (root / name).resolve()

    if not path.is_relative_to(root):
        raise ManifestLoadError(f"Manifest path escapes manifests directory: {name}")

    if not path.is_file():
        raise ManifestLoadError(f"Manifest not found: {name}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ManifestLoadError(f"Failed to stat manifest {name}: {e}") from e

    if file_size > MAX_MANIFEST_FILE_SIZE_BYTES:
        raise ManifestLoadError(
            f"Manifest exceeds maximum size of {MAX_MANIFEST_FILE_SIZE_BYTES} bytes: {name}"
        )

    try:
        return path.read_bytes()
    except OSError as e:
        raise ManifestLoadError(f"Failed to read manifest {name}: {e}") from e


def render_manifest(name: str, template: bytes, config: HubConfig) -> bytes:
    """Render a manifest template with the values of a HubConfig.

    Pure: identical inputs always produce identical bytes.

    Raises:
        ManifestRenderError: If the template is not UTF-8 or references an
            unknown placeholder.
    """
    try:
        text = template.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ManifestRenderError(f"Manifest {name} is not valid UTF-8: {e}") from e

    try:
        rendered = Template(text).substitute(config.template_values())
    except KeyError as e:
        raise ManifestRenderError(f"Manifest {name} references unknown value {e}") from e
    except ValueError as e:
        raise ManifestRenderError(f"Manifest {name} has an invalid placeholder: {e}") from e

    return rendered.encode("utf-8")


class ManifestRenderer:
    """Loads and renders manifests for one HubConfig."""

    def __init__(self, config: HubConfig, manifests_dir: Path | None = None) -> None:
        self._config = config
        self._manifests_dir = manifests_dir

    def __call__(self, name: str) -> bytes:
        template = load_manifest(name, self._manifests_dir)
        return render_manifest(name, template, self._config)
