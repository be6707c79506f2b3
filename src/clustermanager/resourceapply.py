"""Apply and delete rendered manifests against the control plane.

The control plane itself is reached through the ControlPlaneClient protocol;
this module adds the per-pass mechanics around it:
- render every manifest in order, then apply the objects concurrently,
- return one ResourceApplyResult per manifest, in manifest order,
- skip objects whose rendered bytes were applied recently and whose live
  resourceVersion is still the one the apply returned,
- treat "not found" as success when deleting.

Per-object failures are captured on the result. Cancellation and timeouts
are never captured; they propagate to the caller.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

import yaml

from .errors import NotFoundError
from .models import RelatedResourceMeta

logger = logging.getLogger(__name__)

ManifestFunc = Callable[[str], bytes]
ObjectKey = tuple[str, str, str, str]

DEFAULT_CACHE_TTL_SECONDS = 600
MAX_RECORDED_EVENTS = 1000

# Kinds whose resource name is not the guessed plural
_IRREGULAR_RESOURCES = {"endpoints": "endpoints"}


class ControlPlaneClient(Protocol):
    """Create-or-update and delete of single objects."""

    async def apply(self, obj: dict[str, Any]) -> dict[str, Any]: ...

    async def get(self, obj: dict[str, Any]) -> dict[str, Any] | None:
        """Return the live object, or None if it does not exist."""
        ...

    async def delete(self, obj: dict[str, Any]) -> None:
        """Delete the object; raise NotFoundError if it does not exist."""
        ...


class APIServiceClient(Protocol):
    async def delete_api_service(self, name: str) -> None:
        """Delete an APIService; raise NotFoundError if it does not exist."""
        ...


@dataclass
class ResourceApplyResult:
    """Outcome of applying one manifest."""

    file: str
    type: str = "unknown"
    result: dict[str, Any] | None = None
    changed: bool = False
    error: Exception | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class RecordedEvent:
    reason: str
    message: str
    warning: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class EventRecorder:
    """Records operator events and mirrors them to the log."""

    def __init__(self, component: str = "cluster-manager-operator") -> None:
        self._component = component
        self._events: deque[RecordedEvent] = deque(maxlen=MAX_RECORDED_EVENTS)

    @property
    def events(self) -> list[RecordedEvent]:
        return list(self._events)

    def event(self, reason: str, message: str) -> None:
        self._events.append(RecordedEvent(reason=reason, message=message))
        logger.info(message, extra={"component": self._component, "reason": reason})

    def warning(self, reason: str, message: str) -> None:
        self._events.append(RecordedEvent(reason=reason, message=message, warning=True))
        logger.warning(message, extra={"component": self._component, "reason": reason})


class ResourceCache:
    """Remembers the digest and resourceVersion of each object last applied.

    A hit only means the rendered bytes match the last apply. The caller
    still compares the recorded resourceVersion with the live object, so
    objects deleted or edited behind the operator's back are re-applied.
    Entries expire after ttl_seconds.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS) -> None:
        self._ttl_seconds = ttl_seconds
        self._entries: dict[ObjectKey, tuple[str, str, float]] = {}

    def lookup(self, key: ObjectKey, digest: str) -> str | None:
        """Return the recorded resourceVersion when digest matches an unexpired entry."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        cached_digest, resource_version, recorded_at = entry
        if time.monotonic() - recorded_at > self._ttl_seconds:
            del self._entries[key]
            return None
        if cached_digest != digest:
            return None
        return resource_version

    def record(self, key: ObjectKey, digest: str, resource_version: str) -> None:
        self._entries[key] = (digest, resource_version, time.monotonic())

    def forget(self, key: ObjectKey) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


def resource_version_of(obj: dict[str, Any] | None) -> str:
    if not obj:
        return ""
    return str(obj.get("metadata", {}).get("resourceVersion") or "")


def parse_object(data: bytes) -> dict[str, Any]:
    """Parse rendered manifest bytes into an object mapping.

    Raises:
        ValueError: If the bytes are not a single object with apiVersion,
            kind and metadata.name.
    """
    try:
        obj = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise ValueError(f"invalid YAML: {e}") from e

    if not isinstance(obj, dict):
        raise ValueError("manifest must contain a YAML mapping")

    metadata = obj.get("metadata")
    if not obj.get("apiVersion") or not obj.get("kind"):
        raise ValueError("manifest must set apiVersion and kind")
    if not isinstance(metadata, dict) or not metadata.get("name"):
        raise ValueError("manifest must set metadata.name")

    return obj


def object_key(obj: dict[str, Any]) -> ObjectKey:
    metadata = obj.get("metadata", {})
    return (
        obj["apiVersion"],
        obj["kind"],
        metadata.get("namespace", "") or "",
        metadata["name"],
    )


def infer_type(obj: dict[str, Any]) -> str:
    """Kind of a parsed object, used to label errors."""
    return str(obj.get("kind") or "unknown")


def describe(obj: dict[str, Any]) -> str:
    _, kind, namespace, name = object_key(obj)
    if namespace:
        return f"{kind} {namespace}/{name}"
    return f"{kind} {name}"


def _digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def guess_resource(kind: str) -> str:
    """Lowercase plural resource name for a kind."""
    singular = kind.lower()
    if singular in _IRREGULAR_RESOURCES:
        return _IRREGULAR_RESOURCES[singular]
    if singular.endswith("s"):
        return singular + "es"
    if singular.endswith("y"):
        return singular[:-1] + "ies"
    return singular + "s"


def related_resource_meta(obj: dict[str, Any]) -> RelatedResourceMeta:
    api_version, kind, namespace, name = object_key(obj)
    group, _, version = api_version.rpartition("/")
    return RelatedResourceMeta(
        group=group,
        version=version,
        resource=guess_resource(kind),
        namespace=namespace,
        name=name,
    )


def set_related_resources_statuses_with_obj(
    related_resources: list[RelatedResourceMeta], data: bytes
) -> None:
    """Record the identity of a rendered object, once."""
    meta = related_resource_meta(parse_object(data))
    if meta not in related_resources:
        related_resources.append(meta)


async def apply_directly(
    client: ControlPlaneClient,
    recorder: EventRecorder,
    cache: ResourceCache,
    manifest_func: ManifestFunc,
    *files: str,
    max_concurrency: int = 4,
) -> list[ResourceApplyResult]:
    """Render and apply manifests, one result per manifest in the given order.

    Manifests are rendered sequentially, so any side effects of manifest_func
    happen in manifest order. Applies then run concurrently, at most
    max_concurrency at a time.
    """
    results = [ResourceApplyResult(file=name) for name in files]
    pending: list[tuple[ResourceApplyResult, dict[str, Any], str]] = []

    for result in results:
        try:
            data = manifest_func(result.file)
            obj = parse_object(data)
        except Exception as e:
            result.error = e
            continue
        result.type = infer_type(obj)
        pending.append((result, obj, _digest(data)))

    semaphore = asyncio.Semaphore(max_concurrency)

    async def apply_one(result: ResourceApplyResult, obj: dict[str, Any], digest: str) -> None:
        key = object_key(obj)
        cached_version = cache.lookup(key, digest)

        async with semaphore:
            try:
                if cached_version is not None:
                    live = await client.get(obj)
                    if live is not None and resource_version_of(live) == cached_version:
                        result.result = live
                        return
                result.result = await client.apply(obj)
            except TimeoutError:
                raise
            except Exception as e:
                cache.forget(key)
                result.error = e
                recorder.warning(
                    f"{result.type}ApplyFailed",
                    f"Failed to apply {describe(obj)}: {e}",
                )
                return

        version = resource_version_of(result.result)
        if version:
            cache.record(key, digest, version)
        else:
            cache.forget(key)
        result.changed = True
        recorder.event(f"{result.type}Applied", f"Applied {describe(obj)}")

    tasks = [asyncio.ensure_future(apply_one(*item)) for item in pending]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        raise

    return results


async def delete_manifest(
    client: ControlPlaneClient,
    recorder: EventRecorder,
    manifest_func: ManifestFunc,
    name: str,
    cache: ResourceCache | None = None,
) -> bool:
    """Render a manifest and delete the object it describes.

    Returns:
        True if an object was deleted, False if it was already absent.

    Raises:
        Whatever rendering or the client raises, except NotFoundError.
    """
    obj = parse_object(manifest_func(name))
    if cache is not None:
        cache.forget(object_key(obj))

    try:
        await client.delete(obj)
    except NotFoundError:
        logger.debug("Object already absent", extra={"manifest": name})
        return False

    recorder.event(f"{infer_type(obj)}Deleted", f"Deleted {describe(obj)}")
    return True
