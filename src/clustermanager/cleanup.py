"""Best-effort removal of objects left over by retired hub topologies."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from .catalog import LEGACY_WEBHOOK_API_SERVICES
from .errors import CleanupError, ControlPlaneError, NotFoundError
from .resourceapply import APIServiceClient

logger = logging.getLogger(__name__)


class LegacyAPIServiceCleaner:
    """Deletes the legacy webhook APIService registrations.

    Every name is attempted on every call. Absent objects count as cleaned;
    any other failure is reported in one CleanupError rather than raised, so
    the caller can fold it into the pass's aggregate error.
    """

    def __init__(
        self,
        client: APIServiceClient | None,
        names: Sequence[str] = LEGACY_WEBHOOK_API_SERVICES,
    ) -> None:
        self._client = client
        self._names = tuple(names)

    async def cleanup(self) -> CleanupError | None:
        if self._client is None:
            return CleanupError(
                [("apiservices", ControlPlaneError("API registration client is not configured"))]
            )

        failures: list[tuple[str, BaseException]] = []
        for name in self._names:
            try:
                await self._client.delete_api_service(name)
            except NotFoundError:
                continue
            except TimeoutError:
                raise
            except Exception as e:
                logger.warning(
                    "Failed to delete legacy APIService",
                    extra={"api_service": name, "error": str(e)},
                )
                failures.append((name, e))
            else:
                logger.info("Deleted legacy APIService", extra={"api_service": name})

        if failures:
            return CleanupError(failures)
        return None
