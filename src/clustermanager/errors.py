"""Error taxonomy for hub reconciliation.

Errors raised at the loading boundaries (spec files, manifests, configuration)
live next to their loaders. The classes here are the ones a reconcile pass
produces or consumes:

- ControlPlaneError / NotFoundError: raised by control plane clients.
- ApplyError: one manifest failed to render or apply. Collected, never raised.
- CleanupError: one or more legacy objects could not be removed. Collected.
- DecommissionError: a disabled feature's resources could not be removed.
  Fatal to the pass.
- AggregateError: every collected error from one pass, in attempt order.
"""

from __future__ import annotations

from collections.abc import Sequence


class HubReconcileError(Exception):
    """Base class for errors produced by the hub reconcile pass."""

    pass


class ControlPlaneError(HubReconcileError):
    """Raised when a control plane request fails."""

    pass


class NotFoundError(ControlPlaneError):
    """Raised when the requested object does not exist on the control plane."""

    pass


class ApplyError(HubReconcileError):
    """A single manifest failed to render or apply."""

    def __init__(self, identifier: str, kind: str, cause: BaseException) -> None:
        self.identifier = identifier
        self.kind = kind
        self.cause = cause
        super().__init__(f'"{identifier}" ({kind}): {cause}')


class CleanupError(HubReconcileError):
    """Legacy objects that could not be removed, keyed by name."""

    def __init__(self, failures: Sequence[tuple[str, BaseException]]) -> None:
        self.failures = list(failures)
        details = ", ".join(f"{name}: {cause}" for name, cause in self.failures)
        super().__init__(f"failed to clean up legacy objects: {details}")


class DecommissionError(HubReconcileError):
    """A disabled feature's resource could not be removed."""

    def __init__(self, feature: str, identifier: str, cause: BaseException) -> None:
        self.feature = feature
        self.identifier = identifier
        self.cause = cause
        super().__init__(
            f"failed to remove {identifier!r} of disabled feature {feature}: {cause}"
        )


class AggregateError(HubReconcileError):
    """Combination of the errors collected during one pass.

    The string form mirrors what is written into the status condition:
    a single error renders as its own message, several render as a
    bracketed, comma separated list in the order they were collected.
    """

    def __init__(self, errors: Sequence[BaseException]) -> None:
        if not errors:
            raise ValueError("AggregateError requires at least one error")
        self.errors = list(errors)
        super().__init__(self._format())

    def _format(self) -> str:
        if len(self.errors) == 1:
            return str(self.errors[0])
        return "[" + ", ".join(str(e) for e in self.errors) + "]"

    @property
    def apply_errors(self) -> list[ApplyError]:
        return [e for e in self.errors if isinstance(e, ApplyError)]

    @property
    def cleanup_errors(self) -> list[CleanupError]:
        return [e for e in self.errors if isinstance(e, CleanupError)]

    def __len__(self) -> int:
        return len(self.errors)


def aggregate(errors: Sequence[BaseException]) -> AggregateError | None:
    """Build an AggregateError, or None when nothing was collected."""
    if not errors:
        return None
    return AggregateError(errors)
