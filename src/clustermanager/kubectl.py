"""Control plane client backed by the kubectl binary.

Objects are sent to kubectl as JSON on stdin. Apply uses server-side apply
under a fixed field manager, get uses "kubectl get --ignore-not-found" and
delete uses "kubectl delete -f -". Blocking subprocess calls run in the
default executor so the event loop stays free.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import subprocess
from pathlib import Path
from typing import Any

from .errors import ControlPlaneError, NotFoundError

logger = logging.getLogger(__name__)

FIELD_MANAGER = "cluster-manager-operator"
API_SERVICE_API_VERSION = "apiregistration.k8s.io/v1"

NOT_FOUND_MARKERS = ("(NotFound)",)


class KubectlClient:
    """ControlPlaneClient and APIServiceClient implemented with kubectl."""

    def __init__(
        self,
        kubectl_path: str = "kubectl",
        kubeconfig: Path | None = None,
        timeout_seconds: int = 60,
        dry_run: bool = False,
    ) -> None:
        self._kubectl_path = kubectl_path
        self._kubeconfig = kubeconfig
        self._timeout_seconds = timeout_seconds
        self._dry_run = dry_run

    def _base_command(self) -> list[str]:
        cmd = [self._kubectl_path]
        if self._kubeconfig is not None:
            cmd.extend(["--kubeconfig", str(self._kubeconfig)])
        return cmd

    def _run_sync(self, args: list[str], stdin: str) -> subprocess.CompletedProcess[str]:
        cmd = self._base_command() + args
        try:
            return subprocess.run(
                cmd,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self._timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ControlPlaneError(
                f"kubectl {args[0]} timed out after {self._timeout_seconds}s"
            ) from e
        except FileNotFoundError as e:
            raise ControlPlaneError(f"kubectl not found: {self._kubectl_path}") from e

    async def _run(self, args: list[str], obj: dict[str, Any]) -> subprocess.CompletedProcess[str]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(self._run_sync, args, json.dumps(obj))
        )

    async def apply(self, obj: dict[str, Any]) -> dict[str, Any]:
        args = [
            "apply",
            "--server-side",
            "--force-conflicts",
            f"--field-manager={FIELD_MANAGER}",
            "-o",
            "json",
            "-f",
            "-",
        ]
        if self._dry_run:
            args.append("--dry-run=server")

        completed = await self._run(args, obj)
        if completed.returncode != 0:
            raise ControlPlaneError(_error_text(completed))

        try:
            applied = json.loads(completed.stdout)
        except json.JSONDecodeError as e:
            raise ControlPlaneError(f"kubectl apply returned invalid JSON: {e}") from e

        if not isinstance(applied, dict):
            raise ControlPlaneError("kubectl apply returned a non-object response")
        return applied

    async def get(self, obj: dict[str, Any]) -> dict[str, Any] | None:
        completed = await self._run(
            ["get", "--ignore-not-found", "-o", "json", "-f", "-"], _identity(obj)
        )
        if completed.returncode != 0:
            raise ControlPlaneError(_error_text(completed))
        if not completed.stdout.strip():
            return None

        try:
            live = json.loads(completed.stdout)
        except json.JSONDecodeError as e:
            raise ControlPlaneError(f"kubectl get returned invalid JSON: {e}") from e

        if not isinstance(live, dict):
            raise ControlPlaneError("kubectl get returned a non-object response")
        return live

    async def delete(self, obj: dict[str, Any]) -> None:
        args = ["delete", "--wait=false", "-f", "-"]
        if self._dry_run:
            args.append("--dry-run=server")

        completed = await self._run(args, _identity(obj))
        if completed.returncode == 0:
            return

        message = _error_text(completed)
        if any(marker in message for marker in NOT_FOUND_MARKERS):
            raise NotFoundError(message)
        raise ControlPlaneError(message)

    async def delete_api_service(self, name: str) -> None:
        await self.delete(
            {
                "apiVersion": API_SERVICE_API_VERSION,
                "kind": "APIService",
                "metadata": {"name": name},
            }
        )


def _identity(obj: dict[str, Any]) -> dict[str, Any]:
    """Reduce an object to apiVersion, kind, name and namespace."""
    metadata = obj.get("metadata", {})
    target: dict[str, Any] = {
        "apiVersion": obj["apiVersion"],
        "kind": obj["kind"],
        "metadata": {"name": metadata["name"]},
    }
    if metadata.get("namespace"):
        target["metadata"]["namespace"] = metadata["namespace"]
    return target


def _error_text(completed: subprocess.CompletedProcess[str]) -> str:
    text = (completed.stderr or completed.stdout or "").strip()
    return text or f"kubectl exited with code {completed.returncode}"
