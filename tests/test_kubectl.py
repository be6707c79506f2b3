"""Tests for the kubectl backed control plane client."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from clustermanager.errors import ControlPlaneError, NotFoundError
from clustermanager.kubectl import FIELD_MANAGER, KubectlClient

NAMESPACE = {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": "hub"}}
SERVICE = {
    "apiVersion": "v1",
    "kind": "Service",
    "metadata": {"name": "svc", "namespace": "hub", "labels": {"a": "b"}},
    "spec": {"ports": [{"port": 443}]},
}


def _completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestApply:
    """Tests for KubectlClient.apply."""

    @pytest.mark.asyncio
    async def test_server_side_apply(self) -> None:
        client = KubectlClient(kubeconfig=Path("/etc/kubeconfig"))
        applied = dict(NAMESPACE, status={"phase": "Active"})

        with patch("clustermanager.kubectl.subprocess.run") as run:
            run.return_value = _completed(stdout=json.dumps(applied))
            result = await client.apply(NAMESPACE)

        assert result == applied
        cmd = run.call_args.args[0]
        assert cmd[:3] == ["kubectl", "--kubeconfig", "/etc/kubeconfig"]
        assert "--server-side" in cmd
        assert f"--field-manager={FIELD_MANAGER}" in cmd
        assert "--dry-run=server" not in cmd
        assert json.loads(run.call_args.kwargs["input"]) == NAMESPACE

    @pytest.mark.asyncio
    async def test_dry_run(self) -> None:
        client = KubectlClient(dry_run=True)

        with patch("clustermanager.kubectl.subprocess.run") as run:
            run.return_value = _completed(stdout=json.dumps(NAMESPACE))
            await client.apply(NAMESPACE)

        assert "--dry-run=server" in run.call_args.args[0]

    @pytest.mark.asyncio
    async def test_failure_raises(self) -> None:
        with patch("clustermanager.kubectl.subprocess.run") as run:
            run.return_value = _completed(returncode=1, stderr="Error from server (Forbidden)")
            with pytest.raises(ControlPlaneError, match="Forbidden"):
                await KubectlClient().apply(NAMESPACE)

    @pytest.mark.asyncio
    async def test_invalid_json_output(self) -> None:
        with patch("clustermanager.kubectl.subprocess.run") as run:
            run.return_value = _completed(stdout="namespace/hub serverside-applied")
            with pytest.raises(ControlPlaneError, match="invalid JSON"):
                await KubectlClient().apply(NAMESPACE)

    @pytest.mark.asyncio
    async def test_timeout_is_control_plane_error(self) -> None:
        with patch("clustermanager.kubectl.subprocess.run") as run:
            run.side_effect = subprocess.TimeoutExpired(cmd="kubectl", timeout=60)
            with pytest.raises(ControlPlaneError, match="timed out"):
                await KubectlClient().apply(NAMESPACE)

    @pytest.mark.asyncio
    async def test_missing_binary(self) -> None:
        with patch("clustermanager.kubectl.subprocess.run") as run:
            run.side_effect = FileNotFoundError()
            with pytest.raises(ControlPlaneError, match="not found"):
                await KubectlClient(kubectl_path="/nope/kubectl").apply(NAMESPACE)


class TestGet:
    """Tests for KubectlClient.get."""

    @pytest.mark.asyncio
    async def test_returns_live_object(self) -> None:
        live = dict(SERVICE, metadata=dict(SERVICE["metadata"], resourceVersion="42"))
        with patch("clustermanager.kubectl.subprocess.run") as run:
            run.return_value = _completed(stdout=json.dumps(live))
            result = await KubectlClient().get(SERVICE)

        assert result == live
        assert run.call_args.args[0][1:3] == ["get", "--ignore-not-found"]
        assert "labels" not in json.loads(run.call_args.kwargs["input"])["metadata"]

    @pytest.mark.asyncio
    async def test_absent_is_none(self) -> None:
        with patch("clustermanager.kubectl.subprocess.run") as run:
            run.return_value = _completed(stdout="")
            assert await KubectlClient().get(SERVICE) is None

    @pytest.mark.asyncio
    async def test_failure_raises(self) -> None:
        with patch("clustermanager.kubectl.subprocess.run") as run:
            run.return_value = _completed(returncode=1, stderr="Error from server (Forbidden)")
            with pytest.raises(ControlPlaneError, match="Forbidden"):
                await KubectlClient().get(SERVICE)


class TestDelete:
    """Tests for KubectlClient.delete and delete_api_service."""

    @pytest.mark.asyncio
    async def test_delete_sends_identity_only(self) -> None:
        with patch("clustermanager.kubectl.subprocess.run") as run:
            run.return_value = _completed(stdout='service "svc" deleted')
            await KubectlClient().delete(SERVICE)

        sent = json.loads(run.call_args.kwargs["input"])
        assert sent == {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": "svc", "namespace": "hub"},
        }
        assert run.call_args.args[0][1:3] == ["delete", "--wait=false"]

    @pytest.mark.asyncio
    async def test_not_found(self) -> None:
        stderr = 'Error from server (NotFound): services "svc" not found'
        with patch("clustermanager.kubectl.subprocess.run") as run:
            run.return_value = _completed(returncode=1, stderr=stderr)
            with pytest.raises(NotFoundError):
                await KubectlClient().delete(SERVICE)

    @pytest.mark.asyncio
    async def test_other_failure(self) -> None:
        with patch("clustermanager.kubectl.subprocess.run") as run:
            run.return_value = _completed(returncode=1)
            with pytest.raises(ControlPlaneError, match="exited with code 1") as exc_info:
                await KubectlClient().delete(SERVICE)

        assert not isinstance(exc_info.value, NotFoundError)

    @pytest.mark.asyncio
    async def test_delete_api_service(self) -> None:
        with patch("clustermanager.kubectl.subprocess.run") as run:
            run.return_value = _completed()
            await KubectlClient().delete_api_service("v1.admission.cluster.open-cluster-management.io")

        sent = json.loads(run.call_args.kwargs["input"])
        assert sent["kind"] == "APIService"
        assert sent["apiVersion"] == "apiregistration.k8s.io/v1"
        assert sent["metadata"] == {"name": "v1.admission.cluster.open-cluster-management.io"}
