"""Hub control plane mock for integration testing.

Provides in-memory fakes for the control plane and APIService clients so the
hub reconciler can run full passes without a cluster.

Usage:
    from hub_mock import FakeAPIServiceClient, FakeControlPlane, make_cluster_manager

    plane = FakeControlPlane()
    hub = HubReconciler(plane, FakeAPIServiceClient())
    cluster_manager = make_cluster_manager(addon_manager=True)
    outcome = await hub.reconcile(cluster_manager, make_hub_config(cluster_manager))
"""

from .builders import cluster_manager_document, make_cluster_manager, make_hub_config
from .control_plane import FailureRule, FakeAPIServiceClient, FakeControlPlane, key_of

__all__ = [
    "FailureRule",
    "FakeAPIServiceClient",
    "FakeControlPlane",
    "cluster_manager_document",
    "key_of",
    "make_cluster_manager",
    "make_hub_config",
]
