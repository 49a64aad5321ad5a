"""
LB Cluster module.

This module contains the ClusterClient implementations: a Kubernetes API
server client and a local SQLite-backed store used for development and
tests.

The cluster layer depends on lb_common for domain models and interfaces,
and can be used by both lb_controller and lb_admin.
"""

from .kube_client import KubernetesClusterClient
from .sqlite_store import SQLiteClusterStore

__all__ = ["KubernetesClusterClient", "SQLiteClusterStore"]
