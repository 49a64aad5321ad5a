"""
LB Common module.

This module contains the shared domain models, error types and the cluster
access interface used across the controller components (controller, cluster
backends, admin CLI).

The common module has no dependencies on other lb_* modules, making it
a pure domain layer that can be imported by any component.
"""

from .cluster import ClusterClient
from .errors import (
    AlreadyExistsError,
    AlreadyOwnedError,
    ClusterError,
    ConflictError,
    ConstructionError,
    InvalidObjectError,
    NotFoundError,
)
from .models import (
    BuildResource,
    BuildResourceSpec,
    BuildResourceStatus,
    Condition,
    Job,
    JobStatus,
    JobTemplateSpec,
    ObjectMeta,
    ObjectReference,
    OwnerReference,
    WatchEvent,
)

__all__ = [
    "AlreadyExistsError",
    "AlreadyOwnedError",
    "BuildResource",
    "BuildResourceSpec",
    "BuildResourceStatus",
    "ClusterClient",
    "ClusterError",
    "Condition",
    "ConflictError",
    "ConstructionError",
    "InvalidObjectError",
    "Job",
    "JobStatus",
    "JobTemplateSpec",
    "NotFoundError",
    "ObjectMeta",
    "ObjectReference",
    "OwnerReference",
    "WatchEvent",
]
