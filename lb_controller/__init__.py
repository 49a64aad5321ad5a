"""
LB Controller module.

This module contains the LeviathanBuild controller: the reconciler and its
building blocks (job synthesizer, spec comparator, owner-reference linker,
field index, status projector), plus the work queue and manager that run
reconcile passes in response to cluster events.

The reconciler depends only on the ClusterClient interface from lb_common,
so it can run against a Kubernetes API server, the local SQLite store, or a
test double.
"""

from .comparator import job_specs_equal
from .field_index import FieldIndex, extract_owner_names
from .manager import ControllerManager
from .ownership import get_controller_of, set_controller_reference
from .reconciler import ReconcileRequest, ReconcileResult, Reconciler
from .status import project_status
from .synthesizer import (
    GenerationNaming,
    JobNamingStrategy,
    JobSynthesizer,
    ZeroTimeNaming,
)
from .workqueue import WorkQueue

__all__ = [
    "ControllerManager",
    "FieldIndex",
    "GenerationNaming",
    "JobNamingStrategy",
    "JobSynthesizer",
    "ReconcileRequest",
    "ReconcileResult",
    "Reconciler",
    "WorkQueue",
    "ZeroTimeNaming",
    "extract_owner_names",
    "get_controller_of",
    "job_specs_equal",
    "project_status",
    "set_controller_reference",
]
