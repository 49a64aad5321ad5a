"""
Reverse index from jobs to their owning LeviathanBuild.

Jobs are indexed under JOB_OWNER_KEY by the name of their controller owner
when that owner is a LeviathanBuild. The index is built from a full job
listing at startup and kept current from the job watch; it routes job
events to the right reconcile request and serves owned-job listings without
a cluster round trip.
"""

import logging
from collections import defaultdict

from lb_common.constants import API_GROUP_VERSION, JOB_OWNER_KEY, KIND
from lb_common.models import Job

from .ownership import get_controller_of

logger = logging.getLogger(__name__)


def extract_owner_names(job: Job) -> list[str]:
    """
    Return the values job is indexed under.

    A job is indexed only when its controller owner is a LeviathanBuild;
    anything else yields an empty list.
    """
    owner = get_controller_of(job)
    if owner is None:
        return []
    if owner.api_version != API_GROUP_VERSION or owner.kind != KIND:
        return []
    return [owner.name]


class FieldIndex:
    """In-memory job index keyed by (namespace, owner name)."""

    def __init__(self):
        # (namespace, owner name) -> {job name: job}
        self._by_owner: dict[tuple[str, str], dict[str, Job]] = defaultdict(dict)
        # (namespace, job name) -> owner names it is indexed under
        self._owners_of: dict[tuple[str, str], list[str]] = {}

    def rebuild(self, jobs: list[Job]) -> None:
        """Replace the index contents with the given job listing."""
        self._by_owner.clear()
        self._owners_of.clear()
        for job in jobs:
            self.add(job)
        logger.debug(f"Field index {JOB_OWNER_KEY} rebuilt from {len(jobs)} jobs")

    def add(self, job: Job) -> list[str]:
        """
        Index or re-index a job.

        Returns:
            Owner names the job is now indexed under
        """
        self.remove(job)
        owners = extract_owner_names(job)
        if owners:
            self._owners_of[(job.namespace, job.name)] = owners
            for owner in owners:
                self._by_owner[(job.namespace, owner)][job.name] = job
        return owners

    def remove(self, job: Job) -> list[str]:
        """
        Drop a job from the index.

        Returns:
            Owner names the job was indexed under
        """
        owners = self._owners_of.pop((job.namespace, job.name), [])
        for owner in owners:
            jobs = self._by_owner.get((job.namespace, owner))
            if jobs is None:
                continue
            jobs.pop(job.name, None)
            if not jobs:
                del self._by_owner[(job.namespace, owner)]
        return owners

    def owned_jobs(self, namespace: str, owner_name: str) -> list[Job]:
        """Return the indexed jobs owned by owner_name."""
        jobs = self._by_owner.get((namespace, owner_name))
        return list(jobs.values()) if jobs else []

    def __len__(self) -> int:
        return len(self._owners_of)
