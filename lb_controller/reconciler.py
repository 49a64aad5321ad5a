"""
Reconciliation of a single LeviathanBuild.

Each pass infers the resource's state from fresh cluster reads and converges
it: create the job when it is missing, replace it when its execution spec
has drifted from the template, otherwise leave it alone and rebuild status.
Nothing is remembered between passes.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from lb_common.cluster import ClusterClient
from lb_common.constants import ZERO_TIME
from lb_common.errors import (
    AlreadyExistsError,
    AlreadyOwnedError,
    ClusterError,
    ConflictError,
    ConstructionError,
    InvalidObjectError,
    NotFoundError,
)
from lb_common.models import BuildResource, Job

from .comparator import job_specs_equal
from .field_index import FieldIndex, extract_owner_names
from .ownership import check_controller
from .status import project_status
from .synthesizer import JobNamingStrategy, JobSynthesizer

logger = logging.getLogger(__name__)

DEFAULT_REQUEUE_AFTER = 60.0


def _history_order(job: Job) -> tuple[datetime, str]:
    return (
        job.status.start_time or job.metadata.creation_timestamp or ZERO_TIME,
        job.name,
    )


@dataclass(frozen=True)
class ReconcileRequest:
    """Identity of the LeviathanBuild to reconcile (the work queue key)."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class ReconcileResult:
    """Outcome of a pass. requeue_after asks for another pass after a delay."""

    requeue_after: float | None = None


class Reconciler:
    """
    Drives one LeviathanBuild toward its declared state.

    States, re-evaluated on every pass:
    - Absent: resource not found -> done
    - NoJob: no job under the derived name -> create it, requeue
    - JobMismatched: job spec differs from the template -> delete, create, requeue
    - JobMatches: prune history, rebuild status -> done

    A job under the derived name that another object controls is never
    touched; the pass ends with a warning event.
    """

    def __init__(
        self,
        cluster: ClusterClient,
        field_index: FieldIndex | None = None,
        naming: JobNamingStrategy | None = None,
        requeue_after: float = DEFAULT_REQUEUE_AFTER,
    ):
        """
        Initialize the reconciler.

        Args:
            cluster: Cluster access for reads and writes
            field_index: Job owner index; when None, owned jobs are found by
                listing the namespace
            naming: Job naming strategy (zero-time naming by default)
            requeue_after: Seconds before re-checking a created job
        """
        self.cluster = cluster
        self.field_index = field_index
        self.synthesizer = JobSynthesizer(naming)
        self.requeue_after = requeue_after

    async def reconcile(self, request: ReconcileRequest) -> ReconcileResult:
        """
        Run one reconciliation pass.

        Returns:
            The pass result

        Raises:
            ClusterError: On any cluster failure that should be retried
        """
        # 1: Load the LeviathanBuild
        try:
            resource = await self.cluster.get_build_resource(
                request.namespace, request.name
            )
        except NotFoundError:
            logger.info(
                f"LeviathanBuild {request} not found. Ignoring since it must be deleted"
            )
            return ReconcileResult()
        except InvalidObjectError as e:
            # Wait for the resource to be fixed
            logger.error(f"Skipping LeviathanBuild {request}: {e}")
            return ReconcileResult()
        except ClusterError as e:
            logger.error(f"Unable to fetch LeviathanBuild {request}: {e}")
            raise

        if resource.metadata.deletion_timestamp is not None:
            logger.info(f"LeviathanBuild {request} is being deleted, skipping")
            return ReconcileResult()

        # 2: Look up the job this resource maps to
        job_name = self.synthesizer.job_name(resource)
        try:
            existing = await self.cluster.get_job(request.namespace, job_name)
        except NotFoundError:
            existing = None
        except ClusterError as e:
            logger.error(f"Failed to get Job {request.namespace}/{job_name}: {e}")
            raise

        if existing is not None:
            try:
                check_controller(resource, existing)
            except AlreadyOwnedError as e:
                logger.error(f"Refusing to manage Job {request.namespace}/{job_name}: {e}")
                await self.cluster.record_event(
                    resource, "Warning", "JobOwnershipConflict", str(e)
                )
                return ReconcileResult()

        # 3: Build the desired job
        try:
            desired = self.synthesizer.build(resource)
        except ConstructionError as e:
            logger.error(f"Unable to construct job from template: {e}")
            await self.cluster.record_event(
                resource, "Warning", "InvalidJobTemplate", str(e)
            )
            # Don't bother requeuing until the spec changes
            return ReconcileResult()

        # 4: Converge
        if existing is None:
            await self._delete_superseded_jobs(resource, job_name)
            return await self._create_job(resource, desired)

        if not job_specs_equal(existing.spec, desired.spec):
            logger.info(
                f"Job {existing.namespace}/{existing.name} spec doesn't match "
                "desired state. Deleting existing job."
            )
            await self._delete_job(existing)
            return await self._create_job(resource, desired)

        # 5: Job matches; rebuild status from what is observed
        owned = await self._owned_jobs(resource, existing)
        owned = await self._prune_history(resource, owned, job_name)
        resource.status = project_status(resource, owned, job_name)
        try:
            await self.cluster.update_build_resource_status(resource)
        except NotFoundError:
            logger.info(f"LeviathanBuild {request} was deleted during reconcile")
            return ReconcileResult()
        except ConflictError as e:
            logger.info(f"LeviathanBuild {request} status update conflict: {e}")
            raise
        except ClusterError as e:
            logger.error(f"Unable to update LeviathanBuild {request} status: {e}")
            raise

        return ReconcileResult()

    async def _create_job(self, resource: BuildResource, job: Job) -> ReconcileResult:
        logger.info(f"Creating a new Job {job.namespace}/{job.name}")
        try:
            await self.cluster.create_job(job)
        except AlreadyExistsError:
            # Next pass folds into the match/mismatch path
            logger.info(f"Job {job.namespace}/{job.name} already exists, re-checking later")
            return ReconcileResult(requeue_after=self.requeue_after)
        except ClusterError as e:
            logger.error(f"Failed to create new Job {job.namespace}/{job.name}: {e}")
            raise

        await self.cluster.record_event(
            resource, "Normal", "JobCreated", f"Created job {job.name}"
        )
        # Requeue to confirm the job was created
        return ReconcileResult(requeue_after=self.requeue_after)

    async def _delete_job(self, job: Job) -> None:
        try:
            await self.cluster.delete_job(job.namespace, job.name)
        except NotFoundError:
            logger.debug(f"Job {job.namespace}/{job.name} already deleted")
        except ClusterError as e:
            logger.error(f"Failed to delete Job {job.namespace}/{job.name}: {e}")
            raise

    async def _owned_jobs(
        self, resource: BuildResource, current: Job | None = None
    ) -> list[Job]:
        if self.field_index is not None:
            jobs = {
                job.name: job
                for job in self.field_index.owned_jobs(resource.namespace, resource.name)
            }
        else:
            jobs = {
                job.name: job
                for job in await self.cluster.list_jobs(resource.namespace)
                if resource.name in extract_owner_names(job)
            }
        # The index may lag behind the read we just made
        if current is not None:
            jobs[current.name] = current
        return list(jobs.values())

    async def _delete_superseded_jobs(
        self, resource: BuildResource, current_name: str
    ) -> None:
        """Delete unfinished jobs left from an earlier job name."""
        for job in await self._owned_jobs(resource):
            if job.name != current_name and not job.is_finished():
                logger.info(
                    f"Deleting superseded Job {job.namespace}/{job.name} "
                    f"of {resource.namespace}/{resource.name}"
                )
                await self._delete_job(job)

    async def _prune_history(
        self, resource: BuildResource, jobs: list[Job], current_name: str
    ) -> list[Job]:
        """
        Delete the oldest finished jobs beyond the history limits.

        The current job is never pruned.

        Returns:
            The jobs that remain
        """
        limits = (
            ("Complete", resource.spec.successful_jobs_history_limit),
            ("Failed", resource.spec.failed_jobs_history_limit),
        )
        pruned: set[str] = set()
        for finished_type, limit in limits:
            if limit is None:
                continue
            history = sorted(
                (
                    job
                    for job in jobs
                    if job.name != current_name
                    and (cond := job.status.finished_condition()) is not None
                    and cond.type == finished_type
                ),
                key=_history_order,
            )
            for job in history[: max(0, len(history) - limit)]:
                logger.info(
                    f"Deleting old {finished_type.lower()} Job "
                    f"{job.namespace}/{job.name} (history limit {limit})"
                )
                await self._delete_job(job)
                pruned.add(job.name)
        return [job for job in jobs if job.name not in pruned]
