"""
Status projection for LeviathanBuild resources.

Status is reconstructed from the observed jobs on every pass rather than
patched from what was stored before; the stored status is never read.
"""

from datetime import datetime

from lb_common.constants import (
    COND_COMPLETE,
    COND_FAILED,
    COND_RUNNING,
    MAX_ACTIVE_REFS,
)
from lb_common.models import (
    BuildResource,
    BuildResourceStatus,
    Condition,
    Job,
    ObjectReference,
)


def _job_time(job: Job) -> datetime | None:
    return job.status.start_time or job.metadata.creation_timestamp


def _job_reference(job: Job) -> ObjectReference:
    return ObjectReference(
        api_version=job.api_version,
        kind=job.kind,
        name=job.name,
        namespace=job.namespace,
        uid=job.metadata.uid,
        resource_version=job.metadata.resource_version,
    )


def _current_job_conditions(job: Job | None, generation: int | None) -> list[Condition]:
    if job is None:
        return [
            Condition(
                type=type_,
                status="Unknown",
                reason="NoJob",
                message="No job exists for this build",
                observed_generation=generation,
            )
            for type_ in (COND_RUNNING, COND_COMPLETE, COND_FAILED)
        ]

    finished = job.status.finished_condition()
    if finished is None:
        started = _job_time(job)
        running = Condition(
            type=COND_RUNNING,
            status="True",
            reason="JobRunning" if job.status.active else "JobPending",
            message=f"Job {job.name} is in progress",
            last_transition_time=started,
            observed_generation=generation,
        )
        complete = Condition(
            type=COND_COMPLETE,
            status="False",
            reason="JobInProgress",
            message=f"Job {job.name} has not finished",
            last_transition_time=started,
            observed_generation=generation,
        )
        failed = Condition(
            type=COND_FAILED,
            status="False",
            reason="JobInProgress",
            message=f"Job {job.name} has not finished",
            last_transition_time=started,
            observed_generation=generation,
        )
        return [running, complete, failed]

    finished_at = finished.last_transition_time or job.status.completion_time
    succeeded = finished.type == "Complete"
    return [
        Condition(
            type=COND_RUNNING,
            status="False",
            reason="JobFinished",
            message=f"Job {job.name} has finished",
            last_transition_time=finished_at,
            observed_generation=generation,
        ),
        Condition(
            type=COND_COMPLETE,
            status="True" if succeeded else "False",
            reason="JobComplete" if succeeded else "JobFailed",
            message=f"Job {job.name} completed"
            if succeeded
            else f"Job {job.name} did not complete",
            last_transition_time=finished_at,
            observed_generation=generation,
        ),
        Condition(
            type=COND_FAILED,
            status="False" if succeeded else "True",
            reason="JobComplete" if succeeded else (finished.reason or "JobFailed"),
            message=f"Job {job.name} completed"
            if succeeded
            else (finished.message or f"Job {job.name} failed"),
            last_transition_time=finished_at,
            observed_generation=generation,
        ),
    ]


def project_status(
    resource: BuildResource, jobs: list[Job], current_job_name: str
) -> BuildResourceStatus:
    """
    Build the status for resource from its owned jobs.

    Args:
        resource: The LeviathanBuild (only identity and generation are used)
        jobs: Jobs currently owned by the resource
        current_job_name: Name of the job the resource currently maps to

    Returns:
        A fresh status: unfinished jobs as active references (at most 10),
        the latest job start time, and Running/Complete/Failed conditions
        for the current job
    """
    active = sorted(
        (job for job in jobs if not job.is_finished()), key=lambda job: job.name
    )
    times = [t for t in (_job_time(job) for job in jobs) if t is not None]
    current = next((job for job in jobs if job.name == current_job_name), None)

    return BuildResourceStatus(
        active=[_job_reference(job) for job in active[:MAX_ACTIVE_REFS]],
        last_job_time=max(times) if times else None,
        conditions=_current_job_conditions(current, resource.metadata.generation),
    )
