"""
Desired-job construction.

A job is stamped from the resource's jobTemplate: labels and annotations are
copied into fresh maps, the execution spec is deep-copied, and a controller
owner reference back to the resource is attached. Job names come from a
JobNamingStrategy so the derivation can be swapped and tested on its own.
"""

import copy
from abc import ABC, abstractmethod
from datetime import datetime

from lb_common.constants import SCHEDULED_TIME_ANNOTATION, ZERO_TIME
from lb_common.errors import ConstructionError
from lb_common.models import BuildResource, Job, ObjectMeta, format_time

from .ownership import set_controller_reference


class JobNamingStrategy(ABC):
    """Derives a job name from a resource and a nominal trigger time."""

    @abstractmethod
    def nominal_time(self, resource: BuildResource) -> datetime:
        """Return the nominal trigger time a job for this resource is for."""
        pass

    def job_name(self, resource: BuildResource) -> str:
        """
        Return the job name for resource.

        The same resource name and nominal time always give the same name, so
        re-reconciling an unchanged resource never creates a second job.
        """
        return f"{resource.name}-{int(self.nominal_time(resource).timestamp())}"


class ZeroTimeNaming(JobNamingStrategy):
    """
    Use the zero time as the nominal time for every job.

    Each resource maps to one constant job name, so a resource only ever has
    a single job.
    """

    def nominal_time(self, resource: BuildResource) -> datetime:
        return ZERO_TIME


class GenerationNaming(JobNamingStrategy):
    """
    Key job names on the resource's generation.

    Every spec edit yields a new job name, so runs for different generations
    can be told apart. Jobs are not triggered by time, so the nominal time
    is the zero time and only the name carries the generation.
    """

    def nominal_time(self, resource: BuildResource) -> datetime:
        return ZERO_TIME

    def job_name(self, resource: BuildResource) -> str:
        return f"{resource.name}-{resource.metadata.generation or 0}"


NAMING_STRATEGIES: dict[str, type[JobNamingStrategy]] = {
    "zero-time": ZeroTimeNaming,
    "generation": GenerationNaming,
}


class JobSynthesizer:
    """Builds the desired Job for a LeviathanBuild."""

    def __init__(self, naming: JobNamingStrategy | None = None):
        self.naming = naming or ZeroTimeNaming()

    def job_name(self, resource: BuildResource) -> str:
        return self.naming.job_name(resource)

    def build(self, resource: BuildResource) -> Job:
        """
        Construct the desired job for resource.

        Args:
            resource: The owning LeviathanBuild

        Returns:
            A job ready to be created, owned by resource

        Raises:
            ConstructionError: If the template is missing a required part or
                the owner reference cannot be set
        """
        template = resource.spec.job_template
        if template is None or template.spec is None:
            raise ConstructionError(
                f"{resource.namespace}/{resource.name}: spec.jobTemplate.spec is required"
            )
        pod_template = template.spec.get("template")
        if not isinstance(pod_template, dict):
            raise ConstructionError(
                f"{resource.namespace}/{resource.name}: "
                "spec.jobTemplate.spec.template is required"
            )
        containers = (pod_template.get("spec") or {}).get("containers")
        if not containers:
            raise ConstructionError(
                f"{resource.namespace}/{resource.name}: "
                "spec.jobTemplate.spec.template.spec.containers must not be empty"
            )

        nominal_time = self.naming.nominal_time(resource)
        annotations = dict(template.annotations)
        annotations[SCHEDULED_TIME_ANNOTATION] = format_time(nominal_time)

        job = Job(
            metadata=ObjectMeta(
                name=self.naming.job_name(resource),
                namespace=resource.namespace,
                labels=dict(template.labels),
                annotations=annotations,
            ),
            spec=copy.deepcopy(template.spec),
        )
        set_controller_reference(resource, job)
        return job
