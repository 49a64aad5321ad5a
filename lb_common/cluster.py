"""
Abstract cluster-access interface.

This module defines the capability the controller depends on to read, write
and watch LeviathanBuild resources and their jobs. Implementations exist for
a real Kubernetes API server and for a local SQLite-backed store, and tests
substitute mocks.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from .models import BuildResource, Job, WatchEvent


class ClusterClient(ABC):
    """
    Abstract base class for cluster operations.

    All writes are conditional where the cluster supports it: callers must
    expect ConflictError, AlreadyExistsError and NotFoundError from
    lb_common.errors, and ClusterError for any other API failure.
    """

    # LeviathanBuild operations

    @abstractmethod
    async def get_build_resource(self, namespace: str, name: str) -> BuildResource:
        """
        Retrieve a LeviathanBuild by namespace and name.

        Args:
            namespace: Namespace of the resource
            name: Name of the resource

        Returns:
            The resource as currently stored

        Raises:
            NotFoundError: If the resource does not exist
        """
        pass

    @abstractmethod
    async def list_build_resources(
        self, namespace: str | None = None
    ) -> list[BuildResource]:
        """
        List LeviathanBuilds, optionally restricted to one namespace.

        Args:
            namespace: Namespace to list, or None for all namespaces

        Returns:
            List of resources
        """
        pass

    @abstractmethod
    async def create_build_resource(self, resource: BuildResource) -> BuildResource:
        """
        Create a LeviathanBuild. Status in the given object is ignored.

        Raises:
            AlreadyExistsError: If a resource with the same name exists
        """
        pass

    @abstractmethod
    async def update_build_resource(self, resource: BuildResource) -> BuildResource:
        """
        Replace a LeviathanBuild's metadata and spec. Status is not written.

        Raises:
            NotFoundError: If the resource does not exist
            ConflictError: If resource_version is set and stale
        """
        pass

    @abstractmethod
    async def update_build_resource_status(
        self, resource: BuildResource
    ) -> BuildResource:
        """
        Write the status subresource of a LeviathanBuild.

        Only status is written; spec and metadata in the given object are
        ignored.

        Raises:
            NotFoundError: If the resource does not exist
            ConflictError: If resource_version is set and stale
        """
        pass

    @abstractmethod
    async def delete_build_resource(self, namespace: str, name: str) -> None:
        """
        Delete a LeviathanBuild. Owned jobs are removed by cascade deletion.

        Raises:
            NotFoundError: If the resource does not exist
        """
        pass

    @abstractmethod
    def watch_build_resources(
        self, namespace: str | None = None
    ) -> AsyncIterator[WatchEvent]:
        """
        Stream change events for LeviathanBuilds.

        The iterator may end or raise ClusterError; callers re-list and
        restart the watch.
        """
        pass

    # Job operations

    @abstractmethod
    async def get_job(self, namespace: str, name: str) -> Job:
        """
        Retrieve a job by namespace and name.

        Raises:
            NotFoundError: If the job does not exist
        """
        pass

    @abstractmethod
    async def list_jobs(self, namespace: str | None = None) -> list[Job]:
        """
        List jobs, optionally restricted to one namespace.

        Args:
            namespace: Namespace to list, or None for all namespaces

        Returns:
            List of jobs
        """
        pass

    @abstractmethod
    async def create_job(self, job: Job) -> Job:
        """
        Create a job.

        Returns:
            The stored job, with uid, resource_version and creation time set

        Raises:
            AlreadyExistsError: If a job with the same name exists
        """
        pass

    @abstractmethod
    async def delete_job(self, namespace: str, name: str) -> None:
        """
        Delete a job with background propagation (its pods are collected by
        the cluster).

        Raises:
            NotFoundError: If the job does not exist
        """
        pass

    @abstractmethod
    def watch_jobs(self, namespace: str | None = None) -> AsyncIterator[WatchEvent]:
        """
        Stream change events for jobs.

        The iterator may end or raise ClusterError; callers re-list and
        restart the watch.
        """
        pass

    # Events

    @abstractmethod
    async def record_event(
        self, resource: BuildResource, event_type: str, reason: str, message: str
    ) -> None:
        """
        Record an event against a resource. Best effort: never raises.

        Args:
            resource: Resource the event is about
            event_type: "Normal" or "Warning"
            reason: Short CamelCase reason
            message: Human readable message
        """
        pass

    # Lifecycle

    @abstractmethod
    async def initialize(self) -> None:
        """
        Prepare the client (load credentials, create tables, etc.).

        Called once at startup.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Release connections and other resources.

        Called at shutdown.
        """
        pass
