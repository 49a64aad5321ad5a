"""
Data models for LeviathanBuild resources and their owned jobs.

These models mirror the Kubernetes object shapes the controller works with.
Each model converts to and from the camelCase wire form used by the cluster
API, independent of which ClusterClient implementation stores it.
"""

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .constants import (
    API_GROUP_VERSION,
    BUILD_TYPES,
    DEFAULT_BUILD_TYPE,
    DEFAULT_SOURCE_TYPE,
    JOB_API_VERSION,
    JOB_KIND,
    KIND,
    SOURCE_TYPES,
)


def format_time(value: datetime | None) -> str | None:
    """Format a timestamp as RFC 3339 with a Z suffix."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    # isoformat zero-pads the year, strftime("%Y") does not on every platform
    value = value.astimezone(UTC).replace(microsecond=0)
    return value.isoformat().replace("+00:00", "Z")


def parse_time(value: str | datetime | None) -> datetime | None:
    """Parse an RFC 3339 timestamp into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class OwnerReference:
    """Link from a child object to the object that controls its lifecycle."""

    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool | None = None
    block_owner_deletion: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
        }
        if self.controller is not None:
            result["controller"] = self.controller
        if self.block_owner_deletion is not None:
            result["blockOwnerDeletion"] = self.block_owner_deletion
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OwnerReference":
        return cls(
            api_version=data["apiVersion"],
            kind=data["kind"],
            name=data["name"],
            uid=data.get("uid", ""),
            controller=data.get("controller"),
            block_owner_deletion=data.get("blockOwnerDeletion"),
        )


@dataclass
class ObjectMeta:
    """Standard object metadata (identity, labels, ownership)."""

    name: str
    namespace: str = "default"
    uid: str | None = None
    resource_version: str | None = None
    generation: int | None = None
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: list[OwnerReference] = field(default_factory=list)
    creation_timestamp: datetime | None = None
    deletion_timestamp: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        if self.uid:
            result["uid"] = self.uid
        if self.resource_version:
            result["resourceVersion"] = self.resource_version
        if self.generation is not None:
            result["generation"] = self.generation
        if self.labels:
            result["labels"] = dict(self.labels)
        if self.annotations:
            result["annotations"] = dict(self.annotations)
        if self.owner_references:
            result["ownerReferences"] = [
                ref.to_dict() for ref in self.owner_references
            ]
        if self.creation_timestamp:
            result["creationTimestamp"] = format_time(self.creation_timestamp)
        if self.deletion_timestamp:
            result["deletionTimestamp"] = format_time(self.deletion_timestamp)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ObjectMeta":
        return cls(
            name=data["name"],
            namespace=data.get("namespace") or "default",
            uid=data.get("uid"),
            resource_version=data.get("resourceVersion"),
            generation=data.get("generation"),
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
            owner_references=[
                OwnerReference.from_dict(ref)
                for ref in data.get("ownerReferences") or []
            ],
            creation_timestamp=parse_time(data.get("creationTimestamp")),
            deletion_timestamp=parse_time(data.get("deletionTimestamp")),
        )


@dataclass
class ObjectReference:
    """Reference to a specific object, used for status.active entries."""

    api_version: str
    kind: str
    name: str
    namespace: str
    uid: str | None = None
    resource_version: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "namespace": self.namespace,
        }
        if self.uid:
            result["uid"] = self.uid
        if self.resource_version:
            result["resourceVersion"] = self.resource_version
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ObjectReference":
        return cls(
            api_version=data.get("apiVersion", ""),
            kind=data.get("kind", ""),
            name=data["name"],
            namespace=data.get("namespace", "default"),
            uid=data.get("uid"),
            resource_version=data.get("resourceVersion"),
        )


@dataclass
class Condition:
    """
    One observed-state condition.

    Conditions are keyed by type; status is "True", "False" or "Unknown".
    """

    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = None
    observed_generation: int | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
        }
        if self.last_transition_time:
            result["lastTransitionTime"] = format_time(self.last_transition_time)
        if self.observed_generation is not None:
            result["observedGeneration"] = self.observed_generation
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Condition":
        return cls(
            type=data["type"],
            status=data["status"],
            reason=data.get("reason") or "",
            message=data.get("message") or "",
            last_transition_time=parse_time(data.get("lastTransitionTime")),
            observed_generation=data.get("observedGeneration"),
        )


@dataclass
class JobTemplateSpec:
    """Template a job is stamped from: labels, annotations and an opaque spec."""

    spec: dict[str, Any] | None = None
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {}
        if self.labels:
            metadata["labels"] = dict(self.labels)
        if self.annotations:
            metadata["annotations"] = dict(self.annotations)
        result: dict[str, Any] = {}
        if metadata:
            result["metadata"] = metadata
        if self.spec is not None:
            result["spec"] = copy.deepcopy(self.spec)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "JobTemplateSpec | None":
        if data is None:
            return None
        metadata = data.get("metadata") or {}
        spec = data.get("spec")
        return cls(
            spec=copy.deepcopy(spec) if spec is not None else None,
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
        )


@dataclass
class BuildResourceSpec:
    """Desired state of a LeviathanBuild."""

    package_name: str
    build_type: str = DEFAULT_BUILD_TYPE
    source_type: str = DEFAULT_SOURCE_TYPE
    source_path: str | None = None
    source_url: str | None = None
    successful_jobs_history_limit: int | None = None
    failed_jobs_history_limit: int | None = None
    job_template: JobTemplateSpec | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "packageName": self.package_name,
            "buildType": self.build_type,
            "sourceType": self.source_type,
        }
        if self.source_path is not None:
            result["sourcePath"] = self.source_path
        if self.source_url is not None:
            result["sourceURL"] = self.source_url
        if self.successful_jobs_history_limit is not None:
            result["successfulJobsHistoryLimit"] = self.successful_jobs_history_limit
        if self.failed_jobs_history_limit is not None:
            result["failedJobsHistoryLimit"] = self.failed_jobs_history_limit
        if self.job_template is not None:
            result["jobTemplate"] = self.job_template.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildResourceSpec":
        """
        Parse a spec, applying enum defaults.

        Raises:
            ValueError: If packageName is missing or an enum/limit is invalid
        """
        if not data.get("packageName"):
            raise ValueError("spec.packageName is required")

        build_type = data.get("buildType") or DEFAULT_BUILD_TYPE
        if build_type not in BUILD_TYPES:
            raise ValueError(
                f"spec.buildType must be one of {', '.join(BUILD_TYPES)}, "
                f"got {build_type!r}"
            )
        source_type = data.get("sourceType") or DEFAULT_SOURCE_TYPE
        if source_type not in SOURCE_TYPES:
            raise ValueError(
                f"spec.sourceType must be one of {', '.join(SOURCE_TYPES)}, "
                f"got {source_type!r}"
            )

        limits = {}
        for key in ("successfulJobsHistoryLimit", "failedJobsHistoryLimit"):
            value = data.get(key)
            if value is not None and (not isinstance(value, int) or value < 0):
                raise ValueError(f"spec.{key} must be a non-negative integer")
            limits[key] = value

        return cls(
            package_name=data["packageName"],
            build_type=build_type,
            source_type=source_type,
            source_path=data.get("sourcePath"),
            source_url=data.get("sourceURL"),
            successful_jobs_history_limit=limits["successfulJobsHistoryLimit"],
            failed_jobs_history_limit=limits["failedJobsHistoryLimit"],
            job_template=JobTemplateSpec.from_dict(data.get("jobTemplate")),
        )


@dataclass
class BuildResourceStatus:
    """Observed state of a LeviathanBuild, rebuilt on every reconcile."""

    active: list[ObjectReference] = field(default_factory=list)
    last_job_time: datetime | None = None
    conditions: list[Condition] = field(default_factory=list)

    def get_condition(self, type_: str) -> Condition | None:
        for condition in self.conditions:
            if condition.type == type_:
                return condition
        return None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.active:
            result["active"] = [ref.to_dict() for ref in self.active]
        if self.last_job_time:
            result["lastJobTime"] = format_time(self.last_job_time)
        if self.conditions:
            result["conditions"] = [c.to_dict() for c in self.conditions]
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "BuildResourceStatus":
        data = data or {}
        return cls(
            active=[ObjectReference.from_dict(ref) for ref in data.get("active") or []],
            last_job_time=parse_time(data.get("lastJobTime")),
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
        )


@dataclass
class BuildResource:
    """
    A LeviathanBuild custom resource: the declared build/publish intent.

    Status is derived by the controller and must never drive its decisions.
    """

    metadata: ObjectMeta
    spec: BuildResourceSpec
    status: BuildResourceStatus = field(default_factory=BuildResourceStatus)

    api_version = API_GROUP_VERSION
    kind = KIND

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
        }
        status = self.status.to_dict()
        if status:
            result["status"] = status
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildResource":
        api_version = data.get("apiVersion", API_GROUP_VERSION)
        kind = data.get("kind", KIND)
        if api_version != API_GROUP_VERSION or kind != KIND:
            raise ValueError(
                f"expected {API_GROUP_VERSION}/{KIND}, got {api_version}/{kind}"
            )
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=BuildResourceSpec.from_dict(data.get("spec") or {}),
            status=BuildResourceStatus.from_dict(data.get("status")),
        )


@dataclass
class JobStatus:
    """Observed state of a job as reported by the cluster."""

    active: int = 0
    succeeded: int = 0
    failed: int = 0
    start_time: datetime | None = None
    completion_time: datetime | None = None
    conditions: list[Condition] = field(default_factory=list)

    def finished_condition(self) -> Condition | None:
        """Return the Complete/Failed condition if the job has finished."""
        for condition in self.conditions:
            if condition.type in ("Complete", "Failed") and condition.status == "True":
                return condition
        return None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.active:
            result["active"] = self.active
        if self.succeeded:
            result["succeeded"] = self.succeeded
        if self.failed:
            result["failed"] = self.failed
        if self.start_time:
            result["startTime"] = format_time(self.start_time)
        if self.completion_time:
            result["completionTime"] = format_time(self.completion_time)
        if self.conditions:
            result["conditions"] = [c.to_dict() for c in self.conditions]
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "JobStatus":
        data = data or {}
        return cls(
            active=data.get("active") or 0,
            succeeded=data.get("succeeded") or 0,
            failed=data.get("failed") or 0,
            start_time=parse_time(data.get("startTime")),
            completion_time=parse_time(data.get("completionTime")),
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
        )


@dataclass
class Job:
    """
    A batch/v1 Job owned by a LeviathanBuild.

    The execution spec is kept as an opaque mapping; the controller only
    copies and compares it.
    """

    metadata: ObjectMeta
    spec: dict[str, Any] = field(default_factory=dict)
    status: JobStatus = field(default_factory=JobStatus)

    api_version = JOB_API_VERSION
    kind = JOB_KIND

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    def is_finished(self) -> bool:
        return self.status.finished_condition() is not None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
            "spec": copy.deepcopy(self.spec),
        }
        status = self.status.to_dict()
        if status:
            result["status"] = status
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Job":
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=copy.deepcopy(data.get("spec") or {}),
            status=JobStatus.from_dict(data.get("status")),
        )


@dataclass
class WatchEvent:
    """A change notification delivered by a ClusterClient watch."""

    type: str  # "ADDED", "MODIFIED" or "DELETED"
    object: BuildResource | Job
