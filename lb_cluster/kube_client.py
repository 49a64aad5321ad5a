"""
Kubernetes implementation of the cluster client.

Wraps the official (blocking) kubernetes client. Every call runs in a worker
thread via asyncio.to_thread so a reconcile pass awaiting it can be cancelled;
watch streams are pumped from a thread into an asyncio queue.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime
from typing import Any

from kubernetes import client, config, watch

from lb_common.cluster import ClusterClient
from lb_common.constants import API_GROUP, API_VERSION, KIND, PLURAL
from lb_common.errors import (
    AlreadyExistsError,
    ClusterError,
    ConflictError,
    InvalidObjectError,
    NotFoundError,
)
from lb_common.models import BuildResource, Job, WatchEvent, format_time

logger = logging.getLogger(__name__)

EVENT_SOURCE = "leviathan-build-controller"

_END = object()


def _translate(
    e: client.exceptions.ApiException,
    kind: str,
    namespace: str,
    name: str,
    creating: bool = False,
) -> ClusterError:
    """Map an ApiException onto the lb_common error taxonomy."""
    if e.status == 404:
        return NotFoundError(kind, namespace, name)
    if e.status == 409:
        reason = ""
        try:
            reason = json.loads(e.body or "{}").get("reason", "")
        except (TypeError, ValueError):
            pass
        if creating or reason == "AlreadyExists":
            return AlreadyExistsError(kind, namespace, name)
        return ConflictError(f"{kind} {namespace}/{name}: {e.reason}")
    return ClusterError(f"{kind} {namespace}/{name}: {e.status} {e.reason}")


def _object_key(obj: dict[str, Any]) -> str:
    metadata = obj.get("metadata") or {}
    return f"{metadata.get('namespace')}/{metadata.get('name')}"


class KubernetesClusterClient(ClusterClient):
    """Cluster client backed by a Kubernetes API server."""

    def __init__(self, request_timeout: float = 30.0, watch_timeout: int = 300):
        """
        Initialize the client. Credentials are loaded by initialize().

        Args:
            request_timeout: Per-request timeout in seconds
            watch_timeout: Server-side timeout for a single watch call
        """
        self.request_timeout = request_timeout
        self.watch_timeout = watch_timeout
        self._api_client: client.ApiClient | None = None
        self._custom: client.CustomObjectsApi | None = None
        self._batch: client.BatchV1Api | None = None
        self._core: client.CoreV1Api | None = None

    async def initialize(self) -> None:
        """Load in-cluster credentials, falling back to the local kubeconfig."""
        try:
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration")
        except config.ConfigException:
            await asyncio.to_thread(config.load_kube_config)
            logger.info("Loaded kubeconfig Kubernetes configuration")

        self._api_client = client.ApiClient()
        self._custom = client.CustomObjectsApi(self._api_client)
        self._batch = client.BatchV1Api(self._api_client)
        self._core = client.CoreV1Api(self._api_client)

    async def close(self) -> None:
        if self._api_client is not None:
            self._api_client.close()
            self._api_client = None

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        return self._api_client.sanitize_for_serialization(obj)

    async def _call(
        self,
        func: Callable[..., Any],
        *args: Any,
        kind: str,
        namespace: str,
        name: str,
        creating: bool = False,
        **kwargs: Any,
    ) -> Any:
        kwargs.setdefault("_request_timeout", self.request_timeout)
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except client.exceptions.ApiException as e:
            raise _translate(e, kind, namespace, name, creating=creating) from e
        except OSError as e:
            # urllib3 connection failures
            raise ClusterError(f"{kind} {namespace}/{name}: {e}") from e

    # LeviathanBuild operations

    async def get_build_resource(self, namespace: str, name: str) -> BuildResource:
        data = await self._call(
            self._custom.get_namespaced_custom_object,
            API_GROUP,
            API_VERSION,
            namespace,
            PLURAL,
            name,
            kind=KIND,
            namespace=namespace,
            name=name,
        )
        try:
            return BuildResource.from_dict(data)
        except ValueError as e:
            raise InvalidObjectError(KIND, namespace, name, str(e)) from e

    async def list_build_resources(
        self, namespace: str | None = None
    ) -> list[BuildResource]:
        if namespace is None:
            data = await self._call(
                self._custom.list_cluster_custom_object,
                API_GROUP,
                API_VERSION,
                PLURAL,
                kind=KIND,
                namespace="*",
                name="*",
            )
        else:
            data = await self._call(
                self._custom.list_namespaced_custom_object,
                API_GROUP,
                API_VERSION,
                namespace,
                PLURAL,
                kind=KIND,
                namespace=namespace,
                name="*",
            )
        resources = []
        for item in data.get("items", []):
            try:
                resources.append(BuildResource.from_dict(item))
            except ValueError as e:
                logger.warning(f"Skipping invalid {KIND} {_object_key(item)}: {e}")
        return resources

    async def create_build_resource(self, resource: BuildResource) -> BuildResource:
        body = resource.to_dict()
        body.pop("status", None)
        data = await self._call(
            self._custom.create_namespaced_custom_object,
            API_GROUP,
            API_VERSION,
            resource.namespace,
            PLURAL,
            body,
            kind=KIND,
            namespace=resource.namespace,
            name=resource.name,
            creating=True,
        )
        return BuildResource.from_dict(data)

    async def update_build_resource(self, resource: BuildResource) -> BuildResource:
        body = resource.to_dict()
        body.pop("status", None)
        data = await self._call(
            self._custom.replace_namespaced_custom_object,
            API_GROUP,
            API_VERSION,
            resource.namespace,
            PLURAL,
            resource.name,
            body,
            kind=KIND,
            namespace=resource.namespace,
            name=resource.name,
        )
        return BuildResource.from_dict(data)

    async def update_build_resource_status(
        self, resource: BuildResource
    ) -> BuildResource:
        # The status subresource ignores spec changes in the body
        data = await self._call(
            self._custom.replace_namespaced_custom_object_status,
            API_GROUP,
            API_VERSION,
            resource.namespace,
            PLURAL,
            resource.name,
            resource.to_dict(),
            kind=KIND,
            namespace=resource.namespace,
            name=resource.name,
        )
        return BuildResource.from_dict(data)

    async def delete_build_resource(self, namespace: str, name: str) -> None:
        await self._call(
            self._custom.delete_namespaced_custom_object,
            API_GROUP,
            API_VERSION,
            namespace,
            PLURAL,
            name,
            kind=KIND,
            namespace=namespace,
            name=name,
        )

    def watch_build_resources(
        self, namespace: str | None = None
    ) -> AsyncIterator[WatchEvent]:
        if namespace is None:
            return self._watch(
                self._custom.list_cluster_custom_object,
                API_GROUP,
                API_VERSION,
                PLURAL,
                decode=BuildResource.from_dict,
            )
        return self._watch(
            self._custom.list_namespaced_custom_object,
            API_GROUP,
            API_VERSION,
            namespace,
            PLURAL,
            decode=BuildResource.from_dict,
        )

    # Job operations

    async def get_job(self, namespace: str, name: str) -> Job:
        obj = await self._call(
            self._batch.read_namespaced_job,
            name,
            namespace,
            kind="Job",
            namespace=namespace,
            name=name,
        )
        return Job.from_dict(self._to_dict(obj))

    async def list_jobs(self, namespace: str | None = None) -> list[Job]:
        if namespace is None:
            obj = await self._call(
                self._batch.list_job_for_all_namespaces,
                kind="Job",
                namespace="*",
                name="*",
            )
        else:
            obj = await self._call(
                self._batch.list_namespaced_job,
                namespace,
                kind="Job",
                namespace=namespace,
                name="*",
            )
        return [Job.from_dict(self._to_dict(item)) for item in obj.items]

    async def create_job(self, job: Job) -> Job:
        body = job.to_dict()
        body.pop("status", None)
        obj = await self._call(
            self._batch.create_namespaced_job,
            job.namespace,
            body,
            kind="Job",
            namespace=job.namespace,
            name=job.name,
            creating=True,
        )
        return Job.from_dict(self._to_dict(obj))

    async def delete_job(self, namespace: str, name: str) -> None:
        await self._call(
            self._batch.delete_namespaced_job,
            name,
            namespace,
            propagation_policy="Background",
            kind="Job",
            namespace=namespace,
            name=name,
        )

    def watch_jobs(self, namespace: str | None = None) -> AsyncIterator[WatchEvent]:
        if namespace is None:
            return self._watch(
                self._batch.list_job_for_all_namespaces, decode=Job.from_dict
            )
        return self._watch(
            self._batch.list_namespaced_job, namespace, decode=Job.from_dict
        )

    async def _watch(
        self,
        func: Callable[..., Any],
        *args: Any,
        decode: Callable[[dict[str, Any]], Any],
    ) -> AsyncIterator[WatchEvent]:
        """
        Run a blocking watch stream in a thread and yield decoded events.

        Ends when the server closes the stream; raises ClusterError on
        stream failures or ERROR events (e.g. 410 Gone).
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        stream = watch.Watch()

        def pump() -> None:
            try:
                for event in stream.stream(
                    func, *args, timeout_seconds=self.watch_timeout
                ):
                    loop.call_soon_threadsafe(queue.put_nowait, event)
            except Exception as e:
                loop.call_soon_threadsafe(queue.put_nowait, e)
            finally:
                loop.call_soon_threadsafe(queue.put_nowait, _END)

        # The executor future is left to finish once stream.stop() takes effect
        loop.run_in_executor(None, pump)
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    break
                if isinstance(item, Exception):
                    raise ClusterError(f"watch failed: {item}") from item
                if item["type"] == "ERROR":
                    raise ClusterError(f"watch error: {item.get('raw_object')}")
                try:
                    obj = decode(item["raw_object"])
                except ValueError as e:
                    logger.warning(
                        f"Skipping undecodable {item['type']} event for "
                        f"{_object_key(item['raw_object'])}: {e}"
                    )
                    continue
                yield WatchEvent(type=item["type"], object=obj)
        finally:
            stream.stop()

    # Events

    async def record_event(
        self, resource: BuildResource, event_type: str, reason: str, message: str
    ) -> None:
        now = format_time(datetime.now(UTC))
        body = {
            "metadata": {
                "generateName": f"{resource.name}-",
                "namespace": resource.namespace,
            },
            "involvedObject": {
                "apiVersion": resource.api_version,
                "kind": resource.kind,
                "name": resource.name,
                "namespace": resource.namespace,
                "uid": resource.metadata.uid,
            },
            "type": event_type,
            "reason": reason,
            "message": message,
            "firstTimestamp": now,
            "lastTimestamp": now,
            "count": 1,
            "source": {"component": EVENT_SOURCE},
        }
        try:
            await self._call(
                self._core.create_namespaced_event,
                resource.namespace,
                body,
                kind="Event",
                namespace=resource.namespace,
                name=resource.name,
            )
        except ClusterError as e:
            logger.warning(f"Failed to record event {reason} for {resource.name}: {e}")
