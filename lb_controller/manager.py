"""
Controller manager that wires watches, the work queue and reconcile workers.

This module implements the event-driven side of the controller: resource and
job watches enqueue reconcile requests (job events are routed to their owner
through the field index), a periodic resync enqueues every resource, and a
pool of workers runs Reconciler passes concurrently for different resources.
"""

import asyncio
import logging

from lb_common.cluster import ClusterClient
from lb_common.errors import ClusterError
from lb_common.models import BuildResource, Job

from .field_index import FieldIndex
from .reconciler import DEFAULT_REQUEUE_AFTER, ReconcileRequest, Reconciler
from .synthesizer import JobNamingStrategy
from .workqueue import WorkQueue, WorkQueueShutDown

# Configure logging
logger = logging.getLogger(__name__)


class ControllerManager:
    """
    Runs the LeviathanBuild controller.

    The manager:
    1. Builds the job field index from a full job listing
    2. Watches LeviathanBuilds and jobs, enqueueing reconcile requests
    3. Periodically enqueues every LeviathanBuild (resync)
    4. Runs worker tasks that reconcile requests from the queue
    """

    def __init__(
        self,
        cluster: ClusterClient,
        workers: int = 1,
        namespace: str | None = None,
        naming: JobNamingStrategy | None = None,
        requeue_after: float = DEFAULT_REQUEUE_AFTER,
        sync_period: float = 600.0,
        reconcile_timeout: float = 30.0,
        watch_retry_delay: float = 5.0,
    ):
        """
        Initialize the controller manager.

        Args:
            cluster: Cluster client shared by watches and workers
            workers: Number of concurrent reconcile workers
            namespace: Namespace to watch, or None for all namespaces
            naming: Job naming strategy passed to the reconciler
            requeue_after: Seconds before re-checking a created job
            sync_period: Seconds between full resyncs
            reconcile_timeout: Deadline for a single reconcile pass
            watch_retry_delay: Seconds to wait before restarting a failed watch
        """
        self.cluster = cluster
        self.workers = workers
        self.namespace = namespace
        self.sync_period = sync_period
        self.reconcile_timeout = reconcile_timeout
        self.watch_retry_delay = watch_retry_delay

        self.field_index = FieldIndex()
        self.queue: WorkQueue[ReconcileRequest] = WorkQueue()
        self.reconciler = Reconciler(
            cluster,
            field_index=self.field_index,
            naming=naming,
            requeue_after=requeue_after,
        )

        self._running = False
        self._ready = False
        self._tasks: list[asyncio.Task] = []

    def is_ready(self) -> bool:
        """True once the index is synced and workers are running."""
        return self._ready

    async def start(self) -> None:
        """Sync the field index and start watches, resync and workers."""
        if self._running:
            logger.warning("Controller manager already running")
            return

        self._running = True
        await self._sync_index()
        await self._enqueue_all()

        self._tasks = [
            asyncio.create_task(self._watch_resources(), name="watch-leviathanbuilds"),
            asyncio.create_task(self._watch_jobs(), name="watch-jobs"),
            asyncio.create_task(self._resync_loop(), name="resync"),
        ]
        for i in range(self.workers):
            self._tasks.append(
                asyncio.create_task(self._worker(i), name=f"worker-{i}")
            )

        self._ready = True
        logger.info(f"Controller manager started with {self.workers} worker(s)")

    async def stop(self) -> None:
        """Stop all tasks and shut the queue down."""
        if not self._running:
            return

        logger.info("Stopping controller manager...")
        self._running = False
        self._ready = False
        self.queue.shutdown()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Controller manager stopped")

    async def _sync_index(self) -> None:
        jobs = await self.cluster.list_jobs(self.namespace)
        self.field_index.rebuild(jobs)
        logger.info(f"Field index synced with {len(self.field_index)} owned job(s)")

    async def _enqueue_all(self) -> None:
        resources = await self.cluster.list_build_resources(self.namespace)
        for resource in resources:
            self.queue.add(ReconcileRequest(resource.namespace, resource.name))
        logger.debug(f"Enqueued {len(resources)} LeviathanBuild(s)")

    def _enqueue_owners(self, owners: list[str], job: Job) -> None:
        for owner in owners:
            self.queue.add(ReconcileRequest(job.namespace, owner))

    async def _watch_resources(self) -> None:
        """Enqueue a request for every LeviathanBuild change."""
        while self._running:
            try:
                async for event in self.cluster.watch_build_resources(self.namespace):
                    resource: BuildResource = event.object
                    logger.debug(
                        f"LeviathanBuild {resource.namespace}/{resource.name} "
                        f"{event.type.lower()}"
                    )
                    self.queue.add(ReconcileRequest(resource.namespace, resource.name))
            except asyncio.CancelledError:
                raise
            except ClusterError as e:
                logger.warning(f"LeviathanBuild watch failed: {e}")
            except Exception as e:
                logger.error(f"LeviathanBuild watch crashed: {e}", exc_info=True)
            await asyncio.sleep(self.watch_retry_delay)

    async def _watch_jobs(self) -> None:
        """Keep the field index current and enqueue owners of changed jobs."""
        while self._running:
            try:
                async for event in self.cluster.watch_jobs(self.namespace):
                    job: Job = event.object
                    if event.type == "DELETED":
                        owners = self.field_index.remove(job)
                    else:
                        owners = self.field_index.add(job)
                    self._enqueue_owners(owners, job)
            except asyncio.CancelledError:
                raise
            except ClusterError as e:
                logger.warning(f"Job watch failed: {e}")
            except Exception as e:
                logger.error(f"Job watch crashed: {e}", exc_info=True)
            await asyncio.sleep(self.watch_retry_delay)
            # Deletions may have been missed while the watch was down
            try:
                await self._sync_index()
            except ClusterError as e:
                logger.warning(f"Field index resync failed: {e}")
            except Exception as e:
                logger.error(f"Field index resync crashed: {e}", exc_info=True)

    async def _resync_loop(self) -> None:
        """Periodically enqueue every LeviathanBuild."""
        while self._running:
            await asyncio.sleep(self.sync_period)
            try:
                await self._enqueue_all()
            except ClusterError as e:
                logger.warning(f"Resync failed: {e}")
            except Exception as e:
                logger.error(f"Resync crashed: {e}", exc_info=True)

    async def _worker(self, worker_id: int) -> None:
        """Reconcile requests from the queue until shutdown."""
        while True:
            try:
                request = await self.queue.get()
            except WorkQueueShutDown:
                return
            try:
                await self.process(request)
            finally:
                self.queue.done(request)

    async def process(self, request: ReconcileRequest) -> None:
        """
        Run one reconcile pass and schedule what follows it.

        Failures are scoped to the request: they are logged and the request
        is retried with backoff.
        """
        try:
            async with asyncio.timeout(self.reconcile_timeout):
                result = await self.reconciler.reconcile(request)
        except asyncio.CancelledError:
            raise
        except TimeoutError:
            logger.error(
                f"Reconcile of {request} timed out after {self.reconcile_timeout}s"
            )
            self.queue.add_rate_limited(request)
            return
        except ClusterError as e:
            logger.error(f"Reconciler error for {request}: {e}")
            self.queue.add_rate_limited(request)
            return
        except Exception as e:
            logger.error(f"Unexpected error reconciling {request}: {e}", exc_info=True)
            self.queue.add_rate_limited(request)
            return

        self.queue.forget(request)
        if result.requeue_after:
            self.queue.add_after(request, result.requeue_after)
