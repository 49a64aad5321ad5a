"""
SQLite implementation of the cluster client.

Uses aiosqlite for async operations and stands in for an API server when the
controller runs locally: it assigns UIDs and resource versions, rejects stale
conditional writes, keeps status writes apart from spec writes, emits
poll-based watch events and cascades deletion to owned jobs.
"""

import asyncio
import json
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from lb_common.cluster import ClusterClient
from lb_common.constants import API_GROUP_VERSION, KIND
from lb_common.errors import (
    AlreadyExistsError,
    ConflictError,
    InvalidObjectError,
    NotFoundError,
)
from lb_common.models import (
    BuildResource,
    Job,
    JobStatus,
    WatchEvent,
    format_time,
)

logger = logging.getLogger(__name__)


class SQLiteClusterStore(ClusterClient):
    """
    SQLite-based cluster state.

    Uses a single database file with multiple tables:
    - counters: the global resource version counter
    - build_resources: LeviathanBuild metadata, spec and status (separate columns)
    - jobs: job metadata, spec and status, with the controller owner UID
    - events: events recorded against resources
    """

    def __init__(self, db_path: str = "lb_cluster.db", poll_interval: float = 1.0):
        """
        Initialize the SQLite store.

        Args:
            db_path: Path to the SQLite database file
            poll_interval: Seconds between polls when serving watches
        """
        self.db_path = db_path
        self.poll_interval = poll_interval
        self._connection: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create database connection."""
        if self._connection is None:
            self._connection = await aiosqlite.connect(self.db_path)
            await self._connection.execute("PRAGMA foreign_keys = ON")
        return self._connection

    async def initialize(self) -> None:
        """Create database tables if they don't exist."""
        conn = await self._get_connection()

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS counters (
                key TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            )
        """)
        await conn.execute(
            "INSERT OR IGNORE INTO counters (key, value) VALUES ('resourceVersion', 0)"
        )

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS build_resources (
                namespace TEXT NOT NULL,
                name TEXT NOT NULL,
                uid TEXT NOT NULL,
                resource_version INTEGER NOT NULL,
                generation INTEGER NOT NULL,
                creation_timestamp TEXT NOT NULL,
                metadata TEXT NOT NULL,
                spec TEXT NOT NULL,
                status TEXT NOT NULL,
                PRIMARY KEY (namespace, name)
            )
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                namespace TEXT NOT NULL,
                name TEXT NOT NULL,
                uid TEXT NOT NULL,
                resource_version INTEGER NOT NULL,
                creation_timestamp TEXT NOT NULL,
                owner_uid TEXT,
                metadata TEXT NOT NULL,
                spec TEXT NOT NULL,
                status TEXT NOT NULL,
                PRIMARY KEY (namespace, name)
            )
        """)

        # Cascade deletion looks jobs up by controller owner
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_jobs_owner_uid
            ON jobs(owner_uid)
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                namespace TEXT NOT NULL,
                involved_kind TEXT NOT NULL,
                involved_name TEXT NOT NULL,
                involved_uid TEXT,
                type TEXT NOT NULL,
                reason TEXT NOT NULL,
                message TEXT NOT NULL,
                timestamp TEXT NOT NULL
            )
        """)

        await conn.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def _next_resource_version(self, conn: aiosqlite.Connection) -> int:
        await conn.execute(
            "UPDATE counters SET value = value + 1 WHERE key = 'resourceVersion'"
        )
        cursor = await conn.execute(
            "SELECT value FROM counters WHERE key = 'resourceVersion'"
        )
        row = await cursor.fetchone()
        return row[0]

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)

    @staticmethod
    def _stored_metadata(metadata: dict[str, Any]) -> str:
        # Identity fields live in their own columns
        stored = {
            k: v
            for k, v in metadata.items()
            if k
            not in (
                "name",
                "namespace",
                "uid",
                "resourceVersion",
                "generation",
                "creationTimestamp",
            )
        }
        return json.dumps(stored, sort_keys=True)

    # LeviathanBuild operations

    _RESOURCE_COLUMNS = (
        "namespace, name, uid, resource_version, generation, "
        "creation_timestamp, metadata, spec, status"
    )

    def _row_to_resource(self, row: tuple) -> BuildResource:
        (
            namespace,
            name,
            uid,
            resource_version,
            generation,
            creation_timestamp,
            metadata_json,
            spec_json,
            status_json,
        ) = row
        metadata = json.loads(metadata_json)
        metadata.update(
            {
                "name": name,
                "namespace": namespace,
                "uid": uid,
                "resourceVersion": str(resource_version),
                "generation": generation,
                "creationTimestamp": creation_timestamp,
            }
        )
        return BuildResource.from_dict(
            {
                "apiVersion": API_GROUP_VERSION,
                "kind": KIND,
                "metadata": metadata,
                "spec": json.loads(spec_json),
                "status": json.loads(status_json),
            }
        )

    async def get_build_resource(self, namespace: str, name: str) -> BuildResource:
        conn = await self._get_connection()
        cursor = await conn.execute(
            f"SELECT {self._RESOURCE_COLUMNS} FROM build_resources "
            "WHERE namespace = ? AND name = ?",
            (namespace, name),
        )
        row = await cursor.fetchone()
        if row is None:
            raise NotFoundError(KIND, namespace, name)
        try:
            return self._row_to_resource(row)
        except ValueError as e:
            raise InvalidObjectError(KIND, namespace, name, str(e)) from e

    async def list_build_resources(
        self, namespace: str | None = None
    ) -> list[BuildResource]:
        conn = await self._get_connection()
        if namespace is None:
            cursor = await conn.execute(
                f"SELECT {self._RESOURCE_COLUMNS} FROM build_resources "
                "ORDER BY namespace, name"
            )
        else:
            cursor = await conn.execute(
                f"SELECT {self._RESOURCE_COLUMNS} FROM build_resources "
                "WHERE namespace = ? ORDER BY name",
                (namespace,),
            )
        rows = await cursor.fetchall()
        resources = []
        for row in rows:
            try:
                resources.append(self._row_to_resource(row))
            except ValueError as e:
                logger.warning(f"Skipping invalid {KIND} {row[0]}/{row[1]}: {e}")
        return resources

    async def create_build_resource(self, resource: BuildResource) -> BuildResource:
        meta = resource.metadata
        async with self._write_lock:
            conn = await self._get_connection()
            cursor = await conn.execute(
                "SELECT 1 FROM build_resources WHERE namespace = ? AND name = ?",
                (meta.namespace, meta.name),
            )
            if await cursor.fetchone() is not None:
                raise AlreadyExistsError(KIND, meta.namespace, meta.name)

            resource_version = await self._next_resource_version(conn)
            await conn.execute(
                f"INSERT INTO build_resources ({self._RESOURCE_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    meta.namespace,
                    meta.name,
                    str(uuid.uuid4()),
                    resource_version,
                    1,
                    format_time(self._now()),
                    self._stored_metadata(meta.to_dict()),
                    json.dumps(resource.spec.to_dict(), sort_keys=True),
                    "{}",
                ),
            )
            await conn.commit()
        return await self.get_build_resource(meta.namespace, meta.name)

    async def update_build_resource(self, resource: BuildResource) -> BuildResource:
        meta = resource.metadata
        async with self._write_lock:
            conn = await self._get_connection()
            cursor = await conn.execute(
                "SELECT resource_version, generation, metadata, spec "
                "FROM build_resources WHERE namespace = ? AND name = ?",
                (meta.namespace, meta.name),
            )
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError(KIND, meta.namespace, meta.name)
            stored_version, generation, stored_metadata, stored_spec = row
            if meta.resource_version and meta.resource_version != str(stored_version):
                raise ConflictError(
                    f"{KIND} {meta.namespace}/{meta.name} has been modified "
                    f"(resourceVersion {meta.resource_version} != {stored_version})"
                )

            metadata_json = self._stored_metadata(meta.to_dict())
            spec_json = json.dumps(resource.spec.to_dict(), sort_keys=True)
            if spec_json != stored_spec or metadata_json != stored_metadata:
                if spec_json != stored_spec:
                    generation += 1
                resource_version = await self._next_resource_version(conn)
                await conn.execute(
                    "UPDATE build_resources SET resource_version = ?, "
                    "generation = ?, metadata = ?, spec = ? "
                    "WHERE namespace = ? AND name = ?",
                    (
                        resource_version,
                        generation,
                        metadata_json,
                        spec_json,
                        meta.namespace,
                        meta.name,
                    ),
                )
                await conn.commit()
        return await self.get_build_resource(meta.namespace, meta.name)

    async def update_build_resource_status(
        self, resource: BuildResource
    ) -> BuildResource:
        meta = resource.metadata
        async with self._write_lock:
            conn = await self._get_connection()
            cursor = await conn.execute(
                "SELECT resource_version, status FROM build_resources "
                "WHERE namespace = ? AND name = ?",
                (meta.namespace, meta.name),
            )
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError(KIND, meta.namespace, meta.name)
            stored_version, stored_status = row
            if meta.resource_version and meta.resource_version != str(stored_version):
                raise ConflictError(
                    f"{KIND} {meta.namespace}/{meta.name} status update conflict "
                    f"(resourceVersion {meta.resource_version} != {stored_version})"
                )

            # Identical writes are no-ops, as on an API server
            status_json = json.dumps(resource.status.to_dict(), sort_keys=True)
            if status_json != stored_status:
                resource_version = await self._next_resource_version(conn)
                await conn.execute(
                    "UPDATE build_resources SET resource_version = ?, status = ? "
                    "WHERE namespace = ? AND name = ?",
                    (resource_version, status_json, meta.namespace, meta.name),
                )
                await conn.commit()
        return await self.get_build_resource(meta.namespace, meta.name)

    async def delete_build_resource(self, namespace: str, name: str) -> None:
        async with self._write_lock:
            conn = await self._get_connection()
            cursor = await conn.execute(
                "SELECT uid FROM build_resources WHERE namespace = ? AND name = ?",
                (namespace, name),
            )
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError(KIND, namespace, name)

            await conn.execute(
                "DELETE FROM build_resources WHERE namespace = ? AND name = ?",
                (namespace, name),
            )
            # Stand-in for the cluster garbage collector
            cursor = await conn.execute(
                "DELETE FROM jobs WHERE owner_uid = ?", (row[0],)
            )
            if cursor.rowcount:
                logger.info(
                    f"Cascade deleted {cursor.rowcount} job(s) owned by "
                    f"{namespace}/{name}"
                )
            await conn.commit()

    def watch_build_resources(
        self, namespace: str | None = None
    ) -> AsyncIterator[WatchEvent]:
        return self._poll_watch(lambda: self.list_build_resources(namespace))

    # Job operations

    _JOB_COLUMNS = (
        "namespace, name, uid, resource_version, creation_timestamp, "
        "owner_uid, metadata, spec, status"
    )

    def _row_to_job(self, row: tuple) -> Job:
        (
            namespace,
            name,
            uid,
            resource_version,
            creation_timestamp,
            _owner_uid,
            metadata_json,
            spec_json,
            status_json,
        ) = row
        metadata = json.loads(metadata_json)
        metadata.update(
            {
                "name": name,
                "namespace": namespace,
                "uid": uid,
                "resourceVersion": str(resource_version),
                "creationTimestamp": creation_timestamp,
            }
        )
        return Job.from_dict(
            {
                "metadata": metadata,
                "spec": json.loads(spec_json),
                "status": json.loads(status_json),
            }
        )

    async def get_job(self, namespace: str, name: str) -> Job:
        conn = await self._get_connection()
        cursor = await conn.execute(
            f"SELECT {self._JOB_COLUMNS} FROM jobs WHERE namespace = ? AND name = ?",
            (namespace, name),
        )
        row = await cursor.fetchone()
        if row is None:
            raise NotFoundError("Job", namespace, name)
        return self._row_to_job(row)

    async def list_jobs(self, namespace: str | None = None) -> list[Job]:
        conn = await self._get_connection()
        if namespace is None:
            cursor = await conn.execute(
                f"SELECT {self._JOB_COLUMNS} FROM jobs ORDER BY namespace, name"
            )
        else:
            cursor = await conn.execute(
                f"SELECT {self._JOB_COLUMNS} FROM jobs WHERE namespace = ? "
                "ORDER BY name",
                (namespace,),
            )
        rows = await cursor.fetchall()
        return [self._row_to_job(row) for row in rows]

    async def create_job(self, job: Job) -> Job:
        meta = job.metadata
        owner_uid = None
        for ref in meta.owner_references:
            if ref.controller:
                owner_uid = ref.uid
                break

        async with self._write_lock:
            conn = await self._get_connection()
            cursor = await conn.execute(
                "SELECT 1 FROM jobs WHERE namespace = ? AND name = ?",
                (meta.namespace, meta.name),
            )
            if await cursor.fetchone() is not None:
                raise AlreadyExistsError("Job", meta.namespace, meta.name)

            resource_version = await self._next_resource_version(conn)
            await conn.execute(
                f"INSERT INTO jobs ({self._JOB_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    meta.namespace,
                    meta.name,
                    str(uuid.uuid4()),
                    resource_version,
                    format_time(self._now()),
                    owner_uid,
                    self._stored_metadata(meta.to_dict()),
                    json.dumps(job.spec, sort_keys=True),
                    "{}",
                ),
            )
            await conn.commit()
        return await self.get_job(meta.namespace, meta.name)

    async def update_job_status(
        self, namespace: str, name: str, status: JobStatus
    ) -> Job:
        """
        Overwrite a job's status.

        There is no job controller behind the local store, so this is how
        job progress gets recorded (lbctl job-finish, tests).

        Raises:
            NotFoundError: If the job does not exist
        """
        async with self._write_lock:
            conn = await self._get_connection()
            resource_version = await self._next_resource_version(conn)
            cursor = await conn.execute(
                "UPDATE jobs SET resource_version = ?, status = ? "
                "WHERE namespace = ? AND name = ?",
                (
                    resource_version,
                    json.dumps(status.to_dict(), sort_keys=True),
                    namespace,
                    name,
                ),
            )
            if cursor.rowcount == 0:
                await conn.rollback()
                raise NotFoundError("Job", namespace, name)
            await conn.commit()
        return await self.get_job(namespace, name)

    async def delete_job(self, namespace: str, name: str) -> None:
        async with self._write_lock:
            conn = await self._get_connection()
            cursor = await conn.execute(
                "DELETE FROM jobs WHERE namespace = ? AND name = ?",
                (namespace, name),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Job", namespace, name)
            await conn.commit()

    def watch_jobs(self, namespace: str | None = None) -> AsyncIterator[WatchEvent]:
        return self._poll_watch(lambda: self.list_jobs(namespace))

    async def _poll_watch(
        self, list_objects: Callable[[], Awaitable[list]]
    ) -> AsyncIterator[WatchEvent]:
        """
        Emit watch events by diffing successive listings.

        The first listing is reported as ADDED events, like an informer's
        initial list.
        """
        seen: dict[tuple[str, str], Any] = {}
        while True:
            current = {
                (obj.namespace, obj.name): obj for obj in await list_objects()
            }
            for key, obj in current.items():
                previous = seen.get(key)
                if previous is None:
                    yield WatchEvent(type="ADDED", object=obj)
                elif (
                    previous.metadata.resource_version
                    != obj.metadata.resource_version
                ):
                    yield WatchEvent(type="MODIFIED", object=obj)
            for key, obj in seen.items():
                if key not in current:
                    yield WatchEvent(type="DELETED", object=obj)
            seen = current
            await asyncio.sleep(self.poll_interval)

    # Events

    async def record_event(
        self, resource: BuildResource, event_type: str, reason: str, message: str
    ) -> None:
        try:
            async with self._write_lock:
                conn = await self._get_connection()
                await conn.execute(
                    """
                    INSERT INTO events (namespace, involved_kind, involved_name,
                                        involved_uid, type, reason, message, timestamp)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        resource.namespace,
                        resource.kind,
                        resource.name,
                        resource.metadata.uid,
                        event_type,
                        reason,
                        message,
                        format_time(self._now()),
                    ),
                )
                await conn.commit()
        except aiosqlite.Error as e:
            logger.warning(f"Failed to record event {reason} for {resource.name}: {e}")

    async def list_events(self, namespace: str | None = None) -> list[dict[str, Any]]:
        """
        List recorded events, oldest first.

        Returns:
            Event dictionaries with involvedObject, type, reason, message and
            timestamp keys
        """
        conn = await self._get_connection()
        query = (
            "SELECT namespace, involved_kind, involved_name, involved_uid, "
            "type, reason, message, timestamp FROM events"
        )
        params: tuple = ()
        if namespace is not None:
            query += " WHERE namespace = ?"
            params = (namespace,)
        cursor = await conn.execute(query + " ORDER BY id", params)
        rows = await cursor.fetchall()
        return [
            {
                "involvedObject": {
                    "namespace": row[0],
                    "kind": row[1],
                    "name": row[2],
                    "uid": row[3],
                },
                "type": row[4],
                "reason": row[5],
                "message": row[6],
                "timestamp": row[7],
            }
            for row in rows
        ]
