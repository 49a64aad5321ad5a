"""
Unit tests for the SQLite cluster store.

Tests resource and job persistence, conditional writes, status/spec
separation, cascade deletion and poll-based watches.
"""

import asyncio
import json

import pytest

from lb_common.errors import (
    AlreadyExistsError,
    ConflictError,
    InvalidObjectError,
    NotFoundError,
)
from lb_common.models import BuildResourceStatus, Condition, JobStatus
from lb_controller.synthesizer import JobSynthesizer


async def next_event(watch, timeout: float = 2.0):
    return await asyncio.wait_for(watch.__anext__(), timeout)


class TestBuildResources:
    """Test suite for LeviathanBuild storage."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, store, make_resource):
        created = await store.create_build_resource(make_resource())

        assert created.metadata.uid
        assert created.metadata.uid != "uid-pkg-build"
        assert created.metadata.generation == 1
        assert created.metadata.creation_timestamp is not None

        fetched = await store.get_build_resource("default", "pkg-build")
        assert fetched == created
        assert fetched.spec.package_name == "libfoo"
        assert fetched.spec.job_template.labels == {"app": "leviathan"}

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.get_build_resource("default", "nope")

    @pytest.mark.asyncio
    async def test_create_duplicate(self, store, make_resource):
        await store.create_build_resource(make_resource())

        with pytest.raises(AlreadyExistsError):
            await store.create_build_resource(make_resource())

    @pytest.mark.asyncio
    async def test_list_by_namespace(self, store, make_resource):
        await store.create_build_resource(make_resource(name="b", namespace="one"))
        await store.create_build_resource(make_resource(name="a", namespace="one"))
        await store.create_build_resource(make_resource(name="c", namespace="two"))

        assert [r.name for r in await store.list_build_resources("one")] == ["a", "b"]
        assert [r.name for r in await store.list_build_resources()] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_invalid_stored_spec(self, store, make_resource, write_raw_spec):
        """An undecodable resource is skipped by list and reported by get."""
        await store.create_build_resource(make_resource(name="good"))
        await store.create_build_resource(make_resource(name="bad"))
        await write_raw_spec("default", "bad", {"packageName": ""})

        assert [r.name for r in await store.list_build_resources()] == ["good"]
        with pytest.raises(InvalidObjectError, match="packageName"):
            await store.get_build_resource("default", "bad")

    @pytest.mark.asyncio
    async def test_spec_update_bumps_generation(self, store, make_resource):
        created = await store.create_build_resource(make_resource())
        created.spec.build_type = "Publish"

        updated = await store.update_build_resource(created)

        assert updated.metadata.generation == 2
        assert int(updated.metadata.resource_version) > int(
            created.metadata.resource_version
        )

    @pytest.mark.asyncio
    async def test_identical_update_is_noop(self, store, make_resource):
        created = await store.create_build_resource(make_resource())

        updated = await store.update_build_resource(created)

        assert updated.metadata.resource_version == created.metadata.resource_version
        assert updated.metadata.generation == 1

    @pytest.mark.asyncio
    async def test_stale_update_conflicts(self, store, make_resource):
        created = await store.create_build_resource(make_resource())
        stale_version = created.metadata.resource_version
        created.spec.build_type = "Publish"
        await store.update_build_resource(created)

        created.metadata.resource_version = stale_version
        created.spec.build_type = "BuildPublish"
        with pytest.raises(ConflictError):
            await store.update_build_resource(created)

    @pytest.mark.asyncio
    async def test_update_missing(self, store, make_resource):
        with pytest.raises(NotFoundError):
            await store.update_build_resource(make_resource())


class TestStatusSubresource:
    """Test suite for status writes."""

    @pytest.mark.asyncio
    async def test_status_write_leaves_spec_untouched(self, store, make_resource):
        """Spec is byte-for-byte unchanged after a status write."""
        created = await store.create_build_resource(make_resource())
        before = json.dumps(created.spec.to_dict(), sort_keys=True)

        # A status write carrying a modified spec must not change the spec
        created.spec.package_name = "something-else"
        created.status = BuildResourceStatus(
            conditions=[Condition(type="Running", status="True", reason="JobRunning")]
        )
        await store.update_build_resource_status(created)

        stored = await store.get_build_resource("default", "pkg-build")
        assert json.dumps(stored.spec.to_dict(), sort_keys=True) == before
        assert stored.metadata.generation == 1
        assert stored.status.get_condition("Running").status == "True"

    @pytest.mark.asyncio
    async def test_spec_write_leaves_status_untouched(self, store, make_resource):
        created = await store.create_build_resource(make_resource())
        created.status = BuildResourceStatus(
            conditions=[Condition(type="Complete", status="True")]
        )
        with_status = await store.update_build_resource_status(created)

        with_status.status = BuildResourceStatus()
        with_status.spec.build_type = "Publish"
        updated = await store.update_build_resource(with_status)

        assert updated.status.get_condition("Complete").status == "True"

    @pytest.mark.asyncio
    async def test_identical_status_is_noop(self, store, make_resource):
        created = await store.create_build_resource(make_resource())
        created.status = BuildResourceStatus(
            conditions=[Condition(type="Running", status="True")]
        )
        first = await store.update_build_resource_status(created)

        second = await store.update_build_resource_status(first)

        assert second.metadata.resource_version == first.metadata.resource_version

    @pytest.mark.asyncio
    async def test_stale_status_conflicts(self, store, make_resource):
        created = await store.create_build_resource(make_resource())
        stale_version = created.metadata.resource_version
        created.spec.build_type = "Publish"
        await store.update_build_resource(created)

        created.metadata.resource_version = stale_version
        created.status = BuildResourceStatus(
            conditions=[Condition(type="Running", status="True")]
        )
        with pytest.raises(ConflictError):
            await store.update_build_resource_status(created)


class TestJobs:
    """Test suite for job storage."""

    @pytest.mark.asyncio
    async def test_create_get_list(self, store, make_resource):
        owner = await store.create_build_resource(make_resource())
        job = JobSynthesizer().build(owner)

        created = await store.create_job(job)

        assert created.metadata.uid
        assert created.metadata.creation_timestamp is not None
        assert created.spec == job.spec
        assert created.metadata.owner_references == job.metadata.owner_references
        assert await store.get_job("default", job.name) == created
        assert [j.name for j in await store.list_jobs("default")] == [job.name]
        assert await store.list_jobs("other") == []

    @pytest.mark.asyncio
    async def test_create_duplicate(self, store, make_resource):
        owner = await store.create_build_resource(make_resource())
        job = JobSynthesizer().build(owner)
        await store.create_job(job)

        with pytest.raises(AlreadyExistsError):
            await store.create_job(job)

    @pytest.mark.asyncio
    async def test_delete(self, store, make_resource):
        owner = await store.create_build_resource(make_resource())
        job = await store.create_job(JobSynthesizer().build(owner))

        await store.delete_job("default", job.name)

        with pytest.raises(NotFoundError):
            await store.get_job("default", job.name)
        with pytest.raises(NotFoundError):
            await store.delete_job("default", job.name)

    @pytest.mark.asyncio
    async def test_update_status(self, store, make_resource, finished):
        owner = await store.create_build_resource(make_resource())
        job = await store.create_job(JobSynthesizer().build(owner))

        updated = await store.update_job_status("default", job.name, finished("Failed"))

        assert updated.is_finished()
        assert updated.status.failed == 1
        assert updated.spec == job.spec

    @pytest.mark.asyncio
    async def test_update_status_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.update_job_status("default", "nope", JobStatus())

    @pytest.mark.asyncio
    async def test_resource_delete_cascades(self, store, make_resource):
        owner = await store.create_build_resource(make_resource())
        other = await store.create_build_resource(make_resource(name="other"))
        await store.create_job(JobSynthesizer().build(owner))
        await store.create_job(JobSynthesizer().build(other))

        await store.delete_build_resource("default", "pkg-build")

        assert [j.name for j in await store.list_jobs()] == ["other--62135596800"]
        with pytest.raises(NotFoundError):
            await store.delete_build_resource("default", "pkg-build")


class TestEvents:
    """Test suite for event recording."""

    @pytest.mark.asyncio
    async def test_record_and_list(self, store, make_resource):
        resource = await store.create_build_resource(make_resource())

        await store.record_event(resource, "Normal", "JobCreated", "Created job x")
        await store.record_event(resource, "Warning", "InvalidJobTemplate", "bad")

        events = await store.list_events("default")
        assert [e["reason"] for e in events] == ["JobCreated", "InvalidJobTemplate"]
        assert events[0]["involvedObject"] == {
            "namespace": "default",
            "kind": "LeviathanBuild",
            "name": "pkg-build",
            "uid": resource.metadata.uid,
        }
        assert await store.list_events("elsewhere") == []


class TestWatch:
    """Test suite for poll-based watches."""

    @pytest.mark.asyncio
    async def test_resource_watch_events(self, store, make_resource):
        created = await store.create_build_resource(make_resource())
        watch = store.watch_build_resources("default")
        try:
            event = await next_event(watch)
            assert (event.type, event.object.name) == ("ADDED", "pkg-build")

            created.spec.build_type = "Publish"
            await store.update_build_resource(created)
            event = await next_event(watch)
            assert event.type == "MODIFIED"
            assert event.object.spec.build_type == "Publish"

            await store.delete_build_resource("default", "pkg-build")
            event = await next_event(watch)
            assert (event.type, event.object.name) == ("DELETED", "pkg-build")
        finally:
            await watch.aclose()

    @pytest.mark.asyncio
    async def test_job_watch_events(self, store, make_resource, finished):
        owner = await store.create_build_resource(make_resource())
        watch = store.watch_jobs()
        try:
            job = await store.create_job(JobSynthesizer().build(owner))
            event = await next_event(watch)
            assert (event.type, event.object.name) == ("ADDED", job.name)

            await store.update_job_status("default", job.name, finished())
            event = await next_event(watch)
            assert event.type == "MODIFIED"
            assert event.object.is_finished()
        finally:
            await watch.aclose()
