"""
Unit tests for the job owner field index.
"""

from lb_common.models import Job, ObjectMeta, OwnerReference
from lb_controller.field_index import FieldIndex, extract_owner_names


def job_names(index: FieldIndex, namespace: str, owner: str) -> set[str]:
    return {job.name for job in index.owned_jobs(namespace, owner)}


def test_extract_owner_names(make_resource, make_job):
    job = make_job("a-1", owner=make_resource(name="a"))

    assert extract_owner_names(job) == ["a"]


def test_extract_ignores_unowned_jobs(make_job):
    assert extract_owner_names(make_job("loose")) == []


def test_extract_ignores_other_kinds():
    """A job controlled by a CronJob is not indexed."""
    job = Job(
        metadata=ObjectMeta(
            name="nightly-123",
            owner_references=[
                OwnerReference(
                    api_version="batch/v1",
                    kind="CronJob",
                    name="nightly",
                    uid="u",
                    controller=True,
                )
            ],
        )
    )

    assert extract_owner_names(job) == []


def test_extract_ignores_other_group():
    job = Job(
        metadata=ObjectMeta(
            name="x-1",
            owner_references=[
                OwnerReference(
                    api_version="other.example.com/v1",
                    kind="LeviathanBuild",
                    name="x",
                    uid="u",
                    controller=True,
                )
            ],
        )
    )

    assert extract_owner_names(job) == []


def test_owned_jobs_after_rebuild(make_resource, make_job):
    a = make_resource(name="a", uid="ua")
    b = make_resource(name="b", uid="ub")
    index = FieldIndex()

    index.rebuild(
        [make_job("a-1", owner=a), make_job("a-2", owner=a), make_job("b-1", owner=b)]
    )

    assert job_names(index, "default", "a") == {"a-1", "a-2"}
    assert job_names(index, "default", "b") == {"b-1"}
    assert len(index) == 3


def test_unknown_owner_is_empty():
    assert job_names(FieldIndex(), "default", "missing") == set()


def test_owned_jobs_are_namespaced(make_resource, make_job):
    index = FieldIndex()
    index.add(make_job("a-1", owner=make_resource(name="a", namespace="one")))

    assert job_names(index, "one", "a") == {"a-1"}
    assert job_names(index, "two", "a") == set()


def test_add_returns_owners(make_resource, make_job):
    index = FieldIndex()

    assert index.add(make_job("a-1", owner=make_resource(name="a"))) == ["a"]
    assert index.add(make_job("loose")) == []
    assert len(index) == 1


def test_remove(make_resource, make_job):
    index = FieldIndex()
    job = make_job("a-1", owner=make_resource(name="a"))
    index.add(job)

    assert index.remove(job) == ["a"]
    assert job_names(index, "default", "a") == set()
    assert index.remove(job) == []
    assert len(index) == 0


def test_reindex_on_owner_change(make_resource, make_job):
    """Re-adding a job moves it to its new owner."""
    index = FieldIndex()
    index.add(make_job("shared", owner=make_resource(name="a", uid="ua")))
    index.add(make_job("shared", owner=make_resource(name="b", uid="ub")))

    assert job_names(index, "default", "a") == set()
    assert job_names(index, "default", "b") == {"shared"}


def test_owned_jobs_returns_latest_object(make_resource, make_job, finished):
    owner = make_resource(name="a")
    index = FieldIndex()
    index.add(make_job("a-1", owner=owner))
    index.add(make_job("a-1", owner=owner, status=finished()))

    [job] = index.owned_jobs("default", "a")
    assert job.is_finished()
