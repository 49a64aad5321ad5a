"""
Shared fixtures for the unit tests.
"""

import copy
import json
import os
import tempfile

import pytest

from lb_cluster.sqlite_store import SQLiteClusterStore
from lb_common.models import (
    BuildResource,
    BuildResourceSpec,
    Condition,
    Job,
    JobStatus,
    JobTemplateSpec,
    ObjectMeta,
)
from lb_controller.ownership import set_controller_reference


def job_spec(image: str = "builder:1.0", command: list[str] | None = None) -> dict:
    """A minimal job execution spec, as a user would write it."""
    return {
        "template": {
            "spec": {
                "containers": [
                    {
                        "name": "build",
                        "image": image,
                        "command": command or ["make", "package"],
                    }
                ],
                "restartPolicy": "Never",
            }
        }
    }


def server_defaulted(spec: dict) -> dict:
    """Return spec as an API server would store it."""
    stored = copy.deepcopy(spec)
    stored.update(
        {
            "backoffLimit": 6,
            "completionMode": "NonIndexed",
            "completions": 1,
            "parallelism": 1,
            "suspend": False,
            "manualSelector": False,
            "podReplacementPolicy": "TerminatingOrFailed",
            "selector": {
                "matchLabels": {"batch.kubernetes.io/controller-uid": "1234"}
            },
        }
    )
    template = stored["template"]
    template["metadata"] = {
        "labels": {
            "batch.kubernetes.io/controller-uid": "1234",
            "batch.kubernetes.io/job-name": "pkg-build--62135596800",
            "controller-uid": "1234",
            "job-name": "pkg-build--62135596800",
        }
    }
    pod = template["spec"]
    pod.update(
        {
            "dnsPolicy": "ClusterFirst",
            "schedulerName": "default-scheduler",
            "terminationGracePeriodSeconds": 30,
            "securityContext": {},
        }
    )
    for container in pod["containers"]:
        container.update(
            {
                "imagePullPolicy": "IfNotPresent",
                "terminationMessagePath": "/dev/termination-log",
                "terminationMessagePolicy": "File",
                "resources": {},
            }
        )
    return stored


def finished_status(condition_type: str = "Complete", **kwargs) -> JobStatus:
    return JobStatus(
        succeeded=1 if condition_type == "Complete" else 0,
        failed=1 if condition_type == "Failed" else 0,
        conditions=[Condition(type=condition_type, status="True", **kwargs)],
    )


@pytest.fixture
def make_resource():
    """Factory for LeviathanBuild objects."""

    def _make(
        name: str = "pkg-build",
        namespace: str = "default",
        uid: str | None = "uid-pkg-build",
        generation: int = 1,
        spec: dict | None = None,
        with_template: bool = True,
        **spec_kwargs,
    ) -> BuildResource:
        template = None
        if with_template:
            template = JobTemplateSpec(
                spec=spec if spec is not None else job_spec(),
                labels={"app": "leviathan"},
                annotations={"team": "packaging"},
            )
        spec_kwargs.setdefault("package_name", "libfoo")
        return BuildResource(
            metadata=ObjectMeta(
                name=name,
                namespace=namespace,
                uid=uid,
                resource_version="1",
                generation=generation,
            ),
            spec=BuildResourceSpec(job_template=template, **spec_kwargs),
        )

    return _make


@pytest.fixture
def job_spec_factory():
    return job_spec


@pytest.fixture
def finished():
    return finished_status


@pytest.fixture
def make_job():
    """Factory for jobs, optionally controlled by a LeviathanBuild."""

    def _make(
        name: str,
        owner: BuildResource | None = None,
        namespace: str | None = None,
        spec: dict | None = None,
        status: JobStatus | None = None,
        creation_timestamp=None,
    ) -> Job:
        job = Job(
            metadata=ObjectMeta(
                name=name,
                namespace=namespace or (owner.namespace if owner else "default"),
                uid=f"uid-{name}",
                creation_timestamp=creation_timestamp,
            ),
            spec=spec if spec is not None else job_spec(),
            status=status or JobStatus(),
        )
        if owner is not None:
            set_controller_reference(owner, job)
        return job

    return _make


@pytest.fixture
async def store():
    """Create a temporary SQLite cluster store."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    s = SQLiteClusterStore(path, poll_interval=0.01)
    await s.initialize()

    yield s

    await s.close()
    if os.path.exists(path):
        os.unlink(path)


@pytest.fixture
def write_raw_spec(store):
    """Overwrite a stored spec, bypassing the API validation a client applies."""

    async def _write(namespace: str, name: str, spec: dict) -> None:
        conn = await store._get_connection()
        await conn.execute(
            "UPDATE build_resources SET spec = ? WHERE namespace = ? AND name = ?",
            (json.dumps(spec), namespace, name),
        )
        await conn.commit()

    return _write


@pytest.fixture
def server_defaults():
    return server_defaulted
