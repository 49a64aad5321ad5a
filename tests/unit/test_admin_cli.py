"""
Unit tests for the lbctl admin CLI.

Runs the click commands in-process against a temporary SQLite store.
"""

import asyncio
import json
import os
import tempfile

import pytest
from click.testing import CliRunner

from lb_admin.cli import cli
from lb_cluster.sqlite_store import SQLiteClusterStore
from lb_controller.reconciler import ReconcileRequest, Reconciler

MANIFEST = {
    "apiVersion": "jcrs.jcrs.dev/v1",
    "kind": "LeviathanBuild",
    "metadata": {"name": "libfoo-build", "namespace": "default"},
    "spec": {
        "packageName": "libfoo",
        "buildType": "Build",
        "jobTemplate": {
            "spec": {
                "template": {
                    "spec": {
                        "containers": [{"name": "build", "image": "builder:1.0"}],
                        "restartPolicy": "Never",
                    }
                }
            }
        },
    },
}


@pytest.fixture
def db_path():
    """Create a temporary database file for testing."""
    fd, path = tempfile.mkstemp(suffix=".db", prefix="lbctl_test_")
    os.close(fd)

    yield path

    if os.path.exists(path):
        os.unlink(path)


@pytest.fixture
def runner(db_path):
    return CliRunner(env={"LB_DB_PATH": db_path})


@pytest.fixture
def manifest_file(tmp_path):
    path = tmp_path / "libfoo.json"
    path.write_text(json.dumps(MANIFEST))
    return path


def reconcile_once(db_path: str) -> None:
    async def run():
        store = SQLiteClusterStore(db_path)
        await store.initialize()
        try:
            await Reconciler(store).reconcile(
                ReconcileRequest("default", "libfoo-build")
            )
        finally:
            await store.close()

    asyncio.run(run())


def test_apply_creates_then_unchanged(runner, manifest_file):
    result = runner.invoke(cli, ["apply", "-f", str(manifest_file)])
    assert result.exit_code == 0
    assert "leviathanbuild/libfoo-build created" in result.output

    result = runner.invoke(cli, ["apply", "-f", str(manifest_file)])
    assert result.exit_code == 0
    assert "unchanged" in result.output


def test_apply_reconfigures(runner, manifest_file):
    runner.invoke(cli, ["apply", "-f", str(manifest_file)])
    changed = json.loads(manifest_file.read_text())
    changed["spec"]["buildType"] = "Publish"
    manifest_file.write_text(json.dumps(changed))

    result = runner.invoke(cli, ["apply", "-f", str(manifest_file)])

    assert result.exit_code == 0
    assert "configured" in result.output
    result = runner.invoke(cli, ["get", "libfoo-build", "--json"])
    data = json.loads(result.output)
    assert data["spec"]["buildType"] == "Publish"
    assert data["metadata"]["generation"] == 2


def test_apply_invalid_manifest(runner, tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({**MANIFEST, "spec": {"buildType": "Build"}}))

    result = runner.invoke(cli, ["apply", "-f", str(bad)])

    assert result.exit_code == 1
    assert "packageName" in result.output


def test_get_missing(runner):
    result = runner.invoke(cli, ["get", "nope"])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_list(runner, manifest_file):
    result = runner.invoke(cli, ["list"])
    assert "No LeviathanBuilds found" in result.output

    runner.invoke(cli, ["apply", "-f", str(manifest_file)])
    result = runner.invoke(cli, ["list"])

    assert result.exit_code == 0
    assert "libfoo-build" in result.output
    assert "libfoo" in result.output


def test_jobs_and_finish(runner, manifest_file, db_path):
    runner.invoke(cli, ["apply", "-f", str(manifest_file)])
    reconcile_once(db_path)

    result = runner.invoke(cli, ["jobs"])
    assert result.exit_code == 0
    assert "libfoo-build--62135596800" in result.output
    assert "Active" in result.output

    result = runner.invoke(
        cli, ["job-finish", "libfoo-build--62135596800", "--failed", "--message", "oops"]
    )
    assert result.exit_code == 0
    assert "marked failed" in result.output

    result = runner.invoke(cli, ["jobs", "--json"])
    [job] = json.loads(result.output)
    assert job["status"]["conditions"][0]["type"] == "Failed"
    assert job["status"]["conditions"][0]["reason"] == "BackoffLimitExceeded"

    reconcile_once(db_path)
    result = runner.invoke(cli, ["get", "libfoo-build"])
    assert "Failed" in result.output
    assert "BackoffLimitExceeded" in result.output


def test_events(runner, manifest_file, db_path):
    runner.invoke(cli, ["apply", "-f", str(manifest_file)])
    reconcile_once(db_path)

    result = runner.invoke(cli, ["events"])

    assert result.exit_code == 0
    assert "JobCreated" in result.output
    assert "LeviathanBuild/libfoo-build" in result.output


def test_delete_cascades(runner, manifest_file, db_path):
    runner.invoke(cli, ["apply", "-f", str(manifest_file)])
    reconcile_once(db_path)

    result = runner.invoke(cli, ["delete", "libfoo-build"])
    assert result.exit_code == 0
    assert "deleted" in result.output

    result = runner.invoke(cli, ["jobs"])
    assert "No jobs found" in result.output

    result = runner.invoke(cli, ["delete", "libfoo-build"])
    assert result.exit_code == 1


def test_manifests_crd(runner):
    result = runner.invoke(cli, ["manifests", "crd"])

    assert result.exit_code == 0
    crd = json.loads(result.output)
    assert crd["metadata"]["name"] == "leviathanbuilds.jcrs.jcrs.dev"


def test_manifests_unknown_kind(runner):
    result = runner.invoke(cli, ["manifests", "deployment"])

    assert result.exit_code == 2
