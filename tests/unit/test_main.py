"""
Unit tests for the controller entrypoint's configuration helpers.
"""

import pytest

from lb_cluster.kube_client import KubernetesClusterClient
from lb_cluster.sqlite_store import SQLiteClusterStore
from lb_controller.__main__ import (
    create_cluster_client,
    get_backend,
    get_database_path,
    get_namespace,
    get_naming,
    get_probe_port,
    get_reconcile_timeout,
    get_requeue_after,
    get_sync_period,
    get_workers,
    parse_args,
)

ENV_VARS = (
    "LB_BACKEND",
    "LB_DB_PATH",
    "LB_NAMESPACE",
    "LB_WORKERS",
    "LB_REQUEUE_AFTER",
    "LB_SYNC_PERIOD",
    "LB_RECONCILE_TIMEOUT",
    "LB_NAMING",
    "LB_PROBE_PORT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)


def test_defaults():
    args = parse_args([])

    assert get_backend(args) == "sqlite"
    assert get_database_path(args) == "lb_cluster.db"
    assert get_namespace(args) is None
    assert get_workers(args) == 1
    assert get_requeue_after(args) == 60.0
    assert get_sync_period(args) == 600.0
    assert get_reconcile_timeout(args) == 30.0
    assert get_naming(args) == "zero-time"
    assert get_probe_port(args) == 8081


def test_environment(monkeypatch):
    monkeypatch.setenv("LB_BACKEND", "kubernetes")
    monkeypatch.setenv("LB_DB_PATH", "/tmp/x.db")
    monkeypatch.setenv("LB_NAMESPACE", "builds")
    monkeypatch.setenv("LB_WORKERS", "4")
    monkeypatch.setenv("LB_REQUEUE_AFTER", "5.5")
    monkeypatch.setenv("LB_NAMING", "generation")
    monkeypatch.setenv("LB_PROBE_PORT", "0")
    args = parse_args([])

    assert get_backend(args) == "kubernetes"
    assert get_database_path(args) == "/tmp/x.db"
    assert get_namespace(args) == "builds"
    assert get_workers(args) == 4
    assert get_requeue_after(args) == 5.5
    assert get_naming(args) == "generation"
    assert get_probe_port(args) == 0


def test_cli_overrides_environment(monkeypatch):
    monkeypatch.setenv("LB_WORKERS", "4")
    monkeypatch.setenv("LB_NAMESPACE", "builds")
    args = parse_args(["--workers", "2", "--namespace", "ci"])

    assert get_workers(args) == 2
    assert get_namespace(args) == "ci"


def test_invalid_environment_falls_back(monkeypatch):
    monkeypatch.setenv("LB_WORKERS", "many")
    monkeypatch.setenv("LB_SYNC_PERIOD", "0")
    monkeypatch.setenv("LB_BACKEND", "etcd")
    monkeypatch.setenv("LB_NAMING", "random")
    args = parse_args([])

    assert get_workers(args) == 1
    assert get_sync_period(args) == 600.0
    assert get_backend(args) == "sqlite"
    assert get_naming(args) == "zero-time"


def test_invalid_cli_value_falls_back():
    args = parse_args(["--workers", "0", "--reconcile-timeout", "-1"])

    assert get_workers(args) == 1
    assert get_reconcile_timeout(args) == 30.0


def test_invalid_cli_choice_exits():
    with pytest.raises(SystemExit):
        parse_args(["--naming", "random"])


def test_create_cluster_client(tmp_path):
    sqlite_args = parse_args(["--db-path", str(tmp_path / "c.db")])
    kube_args = parse_args(["--backend", "kubernetes"])

    store = create_cluster_client(sqlite_args)
    assert isinstance(store, SQLiteClusterStore)
    assert store.db_path == str(tmp_path / "c.db")
    assert isinstance(create_cluster_client(kube_args), KubernetesClusterClient)
