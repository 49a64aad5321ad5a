"""
Entrypoint for running the LeviathanBuild controller.

Usage:
    python -m lb_controller [OPTIONS]
    lb-controller [OPTIONS]  (after pip install)

Environment Variables:
    LB_BACKEND: Cluster backend, "sqlite" or "kubernetes" (default: sqlite)
    LB_DB_PATH: Database path for the sqlite backend (default: lb_cluster.db)
    LB_NAMESPACE: Namespace to watch (default: all namespaces)
    LB_WORKERS: Number of concurrent reconcile workers (default: 1)
    LB_REQUEUE_AFTER: Seconds before re-checking a created job (default: 60.0)
    LB_SYNC_PERIOD: Seconds between full resyncs (default: 600.0)
    LB_RECONCILE_TIMEOUT: Deadline for one reconcile pass (default: 30.0)
    LB_NAMING: Job naming strategy, "zero-time" or "generation" (default: zero-time)
    LB_PROBE_PORT: Health probe port, 0 disables (default: 8081)
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Any

from lb_cluster.kube_client import KubernetesClusterClient
from lb_cluster.sqlite_store import SQLiteClusterStore
from lb_common.cluster import ClusterClient

from .manager import ControllerManager
from .probes import create_probe_server
from .synthesizer import NAMING_STRATEGIES

logger = logging.getLogger(__name__)

BACKENDS = ("sqlite", "kubernetes")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        description="LeviathanBuild controller - keeps one Job in sync with each LeviathanBuild",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  LB_BACKEND              Cluster backend: sqlite or kubernetes (default: sqlite)
  LB_DB_PATH              Database path for the sqlite backend (default: lb_cluster.db)
  LB_NAMESPACE            Namespace to watch (default: all namespaces)
  LB_WORKERS              Concurrent reconcile workers (default: 1)
  LB_REQUEUE_AFTER        Seconds before re-checking a created job (default: 60.0)
  LB_SYNC_PERIOD          Seconds between full resyncs (default: 600.0)
  LB_RECONCILE_TIMEOUT    Deadline for one reconcile pass (default: 30.0)
  LB_NAMING               Job naming: zero-time or generation (default: zero-time)
  LB_PROBE_PORT           Health probe port, 0 disables (default: 8081)

Note: Command-line arguments override environment variables.

Examples:
  # Run against a local sqlite store
  lb-controller --db-path /tmp/lb_cluster.db

  # Run against the current kubeconfig context with 4 workers
  lb-controller --backend kubernetes --workers 4

  # Enable debug logging
  lb-controller --log-level DEBUG
        """,
    )

    parser.add_argument(
        "--backend",
        type=str,
        default=None,
        choices=BACKENDS,
        help="Cluster backend (default: LB_BACKEND env or sqlite)",
    )
    parser.add_argument(
        "--db-path",
        type=str,
        default=None,
        help="Path to the SQLite database file (default: LB_DB_PATH env or lb_cluster.db)",
    )
    parser.add_argument(
        "--namespace",
        type=str,
        default=None,
        help="Namespace to watch (default: LB_NAMESPACE env or all namespaces)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Concurrent reconcile workers (default: LB_WORKERS env or 1)",
    )
    parser.add_argument(
        "--requeue-after",
        type=float,
        default=None,
        help="Seconds before re-checking a created job (default: LB_REQUEUE_AFTER env or 60.0)",
    )
    parser.add_argument(
        "--sync-period",
        type=float,
        default=None,
        help="Seconds between full resyncs (default: LB_SYNC_PERIOD env or 600.0)",
    )
    parser.add_argument(
        "--reconcile-timeout",
        type=float,
        default=None,
        help="Deadline for one reconcile pass (default: LB_RECONCILE_TIMEOUT env or 30.0)",
    )
    parser.add_argument(
        "--naming",
        type=str,
        default=None,
        choices=sorted(NAMING_STRATEGIES),
        help="Job naming strategy (default: LB_NAMING env or zero-time)",
    )
    parser.add_argument(
        "--probe-port",
        type=int,
        default=None,
        help="Health probe port, 0 disables (default: LB_PROBE_PORT env or 8081)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(argv)


def get_backend(args: argparse.Namespace) -> str:
    """Get the cluster backend from CLI args or environment."""
    if args.backend is not None:
        return args.backend
    backend = os.environ.get("LB_BACKEND", "sqlite")
    if backend not in BACKENDS:
        logger.warning(f"Invalid LB_BACKEND={backend}, using default sqlite")
        return "sqlite"
    return backend


def get_database_path(args: argparse.Namespace) -> str:
    """Get the database path from CLI args or environment or use default."""
    if args.db_path:
        return args.db_path
    return os.environ.get("LB_DB_PATH", "lb_cluster.db")


def get_namespace(args: argparse.Namespace) -> str | None:
    """Get the watched namespace; None means all namespaces."""
    if args.namespace:
        return args.namespace
    return os.environ.get("LB_NAMESPACE") or None


def get_naming(args: argparse.Namespace) -> str:
    """Get the job naming strategy name from CLI args or environment."""
    if args.naming is not None:
        return args.naming
    naming = os.environ.get("LB_NAMING", "zero-time")
    if naming not in NAMING_STRATEGIES:
        logger.warning(f"Invalid LB_NAMING={naming}, using default zero-time")
        return "zero-time"
    return naming


def _get_number(
    value: float | None, env_var: str, default: float, minimum: float, cast=float
):
    """
    Resolve a numeric option: CLI value, then environment, then default.

    Values below minimum fall back to the default with a warning.
    """
    if value is not None:
        if value < minimum:
            logger.warning(f"Invalid value {value} for {env_var}, using default {default}")
            return default
        return value

    raw = os.environ.get(env_var)
    if raw is None:
        return default
    try:
        parsed = cast(raw)
    except ValueError:
        logger.warning(f"Invalid {env_var}={raw}, using default {default}")
        return default
    if parsed < minimum:
        logger.warning(f"Invalid {env_var}={parsed}, using default {default}")
        return default
    return parsed


def get_workers(args: argparse.Namespace) -> int:
    return _get_number(args.workers, "LB_WORKERS", 1, 1, cast=int)


def get_requeue_after(args: argparse.Namespace) -> float:
    return _get_number(args.requeue_after, "LB_REQUEUE_AFTER", 60.0, 0.001)


def get_sync_period(args: argparse.Namespace) -> float:
    return _get_number(args.sync_period, "LB_SYNC_PERIOD", 600.0, 1.0)


def get_reconcile_timeout(args: argparse.Namespace) -> float:
    return _get_number(args.reconcile_timeout, "LB_RECONCILE_TIMEOUT", 30.0, 0.001)


def get_probe_port(args: argparse.Namespace) -> int:
    return _get_number(args.probe_port, "LB_PROBE_PORT", 8081, 0, cast=int)


def create_cluster_client(args: argparse.Namespace) -> ClusterClient:
    """Create the cluster client for the configured backend."""
    if get_backend(args) == "kubernetes":
        return KubernetesClusterClient()
    return SQLiteClusterStore(get_database_path(args))


async def run_controller(args: argparse.Namespace) -> None:
    """
    Initialize and run the controller until SIGINT or SIGTERM.

    Args:
        args: Parsed command-line arguments
    """
    backend = get_backend(args)
    namespace = get_namespace(args)
    workers = get_workers(args)
    naming = get_naming(args)
    probe_port = get_probe_port(args)

    logger.info("Starting LeviathanBuild controller")
    logger.info(f"  Backend: {backend}")
    if backend == "sqlite":
        logger.info(f"  Database: {get_database_path(args)}")
    logger.info(f"  Namespace: {namespace or '(all)'}")
    logger.info(f"  Workers: {workers}")
    logger.info(f"  Job naming: {naming}")

    cluster = create_cluster_client(args)
    await cluster.initialize()
    logger.info("Cluster client initialized")

    manager = ControllerManager(
        cluster,
        workers=workers,
        namespace=namespace,
        naming=NAMING_STRATEGIES[naming](),
        requeue_after=get_requeue_after(args),
        sync_period=get_sync_period(args),
        reconcile_timeout=get_reconcile_timeout(args),
    )

    # Set up signal handlers for graceful shutdown
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler(sig: Any, _frame: Any) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {sig}, initiating graceful shutdown...")
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    probe_server = None
    probe_task = None
    if probe_port:
        probe_server = create_probe_server(manager.is_ready, probe_port)
        probe_task = asyncio.create_task(probe_server.serve())

    try:
        await manager.start()
        logger.info("Controller started successfully")

        await shutdown_event.wait()

    except Exception as e:
        logger.error(f"Controller error: {e}", exc_info=True)
        raise
    finally:
        logger.info("Stopping controller...")
        await manager.stop()
        if probe_server is not None:
            probe_server.should_exit = True
            await probe_task
        logger.info("Closing cluster client...")
        await cluster.close()
        logger.info("Controller stopped cleanly")


def main() -> int:
    """
    Main entrypoint for the controller.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        asyncio.run(run_controller(args))
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
