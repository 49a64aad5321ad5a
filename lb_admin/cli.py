"""
lbctl - manage LeviathanBuilds in the local cluster store.

Provides commands to apply, inspect and delete LeviathanBuild resources,
inspect their jobs and events, simulate job completion, and print the
manifests needed to install the controller on a real cluster.
"""

import asyncio
import json
import os
import sys
from datetime import UTC, datetime
from pathlib import Path

import click

from lb_cluster.sqlite_store import SQLiteClusterStore
from lb_common.errors import ClusterError, NotFoundError
from lb_common.manifests import crd_manifest, rbac_role_manifest
from lb_common.models import BuildResource, Condition, JobStatus


def get_db_path() -> str:
    """Get the database path from environment variable or default."""
    return os.environ.get("LB_DB_PATH", "lb_cluster.db")


def get_store() -> SQLiteClusterStore:
    """Get the store instance."""
    return SQLiteClusterStore(get_db_path())


def run_async(coro):
    """Helper to run async functions in CLI commands."""
    return asyncio.run(coro)


def fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def condition_summary(resource: BuildResource) -> str:
    true_conditions = [c.type for c in resource.status.conditions if c.status == "True"]
    return ",".join(true_conditions) or "-"


namespace_option = click.option(
    "--namespace", "-n", default="default", show_default=True, help="Namespace"
)
json_option = click.option("--json", "json_output", is_flag=True, help="Output as JSON")


@click.group()
def cli():
    """lbctl - Manage LeviathanBuild resources in the local cluster store."""
    pass


# ============================================================================
# LeviathanBuild Commands
# ============================================================================


@cli.command("apply")
@click.option(
    "--filename",
    "-f",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON manifest of a LeviathanBuild",
)
def apply(filename: Path):
    """Create or update a LeviathanBuild from a manifest."""
    try:
        resource = BuildResource.from_dict(json.loads(filename.read_text()))
    except (ValueError, KeyError) as e:
        fail(f"Invalid manifest {filename}: {e}")

    async def do_apply():
        store = get_store()
        await store.initialize()

        try:
            try:
                existing = await store.get_build_resource(
                    resource.namespace, resource.name
                )
            except NotFoundError:
                await store.create_build_resource(resource)
                click.echo(f"✓ leviathanbuild/{resource.name} created")
                return

            # Apply overwrites whatever is stored
            resource.metadata.resource_version = None
            updated = await store.update_build_resource(resource)
            if updated.metadata.resource_version == existing.metadata.resource_version:
                click.echo(f"✓ leviathanbuild/{resource.name} unchanged")
            else:
                click.echo(f"✓ leviathanbuild/{resource.name} configured")
        except ClusterError as e:
            fail(str(e))
        finally:
            await store.close()

    run_async(do_apply())


@cli.command("get")
@click.argument("name")
@namespace_option
@json_option
def get(name: str, namespace: str, json_output: bool):
    """Show a LeviathanBuild."""

    async def do_get():
        store = get_store()
        await store.initialize()

        try:
            resource = await store.get_build_resource(namespace, name)
        except NotFoundError as e:
            fail(str(e))
        finally:
            await store.close()

        if json_output:
            click.echo(json.dumps(resource.to_dict(), indent=2))
            return

        spec = resource.spec
        click.echo(f"Name:        {resource.name}")
        click.echo(f"Namespace:   {resource.namespace}")
        click.echo(f"Generation:  {resource.metadata.generation}")
        click.echo(f"Package:     {spec.package_name}")
        click.echo(f"Build type:  {spec.build_type}")
        click.echo(f"Source:      {spec.source_type} {spec.source_path or spec.source_url or ''}")
        click.echo(f"Active jobs: {', '.join(r.name for r in resource.status.active) or '-'}")
        last = resource.status.last_job_time
        click.echo(f"Last job:    {last.isoformat() if last else '-'}")
        for condition in resource.status.conditions:
            click.echo(
                f"  {condition.type:<10} {condition.status:<8} "
                f"{condition.reason}: {condition.message}"
            )

    run_async(do_get())


@cli.command("list")
@namespace_option
@click.option("--all-namespaces", "-A", is_flag=True, help="List across all namespaces")
@json_option
def list_resources(namespace: str, all_namespaces: bool, json_output: bool):
    """List LeviathanBuilds."""

    async def do_list():
        store = get_store()
        await store.initialize()

        try:
            resources = await store.list_build_resources(
                None if all_namespaces else namespace
            )
        finally:
            await store.close()

        if json_output:
            click.echo(json.dumps([r.to_dict() for r in resources], indent=2))
            return

        if not resources:
            click.echo("No LeviathanBuilds found")
            return

        click.echo(f"{'NAMESPACE':<16} {'NAME':<32} {'PACKAGE':<24} {'TYPE':<13} CONDITIONS")
        for r in resources:
            click.echo(
                f"{r.namespace:<16} {r.name:<32} {r.spec.package_name:<24} "
                f"{r.spec.build_type:<13} {condition_summary(r)}"
            )

    run_async(do_list())


@cli.command("delete")
@click.argument("name")
@namespace_option
def delete(name: str, namespace: str):
    """Delete a LeviathanBuild and, by cascade, its jobs."""

    async def do_delete():
        store = get_store()
        await store.initialize()

        try:
            await store.delete_build_resource(namespace, name)
            click.echo(f"✓ leviathanbuild/{name} deleted")
        except NotFoundError as e:
            fail(str(e))
        finally:
            await store.close()

    run_async(do_delete())


# ============================================================================
# Job Commands
# ============================================================================


@cli.command("jobs")
@namespace_option
@click.option("--all-namespaces", "-A", is_flag=True, help="List across all namespaces")
@json_option
def jobs(namespace: str, all_namespaces: bool, json_output: bool):
    """List jobs and their owners."""

    async def do_jobs():
        store = get_store()
        await store.initialize()

        try:
            job_list = await store.list_jobs(None if all_namespaces else namespace)
        finally:
            await store.close()

        if json_output:
            click.echo(json.dumps([j.to_dict() for j in job_list], indent=2))
            return

        if not job_list:
            click.echo("No jobs found")
            return

        click.echo(f"{'NAMESPACE':<16} {'NAME':<40} {'OWNER':<32} STATE")
        for job in job_list:
            owner = next(
                (ref.name for ref in job.metadata.owner_references if ref.controller),
                "-",
            )
            finished = job.status.finished_condition()
            state = finished.type if finished else "Active"
            click.echo(f"{job.namespace:<16} {job.name:<40} {owner:<32} {state}")

    run_async(do_jobs())


@cli.command("job-finish")
@click.argument("name")
@namespace_option
@click.option("--failed", is_flag=True, help="Mark the job as failed instead of complete")
@click.option("--reason", default=None, help="Condition reason")
@click.option("--message", default="", help="Condition message")
def job_finish(name: str, namespace: str, failed: bool, reason: str | None, message: str):
    """Mark a job as finished (the local store has no job runner)."""

    async def do_finish():
        store = get_store()
        await store.initialize()

        try:
            job = await store.get_job(namespace, name)
            now = datetime.now(UTC)
            condition_type = "Failed" if failed else "Complete"
            status = JobStatus(
                succeeded=0 if failed else 1,
                failed=1 if failed else 0,
                start_time=job.status.start_time or job.metadata.creation_timestamp,
                completion_time=None if failed else now,
                conditions=[
                    Condition(
                        type=condition_type,
                        status="True",
                        reason=reason or ("BackoffLimitExceeded" if failed else ""),
                        message=message,
                        last_transition_time=now,
                    )
                ],
            )
            await store.update_job_status(namespace, name, status)
            click.echo(f"✓ job/{name} marked {condition_type.lower()}")
        except NotFoundError as e:
            fail(str(e))
        finally:
            await store.close()

    run_async(do_finish())


@cli.command("events")
@namespace_option
@json_option
def events(namespace: str, json_output: bool):
    """List events recorded by the controller."""

    async def do_events():
        store = get_store()
        await store.initialize()

        try:
            event_list = await store.list_events(namespace)
        finally:
            await store.close()

        if json_output:
            click.echo(json.dumps(event_list, indent=2))
            return

        if not event_list:
            click.echo("No events found")
            return

        for event in event_list:
            involved = event["involvedObject"]
            click.echo(
                f"{event['timestamp']}  {event['type']:<8} {event['reason']:<20} "
                f"{involved['kind']}/{involved['name']}: {event['message']}"
            )

    run_async(do_events())


# ============================================================================
# Manifests
# ============================================================================


@cli.command("manifests")
@click.argument("kind", type=click.Choice(["crd", "rbac"]))
def manifests(kind: str):
    """Print the CRD or RBAC manifest as JSON (kubectl apply -f - accepts it)."""
    manifest = crd_manifest() if kind == "crd" else rbac_role_manifest()
    click.echo(json.dumps(manifest, indent=2))


if __name__ == "__main__":
    cli()
