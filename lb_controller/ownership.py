"""
Controller owner references.

A job carries exactly one controller owner reference back to its
LeviathanBuild. The cluster's garbage collector uses it for cascade deletion
and the field index uses it to route job events to the owning resource.
"""

from lb_common.errors import AlreadyOwnedError, ConstructionError
from lb_common.models import BuildResource, Job, OwnerReference


def _group(api_version: str) -> str:
    return api_version.split("/", 1)[0] if "/" in api_version else ""


def _refers_to(ref: OwnerReference, owner: BuildResource) -> bool:
    return (
        _group(ref.api_version) == _group(owner.api_version)
        and ref.kind == owner.kind
        and ref.name == owner.name
    )


def get_controller_of(obj: BuildResource | Job) -> OwnerReference | None:
    """Return the object's controller owner reference, if it has one."""
    for ref in obj.metadata.owner_references:
        if ref.controller:
            return ref
    return None


def check_controller(owner: BuildResource, child: Job) -> None:
    """
    Verify that child is not controlled by an object other than owner.

    A child without any controller passes.

    Raises:
        AlreadyOwnedError: If child's controller is a different object
    """
    current = get_controller_of(child)
    if current is not None and not _refers_to(current, owner):
        raise AlreadyOwnedError(child.name, current.kind, current.name)


def set_controller_reference(owner: BuildResource, child: Job) -> None:
    """
    Make owner the controller of child.

    Sets an owner reference with controller and blockOwnerDeletion true,
    replacing any existing reference to the same owner.

    Raises:
        ConstructionError: If the owner cannot be referenced (no UID, or a
            different namespace than the child)
        AlreadyOwnedError: If child is already controlled by another object
    """
    if not owner.metadata.uid:
        raise ConstructionError(
            f"cannot reference {owner.kind} {owner.name}: owner has no uid"
        )
    if owner.namespace != child.namespace:
        raise ConstructionError(
            f"cross-namespace owner references are disallowed: owner "
            f"{owner.namespace}/{owner.name}, child {child.namespace}/{child.name}"
        )

    ref = OwnerReference(
        api_version=owner.api_version,
        kind=owner.kind,
        name=owner.name,
        uid=owner.metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )

    check_controller(owner, child)

    child.metadata.owner_references = [
        existing
        for existing in child.metadata.owner_references
        if not _refers_to(existing, owner)
    ]
    child.metadata.owner_references.append(ref)
