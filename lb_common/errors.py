"""
Error taxonomy shared by the cluster clients and the controller.

Cluster errors are retryable by the dispatcher; construction errors are
terminal for the current reconcile pass.
"""


class ClusterError(Exception):
    """A cluster API call failed (network, server-side contention, ...)."""


class NotFoundError(ClusterError):
    """The requested object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class AlreadyExistsError(ClusterError):
    """An object with the same name already exists."""

    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {namespace}/{name} already exists")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class ConflictError(ClusterError):
    """A conditional write was rejected because the object changed."""


class ConstructionError(Exception):
    """A desired job could not be built from a resource."""


class AlreadyOwnedError(ConstructionError):
    """The object already has a different controller owner."""

    def __init__(self, object_name: str, owner_kind: str, owner_name: str):
        super().__init__(
            f"object {object_name} is already owned by another {owner_kind} "
            f"controller {owner_name}"
        )
        self.object_name = object_name
        self.owner_kind = owner_kind
        self.owner_name = owner_name


class InvalidObjectError(ClusterError):
    """A stored object could not be decoded into a model."""

    def __init__(self, kind: str, namespace: str, name: str, reason: str):
        super().__init__(f"{kind} {namespace}/{name} is invalid: {reason}")
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.reason = reason
