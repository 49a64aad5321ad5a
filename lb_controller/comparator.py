"""
Semantic comparison of job execution specs.

The API server fills in defaults and generated fields when it stores a job,
so a stored spec never matches its template textually. Both sides are
normalized the same way (defaults applied, generated fields dropped, empty
values removed, quantities parsed) and then compared structurally.
"""

import copy
from decimal import Decimal
from typing import Any

from kubernetes.utils import parse_quantity

# batch/v1 JobSpec defaults applied by the API server
JOB_SPEC_DEFAULTS: dict[str, Any] = {
    "backoffLimit": 6,
    "completionMode": "NonIndexed",
    "suspend": False,
    "manualSelector": False,
}

# core/v1 PodSpec defaults
POD_SPEC_DEFAULTS: dict[str, Any] = {
    "dnsPolicy": "ClusterFirst",
    "schedulerName": "default-scheduler",
    "terminationGracePeriodSeconds": 30,
    "enableServiceLinks": True,
}

# core/v1 Container defaults (imagePullPolicy depends on the image)
CONTAINER_DEFAULTS: dict[str, Any] = {
    "terminationMessagePath": "/dev/termination-log",
    "terminationMessagePolicy": "File",
}

# Labels the job controller adds to the pod template and selector
GENERATED_LABELS = (
    "controller-uid",
    "job-name",
    "batch.kubernetes.io/controller-uid",
    "batch.kubernetes.io/job-name",
)


def _default_pull_policy(image: str | None) -> str:
    if not image:
        return "IfNotPresent"
    if "@" in image:
        return "IfNotPresent"
    last = image.rsplit("/", 1)[-1]
    if ":" not in last or last.endswith(":latest"):
        return "Always"
    return "IfNotPresent"


def _normalize_quantities(resources: dict[str, Any]) -> None:
    for section in ("limits", "requests"):
        values = resources.get(section)
        if not isinstance(values, dict):
            continue
        for key, value in values.items():
            try:
                values[key] = Decimal(parse_quantity(value))
            except (ValueError, TypeError):
                pass


def _normalize_container(container: dict[str, Any]) -> None:
    for key, value in CONTAINER_DEFAULTS.items():
        container.setdefault(key, value)
    container.setdefault("imagePullPolicy", _default_pull_policy(container.get("image")))
    for port in container.get("ports") or []:
        port.setdefault("protocol", "TCP")
    if isinstance(container.get("resources"), dict):
        _normalize_quantities(container["resources"])


def _prune_empty(value: Any) -> Any:
    """Drop None, empty dicts and empty lists recursively."""
    if isinstance(value, dict):
        pruned = {}
        for key, item in value.items():
            item = _prune_empty(item)
            if item is None or item == {} or item == []:
                continue
            pruned[key] = item
        return pruned
    if isinstance(value, list):
        return [_prune_empty(item) for item in value]
    return value


def normalize_job_spec(spec: dict[str, Any]) -> dict[str, Any]:
    """Return a normalized deep copy of a job execution spec."""
    spec = copy.deepcopy(spec or {})

    for key, value in JOB_SPEC_DEFAULTS.items():
        spec.setdefault(key, value)
    # completions/parallelism default to 1 only when both are unset
    if spec.get("completions") is None and spec.get("parallelism") is None:
        spec["completions"] = 1
        spec["parallelism"] = 1
    elif spec.get("parallelism") is None:
        spec["parallelism"] = 1
    if "podFailurePolicy" not in spec:
        spec.setdefault("podReplacementPolicy", "TerminatingOrFailed")

    if not spec.get("manualSelector"):
        spec.pop("selector", None)

    template = spec.get("template")
    if isinstance(template, dict):
        metadata = template.get("metadata")
        if isinstance(metadata, dict) and not spec.get("manualSelector"):
            labels = metadata.get("labels") or {}
            for label in GENERATED_LABELS:
                labels.pop(label, None)
        pod_spec = template.get("spec")
        if isinstance(pod_spec, dict):
            for key, value in POD_SPEC_DEFAULTS.items():
                pod_spec.setdefault(key, value)
            for field_name in ("containers", "initContainers"):
                for container in pod_spec.get(field_name) or []:
                    if isinstance(container, dict):
                        _normalize_container(container)

    return _prune_empty(spec)


def job_specs_equal(existing: dict[str, Any], desired: dict[str, Any]) -> bool:
    """
    Compare two job execution specs semantically.

    Only the execution spec is compared; callers pass job.spec, never
    metadata, so identity fields cannot affect the result.
    """
    return normalize_job_spec(existing) == normalize_job_spec(desired)
