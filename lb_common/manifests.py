"""
Builders for the cluster manifests the controller needs installed.

crd_manifest() describes the LeviathanBuild schema (validation and defaults
are enforced by the API server, not by the controller). rbac_role_manifest()
lists the permissions the controller uses.
"""

from typing import Any

from .constants import (
    API_GROUP,
    API_VERSION,
    BUILD_TYPES,
    DEFAULT_BUILD_TYPE,
    DEFAULT_SOURCE_TYPE,
    KIND,
    LIST_KIND,
    MAX_ACTIVE_REFS,
    PLURAL,
    SINGULAR,
    SOURCE_TYPES,
)

CONTROLLER_ROLE_NAME = "leviathan-build-controller"


def _object_reference_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "apiVersion": {"type": "string"},
            "kind": {"type": "string"},
            "name": {"type": "string"},
            "namespace": {"type": "string"},
            "uid": {"type": "string"},
            "resourceVersion": {"type": "string"},
        },
        "x-kubernetes-map-type": "atomic",
    }


def _condition_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "required": ["type", "status", "reason", "message"],
        "properties": {
            "type": {"type": "string", "maxLength": 316},
            "status": {"type": "string", "enum": ["True", "False", "Unknown"]},
            "reason": {"type": "string", "maxLength": 1024},
            "message": {"type": "string", "maxLength": 32768},
            "lastTransitionTime": {"type": "string", "format": "date-time"},
            "observedGeneration": {"type": "integer", "format": "int64", "minimum": 0},
        },
    }


def crd_manifest() -> dict[str, Any]:
    """Return the CustomResourceDefinition for LeviathanBuild."""
    spec_schema = {
        "type": "object",
        "required": ["packageName"],
        "properties": {
            "packageName": {"type": "string", "minLength": 1},
            "buildType": {
                "type": "string",
                "enum": list(BUILD_TYPES),
                "default": DEFAULT_BUILD_TYPE,
            },
            "sourceType": {
                "type": "string",
                "enum": list(SOURCE_TYPES),
                "default": DEFAULT_SOURCE_TYPE,
            },
            "sourcePath": {"type": "string"},
            "sourceURL": {"type": "string"},
            "successfulJobsHistoryLimit": {
                "type": "integer",
                "format": "int32",
                "minimum": 0,
            },
            "failedJobsHistoryLimit": {
                "type": "integer",
                "format": "int32",
                "minimum": 0,
            },
            "jobTemplate": {
                "type": "object",
                "x-kubernetes-preserve-unknown-fields": True,
            },
        },
    }
    status_schema = {
        "type": "object",
        "properties": {
            "active": {
                "type": "array",
                "maxItems": MAX_ACTIVE_REFS,
                "items": _object_reference_schema(),
            },
            "lastJobTime": {"type": "string", "format": "date-time"},
            "conditions": {
                "type": "array",
                "items": _condition_schema(),
                "x-kubernetes-list-type": "map",
                "x-kubernetes-list-map-keys": ["type"],
            },
        },
    }
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": f"{PLURAL}.{API_GROUP}"},
        "spec": {
            "group": API_GROUP,
            "names": {
                "kind": KIND,
                "listKind": LIST_KIND,
                "plural": PLURAL,
                "singular": SINGULAR,
            },
            "scope": "Namespaced",
            "versions": [
                {
                    "name": API_VERSION,
                    "served": True,
                    "storage": True,
                    "subresources": {"status": {}},
                    "schema": {
                        "openAPIV3Schema": {
                            "type": "object",
                            "required": ["spec"],
                            "properties": {
                                "apiVersion": {"type": "string"},
                                "kind": {"type": "string"},
                                "metadata": {"type": "object"},
                                "spec": spec_schema,
                                "status": status_schema,
                            },
                        }
                    },
                }
            ],
        },
    }


def rbac_role_manifest() -> dict[str, Any]:
    """Return the ClusterRole granting the controller's permissions."""
    all_verbs = ["get", "list", "watch", "create", "update", "patch", "delete"]
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRole",
        "metadata": {"name": CONTROLLER_ROLE_NAME},
        "rules": [
            {"apiGroups": [API_GROUP], "resources": [PLURAL], "verbs": all_verbs},
            {
                "apiGroups": [API_GROUP],
                "resources": [f"{PLURAL}/status"],
                "verbs": ["get", "update", "patch"],
            },
            {
                "apiGroups": [API_GROUP],
                "resources": [f"{PLURAL}/finalizers"],
                "verbs": ["update"],
            },
            {"apiGroups": ["batch"], "resources": ["jobs"], "verbs": all_verbs},
            {"apiGroups": ["batch"], "resources": ["jobs/status"], "verbs": ["get"]},
            {"apiGroups": [""], "resources": ["events"], "verbs": ["create", "patch"]},
        ],
    }
