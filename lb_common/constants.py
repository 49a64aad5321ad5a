"""
Process-wide constants for the LeviathanBuild API and its owned jobs.

These values are computed once at import time and never mutated.
"""

from datetime import UTC, datetime

API_GROUP = "jcrs.jcrs.dev"
API_VERSION = "v1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

KIND = "LeviathanBuild"
LIST_KIND = "LeviathanBuildList"
PLURAL = "leviathanbuilds"
SINGULAR = "leviathanbuild"

JOB_API_VERSION = "batch/v1"
JOB_KIND = "Job"

# Pseudo-field name the field index stores job owners under
JOB_OWNER_KEY = ".metadata.controller"

# Annotation carrying the nominal trigger time a job was synthesized for
SCHEDULED_TIME_ANNOTATION = f"{API_GROUP}/scheduled-at"

# Zero-valued nominal time (0001-01-01T00:00:00Z, Unix -62135596800)
ZERO_TIME = datetime(1, 1, 1, tzinfo=UTC)

BUILD_TYPES = ("Build", "BuildPublish", "Publish")
SOURCE_TYPES = ("Local", "Git", "S3")
DEFAULT_BUILD_TYPE = "Build"
DEFAULT_SOURCE_TYPE = "Local"

MAX_ACTIVE_REFS = 10

# Condition types reported on the resource status
COND_RUNNING = "Running"
COND_COMPLETE = "Complete"
COND_FAILED = "Failed"
