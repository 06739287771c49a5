"""Stable constants shared across pipeline components."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Runtime parameter names and built-in defaults.
PARAM_ENVIRONMENT: Final[str] = "ENVIRONMENT"
PARAM_RUN_TESTS: Final[str] = "RUN_TESTS"
PARAM_DEPLOY: Final[str] = "DEPLOY"
ENVIRONMENTS: Final[tuple[str, ...]] = ("development", "staging", "production")
DEFAULT_ENVIRONMENT: Final[str] = "staging"
DEFAULT_RUN_TESTS: Final[bool] = True
DEFAULT_DEPLOY: Final[bool] = True

# Accepted spellings for boolean parameters and env overrides.
TRUE_STRINGS: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
FALSE_STRINGS: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})

# Stage names of the built-in CI definition.
STAGE_CHECKOUT: Final[str] = "Checkout"
STAGE_BUILD: Final[str] = "Build"
STAGE_TEST: Final[str] = "Test"
STAGE_PUBLISH: Final[str] = "Publish"
STAGE_DEPLOY: Final[str] = "Deploy"
PIPELINE_STATUS_CONTEXT: Final[str] = "pipeline"

# Approval gate.
DEFAULT_APPROVAL_TIMEOUT_MINUTES: Final[int] = 60
DEFAULT_APPROVAL_MESSAGE: Final[str] = "Deploy to production?"

# Default runtime paths (relative to the config file unless overridden).
WORKSPACES_DIR: Final[PurePosixPath] = PurePosixPath(".conveyor/workspaces")
ARTIFACTS_DIR: Final[PurePosixPath] = PurePosixPath(".conveyor/artifacts")
APPROVALS_DIR: Final[PurePosixPath] = PurePosixPath(".conveyor/approvals")
LOGS_DIR: Final[PurePosixPath] = PurePosixPath(".conveyor/logs")
RESULTS_DIR: Final[str] = "test-results"

REDACTED_VALUE: Final[str] = "***REDACTED***"

__all__ = [
    "APPROVALS_DIR",
    "ARTIFACTS_DIR",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_APPROVAL_MESSAGE",
    "DEFAULT_APPROVAL_TIMEOUT_MINUTES",
    "DEFAULT_DEPLOY",
    "DEFAULT_ENVIRONMENT",
    "DEFAULT_RUN_TESTS",
    "ENVIRONMENTS",
    "FALSE_STRINGS",
    "LOGS_DIR",
    "PARAM_DEPLOY",
    "PARAM_ENVIRONMENT",
    "PARAM_RUN_TESTS",
    "PIPELINE_STATUS_CONTEXT",
    "REDACTED_VALUE",
    "RESULTS_DIR",
    "STAGE_BUILD",
    "STAGE_CHECKOUT",
    "STAGE_DEPLOY",
    "STAGE_PUBLISH",
    "STAGE_TEST",
    "TRUE_STRINGS",
    "WORKSPACES_DIR",
]
