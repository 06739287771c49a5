"""The built-in CI definition: Checkout, Build, Test, Publish, Deploy."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from conveyor.config.schema import default_config
from conveyor.constants import (
    STAGE_BUILD,
    STAGE_CHECKOUT,
    STAGE_DEPLOY,
    STAGE_PUBLISH,
    STAGE_TEST,
)
from conveyor.pipeline.deploy import Deploy, default_deploy_targets
from conveyor.pipeline.stages import (
    HookTable,
    PipelineDefinition,
    Stage,
    deploy_enabled,
    run_tests_enabled,
)
from conveyor.pipeline.steps import (
    ArchiveResults,
    CheckoutRevision,
    CleanWorkspace,
    Command,
    Notify,
    WithCredentials,
)
from conveyor.reporting.notifications import NotificationTemplates

REGISTRY_USER_VAR = "REGISTRY_USER"
REGISTRY_PASSWORD_VAR = "REGISTRY_PASSWORD"


def build_ci_pipeline(config: Mapping[str, Any] | None = None) -> PipelineDefinition:
    """Assemble the default pipeline from a validated config (defaults when omitted)."""

    cfg = default_config() if config is None else config
    commands = cfg["commands"]
    approval = cfg["approval"]
    templates = notification_templates(cfg)
    git = commands["git"]
    container = commands["container"]

    checkout = Stage(
        name=STAGE_CHECKOUT,
        steps=(
            Command((git, "clone", "${REPOSITORY_URL}", "."), name="git-clone"),
            CheckoutRevision(git=git),
        ),
    )

    build = Stage(
        name=STAGE_BUILD,
        steps=(Command((container, "build", "-t", "${IMAGE_REF}", "."), name="image-build"),),
    )

    test = Stage(
        name=STAGE_TEST,
        guard=run_tests_enabled,
        steps=(
            Command(
                (
                    container,
                    "run",
                    "--rm",
                    "-v",
                    "${WORKSPACE}/${RESULTS_DIR}:/app/${RESULTS_DIR}",
                    "${IMAGE_REF}",
                    commands["test_script"],
                ),
                name="run-tests",
            ),
        ),
        hooks=HookTable(always=(ArchiveResults(pattern="*.xml"),)),
    )

    publish = Stage(
        name=STAGE_PUBLISH,
        steps=(
            WithCredentials(
                credential_id=cfg["credentials"]["registry_credential_id"],
                username_var=REGISTRY_USER_VAR,
                password_var=REGISTRY_PASSWORD_VAR,
                steps=(
                    Command(
                        (
                            container,
                            "login",
                            "--username",
                            "${REGISTRY_USER}",
                            "--password-stdin",
                            "${REGISTRY}",
                        ),
                        stdin="${REGISTRY_PASSWORD}",
                        name="registry-login",
                    ),
                    Command((container, "push", "${IMAGE_REF}"), name="push-versioned"),
                    Command(
                        (container, "tag", "${IMAGE_REF}", "${IMAGE}:latest"), name="tag-latest"
                    ),
                    Command((container, "push", "${IMAGE}:latest"), name="push-latest"),
                ),
            ),
        ),
    )

    deploy = Stage(
        name=STAGE_DEPLOY,
        guard=deploy_enabled,
        steps=(
            Deploy(
                command=Command(
                    (commands["deploy_script"], "${ENVIRONMENT}", "${IMAGE_REF}"),
                    name="deploy-script",
                ),
                targets=default_deploy_targets(
                    approval_message=approval["message"],
                    approval_timeout_seconds=float(approval["timeout_minutes"]) * 60.0,
                ),
            ),
        ),
    )

    return PipelineDefinition(
        name="ci",
        stages=(checkout, build, test, publish, deploy),
        hooks=HookTable(
            success=(Notify(templates=templates),),
            failure=(Notify(templates=templates),),
            always=(CleanWorkspace(),),
        ),
    )


def notification_templates(config: Mapping[str, Any]) -> NotificationTemplates:
    notifications = config["notifications"]
    defaults = NotificationTemplates()
    return NotificationTemplates(
        subject=notifications.get("subject_template", defaults.subject),
        body=notifications.get("body_template", defaults.body),
    )


def pipeline_variables(config: Mapping[str, Any]) -> dict[str, str]:
    """Static template variables contributed by the ``[pipeline]`` section."""

    pipeline = config["pipeline"]
    return {
        "REGISTRY": pipeline["registry"],
        "IMAGE_NAME": pipeline["image_name"],
    }


__all__ = [
    "REGISTRY_PASSWORD_VAR",
    "REGISTRY_USER_VAR",
    "build_ci_pipeline",
    "notification_templates",
    "pipeline_variables",
]
