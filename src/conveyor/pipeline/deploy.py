"""Deploy targets and the pre-deploy gate capability they carry."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

from conveyor.approval.gate import ApprovalRequest
from conveyor.constants import DEFAULT_APPROVAL_MESSAGE
from conveyor.domain.errors import StageFailure
from conveyor.domain.models import Environment
from conveyor.pipeline.steps import Command, StepContext

logger = logging.getLogger(__name__)


class PreDeployGate(Protocol):
    def check(self, ctx: StepContext) -> None:
        """Return to allow the deploy; raise a ``StageFailure`` to block it."""
        ...


@dataclass(frozen=True, slots=True)
class Direct:
    def check(self, ctx: StepContext) -> None:
        return None


@dataclass(frozen=True, slots=True)
class RequiresApproval:
    message: str = DEFAULT_APPROVAL_MESSAGE
    timeout_seconds: float | None = None

    def check(self, ctx: StepContext) -> None:
        ctx.gate.require(
            ApprovalRequest(
                run_id=ctx.run.run_id,
                stage=ctx.stage,
                message=self.message,
                timeout_seconds=self.timeout_seconds,
            )
        )


@dataclass(frozen=True, slots=True)
class DeployTarget:
    environment: Environment
    gate: PreDeployGate = field(default_factory=Direct)


def default_deploy_targets(
    *,
    approval_message: str = DEFAULT_APPROVAL_MESSAGE,
    approval_timeout_seconds: float | None = None,
) -> dict[Environment, DeployTarget]:
    """Development and staging deploy directly; production waits for approval."""

    return {
        Environment.DEVELOPMENT: DeployTarget(Environment.DEVELOPMENT, Direct()),
        Environment.STAGING: DeployTarget(Environment.STAGING, Direct()),
        Environment.PRODUCTION: DeployTarget(
            Environment.PRODUCTION,
            RequiresApproval(message=approval_message, timeout_seconds=approval_timeout_seconds),
        ),
    }


@dataclass(frozen=True, slots=True)
class Deploy:
    """Pass the target's gate, then run the deploy command."""

    command: Command
    targets: Mapping[Environment, DeployTarget] = field(default_factory=default_deploy_targets)

    def describe(self) -> str:
        return "deploy"

    def run(self, ctx: StepContext) -> None:
        environment = ctx.run.parameters.environment
        target = self.targets.get(environment)
        if target is None:
            raise StageFailure(f"no deploy target configured for {environment.value}")

        logger.info(
            "deploying to %s",
            environment.value,
            extra={"pre_deploy_gate": type(target.gate).__name__},
        )
        target.gate.check(ctx)
        self.command.run(ctx)


__all__ = [
    "Deploy",
    "DeployTarget",
    "Direct",
    "PreDeployGate",
    "RequiresApproval",
    "default_deploy_targets",
]
