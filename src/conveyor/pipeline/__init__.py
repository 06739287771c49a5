"""Pipeline definitions, steps, and the stage executor."""

from conveyor.pipeline.definition import build_ci_pipeline, pipeline_variables
from conveyor.pipeline.deploy import (
    Deploy,
    DeployTarget,
    Direct,
    PreDeployGate,
    RequiresApproval,
    default_deploy_targets,
)
from conveyor.pipeline.executor import ExecutorSettings, PipelineExecutor
from conveyor.pipeline.loader import PipelineDefinitionError, load_pipeline_definition
from conveyor.pipeline.parameters import (
    PARAMETER_DEFAULTS,
    defaults_from_config,
    parse_parameter_assignments,
    resolve_parameters,
)
from conveyor.pipeline.stages import HookTable, PipelineDefinition, Stage
from conveyor.pipeline.steps import (
    Action,
    ArchiveResults,
    CleanWorkspace,
    Command,
    Notify,
    Step,
    StepContext,
    WithCredentials,
)
from conveyor.pipeline.workspace import Workspace

__all__ = [
    "PARAMETER_DEFAULTS",
    "Action",
    "ArchiveResults",
    "CleanWorkspace",
    "Command",
    "Deploy",
    "DeployTarget",
    "Direct",
    "ExecutorSettings",
    "HookTable",
    "Notify",
    "PipelineDefinition",
    "PipelineDefinitionError",
    "PipelineExecutor",
    "PreDeployGate",
    "RequiresApproval",
    "Stage",
    "Step",
    "StepContext",
    "WithCredentials",
    "Workspace",
    "build_ci_pipeline",
    "default_deploy_targets",
    "defaults_from_config",
    "load_pipeline_definition",
    "parse_parameter_assignments",
    "pipeline_variables",
    "resolve_parameters",
]
