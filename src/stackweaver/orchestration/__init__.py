"""Dependency-ordered execution, durable state and run results."""

from stackweaver.orchestration.engine import Executor
from stackweaver.orchestration.recorder import StateRecorder, state_path
from stackweaver.orchestration.results import (
    DeploymentResult,
    ResourceFailure,
    ResultCollector,
    RunReport,
    collect_result,
)
from stackweaver.orchestration.state import ExecutionState, ResourceState, ResourceStatus

__all__ = [
    "DeploymentResult",
    "ExecutionState",
    "Executor",
    "ResourceFailure",
    "ResourceState",
    "ResourceStatus",
    "ResultCollector",
    "RunReport",
    "StateRecorder",
    "collect_result",
    "state_path",
]
