"""stepflow: prompt workflows with audited, retrying step execution."""

from .contracts import (
    CreateWorkflowRequest,
    ExecutionJob,
    ModelConfig,
    RetryPolicy,
    StepDefinition,
    UpdateWorkflowRequest,
)
from .dispatch import ExecutionDispatcher
from .engine import ExecutionEngine
from .invoker import StepInvoker
from .persistence import get_repository
from .recovery import recover_stale_executions
from .templating import render
from .transports import get_transport
from .worker import ExecutionWorker

__version__ = "0.1.0"
__all__ = [
    "CreateWorkflowRequest",
    "ExecutionDispatcher",
    "ExecutionEngine",
    "ExecutionJob",
    "ExecutionWorker",
    "ModelConfig",
    "RetryPolicy",
    "StepDefinition",
    "StepInvoker",
    "UpdateWorkflowRequest",
    "get_repository",
    "get_transport",
    "recover_stale_executions",
    "render",
]
