"""Flow orchestration engine.

A flow is a declarative DAG of steps. The runner resolves it into waves,
evaluates step conditions, resolves and transforms step inputs, dispatches
each step (agent, gate, branch, consensus) and aggregates the output.
"""

from agent_flow_orchestrator.flows.conditions import ConditionEvaluator, ConditionResult
from agent_flow_orchestrator.flows.dependency_resolver import DependencyResolver
from agent_flow_orchestrator.flows.errors import (
    ConditionError,
    CycleDetectedError,
    FlowError,
    FlowExecutionError,
    FlowLoadError,
    FlowValidationError,
    MissingUpstreamResultError,
    StepInputError,
    TransformError,
    UnknownDependencyError,
)
from agent_flow_orchestrator.flows.events import FlowEventLogger, LoggingEventLogger
from agent_flow_orchestrator.flows.executor import AgentExecutor, LLMAgentExecutor
from agent_flow_orchestrator.flows.feedback_loop import FeedbackLoop, FeedbackLoopResult
from agent_flow_orchestrator.flows.gate_evaluator import (
    GateEvaluator,
    GateResult,
    JudgeInvoker,
    format_feedback_for_retry,
)
from agent_flow_orchestrator.flows.judge_evaluator import JudgeEvaluator
from agent_flow_orchestrator.flows.loader import load_flow, load_flows
from agent_flow_orchestrator.flows.models import (
    AgentResponse,
    FlowDefinition,
    FlowRequest,
    FlowRunResult,
    StepRequest,
    StepResult,
    parse_step,
)
from agent_flow_orchestrator.flows.reporter import build_flow_report
from agent_flow_orchestrator.flows.runner import FlowRunner
from agent_flow_orchestrator.flows.transforms import TransformPipeline
from agent_flow_orchestrator.flows.validator import FlowValidationReport, validate_flow

__all__ = [
    "AgentExecutor",
    "AgentResponse",
    "ConditionError",
    "ConditionEvaluator",
    "ConditionResult",
    "CycleDetectedError",
    "DependencyResolver",
    "FeedbackLoop",
    "FeedbackLoopResult",
    "FlowDefinition",
    "FlowError",
    "FlowEventLogger",
    "FlowExecutionError",
    "FlowLoadError",
    "FlowRequest",
    "FlowRunResult",
    "FlowRunner",
    "FlowValidationError",
    "FlowValidationReport",
    "GateEvaluator",
    "GateResult",
    "JudgeEvaluator",
    "JudgeInvoker",
    "LLMAgentExecutor",
    "LoggingEventLogger",
    "MissingUpstreamResultError",
    "StepInputError",
    "StepRequest",
    "StepResult",
    "TransformError",
    "TransformPipeline",
    "UnknownDependencyError",
    "build_flow_report",
    "format_feedback_for_retry",
    "load_flow",
    "load_flows",
    "parse_step",
    "validate_flow",
]
