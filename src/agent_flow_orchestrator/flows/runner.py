"""Flow execution: wave-by-wave scheduling of steps.

A run resolves the step graph into waves once, then executes the waves in
order. Steps inside a wave run concurrently (bounded by
``settings.max_parallelism``); their results are recorded only after the whole
wave has settled, so every step sees exactly the results of earlier waves.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections import Counter
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from agent_flow_orchestrator.flows import events
from agent_flow_orchestrator.flows.conditions import ConditionEvaluator
from agent_flow_orchestrator.flows.dependency_resolver import DependencyResolver
from agent_flow_orchestrator.flows.errors import FlowError, FlowExecutionError
from agent_flow_orchestrator.flows.events import FlowEventLogger
from agent_flow_orchestrator.flows.executor import AgentExecutor
from agent_flow_orchestrator.flows.feedback_loop import ExecutorImprovementAgent, FeedbackLoop
from agent_flow_orchestrator.flows.gate_evaluator import GateEvaluator, format_feedback_for_retry
from agent_flow_orchestrator.flows.models import (
    AgentResponse,
    AgentStep,
    BranchStep,
    ConsensusStep,
    FlowDefinition,
    FlowRequest,
    FlowRunResult,
    GateStep,
    StepDefinition,
    StepRequest,
    StepResult,
)
from agent_flow_orchestrator.flows.transforms import TransformPipeline, merge_as_context

logger = logging.getLogger(__name__)

_CONSENSUS_PROMPT = """Original Request:
{request}

Candidate Responses:

{candidates}

Compare the candidate responses and produce a single consensus response.
Keep what the candidates agree on and resolve their disagreements explicitly."""


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class _RunState:
    """Mutable bookkeeping for one run; only the wave-settle loop writes it."""

    def __init__(self, flow_run_id: str, flow: FlowDefinition, request: FlowRequest) -> None:
        self.flow_run_id = flow_run_id
        self.flow = flow
        self.request = request
        self.step_results: dict[str, StepResult] = {}
        # branch target -> branch step id that did not select it
        self.unselected: dict[str, str] = {}
        self.selected: set[str] = set()

    def record_branch(self, step: BranchStep, result: StepResult) -> None:
        if not result.success or result.skipped or result.content is None:
            return
        chosen = result.content
        self.selected.add(chosen)
        for target in step.targets:
            if target != chosen:
                self.unselected.setdefault(target, step.id)

    def skipped_by_branch(self, step_id: str) -> str | None:
        if step_id in self.selected:
            return None
        return self.unselected.get(step_id)


class FlowRunner:
    """Execute a `FlowDefinition` against an `AgentExecutor`.

    Args:
        agent_executor: Runs agents for agent steps, gate retries, loop
            improvements and judge consensus.
        event_logger: Receives one structured event per lifecycle transition.
            Failures inside the logger are logged and otherwise ignored.
        gate_evaluator: Needed for ``gate`` steps and ``loop`` refinement.
    """

    def __init__(
        self,
        agent_executor: AgentExecutor,
        event_logger: FlowEventLogger | None = None,
        gate_evaluator: GateEvaluator | None = None,
        *,
        condition_evaluator: ConditionEvaluator | None = None,
        transform_pipeline: TransformPipeline | None = None,
    ) -> None:
        self.agent_executor = agent_executor
        self.event_logger = event_logger
        self.gate_evaluator = gate_evaluator
        self.conditions = condition_evaluator or ConditionEvaluator()
        self.transforms = transform_pipeline or TransformPipeline()

    def _emit(self, state: _RunState, event: str, **payload: Any) -> None:
        if self.event_logger is None:
            return
        body: dict[str, Any] = {"flow_run_id": state.flow_run_id, "flow_id": state.flow.id}
        if state.request.trace_id is not None:
            body["trace_id"] = state.request.trace_id
        if state.request.request_id is not None:
            body["request_id"] = state.request.request_id
        body.update(payload)
        try:
            self.event_logger.log(event, body)
        except Exception:
            logger.warning("Event logger failed", exc_info=True, extra={"event": event})

    async def execute(self, flow: FlowDefinition, request: FlowRequest) -> FlowRunResult:
        flow_run_id = uuid.uuid4().hex
        started_at = _utc_now()
        start = time.perf_counter()
        state = _RunState(flow_run_id, flow, request)

        if not flow.steps:
            raise FlowExecutionError(
                f"Flow '{flow.id}' has no steps", flow_run_id=flow_run_id
            )

        self._emit(
            state,
            events.FLOW_STARTED,
            flow_name=flow.name,
            version=flow.version,
            step_count=len(flow.steps),
            max_parallelism=flow.settings.max_parallelism,
            fail_fast=flow.settings.fail_fast,
            timeout=flow.settings.timeout,
        )

        self._emit(state, events.FLOW_DEPENDENCIES_RESOLVING)
        try:
            waves = DependencyResolver(flow.steps).group_into_waves()
        except FlowError as e:
            self._emit(state, events.FLOW_FAILED, error=str(e), stage="dependency-resolution")
            raise
        self._emit(state, events.FLOW_DEPENDENCIES_RESOLVED, waves=waves, wave_count=len(waves))

        semaphore = asyncio.Semaphore(flow.settings.max_parallelism)

        for wave_number, wave in enumerate(waves, start=1):
            self._emit(state, events.FLOW_WAVE_STARTED, wave=wave_number, step_ids=wave)
            outcomes = await asyncio.gather(
                *(self._execute_step(state, flow.step(step_id), semaphore) for step_id in wave),
                return_exceptions=True,
            )

            failures: list[StepResult] = []
            for step_id, outcome in zip(wave, outcomes, strict=True):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    now = _utc_now()
                    outcome = StepResult(
                        step_id=step_id,
                        success=False,
                        duration=0.0,
                        started_at=now,
                        completed_at=now,
                        error=str(outcome),
                    )
                state.step_results[step_id] = outcome
                step = flow.step(step_id)
                if isinstance(step, BranchStep):
                    state.record_branch(step, outcome)
                if not outcome.success:
                    failures.append(outcome)

            self._emit(
                state,
                events.FLOW_WAVE_COMPLETED,
                wave=wave_number,
                succeeded=sum(1 for s in wave if state.step_results[s].success),
                failed=len(failures),
            )

            if failures and flow.settings.fail_fast:
                first = failures[0]
                message = f"Step '{first.step_id}' failed: {first.error}"
                self._emit(
                    state,
                    events.FLOW_FAILED,
                    step_id=first.step_id,
                    error=first.error,
                    duration=(time.perf_counter() - start) * 1000,
                )
                raise FlowExecutionError(
                    message,
                    flow_run_id=flow_run_id,
                    step_id=first.step_id,
                    step_error=first.error,
                    step_results=state.step_results,
                )

        output = aggregate_output(flow, state.step_results)
        self._emit(
            state,
            events.FLOW_OUTPUT_AGGREGATED,
            output_from=flow.output_step_ids,
            format=flow.output.format,
            output_size=len(output),
        )

        success = all(r.success for r in state.step_results.values())
        duration = (time.perf_counter() - start) * 1000
        self._emit(
            state,
            events.FLOW_COMPLETED,
            success=success,
            duration=duration,
            steps_succeeded=sum(1 for r in state.step_results.values() if r.success),
            steps_failed=sum(1 for r in state.step_results.values() if not r.success),
        )
        return FlowRunResult(
            flow_run_id=flow_run_id,
            flow_id=flow.id,
            success=success,
            step_results=dict(state.step_results),
            output=output,
            duration=duration,
            started_at=started_at,
            completed_at=_utc_now(),
        )

    async def _execute_step(
        self,
        state: _RunState,
        step: StepDefinition,
        semaphore: asyncio.Semaphore,
    ) -> StepResult:
        started_at = _utc_now()
        start = time.perf_counter()

        def skipped(reason: str) -> StepResult:
            self._emit(state, events.FLOW_STEP_SKIPPED, step_id=step.id, reason=reason)
            return StepResult(
                step_id=step.id,
                success=True,
                skipped=True,
                skip_reason=reason,
                duration=(time.perf_counter() - start) * 1000,
                started_at=started_at,
                completed_at=_utc_now(),
            )

        branch_id = state.skipped_by_branch(step.id)
        if branch_id is not None:
            return skipped(f"Not selected by branch step '{branch_id}'")

        if step.condition:
            verdict = self.conditions.evaluate_step_condition(
                step, state.step_results, state.request, state.flow
            )
            self._emit(
                state,
                events.FLOW_STEP_CONDITION_EVALUATED,
                step_id=step.id,
                condition=step.condition,
                should_execute=verdict.should_execute,
                error=verdict.error,
                evaluation_time_ms=verdict.evaluation_time_ms,
            )
            if not verdict.should_execute:
                if verdict.error:
                    return skipped(f"Condition error: {verdict.error}")
                return skipped(f"Condition not met: {step.condition}")

        self._emit(state, events.FLOW_STEP_QUEUED, step_id=step.id)
        async with semaphore:
            self._emit(
                state,
                events.FLOW_STEP_STARTED,
                step_id=step.id,
                step_type=step.type,
                agent=step.agent or None,
                timeout=step.timeout,
            )
            try:
                user_prompt = self._prepare_input(state, step)
                response = await self._dispatch(state, step, user_prompt)
            except Exception as e:
                duration = (time.perf_counter() - start) * 1000
                self._emit(
                    state,
                    events.FLOW_STEP_FAILED,
                    step_id=step.id,
                    error=str(e),
                    error_type=type(e).__name__,
                    duration=duration,
                )
                return StepResult(
                    step_id=step.id,
                    success=False,
                    error=str(e),
                    duration=duration,
                    started_at=started_at,
                    completed_at=_utc_now(),
                )

        duration = (time.perf_counter() - start) * 1000
        self._emit(
            state,
            events.FLOW_STEP_COMPLETED,
            step_id=step.id,
            duration=duration,
            output_size=len(response.content),
        )
        return StepResult(
            step_id=step.id,
            success=True,
            result=response,
            duration=duration,
            started_at=started_at,
            completed_at=_utc_now(),
        )

    def _prepare_input(self, state: _RunState, step: StepDefinition) -> str:
        transform_start = time.perf_counter()
        resolved = self.transforms.resolve_input(step, state.request, state.step_results)
        prompt = self.transforms.apply(step, resolved, state.request.user_prompt)
        transform = step.input.transform
        self._emit(
            state,
            events.FLOW_STEP_TRANSFORM_APPLIED,
            step_id=step.id,
            source=step.input.source,
            transform=transform if isinstance(transform, str) else "custom",
            input_size=len(resolved) if isinstance(resolved, str) else sum(map(len, resolved)),
            output_size=len(prompt),
            duration=(time.perf_counter() - transform_start) * 1000,
        )
        return prompt

    def _step_request(self, state: _RunState, step: StepDefinition, user_prompt: str) -> StepRequest:
        context: dict[str, Any] = {
            "flow_run_id": state.flow_run_id,
            "flow_id": state.flow.id,
            "step_id": step.id,
            "retry": step.retry.model_dump(),
        }
        if step.timeout is not None:
            context["timeout"] = step.timeout
        return StepRequest(
            user_prompt=user_prompt,
            context=context,
            trace_id=state.request.trace_id,
            request_id=state.request.request_id,
        )

    async def _dispatch(self, state: _RunState, step: StepDefinition, user_prompt: str) -> AgentResponse:
        if isinstance(step, GateStep):
            return await self._run_gate(state, step, user_prompt)
        if isinstance(step, BranchStep):
            return self._run_branch(state, step)
        if isinstance(step, ConsensusStep):
            return await self._run_consensus(state, step, user_prompt)
        if isinstance(step, AgentStep):
            return await self._run_agent(state, step, user_prompt)
        raise FlowError(f"Step '{step.id}' has unsupported type '{step.type}'")

    async def _run_agent(self, state: _RunState, step: AgentStep, user_prompt: str) -> AgentResponse:
        response = await self.agent_executor.run(
            step.agent, self._step_request(state, step, user_prompt)
        )
        if step.loop is None:
            return response
        if self.gate_evaluator is None:
            logger.warning(
                "Step has a feedback loop but no gate evaluator is configured; skipping refinement",
                extra={"step_id": step.id},
            )
            return response

        improver_agent = step.agent
        if step.loop.back_to:
            improver_agent = state.flow.step(step.loop.back_to).agent or step.agent
        loop = FeedbackLoop(
            self.gate_evaluator, ExecutorImprovementAgent(self.agent_executor, improver_agent)
        )
        outcome = await loop.run(
            step.loop,
            response.content,
            state.request.user_prompt,
            evaluator=step.loop.evaluator or step.agent,
        )
        self._emit(
            state,
            events.FLOW_STEP_LOOP_COMPLETED,
            step_id=step.id,
            stop_reason=outcome.stop_reason,
            iterations=outcome.total_iterations,
            final_score=outcome.final_score,
        )
        return AgentResponse(
            content=outcome.final_content,
            thought=response.thought,
            raw={"agent": response.raw, "loop": outcome.to_json()},
        )

    async def _run_gate(self, state: _RunState, step: GateStep, content: str) -> AgentResponse:
        if self.gate_evaluator is None:
            raise FlowError(f"Gate step '{step.id}' requires a gate evaluator")

        config = step.evaluate
        attempt_index = 0
        while True:
            gate = await self.gate_evaluator.evaluate(
                config, content, state.request.user_prompt, attempt_index
            )
            self._emit(
                state,
                events.FLOW_STEP_GATE_EVALUATED,
                step_id=step.id,
                judge_agent=config.agent,
                score=gate.score,
                threshold=config.threshold,
                passed=gate.passed,
                action=gate.action,
                attempt=gate.attempts,
                error=gate.error,
            )
            feedback = format_feedback_for_retry(gate)

            if gate.action in ("passed", "continued-with-warning"):
                return AgentResponse(content=content, thought=feedback, raw=gate)

            if gate.action == "halted":
                detail = f"; judge error: {gate.error}" if gate.error else ""
                raise FlowError(
                    f"Quality gate '{step.id}' halted: score {gate.score:.2f} "
                    f"below threshold {config.threshold:.2f}{detail}"
                )

            content = await self._regenerate(state, step, content, feedback)
            attempt_index += 1

    async def _regenerate(
        self, state: _RunState, gate_step: GateStep, content: str, feedback: str
    ) -> str:
        source = gate_step.input
        if source.source != "step" or not source.step_id:
            raise FlowError(
                f"Quality gate '{gate_step.id}' requested a retry, but its input does not "
                "come from a single step that could be regenerated"
            )
        upstream = state.flow.step(source.step_id)
        if not upstream.agent:
            raise FlowError(
                f"Quality gate '{gate_step.id}' cannot regenerate '{upstream.id}': it has no agent"
            )
        upstream_prompt = self.transforms.prepare(upstream, state.request, state.step_results)
        response = await self.agent_executor.run(
            upstream.agent,
            self._step_request(state, upstream, f"{upstream_prompt}\n\n{feedback}"),
        )
        return response.content

    def _run_branch(self, state: _RunState, step: BranchStep) -> AgentResponse:
        context = self.conditions.build_context(state.step_results, state.request, state.flow)
        selected: str | None = None
        matched: str | None = None
        for branch in step.branches:
            verdict = self.conditions.evaluate(branch.condition, context)
            if verdict.error:
                logger.warning(
                    "Branch condition failed to evaluate",
                    extra={"step_id": step.id, "condition": branch.condition, "error": verdict.error},
                )
            if verdict.should_execute:
                selected = branch.goto
                matched = branch.condition
                break
        if selected is None:
            selected = step.default
        if selected is None:
            raise FlowError(f"Branch step '{step.id}' matched no condition and has no default")

        self._emit(
            state,
            events.FLOW_STEP_BRANCH_SELECTED,
            step_id=step.id,
            selected=selected,
            condition=matched,
        )
        return AgentResponse(
            content=selected,
            raw={"selected": selected, "condition": matched, "targets": step.targets},
        )

    async def _run_consensus(
        self, state: _RunState, step: ConsensusStep, user_prompt: str
    ) -> AgentResponse:
        sources = step.input.from_ or ([step.input.step_id] if step.input.step_id else [])
        sources = sources or step.depends_on
        if not sources:
            raise FlowError(f"Consensus step '{step.id}' has no candidate sources")
        candidates = [
            (src, self.transforms.upstream_content(step.id, src, state.step_results))
            for src in sources
        ]
        method = step.consensus.method

        if method == "judge":
            judge = step.consensus.judge or step.agent
            if not judge:
                raise FlowError(f"Consensus step '{step.id}' needs a judge agent")
            prompt = _CONSENSUS_PROMPT.format(
                request=state.request.user_prompt,
                candidates=merge_as_context([c for _, c in candidates]),
            )
            response = await self.agent_executor.run(
                judge, self._step_request(state, step, prompt)
            )
            return AgentResponse(
                content=response.content,
                thought=response.thought,
                raw={"method": method, "judge": judge, "sources": sources},
            )

        if method == "unanimous":
            distinct = {c.strip() for _, c in candidates}
            if len(distinct) != 1:
                raise FlowError(
                    f"Consensus step '{step.id}' is not unanimous: "
                    f"{len(distinct)} distinct candidates"
                )
            return AgentResponse(
                content=candidates[0][1], raw={"method": method, "sources": sources}
            )

        weights = step.consensus.weights or {}
        tally: Counter[str] = Counter()
        first_seen: dict[str, str] = {}
        for src, content in candidates:
            key = content.strip()
            first_seen.setdefault(key, content)
            tally[key] += weights.get(src, 1.0) if method == "weighted" else 1
        winner, votes = tally.most_common(1)[0]
        return AgentResponse(
            content=first_seen[winner],
            raw={"method": method, "votes": votes, "sources": sources},
        )


def aggregate_output(flow: FlowDefinition, step_results: Mapping[str, StepResult]) -> str:
    """Combine the contents of ``flow.output.from`` into the run's output."""

    ids = flow.output_step_ids
    if not ids:
        return ""

    def content_of(step_id: str) -> str:
        result = step_results.get(step_id)
        return (result.content if result is not None else None) or ""

    if len(ids) == 1:
        return content_of(ids[0])

    fmt = flow.output.format
    if fmt == "concat":
        return "\n".join(c for c in map(content_of, ids) if c)
    if fmt == "json":
        return json.dumps({sid: content_of(sid) for sid in ids if content_of(sid)})
    return "\n\n".join(f"## {sid}\n\n{content_of(sid)}" for sid in ids)
