"""Step input resolution and the built-in input transforms."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from agent_flow_orchestrator.flows.errors import (
    MissingUpstreamResultError,
    StepInputError,
    TransformError,
)
from agent_flow_orchestrator.flows.models import FlowRequest, StepDefinition, StepResult

logger = logging.getLogger(__name__)

_TEMPLATE_VAR = re.compile(r"\{\{(\w+)\}\}")
_BLANK_LINE = re.compile(r"\n\s*\n")


def passthrough(text: str) -> str:
    return text


def merge_as_context(inputs: Sequence[str]) -> str:
    """Render each input as a numbered ``## Step n`` section."""

    return "\n\n".join(f"## Step {n}\n{body}" for n, body in enumerate(inputs, start=1))


def extract_section(text: str, section_name: str) -> str:
    """Return the body of the first ``## `` heading that mentions `section_name`.

    The body runs to the next ``## `` heading or the end of the document, with
    leading and trailing blank lines removed.
    """

    found = False
    body: list[str] = []
    for line in text.split("\n"):
        if line.startswith("## "):
            if found:
                break
            if section_name in line:
                found = True
            continue
        if found:
            body.append(line)

    if not found:
        raise TransformError(f"Section '{section_name}' not found")

    while body and not body[0].strip():
        body.pop(0)
    while body and not body[-1].strip():
        body.pop()
    return "\n".join(body)


def append_to_request(request: str, step_output: str) -> str:
    request_part = f"Original: {request}" if request else "Original:"
    output_part = f"Step Output: {step_output}" if step_output else "Step Output:"
    return f"{request_part}\n\n{output_part}"


def json_extract(text: str, field_path: str) -> Any:
    """Walk a dot path (``user.items.0.name``) through a JSON document."""

    try:
        current: Any = json.loads(text)
    except json.JSONDecodeError as e:
        raise TransformError(f"Invalid JSON input: {e}") from e

    for segment in field_path.split("."):
        if isinstance(current, list) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                raise TransformError(f"Field '{field_path}' not found")
            current = current[index]
        elif isinstance(current, dict) and segment in current:
            current = current[segment]
        else:
            raise TransformError(f"Field '{field_path}' not found")
    return current


def template_fill(template: str, context: Mapping[str, Any]) -> str:
    """Replace ``{{name}}`` placeholders; every placeholder must be provided."""

    for name in dict.fromkeys(_TEMPLATE_VAR.findall(template)):
        if name not in context:
            raise TransformError(f"Missing context variable: {name}")

    def _sub(match: re.Match[str]) -> str:
        value = context[match.group(1)]
        if isinstance(value, str):
            return value
        return json.dumps(value) if isinstance(value, (dict, list)) else str(value)

    return _TEMPLATE_VAR.sub(_sub, template)


ResolvedInput = str | list[str]


def _as_text(value: ResolvedInput) -> str:
    return value if isinstance(value, str) else "\n\n".join(value)


def _apply_passthrough(value: ResolvedInput, args: Any, user_prompt: str) -> str:
    return passthrough(_as_text(value))


def _apply_merge_as_context(value: ResolvedInput, args: Any, user_prompt: str) -> str:
    if args is not None:
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            raise TransformError("merge_as_context expects a list of strings as transform args")
        return merge_as_context(args)
    if isinstance(value, list):
        return merge_as_context(value)
    return merge_as_context([part for part in _BLANK_LINE.split(value) if part.strip()])


def _apply_extract_section(value: ResolvedInput, args: Any, user_prompt: str) -> str:
    if not isinstance(args, str) or not args:
        raise TransformError("extract_section requires a section name as transform args")
    return extract_section(_as_text(value), args)


def _apply_append_to_request(value: ResolvedInput, args: Any, user_prompt: str) -> str:
    return append_to_request(user_prompt, _as_text(value))


def _apply_json_extract(value: ResolvedInput, args: Any, user_prompt: str) -> str:
    if not isinstance(args, str) or not args:
        raise TransformError("json_extract requires a field path as transform args")
    extracted = json_extract(_as_text(value), args)
    return extracted if isinstance(extracted, str) else json.dumps(extracted)


def _apply_template_fill(value: ResolvedInput, args: Any, user_prompt: str) -> str:
    if not isinstance(args, Mapping):
        raise TransformError("template_fill requires a mapping of variables as transform args")
    return template_fill(_as_text(value), args)


_BUILTINS: dict[str, Callable[[ResolvedInput, Any, str], str]] = {
    "passthrough": _apply_passthrough,
    "merge_as_context": _apply_merge_as_context,
    "extract_section": _apply_extract_section,
    "append_to_request": _apply_append_to_request,
    "json_extract": _apply_json_extract,
    "template_fill": _apply_template_fill,
}

_ALIASES = {
    "mergeAsContext": "merge_as_context",
    "extractSection": "extract_section",
    "appendToRequest": "append_to_request",
    "jsonExtract": "json_extract",
    "templateFill": "template_fill",
}


def canonical_transform_name(name: str) -> str:
    """Map a transform name or its camelCase alias to the registered name."""

    canonical = _ALIASES.get(name, name)
    if canonical not in _BUILTINS:
        raise TransformError(f"Unknown transform: {name}")
    return canonical


def available_transforms() -> list[str]:
    return sorted(_BUILTINS)


class TransformPipeline:
    """Resolve a step's input text and run its transform."""

    def resolve_input(
        self,
        step: StepDefinition,
        request: FlowRequest,
        step_results: Mapping[str, StepResult],
    ) -> ResolvedInput:
        wiring = step.input

        if wiring.source == "request":
            return request.user_prompt

        if wiring.source == "step":
            if not wiring.step_id:
                raise StepInputError(f"Step '{step.id}' has source 'step' but no stepId")
            return self.upstream_content(step.id, wiring.step_id, step_results)

        if wiring.source == "aggregate":
            if not wiring.from_:
                raise StepInputError(f"Step '{step.id}' has source 'aggregate' but no 'from' steps")
            contents = [self.upstream_content(step.id, src, step_results) for src in wiring.from_]
            if len(contents) == 1:
                return contents[0]
            if wiring.transform in ("merge_as_context", "mergeAsContext"):
                return contents
            return "\n\n".join(contents)

        # feedback
        source_id = wiring.feedback_step_id or wiring.step_id
        if not source_id:
            raise StepInputError(
                f"Step '{step.id}' has source 'feedback' but no feedbackStepId or stepId"
            )
        upstream = step_results.get(source_id)
        if upstream is None or upstream.result is None:
            raise MissingUpstreamResultError(step.id, source_id)
        if not upstream.result.thought:
            raise StepInputError(f"Step '{step.id}' found no feedback recorded by '{source_id}'")
        return upstream.result.thought

    @staticmethod
    def upstream_content(
        step_id: str, upstream_id: str, step_results: Mapping[str, StepResult]
    ) -> str:
        upstream = step_results.get(upstream_id)
        if upstream is None or upstream.result is None:
            raise MissingUpstreamResultError(step_id, upstream_id)
        return upstream.result.content

    def apply(self, step: StepDefinition, value: ResolvedInput, user_prompt: str) -> str:
        transform = step.input.transform
        if callable(transform):
            try:
                out = transform(_as_text(value))
            except Exception as e:
                raise TransformError(f"Custom transform failed: {e}") from e
            if not isinstance(out, str):
                raise TransformError(
                    f"Custom transform returned {type(out).__name__}, expected str"
                )
            return out

        name = canonical_transform_name(transform)
        return _BUILTINS[name](value, step.input.transform_args, user_prompt)

    def prepare(
        self,
        step: StepDefinition,
        request: FlowRequest,
        step_results: Mapping[str, StepResult],
    ) -> str:
        """Resolve then transform; the returned text is the step's user prompt."""

        return self.apply(step, self.resolve_input(step, request, step_results), request.user_prompt)
