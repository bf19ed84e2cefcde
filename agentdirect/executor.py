"""Step executor: plan an utterance, run each step, report through the event bus."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from agentdirect.events import TaskEventBus
from agentdirect.faults import AgentFault, ExecutionFault, PlanningFault
from agentdirect.planner import PlannerOracle
from agentdirect.registry import ToolInvocationError, ToolNotFoundError, ToolRegistry
from agentdirect.schemas import (
    PREVIOUS_RESULT_PLACEHOLDER,
    DataPart,
    Message,
    MessageRole,
    Plan,
    PlanStep,
    TextPart,
)

logger = logging.getLogger(__name__)

# Anything shaped like a result reference, e.g. __STEP_1_RESULT_ID__
PLACEHOLDER_PATTERN = re.compile(r"^__[A-Z0-9_]*RESULT[A-Z0-9_]*__$")


@dataclass
class ExecutionContext:
    """What the executor needs to run one task."""

    task_id: str
    context_id: str
    utterance: str


@dataclass
class StepResult:
    """Result of one executed step."""

    tool: str
    result: Any


def _placeholders_in(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value] if PLACEHOLDER_PATTERN.match(value) else []
    if isinstance(value, dict):
        return [p for v in value.values() for p in _placeholders_in(v)]
    if isinstance(value, list):
        return [p for v in value for p in _placeholders_in(v)]
    return []


def validate_plan(plan: Plan, registry: ToolRegistry) -> list[PlanStep]:
    """Check an untrusted plan against the registry before anything runs.

    Raises:
        PlanningFault: unknown tool, a placeholder in step 1, or an
            unsupported placeholder form
    """
    steps = list(plan.steps)
    for index, step in enumerate(steps, 1):
        if step.tool_name not in registry:
            raise PlanningFault(f"Plan step {index} references unknown tool: {step.tool_name}")

        for placeholder in _placeholders_in(step.params):
            if placeholder != PREVIOUS_RESULT_PLACEHOLDER:
                raise PlanningFault(
                    f"Plan step {index} uses unsupported placeholder {placeholder}; "
                    f"only {PREVIOUS_RESULT_PLACEHOLDER} is allowed"
                )
            if index == 1:
                raise PlanningFault(
                    f"Plan step 1 uses {PREVIOUS_RESULT_PLACEHOLDER} but has no previous step"
                )
    return steps


def resolve_placeholders(params: dict[str, Any], previous_result: Any, step_number: int) -> dict[str, Any]:
    """Replace every placeholder value with the previous step's result ``id``.

    Only the immediately preceding result is ever consulted.
    """

    def resolve(value: Any) -> Any:
        if value == PREVIOUS_RESULT_PLACEHOLDER:
            if step_number == 1:
                raise PlanningFault(
                    f"Plan step 1 uses {PREVIOUS_RESULT_PLACEHOLDER} but has no previous step"
                )
            previous_id = previous_result.get("id") if isinstance(previous_result, dict) else None
            if previous_id is None:
                raise PlanningFault(
                    f"Step {step_number - 1} result has no id to substitute into step {step_number}"
                )
            return previous_id
        if isinstance(value, dict):
            return {k: resolve(v) for k, v in value.items()}
        if isinstance(value, list):
            return [resolve(v) for v in value]
        return value

    return resolve(params)


def agent_message(text: str, data: Any, context: ExecutionContext) -> Message:
    """Build an agent message with a text part and, when given, a data part."""
    parts: list[TextPart | DataPart] = [TextPart(text=text)]
    if data is not None:
        parts.append(DataPart(data=data))
    return Message(
        role=MessageRole.AGENT,
        parts=tuple(parts),
        task_id=context.task_id,
        context_id=context.context_id,
    )


def summarize_steps(results: list[StepResult]) -> str:
    if len(results) == 1:
        return f"Successfully executed {results[0].tool}"
    lines = [f"{i}. {r.tool}" for i, r in enumerate(results, 1)]
    return f"Successfully completed {len(results)} steps:\n" + "\n".join(lines)


class StepExecutor:
    """Turns one utterance into ordered tool invocations."""

    def __init__(self, registry: ToolRegistry, planner: PlannerOracle):
        self.registry = registry
        self.planner = planner

    async def execute(self, context: ExecutionContext, bus: TaskEventBus) -> None:
        """Run the task to a terminal state.

        Faults never escape: they end the task as failed with one error message.
        A cancellation seen between steps stops execution; an in-flight tool
        call is not interrupted and its late events are dropped by the bus.
        """
        logger.info(f"Executing task {context.task_id}: {context.utterance!r}")
        try:
            plan = await self.planner.plan(context.utterance, self.registry.list_tools())
            steps = validate_plan(plan, self.registry)
            logger.info(f"Task {context.task_id}: execution plan has {len(steps)} step(s)")

            results = await self._run_steps(steps, context, bus)
            if results is None:
                return

            data = results[0].result if len(results) == 1 else [
                {"tool": r.tool, "result": r.result} for r in results
            ]
            bus.publish(agent_message(summarize_steps(results), data, context))
            bus.finished()

        except AgentFault as e:
            logger.warning(f"Task {context.task_id} failed: {e}")
            bus.fail(str(e), agent_message(f"Error: {e}", None, context))

        except Exception as e:
            logger.error(f"Unexpected error in task {context.task_id}: {e}", exc_info=True)
            reason = f"Internal error: {e}"
            bus.fail(reason, agent_message(f"Error: {reason}", None, context))

    async def _run_steps(
        self,
        steps: list[PlanStep],
        context: ExecutionContext,
        bus: TaskEventBus,
    ) -> list[StepResult] | None:
        """Execute steps in order. Returns None if the task left ``working`` midway."""
        results: list[StepResult] = []
        previous_result: Any = None
        total = len(steps)

        for number, step in enumerate(steps, 1):
            if bus.is_terminal():
                logger.info(f"Task {context.task_id} is no longer working; stopping before step {number}")
                return None

            params = resolve_placeholders(step.params, previous_result, number)
            logger.info(f"Task {context.task_id} step {number}/{total}: {step.tool_name} {params}")

            try:
                result = await self.registry.invoke(step.tool_name, params)
            except (ToolNotFoundError, ToolInvocationError) as e:
                raise ExecutionFault(f"Step {number}/{total} ({step.tool_name}) failed: {e}") from e

            results.append(StepResult(tool=step.tool_name, result=result))
            previous_result = result

            if total > 1:
                bus.publish(
                    agent_message(
                        f"Step {number}/{total}: Successfully executed {step.tool_name}",
                        result,
                        context,
                    )
                )

        return results
