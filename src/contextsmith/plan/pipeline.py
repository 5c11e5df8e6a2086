"""Sequential build pipeline — run decomposed steps in dependency order.

The pipeline owns the mutable status of each GenerationStep:

  pending → building → completed | failed
  pending → skipped

``next_step()`` hands out the first pending step whose dependencies are all
completed or skipped.  A failed step stops the pipeline; skipping a step
lets its dependents proceed.  Each completed step's code becomes the
accumulated code threaded into the next step's prompt.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from contextsmith.plan.decomposer import DecompositionResult, GenerationStep, sequential_prompts

logger = logging.getLogger(__name__)

_DONE = ("completed", "skipped")


@dataclass
class StepState:
    step: GenerationStep
    task: str
    status: str = "pending"
    code: str = ""
    quality_score: float | None = None
    passed: bool | None = None
    error: str = ""
    started_at: float | None = None
    completed_at: float | None = None


@dataclass
class PipelineProgress:
    pipeline_id: str
    status: str
    total_steps: int
    completed_steps: int
    failed_steps: int
    skipped_steps: int
    current_step: str
    completion_percentage: int
    steps: list[dict] = field(default_factory=list)


class BuildPipeline:
    """Ordered build of one decomposed request.

    Args:
        project_id: Owning project.
        original_prompt: The request before decomposition.
        steps: Steps in build order.
        tasks: Per-step generation prompts; defaults to each step's prompt.
        clock: Time source for step timestamps.
    """

    def __init__(
        self,
        project_id: str,
        original_prompt: str,
        steps: list[GenerationStep],
        tasks: list[str] | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if tasks is not None and len(tasks) != len(steps):
            raise ValueError(f"{len(tasks)} task prompts for {len(steps)} steps")
        self.id = f"pipeline_{uuid.uuid4().hex[:12]}"
        self.project_id = project_id
        self.original_prompt = original_prompt
        self._clock = clock
        self.states = [
            StepState(step=s, task=tasks[i] if tasks is not None else s.prompt)
            for i, s in enumerate(steps)
        ]
        self.accumulated_code = ""
        self.started_at = clock()
        self.completed_at: float | None = None
        self._status = "idle"

    @classmethod
    def from_decomposition(
        cls,
        project_id: str,
        result: DecompositionResult,
        *,
        clock: Callable[[], float] = time.time,
    ) -> BuildPipeline:
        return cls(
            project_id,
            result.original_prompt,
            list(result.steps),
            sequential_prompts(result),
            clock=clock,
        )

    @property
    def status(self) -> str:
        return self._status

    def _state(self, step_id: int) -> StepState:
        for state in self.states:
            if state.step.id == step_id:
                return state
        raise KeyError(f"No step {step_id} in {self.id}")

    def _ready(self, state: StepState) -> bool:
        done = {s.step.id for s in self.states if s.status in _DONE}
        return all(dep in done for dep in state.step.depends_on)

    # ------------------------------------------------------------------
    # Step transitions
    # ------------------------------------------------------------------

    def next_step(self) -> StepState | None:
        """Start the first pending step whose dependencies are satisfied.

        Returns None when the pipeline has failed, finished, or is waiting on
        a step that is still building.
        """
        if self._status in ("failed", "completed"):
            return None
        for state in self.states:
            if state.status == "pending" and self._ready(state):
                state.status = "building"
                state.started_at = self._clock()
                self._status = "running"
                return state
        return None

    def complete_step(
        self,
        step_id: int,
        code: str,
        quality_score: float = 100.0,
        passed: bool = True,
    ) -> StepState:
        state = self._state(step_id)
        state.status = "completed"
        state.code = code
        state.quality_score = quality_score
        state.passed = passed
        state.completed_at = self._clock()
        self.accumulated_code = code

        logger.info(
            "Pipeline %s: step %d (%s) completed, quality %.0f",
            self.id,
            step_id,
            state.step.key,
            quality_score,
        )
        self._check_finished()
        return state

    def fail_step(self, step_id: int, error: str) -> StepState:
        state = self._state(step_id)
        state.status = "failed"
        state.error = error
        state.completed_at = self._clock()
        self._status = "failed"
        self.completed_at = state.completed_at
        logger.warning("Pipeline %s: step %d (%s) failed: %s", self.id, step_id, state.step.key, error)
        return state

    def skip_step(self, step_id: int) -> StepState:
        state = self._state(step_id)
        if state.status != "pending":
            raise ValueError(f"Step {step_id} is {state.status}; only pending steps can be skipped")
        state.status = "skipped"
        state.completed_at = self._clock()
        logger.info("Pipeline %s: step %d (%s) skipped", self.id, step_id, state.step.key)
        self._check_finished()
        return state

    def _check_finished(self) -> None:
        if self._status != "failed" and all(s.status in _DONE for s in self.states):
            self._status = "completed"
            self.completed_at = self._clock()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def progress(self) -> PipelineProgress:
        counts = {status: 0 for status in ("completed", "failed", "skipped")}
        for s in self.states:
            if s.status in counts:
                counts[s.status] += 1
        building = next((s for s in self.states if s.status == "building"), None)
        total = len(self.states)
        return PipelineProgress(
            pipeline_id=self.id,
            status=self._status,
            total_steps=total,
            completed_steps=counts["completed"],
            failed_steps=counts["failed"],
            skipped_steps=counts["skipped"],
            current_step=building.step.description if building else "N/A",
            completion_percentage=round(counts["completed"] / total * 100) if total else 100,
            steps=[
                {
                    "id": s.step.id,
                    "key": s.step.key,
                    "description": s.step.description,
                    "status": s.status,
                    "quality_score": s.quality_score,
                }
                for s in self.states
            ],
        )

    def step_prompt(self, state: StepState) -> str:
        """Prompt for *state* with completed and upcoming steps spelled out."""
        total = len(self.states)
        parts = [f"## Build Step {state.step.id} of {total}: {state.step.description}", ""]

        if self.accumulated_code:
            parts += [
                "You are building incrementally on existing code. The current code is provided as context.",
                "IMPORTANT: Return the COMPLETE updated code, not just the new additions.",
                "Preserve all existing functionality while adding the new feature.",
                "",
            ]

        completed = [s for s in self.states if s.status == "completed"]
        if completed:
            parts.append("Previously completed steps:")
            for s in completed:
                quality = f"{s.quality_score:.0f}" if s.quality_score is not None else "N/A"
                parts.append(f"- Step {s.step.id}: {s.step.description} (quality: {quality})")
            parts.append("")

        upcoming = [s for s in self.states if s.status == "pending" and s is not state]
        if upcoming:
            parts.append("Upcoming steps (do NOT implement these yet):")
            parts += [f"- Step {s.step.id}: {s.step.description}" for s in upcoming]
            parts.append("")

        parts.append(f"Current task: {state.task}")
        return "\n".join(parts)
