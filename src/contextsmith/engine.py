"""ContextEngine — one object wiring every component from a ContextsmithConfig.

``prepare()`` answers "what goes into the prompt for this request":
budgeted file selection, pruned history, the project memory block and the
decomposition plan.  ``build()`` goes further and drives a decomposed build
through the retry engine, one pipeline step at a time.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from contextsmith.config import ContextsmithConfig
from contextsmith.errors import CircuitOpenError, RetryExhaustedError
from contextsmith.estimator import TokenEstimator
from contextsmith.history.memory import ConversationMemory
from contextsmith.history.models import CompressedHistory, ConversationTurn
from contextsmith.history.pruner import ContextPruner, PruningConfig, PruningResult, Summarizer
from contextsmith.history.summarizer import ConversationSummarizer
from contextsmith.index.models import SourceFile
from contextsmith.index.retriever import CodeRetriever, as_source_files
from contextsmith.index.selector import ContextSelection, SelectionConfig, select_files
from contextsmith.plan.decomposer import DecompositionResult, PromptDecomposer
from contextsmith.plan.pipeline import BuildPipeline
from contextsmith.retry.engine import GenerationExecutor, SmartRetryEngine
from contextsmith.retry.failures import find_failure

logger = logging.getLogger(__name__)

_QUALITY_PER_RETRY = 25.0


@dataclass
class PreparedContext:
    project_id: str
    query: str
    selection: ContextSelection
    history: PruningResult
    memory: CompressedHistory
    memory_block: str
    plan: DecompositionResult

    def context_block(self) -> str:
        """Memory block followed by the selected files."""
        return "\n\n".join(p for p in (self.memory_block, self.selection.render()) if p)


class ContextEngine:
    """Facade over estimator, retriever, selector, pruner, memory, decomposer and retry.

    Any component may be passed in explicitly; the rest are built from
    *config*.  Unless ``embedding.offline`` is set, older history is
    summarized with ``generation.summary_model``.  Nothing here touches the
    network unless the retriever's embedding provider, the summarizer or the
    executor does.
    """

    def __init__(
        self,
        config: ContextsmithConfig | None = None,
        *,
        estimator: TokenEstimator | None = None,
        retriever: CodeRetriever | None = None,
        memory: ConversationMemory | None = None,
        pruner: ContextPruner | None = None,
        decomposer: PromptDecomposer | None = None,
        retry: SmartRetryEngine | None = None,
        summarizer: Summarizer | None = None,
    ) -> None:
        self.config = config or ContextsmithConfig()
        cfg = self.config
        self.estimator = estimator or TokenEstimator.from_config(cfg.estimator)
        self.retriever = retriever or CodeRetriever.from_config(cfg, self.estimator)
        self.memory = memory or ConversationMemory.from_config(cfg.memory, self.estimator)
        self.pruner = pruner or ContextPruner(self.estimator)
        self.decomposer = decomposer or PromptDecomposer.from_config(cfg.decomposition, self.estimator)
        self.retry = retry or SmartRetryEngine.from_config(cfg.retry)
        if summarizer is None and not cfg.embedding.offline:
            summarizer = ConversationSummarizer.from_config(cfg.generation)
        self.summarizer = summarizer
        self._pruning = PruningConfig.from_config(cfg.pruning)
        self._selection = SelectionConfig.from_config(cfg.selection)

    def prepare(
        self,
        project_id: str,
        query: str,
        files: Mapping[str, str] | Iterable[SourceFile] = (),
        turns: Sequence[ConversationTurn] = (),
        active_file: str | None = None,
    ) -> PreparedContext:
        selection = select_files(
            query,
            files,
            self.config.selection.token_budget,
            active_file=active_file,
            estimator=self.estimator,
            config=self._selection,
        )
        history = self.pruner.prune(turns, self._pruning, self.summarizer)
        memory = self.memory.compress(project_id, turns)
        plan = self.decomposer.decompose(query)

        logger.debug(
            "Prepared %s: %d file(s) / %d tokens, %d turn(s) → %d, %d step(s)",
            project_id,
            len(selection.files),
            selection.total_tokens,
            len(turns),
            len(history.turns),
            len(plan.steps),
        )
        return PreparedContext(
            project_id=project_id,
            query=query,
            selection=selection,
            history=history,
            memory=memory,
            memory_block=self.memory.render(memory),
            plan=plan,
        )

    def build(
        self,
        project_id: str,
        prompt: str,
        executor: GenerationExecutor,
        files: Mapping[str, str] | Iterable[SourceFile] = (),
        turns: Sequence[ConversationTurn] = (),
        *,
        system_prompt: str | None = None,
    ) -> BuildPipeline:
        """Decompose *prompt* and generate every step through the retry engine.

        A step whose retries are exhausted is marked failed and the build
        stops there; the returned pipeline reports it.  An open circuit
        fails the step and propagates CircuitOpenError.
        """
        plan = self.decomposer.decompose(prompt)
        pipeline = BuildPipeline.from_decomposition(project_id, plan)

        sources = as_source_files(files)
        if sources:
            self.retriever.index_project(project_id, sources)
        memory_block = self.memory.render(self.memory.compress(project_id, turns)) if turns else ""

        while True:
            state = pipeline.next_step()
            if state is None:
                break
            step = state.step

            parts = [memory_block]
            if sources:
                parts.append(self.retriever.context_for_generation(project_id, step.prompt))
            if pipeline.accumulated_code:
                parts.append(f"Current code:\n{pipeline.accumulated_code}")
            context = "\n\n".join(p for p in parts if p) or None

            try:
                outcome = self.retry.run(
                    executor,
                    pipeline.step_prompt(state),
                    system_prompt=system_prompt,
                    context=context,
                    validate=lambda output, _prompt: find_failure(output, step.prompt),
                )
            except RetryExhaustedError as exc:
                pipeline.fail_step(step.id, str(exc))
                break
            except CircuitOpenError as exc:
                pipeline.fail_step(step.id, str(exc))
                raise

            retries = outcome.attempts - 1
            pipeline.complete_step(
                step.id,
                outcome.output,
                quality_score=max(0.0, 100.0 - _QUALITY_PER_RETRY * retries),
                passed=True,
            )

        logger.info("Build %s for %s finished: %s", pipeline.id, project_id, pipeline.status)
        return pipeline

    def close(self) -> None:
        self.retriever.close()

    def __enter__(self) -> ContextEngine:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
