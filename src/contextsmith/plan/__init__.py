"""Request planning — complexity scoring, decomposition and the build pipeline."""

from contextsmith.plan.decomposer import (
    CATEGORY_ORDER,
    ComplexityAnalysis,
    DecompositionResult,
    GenerationStep,
    PromptDecomposer,
    analyze_complexity,
    extract_features,
    sequential_prompts,
)
from contextsmith.plan.pipeline import BuildPipeline, PipelineProgress, StepState

__all__ = [
    "CATEGORY_ORDER",
    "BuildPipeline",
    "ComplexityAnalysis",
    "DecompositionResult",
    "GenerationStep",
    "PipelineProgress",
    "PromptDecomposer",
    "StepState",
    "analyze_complexity",
    "extract_features",
    "sequential_prompts",
]
