"""Prompt complexity analyzer and decomposer.

A build request that asks for too much at once ("a shop with login, cart,
checkout and an admin dashboard") overflows small context windows and makes
models drop features.  The decomposer scores a prompt, and above a threshold
splits it into ordered, dependency-linked GenerationSteps:

  1. complexity score = weighted regex signals + 2 per distinct feature
     + small bonuses for long prompts
  2. features extracted from a (pattern, category, key, label) table
  3. steps ordered by category:
       layout → navigation → auth → data → forms → logic → api → styling
     with a foundation layout step synthesized when none was requested
  4. optional context-window pass: split oversized steps, merge small ones

Everything is rule-table driven; no model call is made here.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, replace

from contextsmith.estimator import TokenEstimator, default_estimator

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# Rule tables
# ------------------------------------------------------------------

CATEGORY_ORDER: tuple[str, ...] = (
    "layout",
    "navigation",
    "auth",
    "data",
    "forms",
    "logic",
    "api",
    "styling",
)

_FOUNDATION_CATEGORIES = frozenset(["layout", "navigation"])
_GATED_CATEGORIES = frozenset(["auth", "api"])

_CATEGORY_COMPLEXITY: dict[str, str] = {
    "layout": "low",
    "navigation": "low",
    "styling": "low",
    "data": "medium",
    "forms": "medium",
    "logic": "medium",
    "auth": "high",
    "api": "high",
}

_CATEGORY_MULTIPLIER: dict[str, float] = {
    "layout": 1.2,
    "navigation": 1.3,
    "data": 1.5,
    "forms": 1.4,
    "logic": 1.6,
    "auth": 2.0,
    "api": 1.8,
    "styling": 1.0,
}

_COMPLEXITY_MULTIPLIER: dict[str, float] = {"low": 1.0, "medium": 1.5, "high": 2.5}


@dataclass(frozen=True)
class ComplexitySignal:
    pattern: re.Pattern[str]
    weight: float
    category: str


def _signal(pattern: str, weight: float, category: str) -> ComplexitySignal:
    return ComplexitySignal(re.compile(pattern, re.IGNORECASE), weight, category)


COMPLEXITY_SIGNALS: tuple[ComplexitySignal, ...] = (
    _signal(r"\b(?:and|also|plus|with|including|additionally)\b", 1, "conjunction"),
    _signal(r"\b(?:login|signup|register|auth|authentication|oauth)\b", 3, "auth"),
    _signal(r"\b(?:database|crud|api|endpoint|backend|server)\b", 3, "api"),
    _signal(r"\b(?:dashboard|admin|analytics|chart|graph|metrics)\b", 3, "data"),
    _signal(r"\b(?:payment|stripe|checkout|subscription|billing)\b", 4, "api"),
    _signal(r"\b(?:upload|download|file|image|media|storage)\b", 2, "api"),
    _signal(r"\b(?:responsive|mobile|tablet|desktop|breakpoint)\b", 1, "styling"),
    _signal(r"\b(?:dark\s*mode|theme|light\s*mode|toggle)\b", 1, "styling"),
    _signal(r"\b(?:form|input|validation|submit|select|dropdown)\b", 2, "forms"),
    _signal(r"\b(?:page|route|navigate|link|sidebar|navbar|menu)\b", 2, "navigation"),
    _signal(r"\b(?:search|filter|sort|pagination|infinite\s*scroll)\b", 2, "logic"),
    _signal(r"\b(?:notification|toast|alert|modal|dialog|popup)\b", 1, "logic"),
    _signal(r"\b(?:drag|drop|sortable|reorder|kanban)\b", 3, "logic"),
    _signal(r"\b(?:real\s*time|websocket|socket|live|streaming)\b", 4, "api"),
    _signal(r"\b(?:animation|transition|parallax|smooth|fade)\b", 1, "styling"),
    _signal(r"\b(?:table|list|grid|card|gallery)\b", 1, "layout"),
    _signal(r"\b(?:i18n|internationalization|localization|multi\w*\s*language)\b", 3, "logic"),
    _signal(r"\b(?:test|testing|unit\s*test|e2e)\b", 2, "logic"),
    _signal(r"\b(?:email|sms|push)\b", 2, "api"),
    _signal(r"\b(?:map|location|geolocation|gps)\b", 3, "api"),
    _signal(r"\b(?:then|after\s+that|next|finally|lastly|first|second|third)\b", 1.5, "sequence"),
    _signal(r"\b(?:separate|different|multiple|several|various|each)\b", 1, "multiplicity"),
    _signal(r"\b(?:integrate|connect|sync|communicate|share\s+data)\b", 2, "integration"),
)


@dataclass(frozen=True)
class FeatureRule:
    pattern: re.Pattern[str]
    category: str
    key: str
    label: str


def _feature(pattern: str, category: str, key: str, label: str) -> FeatureRule:
    return FeatureRule(re.compile(pattern, re.IGNORECASE), category, key, label)


FEATURE_RULES: tuple[FeatureRule, ...] = (
    _feature(
        r"\b(?:user\s+)?(?:login|log\s*in|signup|sign\s*up|sign\s*in|auth(?:entication)?|registration)\b",
        "auth", "auth", "Authentication system",
    ),
    _feature(r"\bdashboard\b(?:\s+(?:with|for|showing))?", "data", "dashboard", "Dashboard with data display"),
    _feature(r"\b(?:nav(?:bar|igation)?|sidebar|header\s*menu|top\s*menu)\b", "navigation", "navigation", "Navigation structure"),
    _feature(r"\b(?:contact\s+form|survey|questionnaire|registration\s+form|input\s+form)\b", "forms", "forms", "Form component"),
    _feature(r"\b(?:search|filter)(?:\s*and\s*(?:filter|sort|search))?\b", "logic", "search-filter", "Search/filter functionality"),
    _feature(r"\b(?:rest\s*api|api|backend|server|endpoints?)\b", "api", "api", "API endpoints"),
    _feature(r"\b(?:stripe|payments?|checkout|billing|subscriptions?)\b", "api", "payments", "Payment integration"),
    _feature(r"\b(?:product\s+)?(?:catalog|listing|gallery|collection)\b", "layout", "catalog", "Product catalog/listing"),
    _feature(r"\bshopping\s*cart\b", "logic", "cart", "Shopping cart"),
    _feature(r"\border\s*(?:history|tracking|management)\b", "data", "orders", "Order management"),
    _feature(r"\badmin\s*(?:panel|dashboard|page|section)\b", "data", "admin", "Admin panel"),
    _feature(r"\b(?:dark\s*mode|theme\s*toggle|light\s*(?:and|/)\s*dark)\b", "styling", "theme", "Dark mode / theme support"),
    _feature(r"\b(?:drag|drop|sortable|reorder|kanban)\b", "logic", "drag-drop", "Drag and drop functionality"),
    _feature(r"\b(?:charts?|graphs?|visuali[sz]ation|analytics)\b", "data", "charts", "Data visualization"),
    _feature(r"\b(?:email|sms)\s*(?:notifications?|alerts?|updates?)\b", "api", "notifications", "Email/SMS notifications"),
    _feature(r"\b(?:(?:file|image|photo)\s*(?:uploads?|picker|selector|management)|uploads?)\b", "api", "uploads", "File upload handling"),
    _feature(r"\b(?:real\s*-?\s*time|live\s*updates?|websockets?)\b", "api", "realtime", "Real-time updates"),
    _feature(r"\b(?:user\s+)?(?:profile|account\s+settings|settings\s+page)\b", "forms", "profile", "User profile/settings"),
    _feature(r"\b(?:comments?|reviews?|ratings?)\s*(?:system|section)?\b", "logic", "comments", "Comments/reviews system"),
    _feature(r"\b(?:blog|articles?|content\s+(?:system|management|editor))\b", "data", "content", "Content management"),
    _feature(
        r"\b(?:to-?dos?|tasks?\s+(?:list|management|manager|tracker|tracking)|completed\s+tasks?)\b",
        "logic", "todo-management", "Todo/task management",
    ),
)

DECOMPOSITION_THRESHOLD = 8
OPTIMIZATION_THRESHOLD = 15
DEFAULT_CONTEXT_WINDOW = 8_192

_SPLIT_RATIO = 0.7
_MERGE_RATIO = 0.5

_FOUNDATION_LABEL = "Application layout"
_FOUNDATION_PROMPT = (
    "Application layout: the page shell, header and main content area "
    "that the remaining features plug into."
)

# ------------------------------------------------------------------
# Result types
# ------------------------------------------------------------------


@dataclass(frozen=True)
class Feature:
    category: str
    key: str
    label: str
    match: str


@dataclass(frozen=True)
class ComplexityAnalysis:
    score: float
    categories: tuple[str, ...]
    features: tuple[Feature, ...]


@dataclass(frozen=True)
class GenerationStep:
    """One unit of a decomposed build.

    Attributes:
        id: 1-based position in the step sequence.
        key: Stable feature slug ('layout', 'auth', 'dashboard', ...).
        category: One of CATEGORY_ORDER, or 'general' for an undecomposed prompt.
        depends_on: Ids of steps that must complete first.
        complexity: 'low', 'medium' or 'high'.
    """

    id: int
    key: str
    description: str
    prompt: str
    category: str
    depends_on: tuple[int, ...] = ()
    complexity: str = "medium"


@dataclass
class DecompositionResult:
    decomposed: bool
    score: float
    original_prompt: str
    steps: list[GenerationStep]
    reason: str
    categories: tuple[str, ...] = ()
    estimated_token_savings: int = 0
    optimized: bool = False
    context_window: int | None = None

    @property
    def step_keys(self) -> list[str]:
        return [s.key for s in self.steps]


# ------------------------------------------------------------------
# Pure helpers
# ------------------------------------------------------------------


def count_sentences(prompt: str) -> int:
    return sum(1 for s in re.split(r"[.!?\n]", prompt) if len(s.strip()) > 10)


def extract_features(prompt: str) -> list[Feature]:
    """First match of every feature rule, deduplicated by key, in table order."""
    features: list[Feature] = []
    seen: set[str] = set()
    for rule in FEATURE_RULES:
        if rule.key in seen:
            continue
        m = rule.pattern.search(prompt)
        if m:
            seen.add(rule.key)
            features.append(Feature(rule.category, rule.key, rule.label, m.group(0)))
    return features


def analyze_complexity(prompt: str) -> ComplexityAnalysis:
    score = 0.0
    categories: list[str] = []
    for signal in COMPLEXITY_SIGNALS:
        hits = len(signal.pattern.findall(prompt))
        if hits:
            score += hits * signal.weight
            if signal.category not in categories:
                categories.append(signal.category)

    features = extract_features(prompt)
    score += len(features) * 2

    sentences = count_sentences(prompt)
    if sentences > 3:
        score += sentences - 3
    words = len(prompt.split())
    if words > 50:
        score += (words - 50) // 20

    return ComplexityAnalysis(score=score, categories=tuple(categories), features=tuple(features))


def _relevant_sentence(prompt: str, match: str) -> str:
    """The sentence of *prompt* that contains *match*."""
    idx = prompt.lower().find(match.lower())
    if idx == -1:
        return match
    start = prompt.rfind(".", 0, idx) + 1
    end = prompt.find(".", idx + len(match))
    end = len(prompt) if end == -1 else end + 1
    return prompt[start:end].strip() or match


def _with_gated_edges(steps: list[GenerationStep]) -> list[GenerationStep]:
    """Add the auth/api → first layout/navigation dependency edge."""
    foundation = next((s.id for s in steps if s.category in _FOUNDATION_CATEGORIES), None)
    if foundation is None:
        return steps
    out = []
    for step in steps:
        if (
            step.category in _GATED_CATEGORIES
            and step.id != foundation
            and foundation not in step.depends_on
            and foundation < step.id
        ):
            step = replace(step, depends_on=step.depends_on + (foundation,))
        out.append(step)
    return out


def _renumber(steps: list[GenerationStep]) -> list[GenerationStep]:
    linear = [
        replace(step, id=i + 1, depends_on=(i,) if i > 0 else ())
        for i, step in enumerate(steps)
    ]
    return _with_gated_edges(linear)


# ------------------------------------------------------------------
# Decomposer
# ------------------------------------------------------------------


class PromptDecomposer:
    """Score prompts and split oversized ones into GenerationSteps.

    Args:
        estimator: Token estimator for step-size estimates.
        threshold: Minimum complexity score to decompose.
        optimize: Run the context-window pass on highly complex prompts.
        optimize_threshold: Minimum score for the context-window pass.
        context_window: Token window steps are sized against.
    """

    def __init__(
        self,
        estimator: TokenEstimator | None = None,
        *,
        threshold: float = DECOMPOSITION_THRESHOLD,
        optimize: bool = True,
        optimize_threshold: float = OPTIMIZATION_THRESHOLD,
        context_window: int = DEFAULT_CONTEXT_WINDOW,
    ) -> None:
        self._estimator = estimator or default_estimator()
        self.threshold = threshold
        self.optimize = optimize
        self.optimize_threshold = optimize_threshold
        self.context_window = context_window

    @classmethod
    def from_config(cls, cfg, estimator: TokenEstimator | None = None) -> PromptDecomposer:
        """Build from a ``DecompositionCfg`` section."""
        return cls(
            estimator,
            threshold=cfg.threshold,
            optimize=cfg.optimize,
            optimize_threshold=cfg.optimize_threshold,
            context_window=cfg.context_window,
        )

    def analyze(self, prompt: str) -> ComplexityAnalysis:
        return analyze_complexity(prompt)

    def decompose(
        self,
        prompt: str,
        *,
        optimize: bool | None = None,
        context_window: int | None = None,
    ) -> DecompositionResult:
        """Split *prompt* into ordered steps, or explain why it stays whole."""
        analysis = self.analyze(prompt)

        if analysis.score < self.threshold:
            return self._single_step(
                prompt,
                analysis,
                f"Complexity score {analysis.score:g} below threshold {self.threshold:g}",
            )
        if len(analysis.features) <= 1:
            return self._single_step(
                prompt, analysis, "Only one feature detected, no decomposition needed"
            )

        steps = self._build_steps(prompt, list(analysis.features))
        result = DecompositionResult(
            decomposed=True,
            score=analysis.score,
            original_prompt=prompt,
            steps=steps,
            reason=f"Complexity score {analysis.score:g} with {len(steps)} distinct features",
            categories=analysis.categories,
            estimated_token_savings=int(len(prompt) * 0.3 * (len(steps) - 1)),
        )
        logger.info(
            "Decomposed prompt (score %g) into %d steps: %s",
            analysis.score,
            len(steps),
            ", ".join(result.step_keys),
        )

        run_optimizer = self.optimize if optimize is None else optimize
        if run_optimizer and analysis.score >= self.optimize_threshold:
            result = self.optimize_for_context_window(result, context_window or self.context_window)
        return result

    def _single_step(
        self,
        prompt: str,
        analysis: ComplexityAnalysis,
        reason: str,
    ) -> DecompositionResult:
        step = GenerationStep(
            id=1,
            key="general",
            description="Complete request",
            prompt=prompt,
            category="general",
        )
        return DecompositionResult(
            decomposed=False,
            score=analysis.score,
            original_prompt=prompt,
            steps=[step],
            reason=reason,
            categories=analysis.categories,
        )

    def _build_steps(self, prompt: str, features: list[Feature]) -> list[GenerationStep]:
        features.sort(key=lambda f: CATEGORY_ORDER.index(f.category))
        steps: list[GenerationStep] = []

        if not any(f.category in _FOUNDATION_CATEGORIES for f in features):
            steps.append(
                GenerationStep(
                    id=1,
                    key="layout",
                    description=_FOUNDATION_LABEL,
                    prompt=_FOUNDATION_PROMPT,
                    category="layout",
                    complexity=_CATEGORY_COMPLEXITY["layout"],
                )
            )

        for feature in features:
            step_id = len(steps) + 1
            steps.append(
                GenerationStep(
                    id=step_id,
                    key=feature.key,
                    description=feature.label,
                    prompt=f"{feature.label}: {_relevant_sentence(prompt, feature.match)}",
                    category=feature.category,
                    depends_on=(step_id - 1,) if step_id > 1 else (),
                    complexity=_CATEGORY_COMPLEXITY[feature.category],
                )
            )
        return _with_gated_edges(steps)

    # ------------------------------------------------------------------
    # Context-window optimization
    # ------------------------------------------------------------------

    def estimate_step_tokens(self, step: GenerationStep) -> int:
        """Expected size of the code a step expands into, in tokens."""
        base = self._estimator.estimate(step.prompt)
        multiplier = _CATEGORY_MULTIPLIER.get(step.category, 1.3) * _COMPLEXITY_MULTIPLIER.get(
            step.complexity, 1.5
        )
        return math.ceil(base * multiplier)

    def optimize_for_context_window(
        self,
        result: DecompositionResult,
        context_window: int = DEFAULT_CONTEXT_WINDOW,
    ) -> DecompositionResult:
        """Split steps above 70% of the window; merge runs of small low-complexity steps."""
        if not result.decomposed:
            return result

        split_limit = context_window * _SPLIT_RATIO
        merge_limit = context_window * _MERGE_RATIO
        optimized: list[GenerationStep] = []
        buffer: list[GenerationStep] = []
        buffer_tokens = 0

        def flush() -> None:
            nonlocal buffer, buffer_tokens
            if buffer:
                optimized.append(_merge(buffer))
            buffer, buffer_tokens = [], 0

        for step in result.steps:
            tokens = self.estimate_step_tokens(step)
            if tokens > split_limit:
                flush()
                optimized.extend(_split(step))
            elif (
                buffer
                and step.complexity == "low"
                and buffer[-1].complexity == "low"
                and buffer_tokens + tokens < merge_limit
            ):
                buffer.append(step)
                buffer_tokens += tokens
            else:
                flush()
                buffer, buffer_tokens = [step], tokens
        flush()

        steps = _renumber(optimized)
        logger.debug(
            "Context window pass (%d tokens): %d → %d steps",
            context_window,
            len(result.steps),
            len(steps),
        )
        return replace(
            result,
            steps=steps,
            optimized=True,
            context_window=context_window,
            estimated_token_savings=int(result.estimated_token_savings * 1.2),
            reason=f"{result.reason} (optimized for {context_window} token context window)",
        )

    # ------------------------------------------------------------------
    # Sequencing
    # ------------------------------------------------------------------

    def sequential_prompts(self, result: DecompositionResult) -> list[str]:
        return sequential_prompts(result)


def sequential_prompts(result: DecompositionResult) -> list[str]:
    """One generation prompt per step, in order."""
    if not result.decomposed:
        return [result.original_prompt]

    prompts: list[str] = []
    for i, step in enumerate(result.steps):
        if i == 0:
            prompts.append(
                f"Build the foundation for the following application. Focus ONLY on: {step.description}\n\n"
                f"Full app context (for reference only, don't build everything): {result.original_prompt}\n\n"
                f"For this step, implement ONLY: {step.prompt}\n"
                "Create a clean, working foundation that other features can be added to later."
            )
        else:
            prompts.append(
                f"Add the following feature to the existing code. Focus ONLY on: {step.description}\n\n"
                f"{step.prompt}\n"
                "IMPORTANT: Preserve existing functionality. Only ADD the new feature.\n"
                "Do not remove or restructure existing code unless absolutely necessary."
            )
    return prompts


def _merge(steps: list[GenerationStep]) -> GenerationStep:
    if len(steps) == 1:
        return steps[0]
    complexities = {s.complexity for s in steps}
    complexity = "high" if "high" in complexities else "medium" if "medium" in complexities else "low"
    return GenerationStep(
        id=steps[0].id,
        key="+".join(s.key for s in steps),
        description=" + ".join(s.description for s in steps),
        prompt="\n\nAlso implement: ".join(s.prompt for s in steps),
        category=steps[0].category,
        depends_on=steps[0].depends_on,
        complexity=complexity,
    )


def _split(step: GenerationStep) -> list[GenerationStep]:
    structure = replace(
        step,
        key=f"{step.key}-structure",
        description=f"{step.description} - Structure & Layout",
        prompt=(
            f"Set up the basic structure and layout for: {step.prompt}. Focus only on the "
            "markup and component hierarchy. Don't implement business logic yet."
        ),
        complexity="medium",
    )
    logic = replace(
        step,
        id=step.id + 1,
        key=f"{step.key}-logic",
        description=f"{step.description} - Logic & Integration",
        prompt=(
            f"Add logic, state management, and integration for: {step.prompt}. The structure is "
            "already in place, now add the interactive behavior, API calls, and data flow."
        ),
        depends_on=(step.id,),
    )
    return [structure, logic]
