"""Heuristic model router for reasoning delegations.

Profiles a task by keyword (task type) and length/structure (complexity),
maps that to a model tier and picks the cheapest catalogue model in the
tier. Callers only honour the choice when confidence >= 0.5.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.5


class TaskComplexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class TaskType(str, Enum):
    SUMMARIZE = "summarize"
    CLASSIFY = "classify"
    EXTRACT = "extract"
    QA = "qa"
    CODE = "code"
    REASON = "reason"
    PLAN = "plan"
    GENERAL = "general"


class ModelTier(str, Enum):
    FAST = "fast"
    CAPABLE = "capable"
    PREMIUM = "premium"


@dataclass
class ModelCandidate:
    model: str
    provider: str
    tier: ModelTier
    # USD per million tokens
    input_cost: Decimal
    output_cost: Decimal

    def estimate_cost(self, token_budget: int) -> Decimal:
        input_tokens = math.ceil(token_budget * 0.6)
        output_tokens = math.ceil(token_budget * 0.4)
        return (
            input_tokens * self.input_cost + output_tokens * self.output_cost
        ) / Decimal("1000000")


DEFAULT_CATALOGUE: List[ModelCandidate] = [
    ModelCandidate("gpt-4o-mini", "openai", ModelTier.FAST, Decimal("0.15"), Decimal("0.60")),
    ModelCandidate("claude-haiku-4-5", "anthropic", ModelTier.FAST, Decimal("1"), Decimal("5")),
    ModelCandidate("gpt-4o", "openai", ModelTier.CAPABLE, Decimal("2.5"), Decimal("10")),
    ModelCandidate(
        "claude-sonnet-4-5", "anthropic", ModelTier.CAPABLE, Decimal("3"), Decimal("15")
    ),
    ModelCandidate("o1", "openai", ModelTier.PREMIUM, Decimal("15"), Decimal("60")),
]


@dataclass
class TaskProfile:
    complexity: TaskComplexity
    task_type: TaskType
    estimated_input_tokens: int


@dataclass
class RoutingDecision:
    selected_model: Optional[str]
    selected_provider: Optional[str]
    tier: ModelTier
    confidence: float
    task_profile: TaskProfile
    estimated_cost_usd: Decimal = field(default_factory=lambda: Decimal("0"))


_TYPE_PATTERNS = [
    (
        TaskType.CODE,
        re.compile(
            r"\b(implement|write (a |the )?(function|class|method|module|script|test|code)"
            r"|refactor|debug|fix the bug|add (a )?feature|code review|programming|algorithm)\b",
            re.I,
        ),
    ),
    (
        TaskType.PLAN,
        re.compile(
            r"\b(plan|design|architect|strategy|roadmap|steps to|how to build|how to create"
            r"|how to implement|propose|outline|draft)\b",
            re.I,
        ),
    ),
    (
        TaskType.REASON,
        re.compile(
            r"\b(analy[sz]e|compare|contrast|evaluate|assess|why does|root cause|pros and cons"
            r"|trade.?off|reasoning|think through|reason about|implication)\b",
            re.I,
        ),
    ),
    (
        TaskType.SUMMARIZE,
        re.compile(
            r"\b(summari[sz]e|summary|tldr|tl;dr|condense|recap|brief|overview|digest|abstract)\b",
            re.I,
        ),
    ),
    (
        TaskType.CLASSIFY,
        re.compile(
            r"\b(classify|categori[sz]e|label|tag|identify the type|determine (if|whether|which)"
            r"|is this a|belongs to)\b",
            re.I,
        ),
    ),
    (
        TaskType.EXTRACT,
        re.compile(
            r"\b(extract|pull out|find all|list all|enumerate|identify all|get all|retrieve)\b",
            re.I,
        ),
    ),
    (
        TaskType.QA,
        re.compile(
            r"\b(what is|what are|who is|when did|where is|how many|how much|tell me|explain"
            r"|define|describe)\b",
            re.I,
        ),
    ),
]

_SUBTASK_PATTERN = re.compile(
    r"\b(and (then|also)|additionally|furthermore|then|next|finally|step \d|first.*second)\b",
    re.I,
)
_COMPARISON_PATTERN = re.compile(r"\b(compare|versus|vs\.?)\b", re.I)

_TYPE_TIER = {
    TaskType.SUMMARIZE: ModelTier.FAST,
    TaskType.CLASSIFY: ModelTier.FAST,
    TaskType.EXTRACT: ModelTier.FAST,
    TaskType.QA: ModelTier.FAST,
    TaskType.CODE: ModelTier.CAPABLE,
    TaskType.REASON: ModelTier.CAPABLE,
    TaskType.PLAN: ModelTier.CAPABLE,
    TaskType.GENERAL: ModelTier.CAPABLE,
}


def detect_task_type(task: str) -> TaskType:
    for task_type, pattern in _TYPE_PATTERNS:
        if pattern.search(task):
            return task_type
    return TaskType.GENERAL


def score_complexity(task: str, task_type: TaskType) -> TaskComplexity:
    words = len(task.split())
    many_subtasks = len(_SUBTASK_PATTERN.findall(task)) >= 3
    comparisons = len(_COMPARISON_PATTERN.findall(task)) >= 2

    # code, reason and plan tasks always warrant at least a capable model
    if words < 30 and not many_subtasks and task_type not in (
        TaskType.PLAN,
        TaskType.REASON,
        TaskType.CODE,
    ):
        return TaskComplexity.SIMPLE

    if words > 150 or many_subtasks or comparisons or task_type == TaskType.PLAN:
        return TaskComplexity.COMPLEX

    return TaskComplexity.MODERATE


def profile_task(task: str, context: Optional[str] = None) -> TaskProfile:
    task_type = detect_task_type(task)
    return TaskProfile(
        complexity=score_complexity(task, task_type),
        task_type=task_type,
        estimated_input_tokens=math.ceil((len(task) + len(context or "")) / 4),
    )


def target_tier(profile: TaskProfile) -> ModelTier:
    base = _TYPE_TIER[profile.task_type]
    if profile.complexity == TaskComplexity.COMPLEX and base == ModelTier.FAST:
        return ModelTier.CAPABLE
    return base


class ModelRouter:
    """Select the cheapest suitable model for a delegated task."""

    def __init__(self, catalogue: Optional[Iterable[ModelCandidate]] = None):
        self.catalogue = list(catalogue if catalogue is not None else DEFAULT_CATALOGUE)

    def route(
        self,
        task: str,
        default_model: Optional[str] = None,
        token_budget: int = 50000,
        context: Optional[str] = None,
        allowed_models: Optional[List[str]] = None,
    ) -> RoutingDecision:
        """Pick a model for the task.

        Args:
            task: The delegated task text.
            default_model: Caller default, used by the caller when confidence is low.
            token_budget: Budget used to estimate cost per candidate.
            context: Optional context included in the input estimate.
            allowed_models: Optional allowlist; empty or None allows all.

        Returns:
            RoutingDecision. selected_model is None with confidence 0 when no
            candidate survives filtering.
        """
        task_profile = profile_task(task, context)
        tier = target_tier(task_profile)

        candidates = [
            c for c in self.catalogue if not allowed_models or c.model in allowed_models
        ]
        if not candidates:
            return RoutingDecision(None, None, tier, 0.0, task_profile)

        tiered = [c for c in candidates if c.tier == tier]
        if not tiered:
            fallback_tier = ModelTier.CAPABLE if tier == ModelTier.PREMIUM else ModelTier.FAST
            tiered = [c for c in candidates if c.tier == fallback_tier] or candidates

        ranked = sorted(tiered, key=lambda c: c.estimate_cost(token_budget))
        selected = ranked[0]
        at_tier = sum(1 for c in ranked if c.tier == tier)
        confidence = 0.9 if at_tier >= 2 else 0.75 if at_tier == 1 else 0.5

        logger.debug(
            f"Routed {task_profile.task_type.value}/{task_profile.complexity.value} task "
            f"to {selected.model} (tier={tier.value}, confidence={confidence}, "
            f"default={default_model})"
        )
        return RoutingDecision(
            selected_model=selected.model,
            selected_provider=selected.provider,
            tier=tier,
            confidence=confidence,
            task_profile=task_profile,
            estimated_cost_usd=selected.estimate_cost(token_budget),
        )
