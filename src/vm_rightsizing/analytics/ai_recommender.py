# src/vm_rightsizing/analytics/ai_recommender.py
"""
AI recommendation augmenter

Adds a generative-model explanation to the rule-based classification of the
highest impact VMs. Every VM always ends up with a complete Recommendation:
when the model is missing, fails, or answers with an invalid shape the
deterministic fallback generator fills the same fields.
"""
import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Protocol, Sequence, runtime_checkable

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..collection.executor import RetryingExecutor, RetryPolicy
from ..core.exceptions import ModelResponseException
from ..core.utils import unwrap_json_text
from ..models.vm_models import (
    ClassificationResult,
    Confidence,
    Recommendation,
    RiskLevel,
    VMStatus,
)
from .classification_engine import FleetAnalysis
from .size_catalog import SizeCatalog

logger = structlog.get_logger(__name__)


RIGHTSIZING_SYSTEM_PROMPT = """You are a cloud infrastructure cost optimization expert specializing in Azure VM right-sizing.

Your task is to analyze VM performance metrics and provide actionable, well-reasoned recommendations.

## Guidelines

1. **Be Specific**: Always recommend a specific VM size, not just "downsize" or "upsize"
2. **Cite Metrics**: Reference the actual CPU/Memory percentages in your reasoning
3. **Consider Workloads**: Account for burst patterns and peak usage windows
4. **Quantify Savings**: Estimate monthly cost impact when possible
5. **Assess Risk**: Rate the risk of the recommendation (LOW/MEDIUM/HIGH)
6. **Be Concise**: Keep explanations to 2-3 sentences

## Classification Thresholds (Azure Advisor aligned)

- **UNDERUTILIZED**: (CPU max < 5% OR (CPU max < 20% AND CPU avg < 10%)) AND memory max < 20% AND memory avg < 10%
- **OVERUTILIZED**: CPU or memory P95 > 85%, or CPU or memory max > 95%
- **RIGHT_SIZED**: Metrics within healthy ranges with adequate data

## Response Format

Respond with a single JSON object and nothing else:
{
  "recommendation": "DOWNSIZE to Standard_D2s_v3" | "UPSIZE to Standard_D8s_v3" | "KEEP CURRENT SIZE" | "REVIEW MANUALLY",
  "action": "DOWNSIZE" | "UPSIZE" | "KEEP" | "REVIEW",
  "recommendedSize": "Standard_D2s_v3" | null,
  "reason": "2-3 sentence explanation citing specific metrics",
  "riskLevel": "LOW" | "MEDIUM" | "HIGH",
  "riskExplanation": "Brief explanation of what could go wrong",
  "estimatedMonthlySavings": 150.00 | null,
  "confidence": "HIGH" | "MEDIUM" | "LOW"
}"""

SUMMARY_SYSTEM_PROMPT = "You are a cloud infrastructure analyst. Provide concise, executive-level summaries."


@runtime_checkable
class GenerativeModel(Protocol):
    """Chat-completion style model returning the raw text of one answer."""

    async def complete(self, system_prompt: str, user_prompt: str, max_tokens: int,
                       json_mode: bool = False) -> str:
        ...


class AIRecommendationPayload(BaseModel):
    """Exact shape the model must answer with. Anything else is a model failure."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, alias_generator=to_camel)

    recommendation: str = Field(min_length=1)
    action: Literal["DOWNSIZE", "UPSIZE", "KEEP", "REVIEW"]
    recommended_size: Optional[str] = None
    reason: str = Field(min_length=1)
    risk_level: RiskLevel
    risk_explanation: str = Field(min_length=1)
    estimated_monthly_savings: Optional[float] = None
    confidence: Confidence


def parse_recommendation_payload(text: str) -> AIRecommendationPayload:
    """Parse model output, tolerating markdown code fences around the JSON."""
    raw = unwrap_json_text(text)
    if not raw:
        raise ModelResponseException("Empty response from model")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ModelResponseException(f"Model response is not JSON: {e}", {"response": raw[:200]})
    try:
        return AIRecommendationPayload.model_validate(data)
    except ValidationError as e:
        raise ModelResponseException(
            "Model response does not match the recommendation schema",
            {"errors": e.errors(include_url=False)},
        )


EXPECTED_ACTIONS = {
    VMStatus.UNDERUTILIZED: "DOWNSIZE",
    VMStatus.OVERUTILIZED: "UPSIZE",
    VMStatus.RIGHT_SIZED: "KEEP",
    VMStatus.INSUFFICIENT_DATA: "REVIEW",
}


def check_payload_consistency(payload: AIRecommendationPayload, result: ClassificationResult) -> None:
    """Reject an answer whose action or size contradicts the rule-based classification.

    The recommendation text must open with the action, and a resize must name
    the size chosen by the rules. With no target size only REVIEW is allowed
    besides the expected action.
    """
    expected = EXPECTED_ACTIONS[result.status]
    allowed = {expected} if result.recommended_size else {expected, "REVIEW"}
    text = payload.recommendation.strip().upper()

    problems = []
    if payload.action not in allowed:
        problems.append(f"action {payload.action} contradicts {result.status.value}")
    if not text.startswith(payload.action):
        problems.append(f"recommendation does not start with {payload.action}")
    if payload.recommended_size:
        if (result.recommended_size or "").lower() != payload.recommended_size.strip().lower():
            problems.append(f"size {payload.recommended_size} differs from {result.recommended_size}")
    if payload.action in ("DOWNSIZE", "UPSIZE") and result.recommended_size:
        if result.recommended_size.upper() not in text:
            problems.append(f"recommendation does not name {result.recommended_size}")

    if problems:
        raise ModelResponseException(
            "Model recommendation contradicts the rule-based classification",
            {"problems": problems, "recommendation": payload.recommendation},
        )


def _fmt(value: Optional[float]) -> str:
    return f"{value:.1f}" if value is not None else "N/A"


def build_vm_prompt(result: ClassificationResult, catalog: SizeCatalog, window_days: int = 30) -> str:
    m = result.metrics
    size = result.current_size or "unknown"
    vcpus = catalog.vcpus(result.current_size)
    memory = catalog.memory_gb(result.current_size)
    cost = catalog.monthly_cost(result.current_size)
    return f"""Analyze this VM and provide a right-sizing recommendation:

**VM Details:**
- Name: {result.vm_name}
- Current Size: {size} ({vcpus if vcpus is not None else 'N/A'} vCPUs, {memory if memory is not None else 'N/A'} GB RAM)
- Location: {result.location or 'N/A'}
- Resource Group: {result.resource_group or 'N/A'}
- Estimated Monthly Cost: ${cost if cost else 'N/A'}

**{window_days}-Day Performance Metrics:**
- CPU Average: {_fmt(m.cpu_avg if m else None)}%
- CPU Maximum: {_fmt(m.cpu_max if m else None)}%
- CPU P95: {_fmt(m.cpu_p95 if m else None)}%
- CPU Sample Count: {m.cpu_sample_count if m else 0}
- Memory Average: {_fmt(m.mem_avg if m else None)}%
- Memory Maximum: {_fmt(m.mem_max if m else None)}%
- Memory P95: {_fmt(m.mem_p95 if m else None)}%
- Memory Sample Count: {m.mem_sample_count if m else 0}

**Current Classification:** {result.status.value}
**Rule-based finding:** {result.reason}

Available size options in the {catalog.family(result.current_size) or 'current'} family:
- Downsize option: {catalog.downgrade(result.current_size) or 'None available'}
- Upsize option: {catalog.upgrade(result.current_size) or 'None available'}

Provide your recommendation as a JSON object."""


def build_fallback_recommendation(result: ClassificationResult, window_days: int = 30) -> Recommendation:
    """Deterministic recommendation derived from the classification alone."""
    m = result.metrics
    target = result.recommended_size

    if result.status == VMStatus.UNDERUTILIZED:
        fields = dict(
            recommendation=f"DOWNSIZE to {target}" if target else "REVIEW MANUALLY - no smaller size available",
            reason=(
                f"CPU avg {_fmt(m.cpu_avg if m else None)}%, max {_fmt(m.cpu_max if m else None)}% "
                f"indicates underutilization over {window_days} days."
            ),
            risk_level=RiskLevel.LOW,
            risk_explanation="Low utilization suggests capacity headroom exists.",
        )
    elif result.status == VMStatus.OVERUTILIZED:
        fields = dict(
            recommendation=f"UPSIZE to {target}" if target else "REVIEW MANUALLY - no larger size available",
            reason=(
                f"CPU P95 {_fmt(m.cpu_p95 if m else None)}%, Memory P95 {_fmt(m.mem_p95 if m else None)}% "
                "indicates resource pressure."
            ),
            risk_level=RiskLevel.MEDIUM,
            risk_explanation="Continued high utilization may impact performance.",
        )
    elif result.status == VMStatus.INSUFFICIENT_DATA:
        fields = dict(
            recommendation="REVIEW MANUALLY - insufficient performance data",
            reason=result.reason,
            risk_level=RiskLevel.LOW,
            risk_explanation="Collect more performance data before resizing.",
        )
    else:
        fields = dict(
            recommendation="KEEP CURRENT SIZE",
            reason="Utilization metrics are within healthy ranges.",
            risk_level=RiskLevel.LOW,
            risk_explanation="No action needed at this time.",
        )

    return Recommendation.from_classification(
        result, **fields, confidence=Confidence.LOW, ai_generated=False
    )


def build_summary_prompt(summary: Dict[str, Any], top: Sequence[Recommendation]) -> str:
    lines = "\n".join(f"- {r.vm_name}: {r.recommendation} ({r.risk_level.value} risk)" for r in top[:5])
    return f"""Generate a brief executive summary (3-4 sentences) for this VM right-sizing analysis:

**Analysis Summary:**
- Total VMs: {summary.get('totalVMs', 0)}
- Underutilized: {summary.get('underutilized', 0)} VMs
- Overutilized: {summary.get('overutilized', 0)} VMs
- Right-sized: {summary.get('rightSized', 0)} VMs
- Insufficient Data: {summary.get('insufficientData', 0)} VMs

**Top Recommendations:**
{lines or '- None'}

**Estimated Monthly Savings:** ${summary.get('estimatedMonthlySavings', 0)}
**Estimated Additional Cost:** ${summary.get('estimatedAdditionalCost', 0)}

Provide a concise, actionable summary for cloud operations leadership."""


def build_fallback_summary(summary: Dict[str, Any]) -> str:
    return (
        f"Analysis of {summary.get('totalVMs', 0)} VMs identified {summary.get('underutilized', 0)} "
        f"underutilized and {summary.get('overutilized', 0)} overutilized instances. "
        f"Implementing the recommended changes could save approximately "
        f"${round(summary.get('estimatedMonthlySavings', 0) or 0)}/month. "
        f"{summary.get('rightSized', 0)} VMs are already right-sized and require no action."
    )


@dataclass
class AugmentationResult:
    recommendations: List[Recommendation]
    top_recommendations: List[Recommendation] = field(default_factory=list)
    executive_summary: str = ""
    ai_requested: int = 0
    ai_succeeded: int = 0

    @property
    def ai_failed(self) -> int:
        return self.ai_requested - self.ai_succeeded


class AIRecommender:
    """Augments classification results with model explanations."""

    def __init__(self, model: Optional[GenerativeModel], catalog: SizeCatalog,
                 executor: Optional[RetryingExecutor] = None, max_workers: int = 5,
                 max_recommendations: int = 50, top_n_per_category: int = 25,
                 max_tokens: int = 500, summary_max_tokens: int = 300, window_days: int = 30):
        self.model = model
        self.catalog = catalog
        self.executor = executor or RetryingExecutor(RetryPolicy.ai(), name="ai")
        self.max_workers = max(1, max_workers)
        self.max_recommendations = max_recommendations
        self.top_n_per_category = top_n_per_category
        self.max_tokens = max_tokens
        self.summary_max_tokens = summary_max_tokens
        self.window_days = window_days
        self.logger = logger.bind(analytics="ai_recommender")

    @property
    def fallback_only(self) -> bool:
        return self.model is None

    def select_candidates(self, analysis: FleetAnalysis) -> List[ClassificationResult]:
        """Top underutilized then top overutilized, capped overall."""
        candidates = (
            analysis.ranked_underutilized[:self.top_n_per_category]
            + analysis.ranked_overutilized[:self.top_n_per_category]
        )
        return candidates[:self.max_recommendations]

    async def recommend(self, result: ClassificationResult, window_days: Optional[int] = None) -> Recommendation:
        """One VM: model answer when valid, fallback otherwise."""
        window_days = window_days if window_days is not None else self.window_days
        if self.model is None:
            return build_fallback_recommendation(result, window_days)

        prompt = build_vm_prompt(result, self.catalog, window_days)
        outcome = await self.executor.execute(
            lambda: self.model.complete(RIGHTSIZING_SYSTEM_PROMPT, prompt, self.max_tokens, json_mode=True),
            label=result.vm_name,
        )
        if not outcome.success:
            self.logger.warning(f"Model call failed for {result.vm_name}, using fallback",
                                attempts=outcome.attempts, error=str(outcome.error))
            return build_fallback_recommendation(result, window_days)

        try:
            payload = parse_recommendation_payload(outcome.value)
            check_payload_consistency(payload, result)
        except ModelResponseException as e:
            self.logger.warning(f"Invalid model response for {result.vm_name}, using fallback",
                                error=e.message, details=e.details)
            return build_fallback_recommendation(result, window_days)

        # sizing and cost stay with the rule-based result
        return Recommendation.from_classification(
            result,
            recommendation=payload.recommendation,
            reason=payload.reason,
            risk_level=payload.risk_level,
            risk_explanation=payload.risk_explanation,
            confidence=payload.confidence,
            ai_generated=True,
        )

    async def recommend_many(self, results: Sequence[ClassificationResult],
                             window_days: Optional[int] = None) -> List[Recommendation]:
        """Fixed worker pool over a shared queue; output keeps input order."""
        queue: "asyncio.Queue[int]" = asyncio.Queue()
        for index in range(len(results)):
            queue.put_nowait(index)
        output: List[Optional[Recommendation]] = [None] * len(results)

        async def worker() -> None:
            while True:
                try:
                    index = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    output[index] = await self.recommend(results[index], window_days)
                finally:
                    queue.task_done()

        workers = min(self.max_workers, len(results))
        await asyncio.gather(*(worker() for _ in range(workers)))
        return [r for r in output if r is not None]

    async def executive_summary(self, summary: Dict[str, Any], top: Sequence[Recommendation]) -> str:
        if self.model is None:
            return build_fallback_summary(summary)

        prompt = build_summary_prompt(summary, top)
        outcome = await self.executor.execute(
            lambda: self.model.complete(SUMMARY_SYSTEM_PROMPT, prompt, self.summary_max_tokens),
            label="executive-summary",
        )
        text = (outcome.value or "").strip() if outcome.success else ""
        if not text:
            self.logger.warning("Executive summary unavailable from model, using template",
                                error=str(outcome.error) if outcome.error else None)
            return build_fallback_summary(summary)
        return text

    async def augment(self, analysis: FleetAnalysis, window_days: Optional[int] = None) -> AugmentationResult:
        """Recommendation for every VM; model calls only for the highest impact subset."""
        window_days = window_days if window_days is not None else self.window_days
        candidates = self.select_candidates(analysis)
        selected = {id(r) for r in candidates}

        augmented = await self.recommend_many(candidates, window_days)
        by_id = {id(c): rec for c, rec in zip(candidates, augmented)}

        recommendations = [
            by_id[id(r)] if id(r) in selected else build_fallback_recommendation(r, window_days)
            for r in analysis.results
        ]

        top = [
            by_id.get(id(r)) or build_fallback_recommendation(r, window_days)
            for r in analysis.top_recommendations
        ]

        ai_succeeded = sum(1 for r in augmented if r.ai_generated)
        summary_text = await self.executive_summary(analysis.summary(), augmented or top)

        self.logger.info(
            f"Augmented {len(candidates)} of {len(analysis.results)} VMs",
            ai_succeeded=ai_succeeded,
            fallback_only=self.fallback_only,
        )
        return AugmentationResult(
            recommendations=recommendations,
            top_recommendations=top,
            executive_summary=summary_text,
            ai_requested=0 if self.fallback_only else len(candidates),
            ai_succeeded=ai_succeeded,
        )
