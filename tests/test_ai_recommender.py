"""Tests for AI augmentation and the deterministic fallback."""

import asyncio
import json

import pytest

from vm_rightsizing.analytics.ai_recommender import (
    AIRecommender,
    build_fallback_recommendation,
    build_fallback_summary,
    parse_recommendation_payload,
)
from vm_rightsizing.analytics.classification_engine import ClassificationEngine
from vm_rightsizing.collection.executor import RetryingExecutor, RetryPolicy
from vm_rightsizing.core.exceptions import ModelResponseException, TelemetryQueryException
from vm_rightsizing.models.vm_models import Confidence, MetricsSample, RiskLevel, VMDescriptor, VMStatus

from .conftest import FakeModel

IDLE = MetricsSample(cpu_avg=1.5, cpu_max=3.0, cpu_p95=2.5, cpu_sample_count=1000,
                     mem_avg=8.0, mem_max=15.0, mem_p95=12.0, mem_sample_count=1000)
HOT = MetricsSample(cpu_avg=70.0, cpu_max=97.0, cpu_p95=90.0, cpu_sample_count=1000,
                    mem_avg=50.0, mem_max=70.0, mem_p95=65.0, mem_sample_count=1000)
OK = MetricsSample(cpu_avg=40.0, cpu_max=60.0, cpu_p95=55.0, cpu_sample_count=1000,
                   mem_avg=50.0, mem_max=70.0, mem_p95=65.0, mem_sample_count=1000)


def make_recommender(model, catalog, no_sleep, **kwargs):
    executor = RetryingExecutor(RetryPolicy.ai(), sleep=no_sleep, rng=lambda: 0.0)
    return AIRecommender(model, catalog, executor=executor, **kwargs)


@pytest.fixture
def analysis(catalog, make_fleet):
    fleet = make_fleet(12)
    metrics = {}
    for i, vm in enumerate(fleet):
        metrics[vm.key] = [IDLE, HOT, OK, None][i % 4]
    metrics = {k: v for k, v in metrics.items() if v is not None}
    return ClassificationEngine(catalog).classify_fleet(fleet, metrics)


class TestParsePayload:

    def test_accepts_fenced_json(self):
        text = "```json\n" + json.dumps({
            "recommendation": "KEEP CURRENT SIZE",
            "action": "KEEP",
            "recommendedSize": None,
            "reason": "Healthy.",
            "riskLevel": "LOW",
            "riskExplanation": "None.",
            "estimatedMonthlySavings": None,
            "confidence": "MEDIUM",
        }) + "\n```"
        payload = parse_recommendation_payload(text)

        assert payload.action == "KEEP"
        assert payload.confidence == Confidence.MEDIUM

    @pytest.mark.parametrize("text", [
        "",
        "not json at all",
        json.dumps({"recommendation": "KEEP CURRENT SIZE"}),
        json.dumps({
            "recommendation": "x", "action": "DELETE", "reason": "r", "riskLevel": "LOW",
            "riskExplanation": "e", "confidence": "LOW",
        }),
        json.dumps({
            "recommendation": "x", "action": "KEEP", "reason": "r", "riskLevel": "LOW",
            "riskExplanation": "e", "confidence": "LOW", "unexpected": True,
        }),
    ])
    def test_rejects_invalid_shapes(self, text):
        with pytest.raises(ModelResponseException):
            parse_recommendation_payload(text)


class TestFallback:

    def test_underutilized(self, catalog):
        result = ClassificationEngine(catalog).classify(
            VMDescriptor(vm_name="idle-01", current_size="Standard_D4s_v3"), IDLE
        )
        rec = build_fallback_recommendation(result, 30)

        assert rec.recommendation == "DOWNSIZE to Standard_D2s_v3"
        assert rec.risk_level == RiskLevel.LOW
        assert rec.confidence == Confidence.LOW
        assert not rec.ai_generated
        assert "30 days" in rec.reason
        assert rec.estimated_monthly_savings == result.estimated_monthly_savings

    def test_no_smaller_size(self, catalog):
        result = ClassificationEngine(catalog).classify(
            VMDescriptor(vm_name="idle-02", current_size="Custom_Size"), IDLE
        )
        assert build_fallback_recommendation(result).recommendation == "REVIEW MANUALLY - no smaller size available"

    def test_overutilized(self, catalog):
        result = ClassificationEngine(catalog).classify(
            VMDescriptor(vm_name="hot-01", current_size="Standard_D4s_v3"), HOT
        )
        rec = build_fallback_recommendation(result)

        assert rec.recommendation == "UPSIZE to Standard_D8s_v3"
        assert rec.risk_level == RiskLevel.MEDIUM

    def test_right_sized_and_insufficient(self, catalog):
        engine = ClassificationEngine(catalog)
        keep = build_fallback_recommendation(engine.classify(VMDescriptor(vm_name="a"), OK))
        review = build_fallback_recommendation(engine.classify(VMDescriptor(vm_name="b"), None))

        assert keep.recommendation == "KEEP CURRENT SIZE"
        assert review.recommendation == "REVIEW MANUALLY - insufficient performance data"
        assert review.reason == "No performance metrics found"

    def test_summary_template(self):
        text = build_fallback_summary({
            "totalVMs": 10, "underutilized": 3, "overutilized": 2, "rightSized": 4,
            "estimatedMonthlySavings": 210.24,
        })
        assert text == (
            "Analysis of 10 VMs identified 3 underutilized and 2 overutilized instances. "
            "Implementing the recommended changes could save approximately $210/month. "
            "4 VMs are already right-sized and require no action."
        )


class TestAIRecommender:

    @pytest.mark.asyncio
    async def test_model_answer_keeps_rule_based_sizing(self, catalog, analysis, no_sleep):
        model = FakeModel(answer=lambda system, user: json.dumps({
            "recommendation": "DOWNSIZE to Standard_D2s_v3",
            "action": "DOWNSIZE",
            "recommendedSize": "standard_d2s_v3",
            "reason": "Idle.",
            "riskLevel": "LOW",
            "riskExplanation": "None.",
            "estimatedMonthlySavings": 9999,
            "confidence": "HIGH",
        }))
        recommender = make_recommender(model, catalog, no_sleep)
        rec = await recommender.recommend(analysis.underutilized[0])

        assert rec.ai_generated
        assert rec.confidence == Confidence.HIGH
        assert rec.reason == "Idle."
        assert rec.recommended_size == "Standard_D2s_v3"
        assert rec.estimated_monthly_savings == 70.08

    @pytest.mark.asyncio
    @pytest.mark.parametrize("answer", [
        {"recommendation": "UPSIZE to Standard_D8s_v3", "action": "UPSIZE", "recommendedSize": "Standard_D8s_v3"},
        {"recommendation": "UPSIZE to Standard_D8s_v3", "action": "DOWNSIZE", "recommendedSize": None},
        {"recommendation": "DOWNSIZE to Standard_B1s", "action": "DOWNSIZE", "recommendedSize": "Standard_B1s"},
        {"recommendation": "DOWNSIZE to Standard_B1s", "action": "DOWNSIZE", "recommendedSize": None},
        {"recommendation": "KEEP CURRENT SIZE", "action": "KEEP", "recommendedSize": None},
    ])
    async def test_contradicting_answer_falls_back(self, catalog, no_sleep, answer):
        result = ClassificationEngine(catalog).classify(
            VMDescriptor(vm_name="sql-01", current_size="Standard_D4s_v3"), IDLE
        )
        model = FakeModel(answer=lambda system, user: json.dumps({
            **answer,
            "reason": "Busy.",
            "riskLevel": "HIGH",
            "riskExplanation": "None.",
            "estimatedMonthlySavings": None,
            "confidence": "HIGH",
        }))
        rec = await make_recommender(model, catalog, no_sleep).recommend(result)

        assert not rec.ai_generated
        assert rec.action == result.action
        assert rec.recommendation == "DOWNSIZE to Standard_D2s_v3"
        assert rec.recommended_size == "Standard_D2s_v3"
        assert len(model.calls) == 1

    @pytest.mark.asyncio
    async def test_review_is_accepted_without_target_size(self, catalog, no_sleep):
        result = ClassificationEngine(catalog).classify(
            VMDescriptor(vm_name="odd-01", current_size="Custom_Size"), IDLE
        )
        rec = await make_recommender(FakeModel(), catalog, no_sleep).recommend(result)

        assert rec.ai_generated
        assert rec.recommendation == "REVIEW MANUALLY"
        assert rec.recommended_size is None

    @pytest.mark.asyncio
    async def test_overutilized_answer_matches_upsize(self, catalog, analysis, no_sleep):
        rec = await make_recommender(FakeModel(), catalog, no_sleep).recommend(analysis.overutilized[0])

        assert rec.ai_generated
        assert rec.recommendation == "UPSIZE to Standard_D8s_v3"
        assert rec.action == analysis.overutilized[0].action

    @pytest.mark.asyncio
    async def test_every_vm_gets_a_recommendation(self, catalog, analysis, no_sleep):
        model = FakeModel()
        result = await make_recommender(model, catalog, no_sleep).augment(analysis)

        assert len(result.recommendations) == len(analysis.results) == 12
        assert [r.vm_name for r in result.recommendations] == [r.vm_name for r in analysis.results]
        assert result.ai_requested == 6
        assert result.ai_succeeded == 6
        assert result.executive_summary == model.summary
        assert sum(1 for r in result.recommendations if r.ai_generated) == 6
        assert [r.vm_name for r in result.top_recommendations] == [
            r.vm_name for r in analysis.top_recommendations
        ]

    @pytest.mark.asyncio
    async def test_schema_failure_falls_back_without_retry(self, catalog, analysis, no_sleep):
        model = FakeModel(answer=lambda system, user: '{"recommendation": "looks fine"}')
        recommender = make_recommender(model, catalog, no_sleep)
        rec = await recommender.recommend(analysis.underutilized[0])

        assert not rec.ai_generated
        assert rec.recommendation == "DOWNSIZE to Standard_D2s_v3"
        assert len(model.calls) == 1
        assert no_sleep.delays == []

    @pytest.mark.asyncio
    async def test_model_errors_fall_back(self, catalog, analysis, no_sleep):
        model = FakeModel(error=ModelResponseException("content filtered"))
        result = await make_recommender(model, catalog, no_sleep).augment(analysis)

        assert len(result.recommendations) == 12
        assert all(not r.ai_generated for r in result.recommendations)
        assert result.ai_failed == 6
        assert result.executive_summary.startswith("Analysis of 12 VMs identified 3 underutilized")

    @pytest.mark.asyncio
    async def test_rate_limits_are_retried(self, catalog, analysis, no_sleep):
        model = FakeModel(error=TelemetryQueryException("throttled", status_code=429))
        recommender = make_recommender(model, catalog, no_sleep)
        rec = await recommender.recommend(analysis.overutilized[0])

        assert not rec.ai_generated
        assert len(model.calls) == 5
        assert no_sleep.delays == [2.0, 4.0, 8.0, 16.0]

    @pytest.mark.asyncio
    async def test_fallback_only_mode(self, catalog, analysis, no_sleep):
        recommender = make_recommender(None, catalog, no_sleep)
        result = await recommender.augment(analysis)

        assert recommender.fallback_only
        assert result.ai_requested == 0
        assert len(result.recommendations) == 12
        assert result.executive_summary.startswith("Analysis of 12 VMs")

    @pytest.mark.asyncio
    async def test_candidate_cap(self, catalog, analysis, no_sleep):
        model = FakeModel()
        recommender = make_recommender(model, catalog, no_sleep, max_recommendations=4, top_n_per_category=2)
        result = await recommender.augment(analysis)

        assert result.ai_requested == 4
        assert sum(1 for c in model.calls if c["json_mode"]) == 4

    @pytest.mark.asyncio
    async def test_worker_pool_handles_each_vm_once(self, catalog, make_fleet, no_sleep):
        active = []
        peak = []
        prompts = []

        class CountingModel(FakeModel):
            async def complete(self, system_prompt, user_prompt, max_tokens, json_mode=False):
                active.append(1)
                peak.append(len(active))
                prompts.append(user_prompt)
                await asyncio.sleep(0)
                active.pop()
                return await super().complete(system_prompt, user_prompt, max_tokens, json_mode)

        engine = ClassificationEngine(catalog)
        results = [engine.classify(vm, IDLE) for vm in make_fleet(17)]
        recs = await make_recommender(CountingModel(), catalog, no_sleep, max_workers=3).recommend_many(results)

        assert [r.vm_name for r in recs] == [r.vm_name for r in results]
        assert len(prompts) == 17
        assert max(peak) <= 3

    @pytest.mark.asyncio
    async def test_prompt_uses_job_window(self, catalog, analysis, no_sleep):
        model = FakeModel()
        await make_recommender(model, catalog, no_sleep).recommend(analysis.underutilized[0], window_days=14)

        assert "**14-Day Performance Metrics:**" in model.calls[0]["user_prompt"]
