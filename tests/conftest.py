"""Pytest configuration and fixtures for right-sizing tests."""

import json
import re
from typing import Any, Callable, Dict, List, Optional

import pytest

from vm_rightsizing.analytics.size_catalog import SizeCatalog
from vm_rightsizing.clients.azure.log_analytics_client import QueryResult
from vm_rightsizing.models.vm_models import VMDescriptor

VM_LIST_PATTERN = re.compile(r"let vmList = dynamic\(\[(.*?)\]\);")


def names_in_query(query: str) -> List[str]:
    """VM names embedded in a metrics query."""
    match = VM_LIST_PATTERN.search(query)
    if not match:
        return []
    return [name for name in re.findall(r'"((?:[^"\\]|\\.)*)"', match.group(1))]


def metrics_row(computer: str, cpu_avg=40.0, cpu_max=60.0, cpu_p95=55.0, cpu_samples=1000,
                mem_avg=50.0, mem_max=70.0, mem_p95=65.0, mem_samples=1000) -> Dict[str, Any]:
    return {
        "Computer": computer,
        "CPU_Avg": cpu_avg,
        "CPU_Max": cpu_max,
        "CPU_P95": cpu_p95,
        "CPU_SampleCount": cpu_samples,
        "Memory_Avg": mem_avg,
        "Memory_Max": mem_max,
        "Memory_P95": mem_p95,
        "Memory_SampleCount": mem_samples,
    }


class FakeTelemetryBackend:
    """Answers each query with the rows registered for the VMs it names."""

    def __init__(self, rows: Optional[Dict[str, Dict[str, Any]]] = None,
                 fail: Optional[Callable[[int, List[str]], Optional[Exception]]] = None):
        self.rows = rows or {}
        self.fail = fail
        self.calls: List[List[str]] = []

    async def run_query(self, query_text: str, timeout_ms: int) -> QueryResult:
        names = names_in_query(query_text)
        self.calls.append(names)
        if self.fail:
            error = self.fail(len(self.calls), names)
            if error is not None:
                raise error
        rows = [self.rows[name] for name in names if name in self.rows]
        return QueryResult(rows=rows, columns=list(rows[0].keys()) if rows else [])


def consistent_answer(user_prompt: str) -> Dict[str, Any]:
    """Model answer that agrees with the classification and size option in the prompt."""
    status = re.search(r"\*\*Current Classification:\*\* (\w+)", user_prompt)
    status = status.group(1) if status else "RIGHT_SIZED"
    option = {"UNDERUTILIZED": "Downsize", "OVERUTILIZED": "Upsize"}.get(status)
    target = None
    if option:
        match = re.search(rf"- {option} option: (\S+)", user_prompt)
        target = match.group(1) if match and match.group(1) != "None" else None

    action = {"UNDERUTILIZED": "DOWNSIZE", "OVERUTILIZED": "UPSIZE", "RIGHT_SIZED": "KEEP"}.get(status, "REVIEW")
    if action in ("DOWNSIZE", "UPSIZE") and target is None:
        action = "REVIEW"
    recommendation = {
        "DOWNSIZE": f"DOWNSIZE to {target}",
        "UPSIZE": f"UPSIZE to {target}",
        "KEEP": "KEEP CURRENT SIZE",
        "REVIEW": "REVIEW MANUALLY",
    }[action]
    return {
        "recommendation": recommendation,
        "action": action,
        "recommendedSize": target if action in ("DOWNSIZE", "UPSIZE") else None,
        "reason": "CPU peaks at 3% over 30 days.",
        "riskLevel": "LOW",
        "riskExplanation": "Short bursts may queue.",
        "estimatedMonthlySavings": 70.08,
        "confidence": "HIGH",
    }


class FakeModel:
    """Generative model returning canned answers, or raising."""

    def __init__(self, answer: Optional[Callable[[str, str], str]] = None, error: Optional[Exception] = None,
                 summary: str = "Fleet is mostly right-sized."):
        self.answer = answer
        self.error = error
        self.summary = summary
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, system_prompt: str, user_prompt: str, max_tokens: int,
                       json_mode: bool = False) -> str:
        self.calls.append({"user_prompt": user_prompt, "max_tokens": max_tokens, "json_mode": json_mode})
        if self.error is not None:
            raise self.error
        if not json_mode:
            return self.summary
        if self.answer is not None:
            return self.answer(system_prompt, user_prompt)
        return json.dumps(consistent_answer(user_prompt))


class SleepRecorder:
    """Stand-in for asyncio.sleep that returns immediately."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def no_sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture(scope="session")
def catalog() -> SizeCatalog:
    return SizeCatalog.default()


@pytest.fixture
def make_fleet() -> Callable[..., List[VMDescriptor]]:
    def _make(count: int, groups: int = 1, size: str = "Standard_D4s_v3", prefix: str = "vm") -> List[VMDescriptor]:
        return [
            VMDescriptor(
                vm_name=f"{prefix}-{i:04d}",
                resource_group=f"rg-{i % groups}",
                location="eastus",
                current_size=size,
            )
            for i in range(count)
        ]
    return _make
