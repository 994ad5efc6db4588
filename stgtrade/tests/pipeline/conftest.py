"""Shared fixtures for research pipeline tests."""
from unittest.mock import AsyncMock

import pytest

from stgtrade.core.config import AppConfig, ClaudeConfig, PipelineConfig, RetryConfig, StorageConfig
from stgtrade.core.types import (
    ActionStatus,
    AgentAction,
    AgentRole,
    ForecastPoint,
    GroundingSource,
    HistoryRecord,
    SentimentMetrics,
    StageReport,
)
from stgtrade.calculators.forecast_evolver import ForecastEvolver
from stgtrade.orchestration.research_pipeline_orchestrator import ResearchPipelineOrchestrator
from stgtrade.services.run_archive import RunArchive
from stgtrade.tests.pipeline.pipeline_fakes import FakeGateway


@pytest.fixture
def app_config(tmp_path):
    """AppConfig with a test key, default policy and storage under tmp_path."""
    return AppConfig(
        claude=ClaudeConfig(api_key="test-key"),
        retry=RetryConfig(),
        pipeline=PipelineConfig(),
        storage=StorageConfig(base_dir=tmp_path),
    )


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def recording_sleep():
    return AsyncMock(return_value=None)


@pytest.fixture
def archive(app_config):
    return RunArchive(app_config.storage)


@pytest.fixture
def orchestrator(app_config, fake_gateway, archive, recording_sleep):
    return ResearchPipelineOrchestrator(
        app_config,
        gateway=fake_gateway,
        archive=archive,
        evolver=ForecastEvolver(forecast_days=app_config.pipeline.forecast_days, seed=7),
        sleep=recording_sleep,
    )


@pytest.fixture
def sample_record():
    """Archived run with a fund manager decision and a sentiment stage."""
    actions = [
        AgentAction(id="a1", role=AgentRole.INTELLIGENCE_OFFICER, status=ActionStatus.COMPLETED, output="dossier", start_time=1.0, end_time=2.0),
        AgentAction(id="a2", role=AgentRole.SENTIMENT_ANALYST, status=ActionStatus.COMPLETED, output="sentiment", start_time=2.0, end_time=3.0),
        AgentAction(id="a3", role=AgentRole.FUND_MANAGER, status=ActionStatus.COMPLETED, output="BUY", score=72, start_time=3.0, end_time=4.0),
    ]
    metrics = SentimentMetrics(score=0.4, confidence=0.8, intensity=3.0, decay=0.1, disagreement=0.2)
    reports = {
        "a1": StageReport(text="dossier <b>text</b>", sources=[GroundingSource(uri="https://example.com/a", title="Source A")]),
        "a2": StageReport(text="sentiment", sentiment_metrics=metrics),
        "a3": StageReport(text="BUY with 3% weight", score=72),
    }
    price_data = [
        ForecastPoint(day_index=0, date="2025-03-14", price=100.0, is_future=False),
        ForecastPoint(day_index=1, date="2025-03-15", price=101.0, is_future=True),
    ]
    return HistoryRecord(
        id="rec1",
        symbol="ACME",
        stock_name="Acme Corp",
        timestamp="2025-03-14 10:30:00",
        task_name="ACME_2025-03-14",
        reports=reports,
        actions=actions,
        price_data=price_data,
        base_price=100.0,
    )
