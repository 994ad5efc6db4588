from unittest.mock import AsyncMock

import pytest

from stgtrade.core.config import AppConfig, ClaudeConfig, PipelineConfig, StorageConfig
from stgtrade.core.types import AgentRole, DecisionPhase, SharedContext, TickerInfo
from stgtrade.calculators.forecast_evolver import ForecastEvolver
from stgtrade.orchestration.pipeline_stages import (
    DEFAULT_PIPELINE,
    SUMMARY_LABEL,
    UNSCHEDULED_ROLES,
    build_briefing_context,
    build_dossier_context,
    build_full_context,
    cooldown_for,
    resolve_model,
)
from stgtrade.orchestration.research_pipeline_orchestrator import CancellationToken, ResearchPipelineOrchestrator
from stgtrade.services.run_archive import RunArchive
from stgtrade.tests.pipeline.pipeline_fakes import FakeGateway


def test_pipeline_has_nine_stages_in_fixed_order():
    assert [s.role for s in DEFAULT_PIPELINE] == [
        AgentRole.INTELLIGENCE_OFFICER,
        AgentRole.FUNDAMENTAL_ANALYST,
        AgentRole.SENTIMENT_ANALYST,
        AgentRole.NEWS_POLICY_ANALYST,
        AgentRole.TECHNICAL_ANALYST,
        AgentRole.BULL_RESEARCHER,
        AgentRole.BEAR_RESEARCHER,
        AgentRole.RISK_MANAGER,
        AgentRole.FUND_MANAGER,
    ]


def test_phases_never_go_backwards():
    phases = [s.phase for s in DEFAULT_PIPELINE]
    assert phases == sorted(phases)
    assert phases[0] == DecisionPhase.INTELLIGENCE_GATHERING
    assert phases[-1] == DecisionPhase.WEIGHTED_DECISION


def test_only_first_stage_is_search_grounded():
    assert [s.uses_search for s in DEFAULT_PIPELINE] == [True] + [False] * 8


def test_unscheduled_roles_are_declared_but_not_run():
    scheduled = {s.role for s in DEFAULT_PIPELINE}
    assert UNSCHEDULED_ROLES.isdisjoint(scheduled)
    assert scheduled | UNSCHEDULED_ROLES == set(AgentRole)


def test_context_builders_only_read_earlier_output():
    stock = TickerInfo(name="Acme Corp", price=100.0)
    empty = SharedContext()
    later = empty.with_dossier("DOSSIER").with_analysis(AgentRole.FUNDAMENTAL_ANALYST, "FUND")

    briefing = build_briefing_context(later, "ACME", stock)
    assert "DOSSIER" not in briefing and "FUND" not in briefing

    analysis = build_dossier_context(later, "ACME", stock)
    assert analysis == "DOSSIER"

    full = build_full_context(later, "ACME", stock)
    assert "DOSSIER" in full and "FUND" in full and SUMMARY_LABEL in full


def test_shared_context_is_append_only():
    context = SharedContext().with_dossier("D")
    first = context.with_analysis(AgentRole.FUNDAMENTAL_ANALYST, "one")
    second = first.with_analysis(AgentRole.TECHNICAL_ANALYST, "two")

    assert context.analyst_summary == ""
    assert second.analyst_summary.startswith(first.analyst_summary)
    assert second.analyst_summary.index("one") < second.analyst_summary.index("two")


@pytest.mark.parametrize("use_economy,assignment,expected", [
    (False, None, "eco"),
    (False, {AgentRole.FUND_MANAGER: "pro"}, "pro"),
    (True, {AgentRole.FUND_MANAGER: "pro"}, "eco"),
    (False, {AgentRole.FUND_MANAGER: ""}, "eco"),
])
def test_resolve_model(use_economy, assignment, expected):
    config = ClaudeConfig(api_key="k", pro_model="pro", economy_model="eco")
    assert resolve_model(AgentRole.FUND_MANAGER, assignment, use_economy, config) == expected


def test_cooldown_table():
    pipeline_cfg = PipelineConfig()
    claude_cfg = ClaudeConfig(api_key="k", pro_model="pro", economy_model="eco")
    search_stage, plain_stage = DEFAULT_PIPELINE[0], DEFAULT_PIPELINE[1]

    assert cooldown_for(plain_stage, "eco", pipeline_cfg, claude_cfg) == 6
    assert cooldown_for(search_stage, "eco", pipeline_cfg, claude_cfg) == 35
    assert cooldown_for(plain_stage, "pro", pipeline_cfg, claude_cfg) == 45
    assert cooldown_for(search_stage, "pro", pipeline_cfg, claude_cfg) == 45


@pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
def test_anchor_price_never_moves(seed):
    evolver = ForecastEvolver(seed=seed)
    series = evolver.seed(87.25)
    for intensity in (4, -4, 2.5, -1.0, 4, 4, -4):
        series = evolver.evolve(series, intensity)
        assert len(series) == 181
        assert series[0].price == 87.25


@pytest.mark.asyncio
@pytest.mark.parametrize("cancel_after", [1, 4, 8])
async def test_actions_match_pipeline_prefix(tmp_path, cancel_after):
    config = AppConfig(claude=ClaudeConfig(api_key="k"), storage=StorageConfig(base_dir=tmp_path))
    gateway = FakeGateway()
    token = CancellationToken()
    roles = [s.role for s in DEFAULT_PIPELINE]
    gateway.on_generate = lambda role: token.cancel() if role == roles[cancel_after - 1] else None
    archive = RunArchive(config.storage)
    orchestrator = ResearchPipelineOrchestrator(config, gateway=gateway, archive=archive, sleep=AsyncMock())

    result = await orchestrator.run("ACME", cancellation=token)

    assert [a.role for a in result.actions] == roles[:cancel_after]
    assert archive.list() == []


@pytest.mark.asyncio
async def test_completed_run_matches_pipeline_and_archives_once(tmp_path):
    config = AppConfig(claude=ClaudeConfig(api_key="k"), storage=StorageConfig(base_dir=tmp_path))
    archive = RunArchive(config.storage)
    orchestrator = ResearchPipelineOrchestrator(config, gateway=FakeGateway(), archive=archive, sleep=AsyncMock())

    result = await orchestrator.run("ACME")

    assert len(result.actions) == len(DEFAULT_PIPELINE)
    for action, stage in zip(result.actions, DEFAULT_PIPELINE):
        assert action.role == stage.role
    assert [r.id for r in archive.list()] == [result.record.id]
