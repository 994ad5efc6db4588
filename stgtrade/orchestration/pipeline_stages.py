"""
Stage descriptor table for the research pipeline.

Each stage is looked up once per iteration for its decision phase, search
grounding flag, input-context builder and prompt template. Context builders
only read data produced by strictly earlier stages.
"""
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from stgtrade.core.config import ClaudeConfig, PipelineConfig
from stgtrade.core.types import AgentRole, DecisionPhase, SharedContext, TickerInfo
from stgtrade.prompts.agent_prompts import AGENT_SYSTEM_INSTRUCTIONS, PROMPT_REGISTRY

DOSSIER_LABEL = "### [Global Intelligence Dossier]"
SUMMARY_LABEL = "### [Analysis Summary]"

ContextBuilder = Callable[[SharedContext, str, TickerInfo], str]


def build_briefing_context(context: SharedContext, symbol: str, stock: TickerInfo) -> str:
    """Short synthetic brief for the first stage; nothing has been produced yet."""
    return f"Current security: {stock.name} ({symbol})\nBase price: {stock.price}\n"


def build_dossier_context(context: SharedContext, symbol: str, stock: TickerInfo) -> str:
    return context.dossier


def build_full_context(context: SharedContext, symbol: str, stock: TickerInfo) -> str:
    return f"{DOSSIER_LABEL}\n{context.dossier}\n\n{SUMMARY_LABEL}\n{context.analyst_summary}"


@dataclass(frozen=True)
class StageDescriptor:
    role: AgentRole
    phase: DecisionPhase
    uses_search: bool
    context_builder: ContextBuilder
    prompt_template: str

    @property
    def system_instruction(self) -> str:
        return AGENT_SYSTEM_INSTRUCTIONS[self.role]

    def build_prompt(self, stock_label: str, input_context: str) -> str:
        return self.prompt_template.format(stock_label=stock_label, context=input_context)


def _stage(role: AgentRole, phase: DecisionPhase, builder: ContextBuilder, uses_search: bool = False) -> StageDescriptor:
    return StageDescriptor(
        role=role,
        phase=phase,
        uses_search=uses_search,
        context_builder=builder,
        prompt_template=PROMPT_REGISTRY[role],
    )


DEFAULT_PIPELINE: Tuple[StageDescriptor, ...] = (
    _stage(AgentRole.INTELLIGENCE_OFFICER, DecisionPhase.INTELLIGENCE_GATHERING, build_briefing_context, uses_search=True),
    _stage(AgentRole.FUNDAMENTAL_ANALYST, DecisionPhase.MULTI_DIMENSIONAL_ANALYSIS, build_dossier_context),
    _stage(AgentRole.SENTIMENT_ANALYST, DecisionPhase.MULTI_DIMENSIONAL_ANALYSIS, build_dossier_context),
    _stage(AgentRole.NEWS_POLICY_ANALYST, DecisionPhase.MULTI_DIMENSIONAL_ANALYSIS, build_dossier_context),
    _stage(AgentRole.TECHNICAL_ANALYST, DecisionPhase.MULTI_DIMENSIONAL_ANALYSIS, build_dossier_context),
    _stage(AgentRole.BULL_RESEARCHER, DecisionPhase.BULL_BEAR_DEBATE, build_full_context),
    _stage(AgentRole.BEAR_RESEARCHER, DecisionPhase.BULL_BEAR_DEBATE, build_full_context),
    _stage(AgentRole.RISK_MANAGER, DecisionPhase.RISK_ASSESSMENT, build_full_context),
    _stage(AgentRole.FUND_MANAGER, DecisionPhase.WEIGHTED_DECISION, build_full_context),
)

# Declared roles with instructions and model slots that the default pipeline does not schedule
UNSCHEDULED_ROLES = frozenset({AgentRole.TRADER, AgentRole.FUND_SECRETARY})


def resolve_model(
    role: AgentRole,
    assignment: Optional[Dict[AgentRole, str]],
    use_economy: bool,
    config: ClaudeConfig,
) -> str:
    """Effective model for a stage; the economy tier is both the override and the fallback."""
    if use_economy:
        return config.economy_model
    return (assignment or {}).get(role) or config.economy_model


def cooldown_for(stage: StageDescriptor, model: str, config: PipelineConfig, claude_config: ClaudeConfig) -> float:
    """Seconds to wait after `stage` completes."""
    cooldown = config.internet_search_cooldown if stage.uses_search else config.inference_step_cooldown
    if claude_config.is_pro_model(model):
        cooldown = max(cooldown, config.pro_model_cooldown)
    return cooldown
