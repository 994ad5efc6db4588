import asyncio
import copy
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from stgtrade.core.config import AppConfig
from stgtrade.core.exceptions import CredentialMissingError, QuotaExhaustedError
from stgtrade.core.types import (
    PHASE_COMPLETE,
    ActionStatus,
    AgentAction,
    AgentRole,
    ANALYSIS_ROLES,
    ForecastSeries,
    HistoryRecord,
    PipelineRunResult,
    RunOutcome,
    SharedContext,
    StageReport,
    TickerInfo,
)
from stgtrade.calculators.forecast_evolver import ForecastEvolver, intensity_for_signal
from stgtrade.calculators.signal_extractor import SignalExtractor
from stgtrade.orchestration.pipeline_stages import DEFAULT_PIPELINE, StageDescriptor, cooldown_for, resolve_model
from stgtrade.services.inference_gateway import InferenceGateway
from stgtrade.services.run_archive import RunArchive
from stgtrade.services.stock_quote_provider import StockQuoteProvider

logger = logging.getLogger(__name__)

QUOTA_EXHAUSTED_MESSAGE = "Daily API quota exhausted. Please try again later."
CREDENTIAL_MISSING_MESSAGE = "API key missing or invalid. Configure a key and run again."


def _new_id() -> str:
    return uuid.uuid4().hex[:9]


class CancellationToken:
    """Cooperative stop flag polled by the run loop at fixed checkpoints."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def reset(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class PipelineRunState:
    """Observable state of the current (or most recent) run.

    quota_exhausted is sticky for the session; everything else is run-scoped.
    """
    actions: List[AgentAction] = field(default_factory=list)
    reports: Dict[str, StageReport] = field(default_factory=dict)
    selected_action_id: Optional[str] = None
    current_phase: int = 0
    symbol: str = ""
    stock_name: str = ""
    base_price: float = 0.0
    forecast: Optional[ForecastSeries] = None
    context: SharedContext = field(default_factory=SharedContext)
    cooldown_remaining: float = 0.0
    in_progress: bool = False
    quota_exhausted: bool = False
    credential_required: bool = False
    error_message: Optional[str] = None
    error_role: Optional[AgentRole] = None
    error_model: Optional[str] = None

    def reset_run(self, symbol: str) -> None:
        self.actions = []
        self.reports = {}
        self.selected_action_id = None
        self.current_phase = 1
        self.symbol = symbol
        self.stock_name = ""
        self.base_price = 0.0
        self.forecast = None
        self.context = SharedContext()
        self.cooldown_remaining = 0.0
        self.credential_required = False
        self.error_message = None
        self.error_role = None
        self.error_model = None


class ResearchPipelineOrchestrator:
    """
    Drives the fixed multi-role research pipeline for one ticker at a time.

    Pipeline phases:
    1. Intelligence gathering (search-grounded dossier)
    2. Multi-dimensional analysis (fundamental, sentiment, news/policy, technical)
    3. Bull/bear debate
    4. Risk assessment
    5. Weighted decision

    Stages run strictly in order with cooldowns between them. Each stage's
    output feeds the shared context, its embedded signals nudge the price
    forecast, and a fully completed run is appended to the archive.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        gateway: Optional[InferenceGateway] = None,
        archive: Optional[RunArchive] = None,
        evolver: Optional[ForecastEvolver] = None,
        extractor: Optional[SignalExtractor] = None,
        quote_provider: Optional[Any] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        stages: Optional[Sequence[StageDescriptor]] = None,
    ):
        self.config = config or AppConfig.from_env()
        self.gateway = gateway or InferenceGateway(self.config)
        self.archive = archive or RunArchive(self.config.storage)
        self.evolver = evolver or ForecastEvolver(forecast_days=self.config.pipeline.forecast_days)
        self.extractor = extractor or SignalExtractor()
        if quote_provider is None and self.config.pipeline.quote_source == "yfinance":
            quote_provider = StockQuoteProvider()
        self.quote_provider = quote_provider
        self._sleep = sleep or asyncio.sleep
        self.stages = tuple(stages) if stages is not None else DEFAULT_PIPELINE
        self.state = PipelineRunState()
        self._active_token: Optional[CancellationToken] = None

    @property
    def is_running(self) -> bool:
        return self.state.in_progress

    def pause(self) -> None:
        """Request a cooperative stop; takes effect at the next checkpoint."""
        if self._active_token is not None:
            logger.info("Pause requested", extra={"ticker": self.state.symbol})
            self._active_token.cancel()

    async def _resolve_ticker(self, symbol: str) -> TickerInfo:
        if self.quote_provider is not None:
            return await self.quote_provider.get_quote(symbol)
        return await self.gateway.resolve_ticker(symbol)

    async def _cooldown(self, seconds: float) -> None:
        if seconds <= 0:
            return
        self.state.cooldown_remaining = seconds
        logger.debug("Cooling down", extra={"ticker": self.state.symbol, "cooldown_seconds": seconds})
        try:
            await self._sleep(seconds)
        finally:
            self.state.cooldown_remaining = 0.0

    def _result(self, outcome: RunOutcome, record: Optional[HistoryRecord] = None) -> PipelineRunResult:
        return PipelineRunResult(
            outcome=outcome,
            symbol=self.state.symbol,
            record=record,
            actions=list(self.state.actions),
            reports=dict(self.state.reports),
            error_message=self.state.error_message,
            error_role=self.state.error_role,
            error_model=self.state.error_model,
        )

    def _cancelled_result(self, token: CancellationToken, checkpoint: str) -> Optional[PipelineRunResult]:
        if not token.cancelled:
            return None
        logger.info(
            "Run cancelled",
            extra={"ticker": self.state.symbol, "checkpoint": checkpoint, "completed_stages": len(self.state.actions)},
        )
        return self._result(RunOutcome.CANCELLED)

    def _fail(self, error: Exception, role: Optional[AgentRole] = None, model: Optional[str] = None) -> PipelineRunResult:
        """Translate a run-ending error into the caller-facing outcome."""
        if isinstance(error, CredentialMissingError):
            self.state.credential_required = True
            self.state.error_message = CREDENTIAL_MISSING_MESSAGE
            logger.warning("Credential missing; run stopped", extra={"ticker": self.state.symbol})
            return self._result(RunOutcome.CREDENTIAL_MISSING)

        self.state.error_role = role
        self.state.error_model = model
        if isinstance(error, QuotaExhaustedError):
            self.state.quota_exhausted = True
            self.state.error_message = QUOTA_EXHAUSTED_MESSAGE
            return self._result(RunOutcome.DAILY_QUOTA_EXHAUSTED)
        self.state.error_message = str(error) or error.__class__.__name__
        return self._result(RunOutcome.GENERIC_FAILURE)

    async def run(
        self,
        symbol: str,
        model_assignment: Optional[Dict[AgentRole, str]] = None,
        use_economy_model_for_all: bool = False,
        cancellation: Optional[CancellationToken] = None,
    ) -> PipelineRunResult:
        """
        Execute the full pipeline for `symbol`.

        Args:
            symbol: Ticker to research
            model_assignment: Role -> model id; unset roles use the economy model
            use_economy_model_for_all: Force the economy model for every stage
            cancellation: Token the caller can cancel; pause() cancels it too

        Returns:
            PipelineRunResult. Expected stops (cancel, quota, credential, stage
            failure) are reported through `outcome`, never raised.
        """
        symbol = (symbol or "").strip()
        if self.state.in_progress or not symbol:
            logger.warning("Run rejected", extra={"ticker": symbol, "in_progress": self.state.in_progress})
            return PipelineRunResult(outcome=RunOutcome.REJECTED, symbol=symbol)

        token = cancellation or CancellationToken()
        token.reset()
        self._active_token = token
        self.state.reset_run(symbol)
        self.state.in_progress = True
        if self.state.quota_exhausted:
            logger.warning("Daily quota was exhausted earlier in this session", extra={"ticker": symbol})

        try:
            return await self._execute(symbol, model_assignment, use_economy_model_for_all, token)
        finally:
            self.state.in_progress = False
            self.state.current_phase = PHASE_COMPLETE
            self.state.cooldown_remaining = 0.0
            token.reset()
            self._active_token = None

    async def _execute(
        self,
        symbol: str,
        model_assignment: Optional[Dict[AgentRole, str]],
        use_economy: bool,
        token: CancellationToken,
    ) -> PipelineRunResult:
        pipeline_cfg = self.config.pipeline
        claude_cfg = self.config.claude
        logger.info("Running research pipeline", extra={"ticker": symbol, "stages": len(self.stages)})

        try:
            stock = await self._resolve_ticker(symbol)
        except Exception as e:
            logger.exception("Ticker lookup failed")
            return self._fail(e)
        cancelled = self._cancelled_result(token, "after ticker lookup")
        if cancelled:
            return cancelled

        self.state.stock_name = stock.name
        self.state.base_price = stock.price
        self.state.forecast = self.evolver.seed(stock.price)

        await self._cooldown(pipeline_cfg.pre_pipeline_cooldown)
        cancelled = self._cancelled_result(token, "after pre-pipeline cooldown")
        if cancelled:
            return cancelled

        stock_label = f"{stock.name} ({symbol})"
        total = len(self.stages)
        entered_phase = None
        for index, stage in enumerate(self.stages):
            cancelled = self._cancelled_result(token, "before stage")
            if cancelled:
                return cancelled

            if stage.phase != entered_phase:
                logger.info(f"Entering phase: {stage.phase.label}", extra={"ticker": symbol, "phase": int(stage.phase)})
                entered_phase = stage.phase
            self.state.current_phase = int(stage.phase)
            model = resolve_model(stage.role, model_assignment, use_economy, claude_cfg)
            action = AgentAction(id=_new_id(), role=stage.role, model=model)
            self.state.actions.append(action)
            self.state.selected_action_id = action.id

            logger.info(f"[{index + 1}/{total}] Running {stage.role.value}...", extra={"ticker": symbol, "model": model})
            try:
                input_context = stage.context_builder(self.state.context, symbol, stock)
                generation = await self.gateway.generate(
                    stage.role,
                    stage.build_prompt(stock_label, input_context),
                    stage.system_instruction,
                    stage.uses_search,
                    model,
                )
            except Exception as e:
                action.status = ActionStatus.ERROR
                action.end_time = datetime.now().timestamp()
                if not isinstance(e, CredentialMissingError):
                    logger.exception(f"{stage.role.value} failed")
                    return self._fail(e, stage.role, model)
                return self._fail(e)

            self._complete_stage(stage, action, generation.text, generation.sources)

            if index < total - 1:
                await self._cooldown(cooldown_for(stage, model, pipeline_cfg, claude_cfg))
                cancelled = self._cancelled_result(token, "after cooldown")
                if cancelled:
                    return cancelled

        record = self._build_record(symbol, stock)
        self.archive.append(record)
        logger.info("Pipeline completed", extra={"ticker": symbol, "record_id": record.id})
        return self._result(RunOutcome.COMPLETED, record)

    def _complete_stage(self, stage: StageDescriptor, action: AgentAction, text: str, sources) -> None:
        """Fold a successful stage into context, action, reports and forecast."""
        role = stage.role
        if role == AgentRole.INTELLIGENCE_OFFICER:
            self.state.context = self.state.context.with_dossier(text)
        elif role in ANALYSIS_ROLES:
            self.state.context = self.state.context.with_analysis(role, text)

        score, metrics = self.extractor.extract(role, text)
        action.status = ActionStatus.COMPLETED
        action.output = text
        action.score = score
        action.sentiment_metrics = metrics
        action.end_time = datetime.now().timestamp()
        self.state.reports[action.id] = StageReport(text=text, sources=list(sources), score=score, sentiment_metrics=metrics)

        pipeline_cfg = self.config.pipeline
        intensity = intensity_for_signal(
            role, score, metrics,
            score_nudge_percent=pipeline_cfg.score_nudge_percent,
            sentiment_scale=pipeline_cfg.sentiment_scale,
        )
        if intensity is not None and self.state.forecast is not None:
            self.state.forecast = self.evolver.evolve(self.state.forecast, intensity)
        logger.info(
            f"{role.value} complete",
            extra={"score": score, "has_metrics": metrics is not None, "forecast_intensity": intensity},
        )

    def _build_record(self, symbol: str, stock: TickerInfo) -> HistoryRecord:
        now = datetime.now()
        forecast = self.state.forecast
        return HistoryRecord(
            id=_new_id(),
            symbol=symbol,
            stock_name=stock.name,
            timestamp=now.strftime(HistoryRecord.TIMESTAMP_FORMAT),
            task_name=f"{symbol}_{now.strftime('%Y-%m-%d')}",
            reports=copy.deepcopy(self.state.reports),
            actions=copy.deepcopy(self.state.actions),
            price_data=copy.deepcopy(forecast.points) if forecast is not None else [],
            base_price=stock.price,
        )
