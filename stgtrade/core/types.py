from enum import Enum, IntEnum
from datetime import datetime
from dataclasses import dataclass, field, replace
from typing import Optional, List, Dict, Any

import pandas as pd


class AgentRole(str, Enum):
    """Closed set of analyst / decision-maker identities."""
    INTELLIGENCE_OFFICER = "Intelligence Officer"
    FUND_SECRETARY = "Fund Secretary"
    FUND_MANAGER = "Fund Manager"
    FUNDAMENTAL_ANALYST = "Fundamental Analyst"
    SENTIMENT_ANALYST = "Sentiment Analyst"
    NEWS_POLICY_ANALYST = "News & Policy Analyst"
    TECHNICAL_ANALYST = "Technical Analyst"
    BULL_RESEARCHER = "Bull Researcher"
    BEAR_RESEARCHER = "Bear Researcher"
    TRADER = "Trader"
    RISK_MANAGER = "Risk Manager"


# Parallel-analysis phase roles: read the dossier, feed the analyst summary
ANALYSIS_ROLES = frozenset({
    AgentRole.FUNDAMENTAL_ANALYST,
    AgentRole.SENTIMENT_ANALYST,
    AgentRole.NEWS_POLICY_ANALYST,
    AgentRole.TECHNICAL_ANALYST,
})

# Roles whose [SCORE: N] nudges the price forecast
PRICE_SIGNAL_ROLES = frozenset({
    AgentRole.FUNDAMENTAL_ANALYST,
    AgentRole.TECHNICAL_ANALYST,
})


class DecisionPhase(IntEnum):
    INTELLIGENCE_GATHERING = 1
    MULTI_DIMENSIONAL_ANALYSIS = 2
    BULL_BEAR_DEBATE = 3
    RISK_ASSESSMENT = 4
    WEIGHTED_DECISION = 5

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


# Phase marker once every stage has been processed
PHASE_COMPLETE = 6


class ReportType(str, Enum):
    INTELLIGENCE_DOSSIER = "Intelligence Dossier"
    ANALYSIS_REPORT = "Analysis Report"
    BULL_BEAR_DEBATE = "Bull/Bear Debate Report"
    TRADE_DECISION = "Trade Decision Report"
    RISK_ASSESSMENT = "Risk Assessment Report"
    FINAL_RECOMMENDATION = "Final Trade Recommendation"


REPORT_TYPE_BY_ROLE: Dict[AgentRole, ReportType] = {
    AgentRole.INTELLIGENCE_OFFICER: ReportType.INTELLIGENCE_DOSSIER,
    AgentRole.FUNDAMENTAL_ANALYST: ReportType.ANALYSIS_REPORT,
    AgentRole.SENTIMENT_ANALYST: ReportType.ANALYSIS_REPORT,
    AgentRole.NEWS_POLICY_ANALYST: ReportType.ANALYSIS_REPORT,
    AgentRole.TECHNICAL_ANALYST: ReportType.ANALYSIS_REPORT,
    AgentRole.BULL_RESEARCHER: ReportType.BULL_BEAR_DEBATE,
    AgentRole.BEAR_RESEARCHER: ReportType.BULL_BEAR_DEBATE,
    AgentRole.TRADER: ReportType.TRADE_DECISION,
    AgentRole.RISK_MANAGER: ReportType.RISK_ASSESSMENT,
    AgentRole.FUND_MANAGER: ReportType.FINAL_RECOMMENDATION,
    AgentRole.FUND_SECRETARY: ReportType.FINAL_RECOMMENDATION,
}


class ModelTier(str, Enum):
    PRO = "pro"
    STANDARD = "standard"
    ECONOMY = "economy"


class ActionStatus(str, Enum):
    IDLE = "idle"
    WORKING = "working"
    COMPLETED = "completed"
    ERROR = "error"


class RunOutcome(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    CREDENTIAL_MISSING = "credential_missing"
    DAILY_QUOTA_EXHAUSTED = "daily_quota_exhausted"
    GENERIC_FAILURE = "generic_failure"
    REJECTED = "rejected"


# --- Extracted signals
@dataclass
class SentimentMetrics:
    """Structured sentiment block emitted by the sentiment analyst."""
    score: float          # -1 to 1
    confidence: float     # 0 to 1
    intensity: float      # 0 to 10
    decay: float          # 0 to 1
    disagreement: float   # 0 to 1

    FIELDS = ("score", "confidence", "intensity", "decay", "disagreement")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SentimentMetrics":
        """Build from a parsed JSON object; raises KeyError/TypeError/ValueError on bad shape."""
        values = {}
        for name in cls.FIELDS:
            raw = data[name]
            if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                raise TypeError(f"{name} must be numeric, got {type(raw).__name__}")
            values[name] = float(raw)
        return cls(**values)

    def to_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in self.FIELDS}


# --- Inference gateway payloads
@dataclass
class GroundingSource:
    """Citation returned by a search-grounded generation."""
    uri: str
    title: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"uri": self.uri, "title": self.title}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GroundingSource":
        return cls(uri=data["uri"], title=data.get("title") or data["uri"])


@dataclass
class TickerInfo:
    name: str
    price: float


@dataclass
class GenerationResult:
    text: str
    sources: List[GroundingSource] = field(default_factory=list)


# --- Per-run execution records
@dataclass
class AgentAction:
    """Execution record for one stage of one run."""
    id: str
    role: AgentRole
    status: ActionStatus = ActionStatus.WORKING
    output: Optional[str] = None
    score: Optional[int] = None
    sentiment_metrics: Optional[SentimentMetrics] = None
    start_time: float = field(default_factory=lambda: datetime.now().timestamp())
    end_time: Optional[float] = None
    model: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "status": self.status.value,
            "output": self.output,
            "score": self.score,
            "sentiment_metrics": self.sentiment_metrics.to_dict() if self.sentiment_metrics else None,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "model": self.model,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentAction":
        metrics = data.get("sentiment_metrics")
        return cls(
            id=data["id"],
            role=AgentRole(data["role"]),
            status=ActionStatus(data.get("status", ActionStatus.IDLE.value)),
            output=data.get("output"),
            score=data.get("score"),
            sentiment_metrics=SentimentMetrics.from_dict(metrics) if metrics else None,
            start_time=data.get("start_time") or 0.0,
            end_time=data.get("end_time"),
            model=data.get("model"),
        )


@dataclass
class StageReport:
    """Output of one completed stage, keyed by action id in a run."""
    text: str
    sources: List[GroundingSource] = field(default_factory=list)
    score: Optional[int] = None
    sentiment_metrics: Optional[SentimentMetrics] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "sources": [s.to_dict() for s in self.sources],
            "score": self.score,
            "sentiment_metrics": self.sentiment_metrics.to_dict() if self.sentiment_metrics else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StageReport":
        metrics = data.get("sentiment_metrics")
        return cls(
            text=data.get("text", ""),
            sources=[GroundingSource.from_dict(s) for s in data.get("sources") or [] if s.get("uri")],
            score=data.get("score"),
            sentiment_metrics=SentimentMetrics.from_dict(metrics) if metrics else None,
        )


# --- Price forecast
@dataclass
class ForecastPoint:
    day_index: int
    date: str
    price: float
    is_future: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"day_index": self.day_index, "date": self.date, "price": self.price, "is_future": self.is_future}


@dataclass
class ForecastSeries:
    """Rolling price forecast; index 0 is the historical anchor."""
    base_price: float
    points: List[ForecastPoint] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.points)

    def __getitem__(self, index: int) -> ForecastPoint:
        return self.points[index]

    @property
    def last_price(self) -> float:
        return self.points[-1].price if self.points else self.base_price

    @property
    def projected_change_pct(self) -> float:
        """Percent move from base price to the last forecast point."""
        if not self.base_price:
            return 0.0
        return (self.last_price - self.base_price) / self.base_price * 100

    def to_frame(self) -> pd.DataFrame:
        """Forecast as a DataFrame indexed by date."""
        frame = pd.DataFrame([p.to_dict() for p in self.points], columns=["day_index", "date", "price", "is_future"])
        frame["date"] = pd.to_datetime(frame["date"])
        return frame.set_index("date")

    def to_dict(self) -> Dict[str, Any]:
        return {"base_price": self.base_price, "points": [p.to_dict() for p in self.points]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ForecastSeries":
        return cls(
            base_price=data.get("base_price", 0.0),
            points=[ForecastPoint(**p) for p in data.get("points", [])],
        )


# --- Shared context between stages
@dataclass(frozen=True)
class SharedContext:
    """Context accumulated across stages.

    dossier: intelligence officer output, read by every later stage.
    analyst_summary: append-only, role-labelled analysis outputs, read from the debate phase onward.
    """
    dossier: str = ""
    analyst_summary: str = ""

    def with_dossier(self, text: str) -> "SharedContext":
        return replace(self, dossier=text)

    def with_analysis(self, role: AgentRole, text: str) -> "SharedContext":
        block = f"\n\n--- {role.value} Assessment ---\n{text}\n"
        return replace(self, analyst_summary=self.analyst_summary + block)


# --- Archived run
@dataclass
class HistoryRecord:
    """Immutable archive entry for a completed run."""
    id: str
    symbol: str
    stock_name: str
    timestamp: str
    task_name: str
    reports: Dict[str, StageReport] = field(default_factory=dict)
    actions: List[AgentAction] = field(default_factory=list)
    price_data: List[ForecastPoint] = field(default_factory=list)
    base_price: float = 0.0

    TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

    @property
    def recorded_at(self) -> datetime:
        return datetime.strptime(self.timestamp, self.TIMESTAMP_FORMAT)

    @property
    def forecast(self) -> ForecastSeries:
        return ForecastSeries(base_price=self.base_price, points=list(self.price_data))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "id": self.id,
            "symbol": self.symbol,
            "stock_name": self.stock_name,
            "timestamp": self.timestamp,
            "task_name": self.task_name,
            "reports": {action_id: r.to_dict() for action_id, r in self.reports.items()},
            "actions": [a.to_dict() for a in self.actions],
            "price_data": [p.to_dict() for p in self.price_data],
            "base_price": self.base_price,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryRecord":
        return cls(
            id=data["id"],
            symbol=data["symbol"],
            stock_name=data.get("stock_name", ""),
            timestamp=data["timestamp"],
            task_name=data.get("task_name", ""),
            reports={k: StageReport.from_dict(v) for k, v in (data.get("reports") or {}).items()},
            actions=[AgentAction.from_dict(a) for a in data.get("actions") or []],
            price_data=[ForecastPoint(**p) for p in data.get("price_data") or []],
            base_price=data.get("base_price", 0.0),
        )


@dataclass
class PipelineRunResult:
    """What a caller sees once run() returns."""
    outcome: RunOutcome
    symbol: str = ""
    record: Optional[HistoryRecord] = None
    actions: List[AgentAction] = field(default_factory=list)
    reports: Dict[str, StageReport] = field(default_factory=dict)
    error_message: Optional[str] = None
    error_role: Optional[AgentRole] = None
    error_model: Optional[str] = None

    @property
    def completed_actions(self) -> List[AgentAction]:
        return [a for a in self.actions if a.status == ActionStatus.COMPLETED]
