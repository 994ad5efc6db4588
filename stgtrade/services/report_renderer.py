"""HTML export of an archived run.

The fund manager's decision is placed first and highlighted. Every other stage
follows in pipeline order with its score tag, sentiment metrics table and
citation list. All record text is escaped.
"""
from html import escape
from typing import List

from stgtrade.core.types import REPORT_TYPE_BY_ROLE, AgentAction, AgentRole, HistoryRecord, SentimentMetrics, StageReport

REPORT_TITLE = "StGTrade AI Investment Committee Report"
EMPTY_STAGE_TEXT = "No text was produced for this stage."

REPORT_STYLE = """
body { font-family: sans-serif; padding: 40px; color: #1e293b; line-height: 1.6; background: white; }
.header { border-bottom: 3px solid #3b82f6; padding-bottom: 20px; margin-bottom: 30px; }
.header h1 { margin: 0; font-size: 24px; }
.meta { font-size: 12px; color: #64748b; margin-top: 10px; display: grid; grid-template-columns: 1fr 1fr; gap: 8px; }
.report-section { margin-bottom: 40px; border-bottom: 1px solid #f1f5f9; padding-bottom: 20px; }
.report-section.priority { border: 2px solid #3b82f6; border-radius: 12px; padding: 25px; background: #f0f7ff; }
.score-tag { display: inline-block; background: #3b82f6; color: white; padding: 2px 8px; border-radius: 4px; font-size: 11px; font-family: monospace; }
.role-title { font-size: 18px; font-weight: 800; margin-bottom: 12px; }
.report-type { font-size: 11px; text-transform: uppercase; letter-spacing: 1px; color: #64748b; margin-bottom: 4px; }
.report-text { white-space: pre-wrap; font-size: 14px; color: #334155; }
.metrics-table { font-size: 11px; border-collapse: collapse; margin-top: 15px; max-width: 400px; }
.metrics-table td { padding: 4px 8px; border: 1px solid #e2e8f0; }
.metrics-table .label { background: #f8fafc; font-weight: bold; }
.source-list { margin-top: 15px; background: #f8fafc; padding: 15px; border-radius: 8px; font-size: 11px; }
.source-item { color: #64748b; margin-bottom: 4px; display: block; }
.footer { margin-top: 50px; text-align: center; font-size: 10px; color: #94a3b8; }
"""


def report_filename(record: HistoryRecord) -> str:
    """e.g. StGTrade_AI_Report__AAPL_20250314"""
    return f"StGTrade_AI_Report__{record.symbol}_{record.recorded_at.strftime('%Y%m%d')}"


def order_actions(actions: List[AgentAction]) -> List[AgentAction]:
    """Fund manager first, everything else in original order."""
    managers = [a for a in actions if a.role == AgentRole.FUND_MANAGER]
    if not managers:
        return list(actions)
    return managers[:1] + [a for a in actions if a is not managers[0]]


def _render_metrics(metrics: SentimentMetrics) -> str:
    return (
        '<table class="metrics-table">'
        f'<tr><td class="label">Sentiment score</td><td>{metrics.score:.2f}</td>'
        f'<td class="label">Confidence</td><td>{metrics.confidence * 100:.0f}%</td></tr>'
        f'<tr><td class="label">Intensity</td><td>{metrics.intensity:.1f}</td>'
        f'<td class="label">Disagreement</td><td>{metrics.disagreement * 100:.0f}%</td></tr>'
        f'<tr><td class="label">Decay</td><td>{metrics.decay:.2f}</td><td></td><td></td></tr>'
        '</table>'
    )


def _render_sources(report: StageReport) -> str:
    items = [
        f'<a href="{escape(s.uri, quote=True)}" class="source-item" target="_blank">[{i}] {escape(s.title or s.uri)}</a>'
        for i, s in enumerate((s for s in report.sources if s.uri), start=1)
    ]
    if not items:
        return ""
    return '<div class="source-list"><div><strong>Grounding sources:</strong></div>' + "".join(items) + "</div>"


def _render_section(action: AgentAction, report: StageReport) -> str:
    is_manager = action.role == AgentRole.FUND_MANAGER
    parts = [
        f'<div class="report-section{" priority" if is_manager else ""}">',
        f'<div class="report-type">{escape(REPORT_TYPE_BY_ROLE[action.role].value)}</div>',
        f'<div class="role-title">{escape(action.role.value)}{" [Final Decision]" if is_manager else ""}</div>',
    ]
    if report is not None and report.score is not None:
        parts.append(f'<div class="score-tag">QUANT SCORE: {report.score}</div>')
    if report is not None and report.sentiment_metrics is not None:
        parts.append(_render_metrics(report.sentiment_metrics))
    text = report.text if report is not None and report.text else EMPTY_STAGE_TEXT
    parts.append(f'<div class="report-text">{escape(text)}</div>')
    if report is not None:
        parts.append(_render_sources(report))
    parts.append("</div>")
    return "".join(parts)


def render_report(record: HistoryRecord) -> str:
    """Render `record` as a standalone HTML document."""
    sections = "".join(
        _render_section(action, record.reports.get(action.id)) for action in order_actions(record.actions)
    )
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{escape(report_filename(record))}</title>"
        f"<style>{REPORT_STYLE}</style></head><body>"
        '<div class="header">'
        f"<h1>{REPORT_TITLE}</h1>"
        '<div class="meta">'
        f"<div><strong>Security:</strong> {escape(record.stock_name)} ({escape(record.symbol)})</div>"
        f"<div><strong>Base price:</strong> {record.base_price:.2f}</div>"
        f"<div><strong>Generated:</strong> {escape(record.timestamp)}</div>"
        f"<div><strong>Task:</strong> {escape(record.task_name)}</div>"
        "</div></div>"
        f"{sections}"
        '<div class="footer"><p>For internal investment research only. Not investment advice.</p></div>'
        "</body></html>"
    )
