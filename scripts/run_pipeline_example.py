"""
Run one research pipeline for a ticker and save the archived record as JSON
plus a rendered HTML report.

The run makes live Claude calls and waits out the configured cooldowns, so a
full pass takes several minutes. The API key comes from the local settings
file when one was saved, otherwise from ANTHROPIC_API_KEY.

Usage:
    python scripts/run_pipeline_example.py AAPL
    python scripts/run_pipeline_example.py AAPL --economy
"""
import os
import sys
import json
import asyncio
import logging
import argparse

from stgtrade.core.config import AppConfig
from stgtrade.core.types import RunOutcome
from stgtrade.orchestration.research_pipeline_orchestrator import ResearchPipelineOrchestrator
from stgtrade.services.inference_gateway import InferenceGateway
from stgtrade.services.report_renderer import render_report, report_filename
from stgtrade.services.settings_store import SettingsStore

OUT_DIR = "runs"


async def run(symbol: str, economy: bool) -> int:
    config = AppConfig.from_env()
    settings = SettingsStore(config.storage, claude_config=config.claude)
    gateway = InferenceGateway(config, api_key=settings.load_api_key())
    orchestrator = ResearchPipelineOrchestrator(config, gateway=gateway)

    result = await orchestrator.run(
        symbol,
        model_assignment=settings.load_model_assignment(),
        use_economy_model_for_all=economy,
    )

    if result.outcome != RunOutcome.COMPLETED:
        print(f"Run ended: {result.outcome.value}")
        if result.error_message:
            role = result.error_role.value if result.error_role else "-"
            print(f"  {result.error_message} (role: {role}, model: {result.error_model or '-'})")
        print(f"  Completed stages: {len(result.completed_actions)}")
        return 1

    record = result.record
    os.makedirs(OUT_DIR, exist_ok=True)
    base = os.path.join(OUT_DIR, report_filename(record))
    with open(base + ".json", "w", encoding="utf-8") as f:
        json.dump(record.to_dict(), f, indent=2, ensure_ascii=False)
    with open(base + ".html", "w", encoding="utf-8") as f:
        f.write(render_report(record))

    forecast_change = 0.0
    if record.price_data and record.base_price:
        forecast_change = (record.price_data[-1].price - record.base_price) / record.base_price * 100
    print(f"Saved {base}.json and {base}.html")
    print(f"{record.stock_name} ({record.symbol}) base {record.base_price:.2f}, forecast move {forecast_change:+.2f}%")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Run the multi-role research pipeline for one ticker.")
    parser.add_argument("symbol")
    parser.add_argument("--economy", action="store_true", help="use the economy model for every stage")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        sys.exit(asyncio.run(run(args.symbol.upper(), args.economy)))
    except KeyboardInterrupt:
        print("Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
