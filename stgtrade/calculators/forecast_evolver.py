import logging
from datetime import date, timedelta
from typing import Optional

import numpy as np

from stgtrade.core.types import AgentRole, ForecastPoint, ForecastSeries, PRICE_SIGNAL_ROLES, SentimentMetrics

logger = logging.getLogger(__name__)


class ForecastEvolver:
    """Biased random walk over a seeded price series.

    Not a pricing model: the series is a visualization that drifts with the
    direction of analyst signals. Index 0 is the historical anchor and is never
    perturbed.
    """

    DEFAULT_FORECAST_DAYS = 180
    DEFAULT_NOISE_PCT = 0.5
    DATE_FORMAT = "%Y-%m-%d"

    def __init__(
        self,
        forecast_days: int = DEFAULT_FORECAST_DAYS,
        noise_pct: float = DEFAULT_NOISE_PCT,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        if forecast_days < 1:
            raise ValueError("forecast_days must be >= 1")
        self.forecast_days = forecast_days
        self.noise_pct = noise_pct
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    def seed(self, base_price: float, start_date: Optional[date] = None) -> ForecastSeries:
        """Flat series of forecast_days + 1 points at base_price, one calendar day apart."""
        start_date = start_date or date.today()
        points = [
            ForecastPoint(
                day_index=i,
                date=(start_date + timedelta(days=i)).strftime(self.DATE_FORMAT),
                price=float(base_price),
                is_future=i > 0,
            )
            for i in range(self.forecast_days + 1)
        ]
        return ForecastSeries(base_price=float(base_price), points=points)

    def evolve(self, series: ForecastSeries, intensity_percent: float) -> ForecastSeries:
        """Return a new series with every future point nudged by intensity_percent.

        price' = price * (1 + intensity/100 * day_index/forecast_days) + uniform(-noise, +noise) * price
        """
        half_band = self.noise_pct / 100
        evolved = []
        for point in series.points:
            if not point.is_future:
                evolved.append(point)
                continue
            drift = point.price * (intensity_percent / 100) * (point.day_index / self.forecast_days)
            noise = self.rng.uniform(-half_band, half_band) * point.price
            evolved.append(ForecastPoint(
                day_index=point.day_index,
                date=point.date,
                price=float(point.price + drift + noise),
                is_future=True,
            ))
        logger.debug("Evolved forecast", extra={"intensity_percent": intensity_percent, "points": len(evolved)})
        return ForecastSeries(base_price=series.base_price, points=evolved)


def intensity_for_signal(
    role: AgentRole,
    score: Optional[int],
    metrics: Optional[SentimentMetrics],
    score_nudge_percent: float = 4.0,
    sentiment_scale: float = 5.0,
) -> Optional[float]:
    """Forecast intensity implied by a stage's signals, or None when the forecast should not move."""
    if score is not None and role in PRICE_SIGNAL_ROLES:
        return score_nudge_percent if score > 50 else -score_nudge_percent
    if metrics is not None:
        return metrics.score * sentiment_scale
    return None
