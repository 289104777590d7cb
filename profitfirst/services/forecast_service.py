"""
Forecast Estimator

Extrapolates the next N months from trailing monthly aggregates.

Two strategies:
- statistical: average month-over-month revenue growth, clamped to
  [-20%, +30%], applied with diminishing effect (1 + rate * i * 0.8) to the
  last actual month
- model-assisted: Claude predicts the months; its JSON is validated and any
  problem falls back to the statistical result without surfacing an error
"""
import asyncio
import json
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from profitfirst.config import get_settings
from profitfirst.services.aggregation_service import DailyBucket
from profitfirst.services.llm_service import LLMService
from profitfirst.utils.dates import add_months, month_name, month_start
from profitfirst.utils.helpers import safe_divide
from profitfirst.utils.logger import log

settings = get_settings()

ZERO = Decimal("0")
MIN_GROWTH = Decimal("-0.2")
MAX_GROWTH = Decimal("0.3")
SINGLE_MONTH_GROWTH = Decimal("0.05")
DIMINISH = Decimal("0.8")


@dataclass(frozen=True)
class MonthMetrics:
    key: str  # full month name, e.g. "October"
    month: date  # first day of the month
    revenue: Decimal = ZERO
    orders: Decimal = ZERO
    aov: Decimal = ZERO
    cogs: Decimal = ZERO
    gross_profit: Decimal = ZERO
    ads: Decimal = ZERO
    shipping: Decimal = ZERO
    net_profit: Decimal = ZERO
    is_prediction: bool = False

    @property
    def other_expenses(self) -> Decimal:
        return self.ads + self.shipping

    @property
    def roas(self) -> Decimal:
        return safe_divide(self.revenue, self.ads)

    def values(self) -> Dict[str, float]:
        return {
            "revenue": float(self.revenue),
            "orders": float(self.orders),
            "aov": float(self.aov),
            "cogs": float(self.cogs),
            "grossProfit": float(self.gross_profit),
            "ads": float(self.ads),
            "shipping": float(self.shipping),
            "netProfit": float(self.net_profit),
        }


@dataclass(frozen=True)
class StatisticalForecast:
    months: List[MonthMetrics]
    growth_rate: Decimal
    method: str = field(default="statistical", init=False)


@dataclass(frozen=True)
class ModelAssistedForecast:
    months: List[MonthMetrics]
    model: str
    method: str = field(default="model_assisted", init=False)


Forecast = Union[StatisticalForecast, ModelAssistedForecast]


# ---------------------------------------------------------------- history

def build_monthly_history(buckets: Sequence[DailyBucket], months: Sequence[date]) -> List[MonthMetrics]:
    """Sum daily buckets into one MonthMetrics per requested month (oldest first)."""
    history = []
    for first_day in months:
        first_day = month_start(first_day)
        days = [b for b in buckets if month_start(b.day) == first_day]
        revenue = sum((b.revenue for b in days), ZERO)
        orders = Decimal(sum(b.orders for b in days))
        cogs = sum((b.cogs for b in days), ZERO)
        ads = sum((b.ad_spend for b in days), ZERO)
        shipping = sum((b.shipping_cost for b in days), ZERO)
        history.append(MonthMetrics(
            key=month_name(first_day),
            month=first_day,
            revenue=revenue,
            orders=orders,
            aov=safe_divide(revenue, orders),
            cogs=cogs,
            gross_profit=revenue - cogs,
            ads=ads,
            shipping=shipping,
            net_profit=revenue - cogs - ads - shipping,
        ))
    return history


# ------------------------------------------------------------ statistical

def average_growth_rate(history: Sequence[MonthMetrics]) -> Decimal:
    """
    Mean month-over-month revenue growth, clamped to [-20%, +30%].

    Pairs whose previous month had no revenue add nothing but still count in
    the denominator. A single month assumes 5%.
    """
    if len(history) <= 1:
        rate = SINGLE_MONTH_GROWTH
    else:
        total = ZERO
        for previous, current in zip(history, history[1:]):
            if previous.revenue > 0:
                total += (current.revenue - previous.revenue) / previous.revenue
        rate = total / (len(history) - 1)
    return max(MIN_GROWTH, min(MAX_GROWTH, rate))


def _round(value: Decimal) -> Decimal:
    return value.quantize(Decimal(1), rounding=ROUND_HALF_UP)


def statistical_forecast(history: Sequence[MonthMetrics], months: int, today: date) -> StatisticalForecast:
    rate = average_growth_rate(history)
    last = history[-1] if history else MonthMetrics(key=month_name(today), month=month_start(today))

    predictions = []
    for i in range(1, months + 1):
        first_day = add_months(today, i)
        growth = 1 + rate * i * DIMINISH

        revenue = last.revenue * growth
        orders = last.orders * growth
        aov = revenue / orders if orders > 0 else last.aov
        cogs = last.cogs * growth
        ads = last.ads * growth
        shipping = last.shipping * growth

        predictions.append(MonthMetrics(
            key=month_name(first_day),
            month=first_day,
            revenue=_round(revenue),
            orders=_round(orders),
            aov=_round(aov),
            cogs=_round(cogs),
            gross_profit=_round(revenue - cogs),
            ads=_round(ads),
            shipping=_round(shipping),
            net_profit=_round(revenue - cogs - ads - shipping),
            is_prediction=True,
        ))

    return StatisticalForecast(months=predictions, growth_rate=rate)


# -------------------------------------------------------- model-assisted

class PredictionValues(BaseModel):
    # json.loads accepts NaN and Infinity; a forecast built on them cannot be formatted
    model_config = ConfigDict(allow_inf_nan=False)

    revenue: float
    orders: float
    aov: float
    cogs: float
    grossProfit: float
    ads: float
    shipping: float
    netProfit: float


class PredictionItem(BaseModel):
    key: str
    values: PredictionValues


class PredictionPayload(BaseModel):
    predictions: List[PredictionItem]


_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def parse_model_predictions(text: str, months: int, today: date) -> List[MonthMetrics]:
    """
    Validate the model's JSON answer.

    Raises ValueError when the text is not JSON, misses a field or has fewer
    than ``months`` predictions.
    """
    cleaned = _FENCE.sub("", (text or "").strip())
    try:
        payload = PredictionPayload.model_validate(json.loads(cleaned))
    except (json.JSONDecodeError, ValidationError) as e:
        raise ValueError(f"invalid prediction payload: {e}") from e

    if len(payload.predictions) < months:
        raise ValueError(f"expected {months} predictions, got {len(payload.predictions)}")

    result = []
    for i, item in enumerate(payload.predictions[:months], start=1):
        v = item.values
        first_day = add_months(today, i)
        result.append(MonthMetrics(
            key=item.key.strip() or month_name(first_day),
            month=first_day,
            revenue=_round(Decimal(str(v.revenue))),
            orders=_round(Decimal(str(v.orders))),
            aov=_round(Decimal(str(v.aov))),
            cogs=_round(Decimal(str(v.cogs))),
            gross_profit=_round(Decimal(str(v.grossProfit))),
            ads=_round(Decimal(str(v.ads))),
            shipping=_round(Decimal(str(v.shipping))),
            net_profit=_round(Decimal(str(v.netProfit))),
            is_prediction=True,
        ))
    return result


class ForecastService:
    def __init__(self, llm_service: Optional[LLMService] = None):
        self.llm_service = llm_service
        self.months = settings.forecast_months
        self.timeout = settings.llm_timeout_seconds

    async def forecast(self, history: Sequence[MonthMetrics], today: date, use_model: bool = False) -> Forecast:
        """Statistical by default; model-assisted when requested, falling back silently."""
        fallback = statistical_forecast(history, self.months, today)
        if not use_model:
            return fallback

        llm = self.llm_service or LLMService()
        if not llm.enabled:
            log.info("Model-assisted forecast requested but LLM is disabled; using statistical")
            return fallback

        month_keys = [month_name(add_months(today, i)) for i in range(1, self.months + 1)]
        history_payload = [{"key": m.key, "values": m.values()} for m in history]
        try:
            text = await asyncio.wait_for(
                asyncio.to_thread(llm.predict_months, history_payload, self.months, month_keys),
                timeout=self.timeout,
            )
            if text is None:
                raise ValueError("no model response")
            months = parse_model_predictions(text, self.months, today)
        except asyncio.TimeoutError:
            log.warning(f"LLM forecast timed out after {self.timeout}s; using statistical")
            return fallback
        except ValueError as e:
            log.warning(f"LLM forecast unusable ({e}); using statistical")
            return fallback

        return ModelAssistedForecast(months=months, model=settings.llm_model)
