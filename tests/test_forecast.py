"""
Forecast estimator: growth clamping, statistical projection and the
model-assisted path with its silent fallback.
"""
import asyncio
import json
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from profitfirst.services.aggregation_service import DailyBucket
from profitfirst.services.dashboard_formatter import build_forecast_response
from profitfirst.services.forecast_service import (
    ForecastService,
    MonthMetrics,
    average_growth_rate,
    build_monthly_history,
    parse_model_predictions,
    statistical_forecast,
)
from profitfirst.services.llm_service import LLMService

TODAY = date(2024, 10, 19)


def _run(coro):
    """Run an async coroutine in a sync test."""
    return asyncio.run(coro)


def _month(key, first_day, revenue, orders=10, cogs=0, ads=0, shipping=0):
    revenue, cogs, ads, shipping = (Decimal(str(v)) for v in (revenue, cogs, ads, shipping))
    return MonthMetrics(
        key=key,
        month=first_day,
        revenue=revenue,
        orders=Decimal(orders),
        aov=revenue / orders if orders else Decimal("0"),
        cogs=cogs,
        gross_profit=revenue - cogs,
        ads=ads,
        shipping=shipping,
        net_profit=revenue - cogs - ads - shipping,
    )


AUG = _month("August", date(2024, 8, 1), 10000, orders=100, cogs=4000, ads=2000, shipping=500)
SEP = _month("September", date(2024, 9, 1), 11000, orders=110, cogs=4400, ads=2200, shipping=550)


class FakeMessages:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.calls = 0

    def create(self, **kwargs):
        self.calls += 1
        if self.error:
            raise self.error
        return SimpleNamespace(content=[SimpleNamespace(text=self.text)])


def _llm(text=None, error=None):
    return LLMService(client=SimpleNamespace(messages=FakeMessages(text, error)))


# ---------------------------------------------------------------------------
# Growth rate
# ---------------------------------------------------------------------------

def test_growth_rate_is_average_month_over_month():
    assert average_growth_rate([AUG, SEP]) == Decimal("0.1")


def test_growth_rate_is_clamped():
    boom = _month("September", date(2024, 9, 1), 50000)
    crash = _month("September", date(2024, 9, 1), 1000)
    assert average_growth_rate([AUG, boom]) == Decimal("0.3")
    assert average_growth_rate([AUG, crash]) == Decimal("-0.2")


def test_single_month_assumes_five_percent():
    assert average_growth_rate([AUG]) == Decimal("0.05")


def test_zero_revenue_month_adds_no_growth():
    empty = _month("July", date(2024, 7, 1), 0, orders=0)
    # (0 + 0.1) / 2
    assert average_growth_rate([empty, AUG, SEP]) == Decimal("0.05")


# ---------------------------------------------------------------------------
# Statistical projection
# ---------------------------------------------------------------------------

def test_statistical_forecast_diminishes_growth():
    forecast = statistical_forecast([AUG, SEP], 3, TODAY)

    assert forecast.method == "statistical"
    assert [m.key for m in forecast.months] == ["November", "December", "January"]
    assert all(m.is_prediction for m in forecast.months)
    # 11000 * (1 + 0.1 * i * 0.8)
    assert [m.revenue for m in forecast.months] == [Decimal("11880"), Decimal("12760"), Decimal("13640")]
    first = forecast.months[0]
    assert first.cogs == Decimal("4752")
    assert first.net_profit == first.revenue - first.cogs - first.ads - first.shipping


def test_build_monthly_history_sums_buckets():
    buckets = [
        DailyBucket(day=date(2024, 8, 5), label="Aug 5", orders=2, revenue=Decimal("500"),
                    cogs=Decimal("100"), ad_spend=Decimal("50"), shipping_cost=Decimal("20")),
        DailyBucket(day=date(2024, 8, 6), label="Aug 6", orders=1, revenue=Decimal("250"),
                    cogs=Decimal("50")),
        DailyBucket(day=date(2024, 9, 1), label="Sep 1", orders=1, revenue=Decimal("100")),
    ]
    aug, sep = build_monthly_history(buckets, [date(2024, 8, 1), date(2024, 9, 1)])

    assert aug.key == "August"
    assert aug.revenue == Decimal("750")
    assert aug.orders == Decimal("3")
    assert aug.aov == Decimal("250")
    assert aug.net_profit == Decimal("530")
    assert sep.revenue == Decimal("100")


# ---------------------------------------------------------------------------
# Model-assisted
# ---------------------------------------------------------------------------

def _predictions(keys, revenue=20000):
    return json.dumps({"predictions": [
        {"key": k, "values": {"revenue": revenue, "orders": 200, "aov": 100, "cogs": 8000,
                              "grossProfit": 12000, "ads": 4000, "shipping": 1000, "netProfit": 7000}}
        for k in keys
    ]})


def test_parse_model_predictions_strips_code_fences():
    text = "```json\n" + _predictions(["November", "December", "January"]) + "\n```"
    months = parse_model_predictions(text, 3, TODAY)
    assert [m.key for m in months] == ["November", "December", "January"]
    assert months[0].revenue == Decimal("20000")


@pytest.mark.parametrize("text", [
    "not json",
    json.dumps({"predictions": [{"key": "November", "values": {"revenue": 1}}]}),
    _predictions(["November"]),
    _predictions(["November", "December", "January"], revenue=float("nan")),
    _predictions(["November", "December", "January"], revenue=float("inf")),
])
def test_parse_model_predictions_rejects_bad_payloads(text):
    with pytest.raises(ValueError):
        parse_model_predictions(text, 3, TODAY)


def test_model_forecast_used_when_valid():
    service = ForecastService(llm_service=_llm(_predictions(["November", "December", "January"])))
    forecast = _run(service.forecast([AUG, SEP], TODAY, use_model=True))
    assert forecast.method == "model_assisted"
    assert forecast.months[1].revenue == Decimal("20000")


def test_model_garbage_falls_back_to_statistical():
    service = ForecastService(llm_service=_llm("I think revenue will go up!"))
    forecast = _run(service.forecast([AUG, SEP], TODAY, use_model=True))
    assert forecast.method == "statistical"
    assert forecast.months[0].revenue == Decimal("11880")


def test_model_nan_values_fall_back_to_statistical():
    """A NaN revenue used to pass validation and break currency formatting."""
    text = _predictions(["November", "December", "January"], revenue=float("nan"))
    service = ForecastService(llm_service=_llm(text))
    forecast = _run(service.forecast([AUG, SEP], TODAY, use_model=True))

    assert forecast.method == "statistical"
    response = build_forecast_response([AUG, SEP], forecast, "demo.myshopify.com")
    assert response["method"] == "statistical"


def test_model_error_falls_back_to_statistical():
    service = ForecastService(llm_service=_llm(error=RuntimeError("overloaded")))
    forecast = _run(service.forecast([AUG, SEP], TODAY, use_model=True))
    assert forecast.method == "statistical"


def test_model_not_called_unless_requested():
    llm = _llm(_predictions(["November", "December", "January"]))
    forecast = _run(ForecastService(llm_service=llm).forecast([AUG, SEP], TODAY))
    assert forecast.method == "statistical"
    assert llm.client.messages.calls == 0


def test_llm_disabled_without_api_key():
    assert LLMService().enabled is False
