"""
Dashboard assembler: card formatting, pie composition and forecast shaping.
"""
from datetime import date, datetime
from decimal import Decimal

from profitfirst.models.records import AdReport, RawAdOverview, RawLineItem, RawOrder
from profitfirst.services.aggregation_service import aggregate
from profitfirst.services.dashboard_formatter import (
    build_dashboard_response,
    build_forecast_response,
    percent_change,
    sparkline,
)
from profitfirst.services.forecast_service import MonthMetrics, statistical_forecast
from profitfirst.utils.dates import DateRange, IST

RANGE = DateRange(date(2024, 10, 1), date(2024, 10, 2))


def _result(total="4786863", ad_spend="0"):
    orders = [RawOrder(
        id="1",
        created_at=IST.localize(datetime(2024, 10, 1, 10, 0)),
        total_amount=Decimal(total),
        customer_id="c1",
        line_items=[RawLineItem(product_id="A", title="Tee", quantity=1)],
    )]
    ads = AdReport(overview=RawAdOverview(spend=Decimal(ad_spend), impressions=123456))
    return aggregate(orders, ads, [], {"A": Decimal("100")}, RANGE)


def _card(cards, title):
    return next(c for c in cards if c["title"] == title)


def test_summary_cards_use_indian_currency_format():
    response = build_dashboard_response(_result())
    revenue = _card(response["summary"], "Revenue")
    assert revenue["value"] == "₹47,86,863"
    assert revenue["raw"] == 4786863.0
    assert _card(response["summary"], "Gross Profit Margin")["value"] == "100.00%"
    assert [c["title"] for c in response["summary"]][:3] == ["Total Orders", "Revenue", "COGS"]
    assert len(response["summary"]) == 12
    assert len(response["marketing"]) == 9
    assert _card(response["marketing"], "Impressions")["value"] == "1,23,456"


def test_response_has_all_sections():
    response = build_dashboard_response(_result(), degraded_sources=[{"source": "shiprocket", "reason": "x"}])
    assert set(response) == {
        "summary", "marketing", "website", "shipping", "shippingStatus", "products",
        "performanceChartData", "financialsBreakdownData", "charts", "dateRange",
        "degradedSources", "dataSource",
    }
    assert response["products"]["bestSelling"][0]["id"] == 1
    assert response["products"]["leastSelling"][0]["id"] == 11
    assert response["charts"]["customerTypeByDay"][0] == {"name": "Oct 1", "newCustomers": 1, "returningCustomers": 0}
    assert response["shippingStatus"] == {"delivered": 0, "in_transit": 0, "rto": 0, "ndr": 0, "other": 0}


def test_pie_includes_net_profit_only_when_positive():
    profitable = build_dashboard_response(_result())["financialsBreakdownData"]
    assert [p["name"] for p in profitable["pieData"]] == ["COGS", "Ads Spend", "Shipping", "Net Profit"]

    losing = build_dashboard_response(_result(total="100", ad_spend="500"))["financialsBreakdownData"]
    assert [p["name"] for p in losing["pieData"]] == ["COGS", "Ads Spend", "Shipping"]
    assert losing["list"][2] == {"name": "Net Profit", "value": -500.0, "color": "#FBBF24"}


def test_percent_change():
    assert percent_change(Decimal("110"), Decimal("100")) == {"change": "+10.0%", "changeType": "increase"}
    assert percent_change(Decimal("90"), Decimal("100")) == {"change": "-10.0%", "changeType": "decrease"}
    assert percent_change(Decimal("90"), None) == {"change": "+0.0%", "changeType": "increase"}


def test_sparkline_has_fixed_number_of_points():
    assert sparkline([]) == [{"v": 0.0}] * 7
    points = sparkline([Decimal(i) for i in range(14)])
    assert len(points) == 7
    assert points[0] == {"v": 0.5}


def test_forecast_response_shape():
    history = [MonthMetrics(key="September", month=date(2024, 9, 1), revenue=Decimal("12500"),
                            orders=Decimal("50"), aov=Decimal("250"), cogs=Decimal("5000"),
                            gross_profit=Decimal("7500"), ads=Decimal("2500"), shipping=Decimal("1000"),
                            net_profit=Decimal("4000"))]
    forecast = statistical_forecast(history, 3, date(2024, 10, 19))

    response = build_forecast_response(history, forecast, "acme.myshopify.com")

    assert response["method"] == "statistical"
    assert list(response["metricsByMonth"]) == ["September", "November", "December", "January"]
    september = {c["title"]: c for c in response["metricsByMonth"]["September"]}
    assert september["ROAS"]["value"] == "5.00x"
    assert september["Other Expenses"]["raw"] == 3500.0
    assert september["Revenue"]["label"] == "Shopify"
    assert response["dashboardData"]["financialBreakdown"][0]["netProfitMargin"] == "32.0%"
    assert response["mainChartsData"]["Revenue"][0] == {"name": "September", "Actual": 13, "Predicted": None}
    assert response["mainChartsData"]["Revenue"][1]["Predicted"] is not None
