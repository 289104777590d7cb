"""
Dashboard Assembler

Shapes aggregation and forecast results into the JSON the dashboard UI
consumes. Every metric card carries both the formatted string ("value") and
the raw number ("raw"); nothing here changes a number, only how it reads.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from profitfirst.config import get_settings
from profitfirst.models.records import RawShipment, ShipmentStatus
from profitfirst.services.aggregation_service import AggregationResult, ProductStat
from profitfirst.services.forecast_service import Forecast, MonthMetrics
from profitfirst.utils.dates import day_label
from profitfirst.utils.helpers import (
    brand_from_store_url,
    format_currency,
    format_number,
    format_percent,
    format_ratio,
    quantize,
)

settings = get_settings()

COLORS = {
    "Revenue": "#16A34A",
    "Gross Profit": "#2563EB",
    "Net Profit": "#FBBF24",
    "COGS": "#F43F5E",
    "Ads Spend": "#A855F7",
    "Shipping": "#6366F1",
}

SPARKLINE_POINTS = 7


def _raw(value) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


def money(value, symbol: Optional[str] = None) -> str:
    return format_currency(value, symbol if symbol is not None else settings.currency_symbol)


def card(title: str, value: str, raw, formula: str) -> Dict[str, Any]:
    return {"title": title, "value": value, "raw": _raw(raw), "formula": formula}


# ------------------------------------------------------------ dashboard

def summary_cards(result: AggregationResult) -> List[Dict[str, Any]]:
    s = result.summary
    return [
        card("Total Orders", format_number(s.total_orders), s.total_orders, "Total Sales"),
        card("Revenue", money(s.total_revenue), s.total_revenue, "Total revenue"),
        card("COGS", money(s.total_cogs), s.total_cogs, "Cost of Goods Sold"),
        card("Ads Spend", money(s.ad_spend), s.ad_spend, "Ad spend"),
        card("Shipping Cost", money(s.shipping_cost), s.shipping_cost, "Shipping costs"),
        card("Net Profit", money(s.net_profit), s.net_profit, "Revenue - costs"),
        card("Gross Profit", money(s.gross_profit), s.gross_profit, "Revenue - COGS"),
        card("Gross Profit Margin", format_percent(s.gross_margin), s.gross_margin, "(Gross / Revenue) * 100"),
        card("Net Profit Margin", format_percent(s.net_margin), s.net_margin, "(Net / Revenue) * 100"),
        card("ROAS", format_ratio(s.roas), s.roas, "Return On Ad Spend"),
        card("POAS", format_ratio(s.poas), s.poas, "Net Profit / Ads Spend"),
        card("Avg. Order Value", money(s.aov), s.aov, "Rev / Orders"),
    ]


def marketing_cards(result: AggregationResult) -> List[Dict[str, Any]]:
    s = result.summary
    o = result.ad_overview
    clicks = o.clicks if o else 0
    impressions = o.impressions if o else 0
    reach = o.reach if o else 0
    cpc = o.cpc if o else Decimal("0")
    ctr = o.ctr if o else Decimal("0")
    cpm = o.cpm if o else Decimal("0")
    return [
        card("Amount Spent", money(s.ad_spend), s.ad_spend, "Ad spend"),
        card("CPP", money(s.cpp), s.cpp, "Spend / Orders"),
        card("ROAS", format_ratio(s.roas), s.roas, "Return On Ad Spend"),
        card("Link Clicks", format_number(clicks), clicks, "Ad clicks"),
        card("CPC", money(cpc), cpc, "Spend / Clicks"),
        card("CTR", format_percent(ctr), ctr, "Clicks / Impressions"),
        card("Impressions", format_number(impressions), impressions, "Ad impressions"),
        card("CPM", money(cpm), cpm, "Spend per 1000 Impr"),
        card("Reach", format_number(reach), reach, "Unique reach"),
    ]


def website_cards(result: AggregationResult) -> List[Dict[str, Any]]:
    s = result.summary
    return [
        card("Total Sales", money(s.total_revenue), s.total_revenue, "Total sales"),
        card("Total Orders", format_number(s.total_orders), s.total_orders, "Order count"),
        card("Total Customers", format_number(s.total_customers), s.total_customers, "New + Returning"),
        card("Returning Rate", format_percent(s.returning_rate), s.returning_rate, "Returning / Total"),
    ]


def shipment_row(shipment: RawShipment) -> Dict[str, Any]:
    return {
        "orderId": shipment.order_id,
        "awb": shipment.awb,
        "courier": shipment.courier,
        "orderDate": shipment.order_date.isoformat(),
        "status": shipment.status.value,
        "rawStatus": shipment.raw_status,
        "freightCharge": float(shipment.freight_charge),
        "codCharge": float(shipment.cod_charge),
        "shippingCost": float(shipment.shipping_cost),
    }


def product_rows(products: Sequence[ProductStat], first_id: int) -> List[Dict[str, Any]]:
    return [
        {
            "id": first_id + i,
            "productId": p.product_id,
            "name": p.name,
            "sales": p.units_sold,
            "total": money(p.revenue),
            "totalRaw": float(p.revenue),
        }
        for i, p in enumerate(products)
    ]


def performance_series(result: AggregationResult) -> List[Dict[str, Any]]:
    return [
        {
            "name": b.label,
            "date": b.day.isoformat(),
            "revenue": float(b.revenue),
            "cogs": float(b.cogs),
            "totalCosts": float(b.total_costs),
            "netProfit": float(b.net_profit),
            "netProfitMargin": float(b.net_profit_margin),
        }
        for b in result.daily_buckets
    ]


def financials_breakdown(result: AggregationResult) -> Dict[str, Any]:
    s = result.summary

    def item(name: str, value: Decimal) -> Dict[str, Any]:
        return {"name": name, "value": float(value), "color": COLORS[name]}

    pie = [item("COGS", s.total_cogs), item("Ads Spend", s.ad_spend), item("Shipping", s.shipping_cost)]
    if s.net_profit > 0:
        pie.append(item("Net Profit", s.net_profit))

    return {
        "revenue": float(s.total_revenue),
        "list": [
            item("Revenue", s.total_revenue),
            item("Gross Profit", s.gross_profit),
            item("Net Profit", s.net_profit),
            item("COGS", s.total_cogs),
            item("Ads Spend", s.ad_spend),
            item("Shipping", s.shipping_cost),
        ],
        "pieData": pie,
    }


def charts(result: AggregationResult) -> Dict[str, Any]:
    s = result.summary
    return {
        "websiteTraffic": [
            {"name": "New Customers", "value": s.new_customers},
            {"name": "Returning Customers", "value": s.returning_customers},
        ],
        "customerTypeByDay": [
            {"name": b.label, "newCustomers": b.new_customers, "returningCustomers": b.returning_customers}
            for b in result.daily_buckets
        ],
        "marketing": [
            {
                "name": day_label(d.day),
                "reach": d.reach,
                "spend": float(d.spend),
                "roas": float(d.roas),
                "linkClicks": d.link_clicks,
            }
            for d in result.ad_daily
        ],
    }


def shipping_status(result: AggregationResult) -> Dict[str, int]:
    counts = {status.value: 0 for status in ShipmentStatus}
    counts.update(result.shipment_status_counts)
    return counts


def build_dashboard_response(
    result: AggregationResult,
    degraded_sources: Optional[List[Dict[str, str]]] = None,
    data_source: str = "live",
) -> Dict[str, Any]:
    """Full dashboard payload for one aggregation."""
    return {
        "summary": summary_cards(result),
        "marketing": marketing_cards(result),
        "website": website_cards(result),
        "shipping": [shipment_row(s) for s in result.shipments],
        "shippingStatus": shipping_status(result),
        "products": {
            "bestSelling": product_rows(result.best_selling, 1),
            "leastSelling": product_rows(result.least_selling, 11),
        },
        "performanceChartData": performance_series(result),
        "financialsBreakdownData": financials_breakdown(result),
        "charts": charts(result),
        "dateRange": result.date_range.to_dict(),
        "degradedSources": list(degraded_sources or []),
        "dataSource": data_source,
    }


# ------------------------------------------------------------- forecast

def percent_change(current: Decimal, previous: Optional[Decimal]) -> Dict[str, str]:
    """'+12.3%' / 'increase' against the previous month; +0.0% when there is nothing to compare."""
    if not previous:
        return {"change": "+0.0%", "changeType": "increase"}
    diff = (Decimal(current) - Decimal(previous)) / abs(Decimal(previous)) * 100
    sign = "+" if diff >= 0 else ""
    return {
        "change": f"{sign}{quantize(diff, 1)}%",
        "changeType": "increase" if diff >= 0 else "decrease",
    }


def sparkline(values: Sequence[Decimal], points: int = SPARKLINE_POINTS) -> List[Dict[str, float]]:
    """Average ``values`` into ``points`` buckets, padding with the last value."""
    if not values:
        return [{"v": 0.0} for _ in range(points)]
    size = max(1, len(values) // points)
    out: List[Dict[str, float]] = []
    for i in range(0, len(values), size):
        chunk = values[i:i + size]
        out.append({"v": float(quantize(sum(chunk, Decimal("0")) / len(chunk), 2))})
        if len(out) == points:
            break
    while len(out) < points:
        out.append({"v": out[-1]["v"]})
    return out


def _month_cards(month: MonthMetrics, previous: Optional[MonthMetrics]) -> List[Dict[str, Any]]:
    def prev(attr):
        return getattr(previous, attr) if previous is not None else None

    roas_value = f"{quantize(month.roas, 2)}x" if month.ads else "0x"
    rows = [
        ("Revenue", money(month.revenue), month.revenue, prev("revenue"), "Shopify"),
        ("Orders", format_number(month.orders), month.orders, prev("orders"), "Shopify"),
        ("AOV", money(month.aov), month.aov, prev("aov"), "Shopify"),
        ("COGS", money(month.cogs), month.cogs, prev("cogs"), "Profit First"),
        ("Gross Profit", money(month.gross_profit), month.gross_profit, prev("gross_profit"), "Profit First"),
        ("Other Expenses", money(month.other_expenses), month.other_expenses, prev("other_expenses"),
         "Meta+Shipping"),
        ("ROAS", roas_value, month.roas, prev("roas"), "Meta"),
        ("Net Profit", money(month.net_profit), month.net_profit, prev("net_profit"), "Profit First"),
    ]
    return [
        {
            "title": title,
            "value": value,
            "raw": _raw(raw),
            **percent_change(raw, previous_raw),
            "label": label,
            "chartData": sparkline([raw]),
        }
        for title, value, raw, previous_raw, label in rows
    ]


def _in_thousands(value: Decimal) -> int:
    return int(quantize(value / 1000, 0))


def build_forecast_response(
    history: Sequence[MonthMetrics],
    forecast: Forecast,
    store_url: Optional[str] = None,
) -> Dict[str, Any]:
    """Forecast payload: per-month cards, financial breakdown and Actual/Predicted series."""
    all_months = list(history) + list(forecast.months)

    metrics_by_month = {}
    for i, month in enumerate(all_months):
        previous = all_months[i - 1] if i > 0 else None
        metrics_by_month[month.key] = _month_cards(month, previous)

    financial_breakdown = []
    for m in all_months:
        margin = f"{quantize(m.net_profit / m.revenue * 100, 1)}%" if m.revenue else "0%"
        financial_breakdown.append({
            "month": m.key,
            "cogs": float(m.cogs),
            "grossProfit": float(m.gross_profit),
            "operatingCosts": float(m.other_expenses),
            "netProfit": float(m.net_profit),
            "netProfitMargin": margin,
        })

    def series(attr: str) -> List[Dict[str, Any]]:
        return [
            {
                "name": m.key,
                "Actual": None if m.is_prediction else _in_thousands(getattr(m, attr)),
                "Predicted": _in_thousands(getattr(m, attr)) if m.is_prediction else None,
            }
            for m in all_months
        ]

    return {
        "metricsByMonth": metrics_by_month,
        "dashboardData": {
            "brand": {"name": brand_from_store_url(store_url)},
            "financialBreakdown": financial_breakdown,
        },
        "mainChartsData": {
            "Revenue": series("revenue"),
            "NetProfit": series("net_profit"),
            "COGS": series("cogs"),
        },
        "method": forecast.method,
    }
