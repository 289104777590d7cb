"""
Aggregation Engine

Folds one snapshot of raw orders, ad spend and shipments into:
- per-IST-day buckets (every day of the range exists, even with no orders)
- summary totals with the derived profit metrics
- best/least selling product rankings
- new vs returning customer classification

All money is Decimal, so bucket sums reconcile exactly with the totals.
Pure and deterministic: no I/O and no state kept between calls.
"""
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence

from profitfirst.models.records import AdReport, RawAdDaily, RawAdOverview, RawOrder, RawShipment
from profitfirst.utils.dates import DateRange, day_label, ist_day
from profitfirst.utils.helpers import safe_divide
from profitfirst.utils.logger import log

ZERO = Decimal("0")
HUNDRED = Decimal("100")
RANKING_SIZE = 10


@dataclass
class DailyBucket:
    day: date
    label: str
    orders: int = 0
    revenue: Decimal = ZERO
    cogs: Decimal = ZERO
    ad_spend: Decimal = ZERO
    shipping_cost: Decimal = ZERO
    total_costs: Decimal = ZERO
    net_profit: Decimal = ZERO
    net_profit_margin: Decimal = ZERO
    new_customers: int = 0
    returning_customers: int = 0

    def finalize(self) -> None:
        self.total_costs = self.ad_spend + self.shipping_cost + self.cogs
        self.net_profit = self.revenue - self.total_costs
        self.net_profit_margin = safe_divide(self.net_profit * HUNDRED, self.revenue)


@dataclass(frozen=True)
class SummaryMetrics:
    total_orders: int
    total_revenue: Decimal
    total_cogs: Decimal
    gross_profit: Decimal
    ad_spend: Decimal
    shipping_cost: Decimal
    net_profit: Decimal
    gross_margin: Decimal
    net_margin: Decimal
    roas: Decimal
    poas: Decimal
    aov: Decimal
    cpp: Decimal
    new_customers: int = 0
    returning_customers: int = 0

    @property
    def total_customers(self) -> int:
        return self.new_customers + self.returning_customers

    @property
    def returning_rate(self) -> Decimal:
        return safe_divide(Decimal(self.returning_customers) * HUNDRED, self.total_customers)


@dataclass
class ProductStat:
    product_id: str
    name: str
    units_sold: int = 0
    revenue: Decimal = ZERO


@dataclass
class AggregationResult:
    date_range: DateRange
    summary: SummaryMetrics
    daily_buckets: List[DailyBucket]
    best_selling: List[ProductStat]
    least_selling: List[ProductStat]
    ad_overview: Optional[RawAdOverview] = None
    ad_daily: List[RawAdDaily] = field(default_factory=list)
    shipments: List[RawShipment] = field(default_factory=list)
    shipment_status_counts: Dict[str, int] = field(default_factory=dict)
    skipped_orders: int = 0


def rank_products(products: Sequence[ProductStat], size: int = RANKING_SIZE):
    """
    Stable descending sort by units sold.

    Best = first ``size``; least = last ``size`` in ascending order. Ties keep
    the order products were first seen in.
    """
    ranked = sorted(products, key=lambda p: p.units_sold, reverse=True)
    best = ranked[:size]
    least = list(reversed(ranked[-size:])) if ranked else []
    return best, least


def aggregate(
    orders: Sequence[RawOrder],
    ad_report: Optional[AdReport],
    shipments: Optional[Sequence[RawShipment]],
    product_costs: Mapping[str, Decimal],
    date_range: DateRange,
) -> AggregationResult:
    """
    Fold raw source records into dashboard metrics for ``date_range``.

    A missing source (None) contributes zeros. Orders and shipments dated
    outside the range are skipped so bucket sums always equal the totals.
    """
    buckets: Dict[date, DailyBucket] = {
        day: DailyBucket(day=day, label=day_label(day)) for day in date_range.iter_days()
    }

    # Seed ad spend and shipping per day
    ad_daily = [d for d in (ad_report.daily if ad_report else []) if d.day in buckets]
    for entry in ad_daily:
        buckets[entry.day].ad_spend += entry.spend

    in_range_shipments: List[RawShipment] = []
    total_shipping = ZERO
    for shipment in shipments or []:
        day = ist_day(shipment.order_date)
        bucket = buckets.get(day)
        if bucket is None:
            continue
        bucket.shipping_cost += shipment.shipping_cost
        total_shipping += shipment.shipping_cost
        in_range_shipments.append(shipment)

    # Fold orders
    total_orders = 0
    total_revenue = ZERO
    total_cogs = ZERO
    skipped = 0
    products: Dict[str, ProductStat] = {}
    customer_days: Dict[str, List[date]] = {}

    for order in orders:
        day = ist_day(order.created_at)
        bucket = buckets.get(day)
        if bucket is None:
            skipped += 1
            continue

        total_orders += 1
        bucket.orders += 1
        bucket.revenue += order.total_amount
        total_revenue += order.total_amount

        order_cogs = ZERO
        for item in order.line_items:
            if not item.product_id:
                continue
            unit_cost = product_costs.get(item.product_id, ZERO)
            order_cogs += unit_cost * item.quantity

            stat = products.get(item.product_id)
            if stat is None:
                stat = products[item.product_id] = ProductStat(product_id=item.product_id, name=item.title or "Unknown")
            stat.units_sold += item.quantity
            # Each product in the order is credited with the whole order total
            stat.revenue += order.total_amount

        bucket.cogs += order_cogs
        total_cogs += order_cogs

        if order.customer_id:
            customer_days.setdefault(order.customer_id, []).append(day)

    if skipped:
        log.info(f"Aggregation skipped {skipped} orders outside {date_range.key()}")

    # Classify customers
    new_customers = 0
    returning_customers = 0
    for days in customer_days.values():
        distinct_days = sorted(set(days))
        buckets[distinct_days[0]].new_customers += 1
        if len(distinct_days) > 1:
            returning_customers += 1
            for later_day in distinct_days[1:]:
                buckets[later_day].returning_customers += 1
        else:
            new_customers += 1

    for bucket in buckets.values():
        bucket.finalize()

    # Summary
    overview = ad_report.overview if ad_report else None
    if overview is not None:
        ad_spend = overview.spend
    else:
        ad_spend = sum((d.spend for d in ad_daily), ZERO)

    gross_profit = total_revenue - total_cogs
    net_profit = gross_profit - ad_spend - total_shipping
    roas = overview.purchase_roas if overview is not None and overview.purchase_roas is not None else ZERO

    summary = SummaryMetrics(
        total_orders=total_orders,
        total_revenue=total_revenue,
        total_cogs=total_cogs,
        gross_profit=gross_profit,
        ad_spend=ad_spend,
        shipping_cost=total_shipping,
        net_profit=net_profit,
        gross_margin=safe_divide(gross_profit * HUNDRED, total_revenue),
        net_margin=safe_divide(net_profit * HUNDRED, total_revenue),
        roas=roas,
        poas=safe_divide(net_profit, ad_spend),
        aov=safe_divide(total_revenue, total_orders),
        cpp=safe_divide(ad_spend, total_orders),
        new_customers=new_customers,
        returning_customers=returning_customers,
    )

    best, least = rank_products(list(products.values()))
    status_counts = Counter(s.status.value for s in in_range_shipments)

    return AggregationResult(
        date_range=date_range,
        summary=summary,
        daily_buckets=list(buckets.values()),
        best_selling=best,
        least_selling=least,
        ad_overview=overview,
        ad_daily=ad_daily,
        shipments=in_range_shipments,
        shipment_status_counts=dict(status_counts),
        skipped_orders=skipped,
    )
