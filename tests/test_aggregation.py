"""
Aggregation engine: profit identities, day buckets, customers and rankings.
"""
from datetime import date, datetime
from decimal import Decimal

import pytz

from profitfirst.models.records import (
    AdReport,
    RawAdDaily,
    RawAdOverview,
    RawLineItem,
    RawOrder,
    RawShipment,
    ShipmentStatus,
)
from profitfirst.services.aggregation_service import ProductStat, aggregate, rank_products
from profitfirst.utils.dates import DateRange, IST

D = Decimal
OCT = DateRange(date(2024, 10, 1), date(2024, 10, 3))


def _at(day: int, hour: int = 12) -> datetime:
    """Noon IST on the given October 2024 day."""
    return IST.localize(datetime(2024, 10, day, hour, 0))


def _order(oid, day, total, customer=None, items=()):
    return RawOrder(
        id=oid,
        created_at=_at(day),
        total_amount=D(total),
        customer_id=customer,
        line_items=[RawLineItem(product_id=p, title=f"Product {p}", quantity=q) for p, q in items],
    )


def _shipment(day, freight, cod="0", status=ShipmentStatus.DELIVERED):
    return RawShipment(
        order_id=f"S{day}",
        order_date=_at(day),
        status=status,
        freight_charge=D(freight),
        cod_charge=D(cod),
    )


def test_single_order_scenario():
    """One 1000 order with 2 x A at cost 100 and no ads or shipping."""
    orders = [_order("1", 1, "1000", "c1", [("A", 2)])]
    result = aggregate(orders, None, None, {"A": D("100")}, OCT)
    s = result.summary

    assert s.total_revenue == D("1000")
    assert s.total_cogs == D("200")
    assert s.gross_profit == D("800")
    assert s.net_profit == D("800")
    assert s.aov == D("1000")
    assert s.gross_margin == D("80")
    assert s.roas == D("0")
    assert s.poas == D("0")


def test_profit_identities_hold():
    orders = [
        _order("1", 1, "1000", "c1", [("A", 2)]),
        _order("2", 2, "500", "c2", [("B", 1)]),
        _order("3", 3, "250.50", None, [("A", 1), ("B", 3)]),
    ]
    ads = AdReport(
        overview=RawAdOverview(spend=D("300"), purchase_roas=D("2.5")),
        daily=[RawAdDaily(day=date(2024, 10, d), spend=D("100")) for d in (1, 2, 3)],
    )
    shipments = [_shipment(1, "60", "20"), _shipment(2, "50")]
    result = aggregate(orders, ads, shipments, {"A": D("100"), "B": D("40")}, OCT)
    s = result.summary

    assert s.gross_profit == s.total_revenue - s.total_cogs
    assert s.net_profit == s.gross_profit - s.ad_spend - s.shipping_cost
    assert s.shipping_cost == D("130")
    assert s.ad_spend == D("300")
    assert s.roas == D("2.5")
    assert s.poas == s.net_profit / s.ad_spend
    assert s.cpp == D("100")

    assert sum(b.revenue for b in result.daily_buckets) == s.total_revenue
    assert sum(b.cogs for b in result.daily_buckets) == s.total_cogs
    assert sum(b.orders for b in result.daily_buckets) == s.total_orders
    for b in result.daily_buckets:
        assert b.net_profit == b.revenue - (b.cogs + b.ad_spend + b.shipping_cost)


def test_every_day_has_a_bucket():
    result = aggregate([_order("1", 2, "100")], None, None, {}, OCT)
    assert [b.day for b in result.daily_buckets] == [date(2024, 10, 1), date(2024, 10, 2), date(2024, 10, 3)]
    assert [b.label for b in result.daily_buckets] == ["Oct 1", "Oct 2", "Oct 3"]
    assert result.daily_buckets[0].revenue == D("0")
    assert result.daily_buckets[0].net_profit_margin == D("0")


def test_zero_orders_gives_zero_ratios():
    s = aggregate([], None, None, {}, OCT).summary
    assert s.total_orders == 0
    assert s.aov == D("0")
    assert s.gross_margin == D("0")
    assert s.net_margin == D("0")
    assert s.cpp == D("0")


def test_aggregation_is_idempotent():
    orders = [_order("1", 1, "1000", "c1", [("A", 2)]), _order("2", 2, "300", "c1", [("B", 1)])]
    first = aggregate(orders, None, [_shipment(1, "50")], {"A": D("100")}, OCT)
    second = aggregate(orders, None, [_shipment(1, "50")], {"A": D("100")}, OCT)
    assert first.summary == second.summary
    assert first.daily_buckets == second.daily_buckets


def test_orders_outside_range_are_skipped():
    orders = [_order("1", 1, "100"), _order("2", 9, "900")]
    result = aggregate(orders, None, None, {}, OCT)
    assert result.summary.total_orders == 1
    assert result.summary.total_revenue == D("100")
    assert result.skipped_orders == 1


def test_order_bucketed_by_ist_day():
    # 19:00 UTC on Oct 1 is 00:30 IST on Oct 2
    late = RawOrder(id="1", created_at=datetime(2024, 10, 1, 19, 0, tzinfo=pytz.UTC), total_amount=D("100"))
    result = aggregate([late], None, None, {}, OCT)
    assert result.daily_buckets[1].revenue == D("100")
    assert result.daily_buckets[0].revenue == D("0")


def test_returning_customer_across_two_days():
    orders = [_order("1", 1, "100", "c1"), _order("2", 2, "100", "c1")]
    result = aggregate(orders, None, None, {}, OCT)

    assert result.summary.returning_customers == 1
    assert result.summary.new_customers == 0
    assert result.daily_buckets[0].new_customers == 1
    assert result.daily_buckets[0].returning_customers == 0
    assert result.daily_buckets[1].returning_customers == 1
    assert result.daily_buckets[1].new_customers == 0


def test_guest_orders_are_not_customers():
    result = aggregate([_order("1", 1, "100")], None, None, {}, OCT)
    assert result.summary.total_customers == 0


def test_ad_failure_means_zero_spend():
    result = aggregate([_order("1", 1, "1000")], None, None, {}, OCT)
    assert result.summary.ad_spend == D("0")
    assert result.summary.roas == D("0")
    assert result.ad_daily == []


def test_ad_spend_falls_back_to_daily_sum_without_overview():
    ads = AdReport(overview=None, daily=[
        RawAdDaily(day=date(2024, 10, 1), spend=D("40")),
        RawAdDaily(day=date(2024, 10, 2), spend=D("60")),
        RawAdDaily(day=date(2024, 11, 2), spend=D("999")),
    ])
    result = aggregate([], ads, None, {}, OCT)
    assert result.summary.ad_spend == D("100")
    assert result.daily_buckets[1].ad_spend == D("60")


def test_missing_cost_counts_as_zero():
    result = aggregate([_order("1", 1, "500", items=[("X", 3)])], None, None, {}, OCT)
    assert result.summary.total_cogs == D("0")
    assert result.best_selling[0].units_sold == 3


def test_product_revenue_is_order_total():
    orders = [_order("1", 1, "1000", items=[("A", 1), ("B", 1)])]
    result = aggregate(orders, None, None, {}, OCT)
    revenue = {p.product_id: p.revenue for p in result.best_selling}
    assert revenue == {"A": D("1000"), "B": D("1000")}


def test_shipment_status_counts():
    shipments = [
        _shipment(1, "50"),
        _shipment(2, "50", status=ShipmentStatus.RTO),
        _shipment(3, "50", status=ShipmentStatus.RTO),
    ]
    result = aggregate([], None, shipments, {}, OCT)
    assert result.shipment_status_counts == {"delivered": 1, "rto": 2}


def test_rankings_best_and_least():
    products = [ProductStat(product_id=str(i), name=f"P{i}", units_sold=i) for i in range(1, 13)]
    best, least = rank_products(products)
    assert [p.units_sold for p in best] == list(range(12, 2, -1))
    assert [p.units_sold for p in least] == list(range(1, 11))


def test_rankings_ties_keep_first_seen_order():
    products = [ProductStat("a", "A", 2), ProductStat("b", "B", 2), ProductStat("c", "C", 5)]
    best, _ = rank_products(products)
    assert [p.product_id for p in best] == ["c", "a", "b"]
