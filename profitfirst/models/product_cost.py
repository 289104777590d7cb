"""
Product Cost Data Model

Per-owner unit cost for each store product. Used by the aggregation engine
to compute COGS; products without a row cost nothing.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, UniqueConstraint
from datetime import datetime
from decimal import Decimal

from profitfirst.models.base import Base


class ProductCost(Base):
    """
    Unit cost reference data, keyed by owner and normalized product id
    (the numeric tail of the Shopify GID).
    """
    __tablename__ = "product_costs"
    __table_args__ = (
        UniqueConstraint("owner_id", "product_id", name="uq_product_cost_owner_product"),
    )

    id = Column(Integer, primary_key=True, index=True)

    owner_id = Column(String, index=True, nullable=False)
    product_id = Column(String, index=True, nullable=False)
    title = Column(String, nullable=True)

    unit_cost = Column(Numeric(12, 2), nullable=False, default=0)

    last_updated = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def get_unit_cost(self) -> Decimal:
        if self.unit_cost is None:
            return Decimal("0")
        return Decimal(str(self.unit_cost))
