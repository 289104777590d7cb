"""
Product cost reference data

Loads the owner's productId -> unit cost map once per aggregation, and
replaces it wholesale when the owner uploads new costs.
"""
from decimal import Decimal
from typing import Callable, Dict, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from profitfirst.models.product_cost import ProductCost
from profitfirst.utils.cache import clear_prefix
from profitfirst.utils.logger import log
from profitfirst.utils.normalize import normalize_product_id, to_decimal

ProductCostMap = Dict[str, Decimal]


class ProductCostService:
    def __init__(self, session_factory: Optional[Callable] = None):
        if session_factory is None:
            from profitfirst.models.base import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory

    def load_cost_map(self, owner_id: str) -> ProductCostMap:
        """
        Unit costs keyed by normalized product id.

        A read failure yields an empty map: COGS is then zero, which the
        dashboard tolerates, rather than failing the request.
        """
        db = self.session_factory()
        try:
            rows = db.query(ProductCost).filter(ProductCost.owner_id == owner_id).all()
            return {row.product_id: row.get_unit_cost() for row in rows}
        except SQLAlchemyError as e:
            log.error(f"Failed to load product costs for {owner_id}: {e}")
            return {}
        finally:
            db.close()

    def save_cost_map(self, owner_id: str, costs: Mapping[str, object],
                      titles: Optional[Mapping[str, str]] = None) -> int:
        """Replace the owner's cost rows. Returns the number of rows written."""
        titles = titles or {}
        db = self.session_factory()
        try:
            db.query(ProductCost).filter(ProductCost.owner_id == owner_id).delete(synchronize_session=False)
            written = 0
            for raw_id, cost in costs.items():
                product_id = normalize_product_id(raw_id)
                if not product_id:
                    continue
                db.add(ProductCost(
                    owner_id=owner_id,
                    product_id=product_id,
                    title=titles.get(raw_id) or titles.get(product_id),
                    unit_cost=to_decimal(cost),
                ))
                written += 1
            db.commit()
            log.info(f"Saved {written} product costs for {owner_id}")
            # Forecasts were built on the old costs
            clear_prefix(f"forecast:{owner_id}:")
            return written
        except SQLAlchemyError as e:
            db.rollback()
            log.error(f"Failed to save product costs for {owner_id}: {e}")
            raise
        finally:
            db.close()
