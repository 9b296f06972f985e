"""
Sufficiency pre-check for invoices about to become paid.

Read-only: compares each stock-bearing line against Product.total_stock
before anything is written. The first insufficient (or unresolvable) line
short-circuits the check.

NOTE: The check is not transactionally linked to depletion. Two invoices can
both pass against the same total_stock; depletion serializes per product and
reports the loser's shortfall instead of overselling.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..models import Product
from .tenant_store import ProductStore


UNKNOWN_PRODUCT_NAME = "Unknown Product"


@dataclass(frozen=True)
class StockCheckResult:
    sufficient: bool
    product_name: str | None = None
    product_id: int | None = None
    requested_quantity: int | None = None
    available_quantity: int | None = None

    def to_dict(self) -> dict:
        return {
            "sufficient": self.sufficient,
            "product_name": self.product_name,
            "product_id": self.product_id,
            "requested_quantity": self.requested_quantity,
            "available_quantity": self.available_quantity,
        }


def stock_lines(items: list[dict]) -> list[dict]:
    """Lines that move stock: a product reference and a positive quantity."""
    return [
        item for item in items or []
        if item.get("product_id") is not None and (item.get("quantity") or 0) > 0
    ]


def check_stock_for_items(
    products: ProductStore,
    items: list[dict],
    *,
    product_index: dict[int, Product] | None = None,
) -> StockCheckResult:
    """
    Return whether aggregate stock covers every stock-bearing line.

    Quantities are accumulated per product in line order, so two lines for
    the same product are checked against one total_stock.
    Products are resolved from product_index first, then by point read.
    A line whose product cannot be resolved fails the check: selling
    something the catalog does not know about is blocked, not ignored.
    """
    requested: dict[int, int] = {}
    for item in stock_lines(items):
        product_id = item["product_id"]
        # Lines repeating a product draw on the same stock
        quantity = requested.get(product_id, 0) + item["quantity"]
        requested[product_id] = quantity

        product = None
        if product_index is not None:
            product = product_index.get(product_id)
        if product is None:
            product = products.get(product_id)

        if product is None:
            return StockCheckResult(
                sufficient=False,
                product_name=UNKNOWN_PRODUCT_NAME,
                product_id=product_id,
                requested_quantity=quantity,
                available_quantity=0,
            )

        available = product.total_stock or 0
        if available < quantity:
            return StockCheckResult(
                sufficient=False,
                product_name=product.name,
                product_id=product_id,
                requested_quantity=quantity,
                available_quantity=available,
            )

    return StockCheckResult(sufficient=True)
