"""
Catalog lookup: product resolution and the only stock decrement in the system
"""

from collections import Counter
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import update
from sqlmodel import Session, select

from orderflow.core.logging import get_logger
from orderflow.errors import ConflictError
from orderflow.models import OrderItemIn, Product

logger = get_logger(__name__)


@dataclass
class CartLine:
    """A cart line resolved against the catalog, price frozen"""

    product: Product
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class CatalogService:
    @staticmethod
    def resolve_cart(session: Session, items: list[OrderItemIn]) -> list[CartLine]:
        """
        Resolve every cart line and check stock for the whole cart.

        Quantities of repeated product ids are added up before the stock
        check. All offending lines are reported together.

        Raises:
            ConflictError: one or more products are unknown or under-stocked;
                `details` holds one entry per offending product
        """
        product_ids = sorted({item.product_id for item in items})
        products = {
            product.id: product
            for product in session.exec(select(Product).where(Product.id.in_(product_ids)))
        }
        requested = Counter()
        for item in items:
            requested[item.product_id] += item.quantity

        problems = []
        for product_id, quantity in requested.items():
            product = products.get(product_id)
            if product is None:
                problems.append({"product_id": product_id, "reason": "not_found"})
            elif product.stock < quantity:
                problems.append(
                    {
                        "product_id": product_id,
                        "product_name": product.name,
                        "reason": "insufficient_stock",
                        "requested": quantity,
                        "available": product.stock,
                    }
                )
        if problems:
            logger.info("cart_rejected", problems=problems)
            raise ConflictError("Some items in the cart are unavailable", details=problems)

        return [
            CartLine(
                product=products[item.product_id],
                quantity=item.quantity,
                unit_price=products[item.product_id].effective_price,
            )
            for item in items
        ]

    @staticmethod
    def decrement_stock(session: Session, product_id: str, quantity: int) -> bool:
        """
        Conditionally take `quantity` units, in the caller's transaction.

        The WHERE clause makes this a compare-and-swap: under concurrent
        orders the row lock serializes the updates and the losing one matches
        no row once stock has run out.

        Returns:
            False if stock is no longer sufficient (nothing changed)
        """
        result = session.exec(  # type: ignore[call-overload]
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
        )
        return result.rowcount == 1

    @staticmethod
    def reserve_cart(session: Session, lines: list[CartLine]) -> None:
        """
        Decrement stock for every product in the cart.

        Products are updated in id order so concurrent carts lock rows in the
        same order.

        Raises:
            ConflictError: stock ran out between resolution and reservation
        """
        totals = Counter()
        for line in lines:
            totals[line.product.id] += line.quantity

        for product_id in sorted(totals):
            if not CatalogService.decrement_stock(session, product_id, totals[product_id]):
                raise ConflictError(
                    "Some items in the cart are unavailable",
                    details=[
                        {
                            "product_id": product_id,
                            "reason": "insufficient_stock",
                            "requested": totals[product_id],
                        }
                    ],
                )
