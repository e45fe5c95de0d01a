"""Pricing of a sale from a catalog snapshot.

Pure computation: nothing here touches the database. Unit prices are copied
from the catalog into each line so later price changes never alter the total
of a recorded sale.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Union

from salesdesk.domain.errors import EmptySelectionError, UnknownProductError, ValidationError
from salesdesk.domain.models import Product, SaleLineItem

Selection = Union[Mapping[str, object], tuple[int, int]]


def _parse_selection(item: Selection) -> tuple[int, int]:
    if isinstance(item, Mapping):
        product_id, quantity = item.get("product_id"), item.get("quantity")
    else:
        product_id, quantity = item

    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(f"Quantity must be a whole number. Received: {quantity!r}")
    if quantity <= 0:
        raise ValidationError("Quantity must be >= 1.")
    try:
        return int(product_id), quantity
    except (TypeError, ValueError) as exc:
        raise UnknownProductError(f"Unknown product: {product_id!r}") from exc


def compute_lines(
    catalog: Mapping[int, Product],
    requested: Iterable[Selection],
) -> tuple[list[SaleLineItem], int]:
    """
    requested: [{product_id, quantity}] or [(product_id, quantity)]

    Repeated products are merged into a single line. Returns the lines in
    first-seen order and the sale total.
    """
    quantities: dict[int, int] = {}
    for item in requested:
        product_id, quantity = _parse_selection(item)
        if product_id not in catalog:
            raise UnknownProductError(f"Unknown product: {product_id}")
        quantities[product_id] = quantities.get(product_id, 0) + quantity

    if not quantities:
        raise EmptySelectionError("Select at least one product.")

    lines = [
        SaleLineItem(product_id=pid, quantity=qty, unit_price=int(catalog[pid].unit_price))
        for pid, qty in quantities.items()
    ]
    return lines, sum(line.line_total for line in lines)
