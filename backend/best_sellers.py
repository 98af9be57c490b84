from typing import Dict, Iterable, List, Sequence

from documents import Order, Product

DEFAULT_BEST_SELLER_LIMIT = 4


def sales_by_product(orders: Iterable[Order], known_ids) -> Dict[str, int]:
    known = set(known_ids)
    totals: Dict[str, int] = {}
    for order in orders or []:
        for line in order.products:
            if line.product_id not in known:
                continue
            totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return totals


def rank_best_sellers(
    orders: Iterable[Order],
    products: Sequence[Product],
    limit: int = DEFAULT_BEST_SELLER_LIMIT,
) -> List[Product]:
    """Top ``limit`` products by total quantity ordered.

    Ties keep the order in which products first appear in ``products``.
    Products that never sold are left out, so the result may be shorter than
    ``limit``; filling the remaining slots is up to the caller.
    """
    if not products or limit is None or limit <= 0:
        return []

    catalog: Dict[str, Product] = {}
    catalog_position: Dict[str, int] = {}
    for product in products:
        if product.id in catalog:
            continue
        catalog_position[product.id] = len(catalog)
        catalog[product.id] = product

    totals = sales_by_product(orders, catalog.keys())
    ranked_ids = sorted(
        (product_id for product_id, quantity in totals.items() if quantity > 0),
        key=lambda product_id: (-totals[product_id], catalog_position[product_id]),
    )
    return [catalog[product_id] for product_id in ranked_ids[:limit]]
