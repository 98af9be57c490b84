from best_sellers import rank_best_sellers, sales_by_product
from documents import order_from_document, product_from_document


def make_products(*ids):
    return [product_from_document({"id": product_id, "name": product_id}) for product_id in ids]


def make_orders(*line_sets):
    return [
        order_from_document(
            {
                "id": f"o{index}",
                "user_id": "u1",
                "products": [
                    {"product_id": product_id, "quantity": quantity}
                    for product_id, quantity in lines.items()
                ],
            }
        )
        for index, lines in enumerate(line_sets)
    ]


def ids(products):
    return [product.id for product in products]


def test_ranks_by_total_quantity():
    products = make_products("A", "B", "C")
    orders = make_orders({"A": 2}, {"B": 5}, {"A": 1})

    assert ids(rank_best_sellers(orders, products, 2)) == ["B", "A"]


def test_no_sales_returns_empty_list():
    assert rank_best_sellers([], make_products("A", "B", "C")) == []


def test_empty_catalog_or_non_positive_limit_returns_empty_list():
    orders = make_orders({"A": 2})
    assert rank_best_sellers(orders, []) == []
    assert rank_best_sellers(orders, make_products("A"), 0) == []
    assert rank_best_sellers(orders, make_products("A"), -3) == []


def test_unknown_products_are_ignored():
    products = make_products("A", "B")
    orders = make_orders({"ghost": 100, "B": 1}, {"A": 2})

    assert ids(rank_best_sellers(orders, products, 4)) == ["A", "B"]


def test_ties_keep_catalog_order():
    products = make_products("C", "A", "B")
    orders = make_orders({"A": 2, "B": 2}, {"C": 2})

    assert ids(rank_best_sellers(orders, products, 3)) == ["C", "A", "B"]


def test_result_is_never_longer_than_limit_and_drops_unsold():
    products = make_products("A", "B", "C", "D", "E")
    orders = make_orders({"A": 1, "B": 2, "C": 3, "D": 4})

    assert ids(rank_best_sellers(orders, products, 2)) == ["D", "C"]
    assert ids(rank_best_sellers(orders, products, 10)) == ["D", "C", "B", "A"]


def test_ranking_is_repeatable_and_leaves_inputs_alone():
    products = make_products("A", "B", "C")
    orders = make_orders({"A": 1, "C": 1}, {"B": 1})
    snapshot = list(products)

    first = rank_best_sellers(orders, products, 3)
    second = rank_best_sellers(orders, products, 3)

    assert ids(first) == ids(second) == ["A", "B", "C"]
    assert products == snapshot


def test_duplicate_catalog_entries_count_once():
    products = make_products("A", "B", "A")
    orders = make_orders({"A": 1, "B": 2})

    assert ids(rank_best_sellers(orders, products, 4)) == ["B", "A"]


def test_sales_by_product_sums_known_ids_only():
    orders = make_orders({"A": 2, "ghost": 4}, {"A": 3, "B": 1})

    assert sales_by_product(orders, ["A", "B"]) == {"A": 5, "B": 1}
