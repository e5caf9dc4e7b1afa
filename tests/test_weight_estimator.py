from batchroute.models.domain import LineItem, Order
from batchroute.services.batching import WeightEstimator


def _order(*items: LineItem, weight: float | None = None) -> Order:
    return Order(order_id="O1", line_items=list(items), weight=weight)


def test_sums_quantity_times_unit_weight():
    order = _order(
        LineItem(product_id="rice", quantity=2, unit_weight=3.5),
        LineItem(product_id="oil", quantity=1, unit_weight=10.0),
    )

    assert WeightEstimator(minimum_kg=1.0).estimate(order) == 17.0


def test_missing_unit_weights_fall_back_to_minimum():
    order = _order(LineItem(product_id="mystery", quantity=4))

    assert WeightEstimator(minimum_kg=1.0).estimate(order) == 1.0


def test_zero_total_never_returns_zero():
    order = _order(LineItem(product_id="sample", quantity=0, unit_weight=5.0))

    assert WeightEstimator(minimum_kg=1.0).estimate(order) == 1.0
    assert WeightEstimator(minimum_kg=1.0).estimate(_order()) == 1.0


def test_supplied_weight_is_used_as_is():
    order = _order(LineItem(product_id="rice", quantity=2, unit_weight=3.5), weight=42.0)

    assert WeightEstimator().estimate(order) == 42.0
