"""Order shipping weight estimation."""

from __future__ import annotations

from ...config import settings
from ...models.domain import Order


class WeightEstimator:
    """Sums line-item weights, never returning less than a nominal minimum.

    A zero-weight order would look capacity-free and could be packed into a
    batch indefinitely, so the result is floored at ``minimum_kg``.
    """

    def __init__(self, minimum_kg: float | None = None) -> None:
        self.minimum_kg = minimum_kg if minimum_kg is not None else settings.min_order_weight_kg

    def estimate(self, order: Order) -> float:
        if order.weight is not None and order.weight > 0:
            return float(order.weight)
        total = sum(
            max(item.quantity, 0) * item.unit_weight
            for item in order.line_items
            if item.unit_weight is not None and item.unit_weight > 0
        )
        return float(max(total, self.minimum_kg))
