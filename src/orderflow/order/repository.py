"""Repository for the Order aggregate."""

from orderflow.domain import orderflow
from orderflow.order.order import Order


@orderflow.repository(part_of=Order)
class OrderRepository:
    def find_by_number(self, order_number: str) -> Order | None:
        results = self._dao.query.filter(order_number=order_number).all()
        return results.first if results.items else None

    def find_by_payment_reference(self, provider: str, reference: str) -> Order | None:
        results = self._dao.query.filter(payment_provider=provider, payment_provider_reference=reference).all()
        return results.first if results.items else None
