"""Repository for the SupplierOrder aggregate."""

from orderflow.domain import orderflow
from orderflow.supplier.supplier_order import SupplierOrder, SupplierOrderStatus


@orderflow.repository(part_of=SupplierOrder)
class SupplierOrderRepository:
    def find_by_order(self, order_id: str) -> SupplierOrder | None:
        results = self._dao.query.filter(order_id=order_id).all()
        return results.first if results.items else None

    def find_by_external_id(self, supplier_id: str, external_order_id: str) -> SupplierOrder | None:
        results = self._dao.query.filter(supplier_id=supplier_id, external_order_id=external_order_id).all()
        return results.first if results.items else None

    def find_by_statuses(self, statuses, limit: int = 100) -> list[SupplierOrder]:
        found: list[SupplierOrder] = []
        for status in statuses:
            value = status.value if isinstance(status, SupplierOrderStatus) else status
            found.extend(self._dao.query.filter(status=value).limit(limit).all().items)
        return found

    def find_least_recently_synced(self, statuses, limit: int) -> list[SupplierOrder]:
        """Per status, the ``limit`` records whose last sync is oldest."""
        found: list[SupplierOrder] = []
        for status in statuses:
            value = status.value if isinstance(status, SupplierOrderStatus) else status
            found.extend(self._dao.query.filter(status=value).order_by("last_synced_at").limit(limit).all().items)
        return found
