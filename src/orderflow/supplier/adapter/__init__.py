"""Supplier adapter abstraction: pluggable dropshipping supplier integration."""

from orderflow.config import SupplierSettings
from orderflow.supplier.adapter.cj_adapter import CJDropshippingSupplier
from orderflow.supplier.adapter.fake_adapter import FakeSupplier
from orderflow.supplier.adapter.port import SupplierPort


def build_supplier(settings: SupplierSettings) -> SupplierPort:
    """Return the supplier adapter named by ``settings.adapter``."""
    if settings.adapter == "fake":
        return FakeSupplier(supplier_id=settings.supplier_id)
    if settings.adapter == "cj":
        return CJDropshippingSupplier(
            email=settings.email,
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
            shipping_method=settings.shipping_method,
            supplier_id=settings.supplier_id,
        )
    raise ValueError(f"Unknown supplier adapter: {settings.adapter}")
