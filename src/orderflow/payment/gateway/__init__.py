"""Payment gateway registry.

Builds the enabled adapters from configuration. Components receive the
registry explicitly; there is no module-level current gateway.
"""

from orderflow.config import PaymentSettings
from orderflow.payment.gateway.fake_adapter import FakeGateway
from orderflow.payment.gateway.izipay_adapter import IzipayGateway
from orderflow.payment.gateway.manual_adapter import ManualGateway
from orderflow.payment.gateway.mercadopago_adapter import MercadoPagoGateway
from orderflow.payment.gateway.port import PaymentGateway
from orderflow.payment.gateway.stripe_adapter import StripeGateway


class GatewayRegistry:
    def __init__(self, gateways: list[PaymentGateway] | None = None) -> None:
        self._gateways: dict[str, PaymentGateway] = {}
        for gateway in gateways or []:
            self.register(gateway)

    def register(self, gateway: PaymentGateway) -> None:
        self._gateways[gateway.name] = gateway

    def get(self, name: str) -> PaymentGateway | None:
        return self._gateways.get(name)

    def names(self) -> list[str]:
        return sorted(self._gateways)

    def __contains__(self, name: str) -> bool:
        return name in self._gateways


def build_gateways(settings: PaymentSettings) -> GatewayRegistry:
    registry = GatewayRegistry()
    for name in settings.enabled:
        if name == "fake":
            registry.register(FakeGateway(signing_secret=settings.fake_signing_secret))
        elif name == "manual":
            registry.register(ManualGateway())
        elif name == "stripe":
            registry.register(
                StripeGateway(
                    api_key=settings.stripe_secret_key,
                    webhook_secret=settings.stripe_webhook_secret,
                    success_url=settings.stripe_success_url,
                    cancel_url=settings.stripe_cancel_url,
                )
            )
        elif name == "mercadopago":
            registry.register(
                MercadoPagoGateway(
                    access_token=settings.mercadopago_access_token,
                    webhook_secret=settings.mercadopago_webhook_secret,
                    notification_url=settings.mercadopago_notification_url,
                    base_url=settings.mercadopago_base_url,
                    timeout=settings.http_timeout_seconds,
                )
            )
        elif name == "izipay":
            registry.register(
                IzipayGateway(
                    username=settings.izipay_username,
                    password=settings.izipay_password,
                    hmac_key=settings.izipay_hmac_key,
                    base_url=settings.izipay_base_url,
                    timeout=settings.http_timeout_seconds,
                )
            )
    return registry
