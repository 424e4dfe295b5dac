"""CJ Dropshipping supplier adapter.

Talks to the CJ REST API over httpx. Every call carries a ``CJ-Access-Token``
obtained from ``/authentication/getAccessToken`` and cached until it expires;
a 401 drops the cached token and retries once. CJ wraps every response as
``{"code": 200, "result": true, "data": {...}}``; any other code is a failure.
"""

from datetime import UTC, datetime, timedelta

import httpx
import structlog

from orderflow.errors import SupplierError
from orderflow.supplier.adapter.port import (
    SupplierAck,
    SupplierOrderRequest,
    SupplierPort,
    SupplierStatusReport,
)

logger = structlog.get_logger(__name__)

# Used when the token response carries no expiry of its own
_DEFAULT_TOKEN_LIFETIME = timedelta(days=1)


class CJDropshippingSupplier(SupplierPort):
    def __init__(
        self,
        email: str,
        api_key: str,
        base_url: str = "https://developers.cjdropshipping.com/api2.0/v1",
        timeout: float = 15.0,
        shipping_method: str = "CJ_Packet_Ordinary",
        supplier_id: str = "cj",
        client: httpx.Client | None = None,
    ) -> None:
        self.supplier_id = supplier_id
        self.email = email
        self.api_key = api_key
        self.shipping_method = shipping_method
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)
        self._access_token: str | None = None
        self._token_expires_at: datetime | None = None

    # -------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------
    def _token(self) -> str:
        now = datetime.now(UTC)
        if self._access_token and self._token_expires_at and now < self._token_expires_at:
            return self._access_token

        data = self._send("POST", "/authentication/getAccessToken", json={"email": self.email, "apiKey": self.api_key})
        self._access_token = data["accessToken"]
        expiry = data.get("accessTokenExpiryDate")
        try:
            expires_at = datetime.fromisoformat(expiry) if expiry else now + _DEFAULT_TOKEN_LIFETIME
        except ValueError:
            expires_at = now + _DEFAULT_TOKEN_LIFETIME
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        self._token_expires_at = expires_at
        logger.info("CJ access token obtained", expires_at=expires_at.isoformat())
        return self._access_token

    def _call(self, method: str, path: str, **kwargs) -> dict:
        try:
            return self._send(method, path, headers={"CJ-Access-Token": self._token()}, **kwargs)
        except _Unauthorized:
            self._access_token = None
            try:
                return self._send(method, path, headers={"CJ-Access-Token": self._token()}, **kwargs)
            except _Unauthorized as exc:
                raise SupplierError(self.supplier_id, f"{path} rejected the access token", retryable=True) from exc

    def _send(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise SupplierError(self.supplier_id, f"{path} timed out", retryable=True) from exc
        except httpx.HTTPError as exc:
            raise SupplierError(self.supplier_id, f"{path} failed: {exc}", retryable=True) from exc

        if response.status_code == 401:
            raise _Unauthorized(path)
        if response.status_code == 429 or response.status_code >= 500:
            raise SupplierError(self.supplier_id, f"{path} returned {response.status_code}", retryable=True)
        if response.status_code >= 400:
            raise SupplierError(self.supplier_id, f"{path} returned {response.status_code}", retryable=False)

        body = response.json()
        if body.get("code") != 200:
            raise SupplierError(
                self.supplier_id,
                f"{path}: {body.get('message') or 'request rejected'} (code {body.get('code')})",
                retryable=False,
            )
        return body.get("data") or {}

    # -------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------
    def create_order(self, request: SupplierOrderRequest) -> SupplierAck:
        payload = {
            "orderNumber": request.order_number,
            "shippingMethod": self.shipping_method,
            "shippingCountryCode": request.country_code,
            "shippingProvince": request.province,
            "shippingCity": request.city,
            "shippingAddress": request.address,
            "shippingZip": request.postal_code,
            "shippingCustomerName": request.recipient_name,
            "shippingPhone": request.phone,
            "email": request.email,
            "remark": f"Order from {request.order_number}",
            "products": [
                {"productId": line.product_id, "variantId": line.variant_id or "", "productNum": line.quantity}
                for line in request.lines
            ],
        }
        data = self._call("POST", "/shopping/order/createOrder", json=payload)
        if not data.get("orderId"):
            raise SupplierError(self.supplier_id, "createOrder returned no orderId", retryable=False)
        return SupplierAck(external_order_id=str(data["orderId"]), status_label=data.get("orderStatus"))

    def get_order_status(self, external_order_id: str) -> SupplierStatusReport:
        data = self._call("POST", "/shopping/order/getOrderDetail", json={"orderId": external_order_id})
        return SupplierStatusReport(
            external_order_id=external_order_id,
            status_label=data.get("orderStatus") or "",
            tracking_number=data.get("trackNumber") or data.get("logisticTrackNumber"),
            tracking_url=data.get("logisticLink"),
            carrier=data.get("logisticName"),
        )

    def cancel_order(self, external_order_id: str) -> None:
        self._call("DELETE", "/shopping/order/deleteOrder", params={"orderId": external_order_id})


class _Unauthorized(Exception):
    pass
