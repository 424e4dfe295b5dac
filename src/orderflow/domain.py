"""Order fulfillment bounded context: orders, payments, supplier orders and tracking sync.

Turns a placed order into money collected and goods shipped across payment
gateways and a dropshipping supplier, keeping one authoritative order status.
"""

import structlog
from protean.domain import Domain

orderflow = Domain(name="orderflow")

logger = structlog.get_logger(__name__)
