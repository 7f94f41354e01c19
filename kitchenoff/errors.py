"""
Error taxonomy for the KitchenOff billing integrations.

Provider failures are the only errors the invoice orchestrator recovers from
(by issuing a local invoice). Everything else propagates to the caller.
"""

from typing import Any, Optional


class KitchenOffError(Exception):
    """Base exception for all billing integration errors."""

    pass


class ConfigurationError(KitchenOffError):
    """Raised when settings are missing or inconsistent."""

    pass


class NotFoundError(KitchenOffError):
    """Raised when an order, user or invoice does not exist."""

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} {entity_id} not found")


class InvoiceValidationError(KitchenOffError):
    """Raised for malformed invoicing input, before any network call."""

    pass


class ProviderError(KitchenOffError):
    """
    Raised when a call to the invoicing provider fails.

    Covers both rejected requests (non-2xx, ``status_code`` set) and
    transport failures (``status_code`` is None).
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        raw_body: Optional[str] = None,
    ):
        self.status_code = status_code
        self.raw_body = raw_body
        if status_code is not None:
            message = f"{message} (HTTP {status_code})"
        super().__init__(message)


class UnreadableProviderResponse(ProviderError):
    """
    Raised when the provider accepted a request but its answer cannot be read.

    The provider may have created the document anyway.
    """

    pass


class CarrierApiError(KitchenOffError):
    """Raised when the shipping carrier rejects a request."""

    def __init__(self, endpoint: str, status_code: Optional[int], raw_body: str = ""):
        self.endpoint = endpoint
        self.status_code = status_code
        self.raw_body = raw_body
        status = f"HTTP {status_code}" if status_code is not None else "transport error"
        super().__init__(f"Carrier API call {endpoint} failed: {status} {raw_body[:200]}".rstrip())


class AuthenticationError(KitchenOffError):
    """Raised when carrier authentication fails."""

    pass


class GatewayError(KitchenOffError):
    """Raised when the persistence layer cannot complete an operation."""

    pass


class DuplicateInvoiceError(GatewayError):
    """Raised when an order already has a non-cancelled invoice."""

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} already has an active invoice")
