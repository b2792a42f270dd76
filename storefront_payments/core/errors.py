"""Error taxonomy for the payment service.

Every class carries the HTTP status the API layer answers with; the
exception handler in ``main`` renders them as ``{"message": ...}``.
"""


class PaymentServiceError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ConfigurationError(PaymentServiceError):
    """A required secret or setting is missing at call time."""
    status_code = 500


class ProviderError(PaymentServiceError):
    """Non-2xx, malformed or unreachable payment gateway response."""
    status_code = 502

    def __init__(self, message: str, status: int | None = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body

    def __str__(self):
        if self.status is None:
            return self.message
        return f"{self.message} (HTTP {self.status}): {self.body[:200]}"


class SignatureInvalidError(PaymentServiceError):
    status_code = 400


class InvalidPayloadError(PaymentServiceError):
    status_code = 400


class MissingReferenceError(InvalidPayloadError):
    """Neither a transaction reference nor a charge id could be found."""


class DocumentStoreError(PaymentServiceError):
    status_code = 500


class StockUpdateError(PaymentServiceError):
    """Raised per line item; reconciliation logs and continues."""

    def __init__(self, message: str, product_ref: str = ""):
        super().__init__(message)
        self.product_ref = product_ref


class NotFoundError(PaymentServiceError):
    status_code = 404
