"""Domain exceptions raised by services and translated by routers."""

from fastapi import HTTPException


class CommerceError(Exception):
    """Base class for checkout, payment and recovery failures."""

    reason = "error"

    def __init__(self, message: str, reason: str | None = None):
        super().__init__(message)
        self.message = message
        if reason:
            self.reason = reason


class ValidationFailure(CommerceError, ValueError):
    """Malformed input rejected before any state change."""

    reason = "validation_failed"


class StockUnavailable(CommerceError):
    reason = "stock_insufficient"


class CartChanged(CommerceError):
    """The cart no longer matches the amount the payment was created for."""

    reason = "cart_changed"


class ConcurrencyConflict(CommerceError):
    """Another request holds the resource; the caller should retry later."""

    reason = "retry_later"


class PaymentMismatch(CommerceError):
    reason = "amount_mismatch"


class InvalidSignature(CommerceError):
    reason = "signature_invalid"


class GatewayError(CommerceError):
    """The payment gateway rejected a call or could not be reached."""

    reason = "gateway_error"


class NotFound(CommerceError):
    reason = "not_found"


STATUS_CODES: dict[type[CommerceError], int] = {
    ValidationFailure: 400,
    PaymentMismatch: 400,
    InvalidSignature: 400,
    NotFound: 404,
    ConcurrencyConflict: 409,
    CartChanged: 409,
    StockUnavailable: 409,
    GatewayError: 502,
}


def to_http_exception(exc: CommerceError, status_code: int | None = None) -> HTTPException:
    """Translate a domain error into an HTTPException carrying its reason code."""
    if status_code is None:
        status_code = next(
            (code for cls, code in STATUS_CODES.items() if isinstance(exc, cls)),
            400,
        )
    return HTTPException(
        status_code=status_code,
        detail={"reason": exc.reason, "message": exc.message},
    )
