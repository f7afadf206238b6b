"""Exceptions raised by the cart, checkout and payment services."""


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv["message"] = self.message
        rv["status"] = "error"
        return rv


class ValidationError(StorefrontError):
    """Bad input, rejected before storage is touched."""

    def __init__(self, message, status_code=422, payload=None):
        super().__init__(message, status_code, payload)


class ItemNotFoundError(ValidationError):
    def __init__(self, item_id):
        super().__init__(
            f"Item {item_id} does not exist",
            status_code=404,
            payload={"item_id": item_id},
        )
        self.item_id = item_id


class AuthenticationRequiredError(StorefrontError):
    def __init__(self, message="This operation requires a signed-in user"):
        super().__init__(message, 401)


class NotFoundError(StorefrontError):
    """A line, order or payment that does not exist."""

    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class LineNotFoundError(NotFoundError):
    def __init__(self, item_id):
        super().__init__(f"Item {item_id} is not in the cart", {"item_id": item_id})
        self.item_id = item_id


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id):
        super().__init__(f"Order {order_id} does not exist", {"order_id": order_id})
        self.order_id = order_id


class PaymentNotFoundError(NotFoundError):
    def __init__(self, payment_id):
        super().__init__(f"Payment {payment_id} does not exist", {"payment_id": payment_id})
        self.payment_id = payment_id


class ConflictError(StorefrontError):
    def __init__(self, message, payload=None):
        super().__init__(message, 409, payload)


class LockTimeoutError(ConflictError):
    def __init__(self, key):
        super().__init__(f"Another operation is in progress for {key}", {"retryable": True})
        self.key = key


class LockLostError(ConflictError):
    """The lock expired while the operation was still running; nothing was saved."""

    def __init__(self, key):
        super().__init__(f"Lock on {key} expired before the operation finished", {"retryable": True})
        self.key = key


class CartChangedError(ConflictError):
    def __init__(self, identity):
        super().__init__(
            f"Cart {identity} changed during checkout, please review it and retry",
            {"retryable": True},
        )


class AlreadyPaidError(ConflictError):
    """Raised when an order already has a paid payment.

    ``payment`` is the existing paid payment so callers can treat a duplicate
    "mark paid" as an idempotent read.
    """

    def __init__(self, payment):
        super().__init__(
            f"Order {payment.order_id} is already paid",
            {
                "order_id": payment.order_id,
                "payment_id": payment.id,
                "payment_status": payment.status,
            },
        )
        self.payment = payment


class InvalidPaymentStateError(ConflictError):
    def __init__(self, payment_id, current, target):
        super().__init__(
            f"Payment {payment_id} cannot move from {current} to {target}",
            {"payment_id": payment_id, "payment_status": current},
        )


class EmptyCartError(StorefrontError):
    def __init__(self, message="Cannot check out an empty cart"):
        super().__init__(message, 409)


class MissingItemError(StorefrontError):
    def __init__(self, item_ids):
        ids = sorted(item_ids)
        super().__init__(
            f"Items no longer available: {', '.join(str(i) for i in ids)}",
            422,
            {"item_ids": ids},
        )
        self.item_ids = ids


class TransactionError(StorefrontError):
    """The checkout transaction failed and was rolled back in full."""

    def __init__(self, message="Checkout failed, nothing was saved. Please retry."):
        super().__init__(message, 503, {"retryable": True})


class CatalogUnavailableError(StorefrontError):
    def __init__(self, message="Catalog service is unavailable"):
        super().__init__(message, 503, {"retryable": True})
