"""Error taxonomy for the order lifecycle.

Every business failure raised by the orders app derives from ``OrderError``.
Each class carries a short machine-readable ``code`` (returned to API
clients in the ``detail`` field) and the HTTP status the views map it to.
Side-effect failures (notifications, best-effort stock compensation) are
never raised through this hierarchy; they are logged where they happen.
"""


class OrderError(Exception):
    """Base class for order lifecycle errors.

    Attributes:
        code: Stable error code exposed to API clients.
        http_status: HTTP status code used by the views.
        message: Human readable explanation.
    """

    code = "ORDER_ERROR"
    http_status = 400

    def __init__(self, message: str | None = None):
        self.message = message or self.code
        super().__init__(self.message)

    def as_dict(self) -> dict:
        return {"detail": self.code, "message": self.message}


# ---- 400 ----
class ValidationError(OrderError):
    """Bad input shape. Raised before any mutation happens."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str | None = None, field: str | None = None):
        self.field = field
        if message is None and field:
            message = f"{field} is required"
        super().__init__(message)

    def as_dict(self) -> dict:
        body = super().as_dict()
        if self.field:
            body["field"] = self.field
        return body


class EmptyCartError(ValidationError):
    code = "EMPTY_CART"

    def __init__(self):
        super().__init__("Cart is empty")


class DepositNotEligibleError(ValidationError):
    code = "DEPOSIT_NOT_ELIGIBLE"

    def __init__(self, product_id, reason: str = "does not support deposit reservations"):
        self.product_id = str(product_id)
        super().__init__(f"Product {product_id} {reason}")


class MalformedEventError(ValidationError):
    code = "MALFORMED_EVENT"


# ---- 404 ----
class NotFoundError(OrderError):
    code = "NOT_FOUND"
    http_status = 404


# ---- 409 ----
class ConflictError(OrderError):
    code = "CONFLICT"
    http_status = 409


class InsufficientStockError(ConflictError):
    """Requested quantity exceeds the current stock of a product."""

    code = "INSUFFICIENT_STOCK"
    http_status = 422

    def __init__(self, product_id, product_name: str | None = None):
        self.product_id = str(product_id)
        self.product_name = product_name or self.product_id
        super().__init__(f"Insufficient stock for {self.product_name}")

    def as_dict(self) -> dict:
        body = super().as_dict()
        body["product_id"] = self.product_id
        return body


class TransitionError(ConflictError):
    code = "INVALID_TRANSITION"


class StaleOrderError(ConflictError):
    """The order changed underneath the caller (lost optimistic race)."""

    code = "STALE_ORDER"


class AlreadyProcessedError(ConflictError):
    code = "ALREADY_PROCESSED"


class AlreadyTerminalError(ConflictError):
    code = "ALREADY_TERMINAL"


class PaymentSettledError(ConflictError):
    code = "PAYMENT_SETTLED"


class ProofConflictError(ConflictError):
    """A pending transfer proof already exists for the order."""

    code = "PROOF_PENDING"


class IdempotencyConflictError(ConflictError):
    code = "IDEMPOTENCY_CONFLICT"


# ---- 401 / 403 ----
class TokenInvalidError(OrderError):
    code = "INVALID_TOKEN"
    http_status = 401


# ---- 5xx ----
class ExternalDependencyError(OrderError):
    """A call to the payment provider or the stock service failed."""

    code = "UPSTREAM_UNAVAILABLE"
    http_status = 502


class CircuitOpenError(ExternalDependencyError):
    code = "CIRCUIT_OPEN"
    http_status = 503


class SignatureVerificationError(ExternalDependencyError):
    code = "INVALID_SIGNATURE"
    http_status = 400


class InventoryReleaseError(OrderError):
    """Stock could not be returned; the surrounding transition is rolled back."""

    code = "INVENTORY_RELEASE_FAILED"
    http_status = 500
