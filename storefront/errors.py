"""Error taxonomy shared by the cart, checkout, and account flows."""


class StorefrontError(Exception):
    """Base class for every error raised by the storefront core."""


class ValidationError(StorefrontError):
    """One or more input fields failed validation. Never reaches a collaborator."""

    def __init__(self, field_errors: dict[str, str]):
        self.field_errors = dict(field_errors)
        fields = ", ".join(sorted(self.field_errors))
        super().__init__(f"Invalid fields: {fields}")


class NotAuthenticated(StorefrontError):
    """No signed-in user. `next_step` is where the caller wanted to go."""

    def __init__(self, next_step: str | None = None, message: str = "You need to sign in first."):
        self.next_step = next_step
        self.message = message
        super().__init__(message)


class CollaboratorError(StorefrontError):
    """A backend call failed (network, auth provider, storage, RPC)."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        self.message = message
        super().__init__(message)


class InsufficientStock(StorefrontError):
    """Requested quantity is more than the product has available."""

    def __init__(self, product_id: int, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Only {available} unit(s) of product {product_id} available, {requested} requested"
        )


class EmptyCart(StorefrontError):
    """Checkout was attempted with nothing in the cart."""

    def __init__(self):
        super().__init__("Your cart is empty.")


class NoAddressSelected(StorefrontError):
    """Payment was submitted without a resolvable shipping address."""

    def __init__(self):
        super().__init__("Select a shipping address")


class InvalidTransition(StorefrontError):
    """A checkout action was attempted from the wrong state."""

    def __init__(self, current: str, attempted: str):
        self.current = current
        self.attempted = attempted
        super().__init__(f"Cannot {attempted} while in {current}")


class CheckoutStepFailed(StorefrontError):
    """A step of the checkout sequence failed; later steps were not run.

    Steps that already completed are not undone. `decremented` lists the
    (product_id, quantity) pairs whose stock was already taken when the
    failure happened.
    """

    def __init__(self, step: str, cause: Exception, decremented: list[tuple[int, int]] | None = None):
        self.step = step
        self.cause = cause
        self.decremented = list(decremented or [])
        super().__init__(str(cause))
