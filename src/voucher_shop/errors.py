"""Exception hierarchy for the voucher shop."""

from typing import Optional


class VoucherShopError(Exception):
    """Base class for all voucher shop errors."""
    status_code = 500


class InvalidInput(VoucherShopError):
    """A required field is missing or malformed."""
    status_code = 400


class InvalidDenomination(InvalidInput):
    """The requested amount is not one of the configured denominations."""

    def __init__(self, amount, allowed):
        self.amount = amount
        self.allowed = tuple(allowed)
        super().__init__(
            f"Invalid voucher amount {amount!r}. "
            f"Expected one of: {', '.join(str(a) for a in self.allowed)}"
        )


class NotFound(VoucherShopError):
    """No payment record exists for the reference."""
    status_code = 404

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Payment not found for reference {reference}")


class AlreadyConsumed(VoucherShopError):
    """A voucher code was consumed by someone else first."""
    status_code = 409

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Voucher {code} has already been consumed")


class ProviderError(VoucherShopError):
    """Base class for payment provider failures."""
    status_code = 502

    def __init__(
        self,
        message: str,
        response: Optional[dict] = None,
        reference: Optional[str] = None,
    ):
        self.response = response
        # Payment reference the failed call belonged to, when one exists
        self.reference = reference
        super().__init__(message)


class ProviderUnreachable(ProviderError):
    """The provider could not be reached or answered with a server error."""


class ProviderRejected(ProviderError):
    """The provider definitively refused the request."""


class PaymentTimeout(VoucherShopError):
    """The client polling loop gave up before the payment became final."""
    status_code = 504

    def __init__(self, reference: str, timeout_seconds: float):
        self.reference = reference
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Payment {reference} did not complete within {timeout_seconds:g} seconds"
        )
