"""
zkx402 error types.

Configuration errors are fatal and surface as 5xx from the hosting app.
Payment and facilitator errors end the current request with a 402.
Proof verification never raises; failures are reported as data.
"""


class ZkX402Error(Exception):
    """Base error for all zkx402 operations."""
    pass


# Configuration errors
class ConfigurationError(ZkX402Error):
    """Route or server configuration cannot produce a payment requirement."""
    pass


class UnsupportedNetworkError(ConfigurationError):
    """Route names a network outside the supported families."""
    def __init__(self, network: str):
        self.network = network
        super().__init__(f"Unsupported network: {network}")


class FeePayerNotFoundError(ConfigurationError):
    """Facilitator advertises no fee payer for a ledger-fee-payer network."""
    def __init__(self, network: str):
        self.network = network
        super().__init__(f"The facilitator did not provide a fee payer for network: {network}.")


class InvalidPriceError(ConfigurationError):
    """Price cannot be converted into an atomic amount."""
    pass


class InvalidRouteError(ConfigurationError):
    """Route key or route configuration is malformed."""
    pass


# Payment errors
class PaymentError(ZkX402Error):
    """Base error for caller-supplied payment problems."""
    pass


class PaymentDecodeError(PaymentError):
    """X-PAYMENT header could not be decoded."""
    pass


class NoMatchingRequirementError(PaymentError):
    """Decoded payment matches none of the advertised requirements."""
    pass


# Facilitator errors
class FacilitatorError(ZkX402Error):
    """Facilitator was unreachable or answered verify/settle/supported with an error."""
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
