"""
zkx402: x402 payment gating with proof-based discounts.

Protected routes answer unpaid requests with 402, verify and settle
payments through a facilitator, and hold the handler's response until
settlement succeeds. Callers presenting qualifying proof tokens are
charged a discounted amount.
"""

__version__ = "0.1.0"

from .buffering import BufferedResponseSink, CallKind
from .credentials import CredentialsLoaded, CredentialsUnavailable, load_proof_credentials
from .facilitator import FacilitatorClient, FacilitatorConfig, SettleResponse, VerifyResponse
from .middleware import PaymentGateMiddleware, PipelineState, get_verification_metadata
from .pricing import DiscountMetadata, PriceResolution, PriceResolver
from .proofs import ProofVerifier, VerificationOutcome
from .requirements import RequirementBuilder
from .routes import DiscountTier, RouteConfig, RouteOptions, TokenAmount, compile_routes, match_route

__all__ = [
    "PaymentGateMiddleware", "PipelineState", "get_verification_metadata",
    "RouteConfig", "RouteOptions", "DiscountTier", "TokenAmount", "compile_routes", "match_route",
    "ProofVerifier", "VerificationOutcome",
    "CredentialsLoaded", "CredentialsUnavailable", "load_proof_credentials",
    "PriceResolver", "PriceResolution", "DiscountMetadata",
    "RequirementBuilder",
    "FacilitatorClient", "FacilitatorConfig", "VerifyResponse", "SettleResponse",
    "BufferedResponseSink", "CallKind",
]
