"""
Discount-aware price resolution.

Tiers are tried in declaration order and the first satisfied tier sets the
price, even when a later tier would be cheaper.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from .money import atomic_to_price
from .proofs import ProofVerifier, VerificationOutcome
from .routes import DiscountTier, Price

logger = logging.getLogger(__name__)


@dataclass
class DiscountMetadata:
    qualified: bool
    discount_applied: bool
    user_proofs: list[str]
    verification_result: Optional[VerificationOutcome] = None
    requested_proofs: Optional[str] = None
    discounted_amount: Optional[str] = None
    discounted_price: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "qualified": self.qualified,
            "discountApplied": self.discount_applied,
            "userProofs": list(self.user_proofs),
            "verificationResult": (
                self.verification_result.to_dict() if self.verification_result else None
            ),
        }
        if self.qualified:
            d["requestedProofs"] = self.requested_proofs
            d["discountedAmount"] = self.discounted_amount
            d["discountedPrice"] = self.discounted_price
        return d


@dataclass
class PriceResolution:
    final_price: Price
    metadata: Optional[DiscountMetadata] = None


class PriceResolver:
    """Picks the charge for a request from its base price and discount tiers.

    ``first_tier_diagnostics`` keeps the historical behaviour of reporting the
    first tier's verification outcome when no tier qualifies; set it to False
    to report the last tier evaluated instead.
    """

    def __init__(self, verifier: ProofVerifier, first_tier_diagnostics: bool = True):
        self.verifier = verifier
        self.first_tier_diagnostics = first_tier_diagnostics

    async def resolve(
        self,
        base_price: Price,
        tiers: Sequence[DiscountTier],
        user_proofs: Sequence[str],
    ) -> PriceResolution:
        if not user_proofs or not tiers:
            return PriceResolution(final_price=base_price)

        outcomes: list[VerificationOutcome] = []
        for tier in tiers:
            outcome = await self.verifier.verify(user_proofs, tier.proof_list())
            outcomes.append(outcome)
            logger.debug(
                "Tier %r verification: valid=%s missing=%s",
                tier.requested_proofs,
                outcome.is_valid,
                outcome.missing_proofs,
            )
            if outcome.is_valid:
                discounted_price = atomic_to_price(tier.amount_required)
                logger.info(
                    "Caller qualified for discount (%s): %s atomic units",
                    tier.requested_proofs,
                    tier.amount_required,
                )
                return PriceResolution(
                    final_price=discounted_price,
                    metadata=DiscountMetadata(
                        qualified=True,
                        discount_applied=True,
                        user_proofs=list(user_proofs),
                        verification_result=outcome,
                        requested_proofs=tier.requested_proofs,
                        discounted_amount=tier.amount_required,
                        discounted_price=discounted_price,
                    ),
                )

        logger.info("Caller did not qualify for any discount")
        diagnostics = outcomes[0] if self.first_tier_diagnostics else outcomes[-1]
        return PriceResolution(
            final_price=base_price,
            metadata=DiscountMetadata(
                qualified=False,
                discount_applied=False,
                user_proofs=list(user_proofs),
                verification_result=diagnostics,
            ),
        )
