"""
Demo API gated by the payment middleware.

``/motivate`` costs ``ZKX402_PRICE`` on ``ZKX402_NETWORK`` and is discounted
for callers holding both the human and the institution proof. ``/`` and
``/health`` stay free. Run with ``python -m zkx402.server``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request

from .config import GateSettings
from .facilitator import Facilitator
from .middleware import PaymentGateMiddleware, get_verification_metadata
from .proofs import ProofVerifier
from .routes import RouteConfig, RouteOptions

logger = logging.getLogger(__name__)

HUMAN_PROOF = "zkproofOf(human)"
INSTITUTION_PROOF = "zkproofOf(instituion=NYT)"


def demo_routes(settings: GateSettings) -> dict[str, RouteConfig]:
    return {
        "GET /motivate": RouteConfig(
            price=settings.price,
            network=settings.network,
            config=RouteOptions(
                description="get a motivational quote to inspire your day",
                mime_type="application/json",
                output_schema={
                    "type": "object",
                    "properties": {
                        "quote": {"type": "string", "description": "an inspirational quote"},
                        "timestamp": {"type": "string", "description": "when the quote was generated"},
                    },
                },
                extra={
                    "variableAmountRequired": [
                        {
                            "requestedProofs": f"{HUMAN_PROOF}, {INSTITUTION_PROOF}",
                            "amountRequired": "5000",
                        }
                    ],
                    "contentMetadata": [
                        {"proof": "zkproof(Edward Snowden)"},
                        {"proof": "zkproof(human)"},
                    ],
                },
            ),
        )
    }


def create_app(
    settings: Optional[GateSettings] = None,
    facilitator: Optional[Facilitator] = None,
    proof_verifier: Optional[ProofVerifier] = None,
) -> FastAPI:
    settings = settings or GateSettings.from_env()
    app = FastAPI(title="zkx402 demo API", version="0.1.0")

    app.add_middleware(
        PaymentGateMiddleware,
        pay_to=settings.pay_to,
        routes=demo_routes(settings),
        facilitator=facilitator or settings.build_facilitator(),
        proof_verifier=proof_verifier or settings.build_proof_verifier(),
    )

    @app.get("/")
    def root() -> dict:
        return {
            "name": "zkx402 demo API",
            "description": "x402 payments with proof-based discounts",
            "endpoints": {
                "GET /health": "Health check",
                "GET /motivate": f"Motivational quote (requires {settings.price} payment)",
            },
            "payment": {"price": settings.price, "network": settings.network},
        }

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/motivate")
    def motivate(request: Request) -> dict:
        metadata = get_verification_metadata(request)
        return {
            "quote": "Innovation happens when ideas collide.",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "paid": True,
            "verification": (
                {
                    "qualified": metadata.qualified,
                    "discountApplied": metadata.discount_applied,
                    "discountedPrice": metadata.discounted_price,
                }
                if metadata
                else None
            ),
        }

    logger.info("Payments for /motivate go to %s on %s", settings.pay_to, settings.network)
    return app


def main() -> None:
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=3001)


if __name__ == "__main__":
    main()
