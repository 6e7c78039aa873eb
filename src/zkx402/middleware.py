"""
ASGI payment gate.

Flow for a request that matches a protected route:
1. Read caller proofs and resolve the (possibly discounted) price
2. Build the payment requirement for the route's network
3. Challenge with 402 when no X-PAYMENT header is present
4. Decode the payment, match it to the requirement, verify with the facilitator
5. Run the downstream app with its output buffered
6. Settle (skipped when the app answered >= 400) and release the buffer

Each request runs through its own ``PaymentPipeline``.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Optional

from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send
from x402.http import X_PAYMENT_HEADER, X_PAYMENT_RESPONSE_HEADER
from x402.schemas.v1 import PaymentPayloadV1, PaymentRequiredV1, PaymentRequirementsV1

from .buffering import AsgiResponseSink, BufferedResponseSink
from .errors import FacilitatorError, PaymentError
from .facilitator import Facilitator, FacilitatorClient
from .networks import display_amount, is_testnet
from .payment import decode_payment, encode_settlement_header, find_matching_requirement
from .paywall import PaywallConfig, is_web_browser, render_paywall_html
from .pricing import PriceResolver
from .proofs import ProofVerifier
from .requirements import RequestContext, RequirementBuilder
from .routes import Price, RouteConfig, RoutesInput, compile_routes, match_route

logger = logging.getLogger(__name__)

X_USER_PROOFS_HEADER = "X-User-Proofs"

VERIFICATION_METADATA_KEY = "verification_metadata"


class PipelineState(str, Enum):
    AWAITING_PAYMENT = "awaiting_payment"
    VERIFYING = "verifying"
    EXECUTING = "executing"
    SETTLING = "settling"
    RESOLVED = "resolved"


_TRANSITIONS = {
    PipelineState.AWAITING_PAYMENT: {PipelineState.VERIFYING, PipelineState.RESOLVED},
    PipelineState.VERIFYING: {PipelineState.EXECUTING, PipelineState.RESOLVED},
    PipelineState.EXECUTING: {PipelineState.SETTLING, PipelineState.RESOLVED},
    PipelineState.SETTLING: {PipelineState.RESOLVED},
    PipelineState.RESOLVED: set(),
}


class PaymentGateMiddleware:
    """Gates configured routes behind x402 payments.

    Usage::

        app.add_middleware(
            PaymentGateMiddleware,
            pay_to="0x...",
            routes={"GET /motivate": RouteConfig(price="$0.01", network="base-sepolia")},
        )
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        pay_to: str,
        routes: RoutesInput,
        facilitator: Optional[Facilitator] = None,
        proof_verifier: Optional[ProofVerifier] = None,
        paywall: Optional[PaywallConfig] = None,
        first_tier_diagnostics: bool = True,
    ):
        self.app = app
        self.pay_to = pay_to
        self.routes = compile_routes(routes)
        self.facilitator = facilitator or FacilitatorClient()
        self.price_resolver = PriceResolver(
            proof_verifier or ProofVerifier(),
            first_tier_diagnostics=first_tier_diagnostics,
        )
        self.requirement_builder = RequirementBuilder(pay_to, self.facilitator)
        self.paywall = paywall

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        route = match_route(self.routes, scope["method"], scope["path"])
        if route is None:
            await self.app(scope, receive, send)
            return

        await PaymentPipeline(self, route, scope, receive, send).run()


class PaymentPipeline:
    """Request-scoped state machine for one gated request."""

    def __init__(
        self,
        gate: PaymentGateMiddleware,
        route: RouteConfig,
        scope: Scope,
        receive: Receive,
        send: Send,
    ):
        self.gate = gate
        self.route = route
        self.scope = scope
        self.receive = receive
        self.send = send
        self.request = Request(scope, receive)
        self.state = PipelineState.AWAITING_PAYMENT
        self.requirements: list[PaymentRequirementsV1] = []

    def advance(self, target: PipelineState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid payment pipeline transition: {self.state.value} -> {target.value}"
            )
        logger.debug("Payment pipeline %s -> %s", self.state.value, target.value)
        self.state = target

    async def run(self) -> None:
        headers = self.request.headers
        user_proofs = parse_user_proofs(headers.get(X_USER_PROOFS_HEADER))

        resolution = await self.gate.price_resolver.resolve(
            self.route.price,
            self.route.config.discount_tiers,
            user_proofs,
        )
        self.scope.setdefault("state", {})[VERIFICATION_METADATA_KEY] = resolution.metadata

        self.requirements = await self.gate.requirement_builder.build(
            self.route,
            resolution.final_price,
            RequestContext(method=self.request.method, url=resource_url(self.request)),
        )

        payment_header = headers.get(X_PAYMENT_HEADER)
        if not payment_header:
            await self._challenge(resolution.final_price)
            return

        try:
            payment = decode_payment(payment_header)
            requirement = find_matching_requirement(self.requirements, payment)
        except PaymentError as e:
            await self._reject(str(e))
            return

        self.advance(PipelineState.VERIFYING)
        try:
            verification = await self.gate.facilitator.verify(payment, requirement)
        except Exception as e:
            logger.exception("Payment verification errored")
            await self._reject(_facilitator_failure(e, "Payment verification failed"))
            return
        if not verification.is_valid:
            await self._reject(
                verification.invalid_reason or "Payment verification failed",
                payer=verification.payer,
            )
            return

        self.advance(PipelineState.EXECUTING)
        buffered = BufferedResponseSink(AsgiResponseSink(self.send))
        try:
            await self.gate.app(self.scope, self.receive, buffered.asgi_send)
        except Exception:
            buffered.discard()
            self.advance(PipelineState.RESOLVED)
            raise

        status = buffered.status_code or 200
        if status >= 400:
            logger.info("Protected handler answered %s, payment not settled", status)
            self.advance(PipelineState.RESOLVED)
            await buffered.release()
            return

        self.advance(PipelineState.SETTLING)
        await self._settle(payment, requirement, buffered)

    async def _settle(
        self,
        payment: PaymentPayloadV1,
        requirement: PaymentRequirementsV1,
        buffered: BufferedResponseSink,
    ) -> None:
        try:
            settlement = await self.gate.facilitator.settle(payment, requirement)
        except Exception as e:
            if buffered.headers_sent:
                logger.exception("Settlement failed after the response was sent")
                self.advance(PipelineState.RESOLVED)
                await buffered.release()
                return
            logger.exception("Settlement errored")
            buffered.discard()
            await self._reject(_facilitator_failure(e, "Payment settlement failed"))
            return

        receipt = encode_settlement_header(settlement)
        if not settlement.success:
            logger.warning("Settlement rejected: %s", settlement.error_reason)
            buffered.discard()
            await self._reject(
                settlement.error_reason or "Payment settlement failed",
                headers={X_PAYMENT_RESPONSE_HEADER: receipt},
            )
            return

        logger.info("Payment settled on %s: %s", settlement.network, settlement.transaction)
        buffered.set_header(X_PAYMENT_RESPONSE_HEADER, receipt)
        self.advance(PipelineState.RESOLVED)
        await buffered.release()

    async def _challenge(self, price: Price) -> None:
        self.advance(PipelineState.RESOLVED)
        headers = self.request.headers
        options = self.route.config
        if is_web_browser(headers.get("accept", ""), headers.get("user-agent", "")):
            page = options.custom_paywall_html or render_paywall_html(
                amount=display_amount(price),
                requirements=self.requirements,
                current_url=_original_url(self.request),
                testnet=is_testnet(self.route.network),
                paywall=self.gate.paywall,
            )
            response = HTMLResponse(page, status_code=402)
        else:
            response = JSONResponse(
                self._error_body("X-PAYMENT header is required"),
                status_code=402,
            )
        await response(self.scope, self.receive, self.send)

    async def _reject(
        self,
        error: str,
        payer: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self.advance(PipelineState.RESOLVED)
        body = self._error_body(error)
        if payer:
            body["payer"] = payer
        response = JSONResponse(body, status_code=402, headers=headers)
        await response(self.scope, self.receive, self.send)

    def _error_body(self, error: str) -> dict[str, Any]:
        body = PaymentRequiredV1(error=error, accepts=self.requirements)
        return body.model_dump(by_alias=True, exclude_none=True)


def parse_user_proofs(header_value: Optional[str]) -> list[str]:
    """Parse the X-User-Proofs header; anything but a JSON string array yields []."""
    if not header_value:
        return []
    try:
        proofs = json.loads(header_value)
    except ValueError:
        logger.warning("Failed to parse %s header", X_USER_PROOFS_HEADER)
        return []
    if not isinstance(proofs, list) or not all(isinstance(p, str) for p in proofs):
        logger.warning("%s must be a JSON array of strings", X_USER_PROOFS_HEADER)
        return []
    logger.info("Received user proofs: %s", proofs)
    return proofs


def resource_url(request: Request) -> str:
    host = request.headers.get("host") or request.url.netloc
    return f"{request.url.scheme}://{host}{request.url.path}"


def get_verification_metadata(request: Request):
    """Discount metadata the gate attached to ``request``, if any."""
    return request.scope.get("state", {}).get(VERIFICATION_METADATA_KEY)


def _original_url(request: Request) -> str:
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def _facilitator_failure(error: Exception, fallback: str) -> str:
    # only facilitator errors carry a message meant for the payer
    if isinstance(error, FacilitatorError):
        return str(error)
    return fallback
