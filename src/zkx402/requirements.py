"""
Payment requirement construction.

One requirement is produced per request, shaped by the network family of
the matched route:

- account-based (EVM): checksummed payTo/asset and the asset's EIP-712
  domain merged with the route's ``extra`` bag, which is how discount tiers
  and content metadata reach the caller;
- ledger fee-payer (SVM): the fee payer advertised by the facilitator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from eth_utils import to_checksum_address
from x402.schemas.v1 import PaymentRequirementsV1

from .errors import ConfigurationError, FeePayerNotFoundError
from .networks import NetworkFamily, network_family, process_price_to_atomic_amount
from .routes import Price, RouteConfig

logger = logging.getLogger(__name__)

DEFAULT_SCHEME = "exact"
DEFAULT_MAX_TIMEOUT_SECONDS = 60


@dataclass(frozen=True)
class RequestContext:
    method: str
    url: str


class RequirementBuilder:
    """Builds the requirement list advertised in challenges."""

    def __init__(self, pay_to: str, facilitator: Any):
        self.pay_to = pay_to
        self.facilitator = facilitator

    async def build(
        self,
        route: RouteConfig,
        price: Price,
        request: RequestContext,
    ) -> list[PaymentRequirementsV1]:
        family = network_family(route.network)
        atomic = process_price_to_atomic_amount(price, route.network)
        options = route.config

        common = dict(
            scheme=DEFAULT_SCHEME,
            network=route.network,
            max_amount_required=atomic.max_amount_required,
            resource=options.resource or request.url,
            description=options.description or "",
            mime_type=options.mime_type or "",
            max_timeout_seconds=options.max_timeout_seconds or DEFAULT_MAX_TIMEOUT_SECONDS,
            output_schema=_output_schema(route, request.method),
        )

        if family is NetworkFamily.ACCOUNT:
            return [
                PaymentRequirementsV1(
                    pay_to=_checksum(self.pay_to, "payTo"),
                    asset=_checksum(atomic.asset.address, "asset"),
                    extra={**atomic.asset.eip712, **options.extra},
                    **common,
                )
            ]

        fee_payer = await self._fee_payer(route.network)
        return [
            PaymentRequirementsV1(
                pay_to=self.pay_to,
                asset=atomic.asset.address,
                extra={"feePayer": fee_payer},
                **common,
            )
        ]

    async def _fee_payer(self, network: str) -> str:
        for kind in await self.facilitator.supported():
            if kind.network == network and kind.scheme == DEFAULT_SCHEME:
                fee_payer = (kind.extra or {}).get("feePayer")
                if fee_payer:
                    return fee_payer
                break
        logger.debug("Facilitator advertises no fee payer for %s", network)
        raise FeePayerNotFoundError(network)


def _output_schema(route: RouteConfig, method: str) -> dict[str, Any]:
    options = route.config
    discoverable = True if options.discoverable is None else options.discoverable
    return {
        "input": {
            "type": "http",
            "method": method.upper(),
            "discoverable": discoverable,
            **(options.input_schema or {}),
        },
        "output": options.output_schema,
    }


def _checksum(address: str, label: str) -> str:
    try:
        return to_checksum_address(address)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Invalid {label} address: {address!r}") from e
