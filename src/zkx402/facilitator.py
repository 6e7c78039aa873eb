"""
Facilitator access for the payment gate.

Wraps the x402 SDK's ``HTTPFacilitatorClient`` so verify, settle and
supported calls share one error type. Calls are not retried; transport
failures, non-200 answers and malformed bodies raise ``FacilitatorError``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional, Protocol

import httpx
from x402.http import DEFAULT_FACILITATOR_URL, FacilitatorConfig, HTTPFacilitatorClient
from x402.schemas import SettleResponse, SupportedKind, VerifyResponse
from x402.schemas.v1 import PaymentPayloadV1, PaymentRequirementsV1

from .errors import FacilitatorError

logger = logging.getLogger(__name__)

X402_VERSION = 1

__all__ = [
    "DEFAULT_FACILITATOR_URL",
    "X402_VERSION",
    "Facilitator",
    "FacilitatorClient",
    "FacilitatorConfig",
    "SettleResponse",
    "SupportedKind",
    "VerifyResponse",
]

_STATUS_RE = re.compile(r"failed \((\d{3})\)")


class Facilitator(Protocol):
    """Operations the payment gate needs from a facilitator."""

    async def verify(self, payment: PaymentPayloadV1, requirement: PaymentRequirementsV1) -> VerifyResponse: ...

    async def settle(self, payment: PaymentPayloadV1, requirement: PaymentRequirementsV1) -> SettleResponse: ...

    async def supported(self) -> list[SupportedKind]: ...


class FacilitatorClient:
    """Talks to a facilitator over HTTP through the SDK client."""

    def __init__(
        self,
        config: Optional[FacilitatorConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or FacilitatorConfig()
        if http_client is not None:
            self.config.http_client = http_client
        self._client = HTTPFacilitatorClient(self.config)

    @property
    def url(self) -> str:
        return self._client.url

    async def verify(self, payment: PaymentPayloadV1, requirement: PaymentRequirementsV1) -> VerifyResponse:
        try:
            return await self._client.verify(payment, requirement)
        except (httpx.HTTPError, ValueError) as e:
            raise _facilitator_error("verify", e) from e

    async def settle(self, payment: PaymentPayloadV1, requirement: PaymentRequirementsV1) -> SettleResponse:
        try:
            return await self._client.settle(payment, requirement)
        except (httpx.HTTPError, ValueError) as e:
            raise _facilitator_error("settle", e) from e

    async def supported(self) -> list[SupportedKind]:
        # The SDK fetches /supported with a blocking client
        try:
            response = await asyncio.to_thread(self._client.get_supported)
        except (httpx.HTTPError, ValueError) as e:
            raise _facilitator_error("supported", e) from e
        return list(response.kinds)

    async def aclose(self) -> None:
        await self._client.aclose()


def _facilitator_error(operation: str, error: Exception) -> FacilitatorError:
    if isinstance(error, httpx.HTTPError):
        logger.warning("Facilitator %s request failed: %s", operation, error)
        return FacilitatorError(f"Facilitator {operation} request failed: {error}")

    message = str(error)
    match = _STATUS_RE.search(message)
    status_code = int(match.group(1)) if match else None
    if len(message) > 300:
        message = message[:297] + "..."
    return FacilitatorError(message, status_code=status_code)
