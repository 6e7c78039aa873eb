"""
X-PAYMENT header decoding and requirement matching.

The header carries base64-encoded JSON:
``{"x402Version": 1, "scheme": "exact", "network": "...", "payload": {...}}``.
Decoding and the settlement receipt codec come from the x402 SDK; this
module adds the checks the gate needs on top of the schema.
"""

from __future__ import annotations

from typing import Optional, Sequence

from x402.http import (
    decode_payment_response_header,
    decode_payment_signature_header,
    encode_payment_response_header,
    encode_payment_signature_header,
)
from x402.schemas import SettleResponse
from x402.schemas.v1 import PaymentPayloadV1, PaymentRequirementsV1

from .errors import NoMatchingRequirementError, PaymentDecodeError, UnsupportedNetworkError
from .facilitator import X402_VERSION
from .networks import NetworkFamily, network_family

SUPPORTED_SCHEMES = ("exact",)


def payment_asset(payment: PaymentPayloadV1) -> Optional[str]:
    asset = payment.payload.get("asset")
    return str(asset) if asset else None


def payment_payer(payment: PaymentPayloadV1) -> Optional[str]:
    """Payer address of an EVM authorization, if the payload carries one."""
    authorization = payment.payload.get("authorization")
    if not isinstance(authorization, dict):
        return None
    return authorization.get("from")


def decode_payment(header_value: str) -> PaymentPayloadV1:
    """Decode and validate an X-PAYMENT header value."""
    try:
        payment = decode_payment_signature_header(header_value.strip())
    except (ValueError, AttributeError) as e:
        raise PaymentDecodeError("Invalid or malformed payment header") from e

    if not isinstance(payment, PaymentPayloadV1):
        raise PaymentDecodeError(f"Unsupported x402Version: expected {X402_VERSION}")
    if payment.scheme not in SUPPORTED_SCHEMES:
        raise PaymentDecodeError(f"Unsupported payment scheme: {payment.scheme!r}")
    if not payment.network:
        raise PaymentDecodeError("Payment header is missing a network")

    try:
        family = network_family(payment.network)
    except UnsupportedNetworkError as e:
        raise PaymentDecodeError(str(e)) from e

    payload = payment.payload
    if family is NetworkFamily.ACCOUNT:
        if not payload.get("signature") or not isinstance(payload.get("authorization"), dict):
            raise PaymentDecodeError("EVM payment payload requires signature and authorization")
    elif not payload.get("transaction"):
        raise PaymentDecodeError("SVM payment payload requires a transaction")

    return payment


def find_matching_requirement(
    requirements: Sequence[PaymentRequirementsV1],
    payment: PaymentPayloadV1,
) -> PaymentRequirementsV1:
    """Pick the requirement the decoded payment was built for."""
    asset = payment_asset(payment)
    for requirement in requirements:
        if requirement.scheme != payment.scheme or requirement.network != payment.network:
            continue
        if asset and asset.lower() != requirement.asset.lower():
            continue
        return requirement
    raise NoMatchingRequirementError("Unable to find matching payment requirements")


def encode_payment(payment: PaymentPayloadV1) -> str:
    return encode_payment_signature_header(payment)


def encode_settlement_header(settlement: SettleResponse) -> str:
    """Encode a settlement receipt for the X-PAYMENT-RESPONSE header."""
    return encode_payment_response_header(settlement)


def decode_settlement_header(header_value: str) -> SettleResponse:
    return decode_payment_response_header(header_value)
