"""
Proof token verification.

Proof tokens are opaque, self-asserted identifiers such as
``zkproofOf(human)``. Apart from the institution marker, a requested proof
counts as verified when the caller lists it in ``X-User-Proofs``: this is a
plain string comparison and carries no cryptographic guarantee.

The institution marker is checked against a remote verifier using the
credential document loaded at startup. Remote failures are reported on the
``ProofCheck``; nothing is raised to the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, Union

import httpx

from .credentials import CredentialLoadResult, CredentialsLoaded, CredentialsUnavailable

logger = logging.getLogger(__name__)

DEFAULT_VERIFY_URL = "https://zkx402-server.vercel.app/api/verify"
# Spelling matches the marker issued to callers
INSTITUTION_PROOF = "zkproofof(instituion=nyt)"


def normalize_proof(proof: str) -> str:
    return proof.strip().lower()


@dataclass
class ProofCheck:
    proof: str
    verified: bool
    reason: Optional[str] = None
    api_result: Optional[Any] = None
    error_details: Optional[Any] = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"proof": self.proof, "verified": self.verified}
        if self.reason is not None:
            d["reason"] = self.reason
        if self.api_result is not None:
            d["apiResult"] = self.api_result
        if self.error_details is not None:
            d["errorDetails"] = self.error_details
        return d


@dataclass
class VerificationOutcome:
    is_valid: bool
    missing_proofs: list[str]
    user_proofs: list[str]
    requested_proofs: list[str]
    details: list[ProofCheck] = field(default_factory=list)

    @property
    def verified_count(self) -> int:
        return len(self.requested_proofs) - len(self.missing_proofs)

    @property
    def total_required(self) -> int:
        return len(self.requested_proofs)

    def to_dict(self) -> dict:
        return {
            "isValid": self.is_valid,
            "hasAllProofs": self.is_valid,
            "missingProofs": list(self.missing_proofs),
            "userProofs": list(self.user_proofs),
            "requestedProofs": list(self.requested_proofs),
            "verifiedCount": self.verified_count,
            "totalRequired": self.total_required,
            "verificationDetails": [d.to_dict() for d in self.details],
        }


# Remote verifier verdicts


@dataclass(frozen=True)
class Verified:
    result: Any


@dataclass(frozen=True)
class Rejected:
    result: Any


@dataclass(frozen=True)
class Unreachable:
    reason: str
    details: Optional[Any] = None


RemoteVerdict = Union[Verified, Rejected, Unreachable]


def interpret_verifier_response(status_code: int, text: str) -> RemoteVerdict:
    """Map a raw verifier HTTP answer onto a verdict."""
    if not 200 <= status_code < 300:
        try:
            details = json.loads(text)
        except ValueError:
            details = {"raw": text[:500]}
        return Unreachable(reason=f"API error: {status_code}", details=details)

    try:
        body = json.loads(text)
    except ValueError:
        return Unreachable(reason="Invalid JSON response from verify API")

    if not isinstance(body, dict):
        return Rejected(result=body)

    has_error = bool(body.get("error"))
    if (
        body.get("verified") is True
        or body.get("valid") is True
        or (body.get("status") == "success" and not has_error)
        or (body.get("success") is True and not has_error)
    ):
        return Verified(result=body)
    return Rejected(result=body)


class ProofVerifier:
    """Checks caller proofs against the proofs a discount tier requests."""

    def __init__(
        self,
        credentials: Optional[CredentialLoadResult] = None,
        verify_url: str = DEFAULT_VERIFY_URL,
        remote_proof: str = INSTITUTION_PROOF,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.credentials = credentials or CredentialsUnavailable("no credentials configured")
        self.verify_url = verify_url
        self.remote_proof = normalize_proof(remote_proof)
        self._http = http_client
        self._timeout = timeout_seconds

    async def verify(
        self,
        user_proofs: Sequence[str],
        requested_proofs: Sequence[str],
    ) -> VerificationOutcome:
        normalized_user = [normalize_proof(p) for p in user_proofs]
        normalized_requested = [normalize_proof(p) for p in requested_proofs]

        checks = await asyncio.gather(
            *(self._check(required, normalized_user) for required in normalized_requested)
        )
        missing = [c.proof for c in checks if not c.verified]
        return VerificationOutcome(
            is_valid=not missing,
            missing_proofs=missing,
            user_proofs=normalized_user,
            requested_proofs=normalized_requested,
            details=list(checks),
        )

    async def _check(self, required: str, user_proofs: list[str]) -> ProofCheck:
        claimed = required in user_proofs
        if required == self.remote_proof and claimed:
            return await self._verify_remote(required)
        return ProofCheck(proof=required, verified=claimed)

    async def _verify_remote(self, proof: str) -> ProofCheck:
        if not isinstance(self.credentials, CredentialsLoaded):
            logger.warning("Institution proof credentials not loaded, skipping remote verification")
            return ProofCheck(proof=proof, verified=False, reason="proof data not loaded")

        logger.info("Verifying %s via %s", proof, self.verify_url)
        verdict = await self._call_verifier(self.credentials.verification_payload())

        if isinstance(verdict, Verified):
            logger.info("Remote verifier accepted %s", proof)
            return ProofCheck(proof=proof, verified=True, api_result=verdict.result)
        if isinstance(verdict, Rejected):
            logger.info("Remote verifier rejected %s", proof)
            return ProofCheck(proof=proof, verified=False, api_result=verdict.result)
        logger.warning("Remote verification of %s failed: %s", proof, verdict.reason)
        return ProofCheck(
            proof=proof,
            verified=False,
            reason=verdict.reason,
            error_details=verdict.details,
        )

    async def _call_verifier(self, payload: dict[str, Any]) -> RemoteVerdict:
        try:
            if self._http is not None:
                response = await self._http.post(self.verify_url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self.verify_url, json=payload)
        except httpx.HTTPError as e:
            return Unreachable(reason=str(e) or type(e).__name__)
        return interpret_verifier_response(response.status_code, response.text)
