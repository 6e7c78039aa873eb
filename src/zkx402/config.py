"""Environment-driven settings for the demo server and CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from .cdp_facilitator import CDP_FACILITATOR_URL, create_cdp_facilitator_config, has_cdp_credentials
from .credentials import (
    PROOF_PATH_ENV,
    CredentialLoadResult,
    default_proof_paths,
    load_proof_credentials,
)
from .facilitator import DEFAULT_FACILITATOR_URL, FacilitatorClient, FacilitatorConfig
from .proofs import DEFAULT_VERIFY_URL, ProofVerifier

PAY_TO_ENV = "ZKX402_PAY_TO"
NETWORK_ENV = "ZKX402_NETWORK"
PRICE_ENV = "ZKX402_PRICE"
FACILITATOR_URL_ENV = "ZKX402_FACILITATOR_URL"
FACILITATOR_TIMEOUT_ENV = "ZKX402_FACILITATOR_TIMEOUT"
PROOF_VERIFY_URL_ENV = "ZKX402_PROOF_VERIFY_URL"

DEFAULT_NETWORK = "base-sepolia"
DEFAULT_PRICE = "$0.01"
PLACEHOLDER_PAY_TO = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class GateSettings:
    pay_to: str = PLACEHOLDER_PAY_TO
    network: str = DEFAULT_NETWORK
    price: str = DEFAULT_PRICE
    facilitator_url: Optional[str] = None
    facilitator_timeout: Optional[float] = None
    proof_path: Optional[str] = None
    proof_verify_url: str = DEFAULT_VERIFY_URL

    @classmethod
    def from_env(cls) -> "GateSettings":
        timeout = os.getenv(FACILITATOR_TIMEOUT_ENV)
        try:
            facilitator_timeout = float(timeout) if timeout else None
        except ValueError as e:
            raise ValueError(f"{FACILITATOR_TIMEOUT_ENV} must be a number of seconds") from e
        return cls(
            pay_to=os.getenv(PAY_TO_ENV, PLACEHOLDER_PAY_TO),
            network=os.getenv(NETWORK_ENV, DEFAULT_NETWORK),
            price=os.getenv(PRICE_ENV, DEFAULT_PRICE),
            facilitator_url=os.getenv(FACILITATOR_URL_ENV),
            facilitator_timeout=facilitator_timeout,
            proof_path=os.getenv(PROOF_PATH_ENV),
            proof_verify_url=os.getenv(PROOF_VERIFY_URL_ENV, DEFAULT_VERIFY_URL),
        )

    def load_credentials(self) -> CredentialLoadResult:
        return load_proof_credentials(default_proof_paths(self.proof_path))

    def build_proof_verifier(self, credentials: Optional[CredentialLoadResult] = None) -> ProofVerifier:
        return ProofVerifier(
            credentials=credentials if credentials is not None else self.load_credentials(),
            verify_url=self.proof_verify_url,
            timeout_seconds=self.facilitator_timeout,
        )

    def build_facilitator(self) -> FacilitatorClient:
        """CDP facilitator when CDP keys are configured, else the public one."""
        if has_cdp_credentials():
            return FacilitatorClient(
                create_cdp_facilitator_config(
                    facilitator_url=self.facilitator_url or CDP_FACILITATOR_URL,
                    timeout_seconds=self.facilitator_timeout,
                )
            )
        config = FacilitatorConfig(url=self.facilitator_url or DEFAULT_FACILITATOR_URL)
        if self.facilitator_timeout is not None:
            config.timeout = self.facilitator_timeout
        return FacilitatorClient(config)
