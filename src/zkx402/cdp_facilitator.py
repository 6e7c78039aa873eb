"""
CDP-hosted facilitator configuration.

Provides:
1. CDP API key loading from environment variables or 1Password
2. Per-endpoint JWT auth headers for verify/settle/supported
3. A ready-made ``FacilitatorConfig`` pointing at the CDP facilitator
"""

from __future__ import annotations

import base64
import json
import os
import random
import subprocess
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, urlparse

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from x402.http import AuthHeaders, AuthProvider, FacilitatorConfig

from . import __version__

CDP_FACILITATOR_URL = "https://api.cdp.coinbase.com/platform/v2/x402"
CDP_API_AUDIENCE = ["cdp_service"]

CDP_API_KEY_ID_ENV = "CDP_API_KEY_ID"
CDP_API_KEY_SECRET_ENV = "CDP_API_KEY_SECRET"

ZKX402_CDP_OP_ITEM_ENV = "ZKX402_CDP_OP_ITEM"
ZKX402_CDP_OP_VAULT_ENV = "ZKX402_CDP_OP_VAULT"

DEFAULT_OP_KEY_ID_FIELD = "CDP_API_KEY_ID"
DEFAULT_OP_KEY_SECRET_FIELD = "CDP_API_KEY_SECRET"

# verify and settle are POSTed, supported is fetched
_ENDPOINT_METHODS = {"verify": "POST", "settle": "POST", "supported": "GET"}


@dataclass(frozen=True)
class CDPApiCredentials:
    api_key_id: str
    api_key_secret: str


class CDPFacilitatorAuthProvider(AuthProvider):
    """Signs a short-lived JWT for each facilitator endpoint."""

    def __init__(
        self,
        api_key_id: str,
        api_key_secret: str,
        facilitator_url: str = CDP_FACILITATOR_URL,
        expires_in_seconds: int = 120,
    ):
        if not api_key_id:
            raise ValueError("CDP API key ID is required")
        if not api_key_secret:
            raise ValueError("CDP API key secret is required")

        parsed = urlparse(facilitator_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"Invalid facilitator URL: {facilitator_url}")
        base_path = parsed.path.rstrip("/")
        if not base_path:
            raise ValueError(f"Facilitator URL path cannot be empty: {facilitator_url}")

        self._api_key_id = api_key_id
        self._private_key, self._algorithm = _parse_private_key(api_key_secret)
        self._host = parsed.netloc
        self._base_path = base_path
        self._expires_in_seconds = expires_in_seconds

    def get_auth_headers(self) -> AuthHeaders:
        correlation = _correlation_context()
        signed = {}
        for endpoint, method in _ENDPOINT_METHODS.items():
            signed[endpoint] = {
                "Correlation-Context": correlation,
                "Authorization": self._bearer(method, f"{self._base_path}/{endpoint}"),
            }
        return AuthHeaders(**signed)

    def _bearer(self, method: str, path: str) -> str:
        now = int(time.time())
        claims = {
            "sub": self._api_key_id,
            "iss": "cdp",
            "aud": CDP_API_AUDIENCE,
            "nbf": now,
            "exp": now + self._expires_in_seconds,
            "uris": [f"{method} {self._host}{path}"],
        }
        token = jwt.encode(
            claims,
            self._private_key,
            algorithm=self._algorithm,
            headers={"kid": self._api_key_id, "typ": "JWT", "nonce": _nonce()},
        )
        return f"Bearer {token}"


def load_cdp_api_credentials(
    *,
    api_key_id: Optional[str] = None,
    api_key_secret: Optional[str] = None,
    op_item: Optional[str] = None,
    op_vault: Optional[str] = None,
    timeout_seconds: float = 10.0,
) -> CDPApiCredentials:
    """Resolve CDP credentials from arguments, the environment, or 1Password."""
    key_id = api_key_id or os.getenv(CDP_API_KEY_ID_ENV)
    key_secret = api_key_secret or os.getenv(CDP_API_KEY_SECRET_ENV)

    item = op_item or os.getenv(ZKX402_CDP_OP_ITEM_ENV)
    vault = op_vault or os.getenv(ZKX402_CDP_OP_VAULT_ENV)
    if not (key_id and key_secret) and item and vault:
        fields = _load_1password_fields(item=item, vault=vault, timeout_seconds=timeout_seconds)
        key_id = key_id or _get_case_insensitive(fields, DEFAULT_OP_KEY_ID_FIELD)
        key_secret = key_secret or _get_case_insensitive(fields, DEFAULT_OP_KEY_SECRET_FIELD)

    if not key_id or not key_secret:
        raise ValueError(
            "CDP API credentials not found. Set CDP_API_KEY_ID/CDP_API_KEY_SECRET or "
            "ZKX402_CDP_OP_ITEM + ZKX402_CDP_OP_VAULT."
        )
    return CDPApiCredentials(api_key_id=key_id, api_key_secret=key_secret)


def has_cdp_credentials() -> bool:
    return bool(
        (os.getenv(CDP_API_KEY_ID_ENV) and os.getenv(CDP_API_KEY_SECRET_ENV))
        or (os.getenv(ZKX402_CDP_OP_ITEM_ENV) and os.getenv(ZKX402_CDP_OP_VAULT_ENV))
    )


def create_cdp_facilitator_config(
    *,
    api_key_id: Optional[str] = None,
    api_key_secret: Optional[str] = None,
    facilitator_url: str = CDP_FACILITATOR_URL,
    timeout_seconds: Optional[float] = None,
) -> FacilitatorConfig:
    credentials = load_cdp_api_credentials(api_key_id=api_key_id, api_key_secret=api_key_secret)
    config = FacilitatorConfig(
        url=facilitator_url,
        auth_provider=CDPFacilitatorAuthProvider(
            api_key_id=credentials.api_key_id,
            api_key_secret=credentials.api_key_secret,
            facilitator_url=facilitator_url,
        ),
    )
    if timeout_seconds is not None:
        config.timeout = timeout_seconds
    return config


def _load_1password_fields(item: str, vault: str, timeout_seconds: float) -> dict[str, str]:
    result = subprocess.run(
        ["op", "item", "get", item, "--vault", vault, "--format", "json"],
        capture_output=True,
        text=True,
        timeout=timeout_seconds,
    )
    if result.returncode != 0:
        raise RuntimeError(f"1Password error: {result.stderr.strip()}")

    values: dict[str, str] = {}
    for entry in json.loads(result.stdout).get("fields", []):
        label = str(entry.get("label") or "")
        if label:
            values[label] = str(entry.get("value") or "")
    return values


def _get_case_insensitive(values: dict[str, str], key: str) -> Optional[str]:
    lowered = key.lower()
    for k, v in values.items():
        if k.lower() == lowered and v:
            return v
    return None


def _parse_private_key(
    key_data: str,
) -> tuple[ec.EllipticCurvePrivateKey | ed25519.Ed25519PrivateKey, str]:
    # Unquoted env vars often carry literal '\n' sequences
    key_data = key_data.replace("\\n", "\n")

    try:
        key = serialization.load_pem_private_key(key_data.encode("utf-8"), password=None)
    except ValueError:
        key = None
    if isinstance(key, ec.EllipticCurvePrivateKey):
        return key, "ES256"

    try:
        decoded = base64.b64decode(key_data)
    except ValueError:
        decoded = b""
    if len(decoded) == 64:
        return ed25519.Ed25519PrivateKey.from_private_bytes(decoded[:32]), "EdDSA"

    raise ValueError("CDP API key secret must be either PEM EC key or base64 Ed25519 key")


def _correlation_context() -> str:
    data = {
        "sdk_version": __version__,
        "sdk_language": "python",
        "source": "zkx402",
        "source_version": __version__,
    }
    return ",".join(f"{k}={quote(str(v), safe='')}" for k, v in data.items())


def _nonce() -> str:
    return "".join(random.choices("0123456789", k=16))
