"""
Institution proof credential loading.

The credential file is read once at startup. The result is either
``CredentialsLoaded`` or ``CredentialsUnavailable``; it is immutable and is
passed to the proof verifier explicitly.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Union

logger = logging.getLogger(__name__)

PROOF_PATH_ENV = "ZKX402_PROOF_PATH"
DEFAULT_PROOF_FILENAME = "proof.json"

# Subset of the credential document forwarded to the remote verifier
FORWARDED_FIELDS = ("success", "data", "version", "meta")


@dataclass(frozen=True)
class CredentialsLoaded:
    data: Mapping[str, Any]
    source: Path

    def verification_payload(self) -> dict[str, Any]:
        return {key: self.data.get(key) for key in FORWARDED_FIELDS}


@dataclass(frozen=True)
class CredentialsUnavailable:
    reason: str


CredentialLoadResult = Union[CredentialsLoaded, CredentialsUnavailable]


def default_proof_paths(explicit: Optional[str] = None) -> list[Path]:
    """Candidate credential locations, most specific first."""
    candidates = []
    configured = explicit or os.getenv(PROOF_PATH_ENV)
    if configured:
        candidates.append(Path(configured).expanduser())
    candidates.append(Path.cwd() / DEFAULT_PROOF_FILENAME)
    return candidates


def load_proof_credentials(paths: Iterable[Path]) -> CredentialLoadResult:
    """Load the first readable JSON credential document from ``paths``."""
    errors = []
    for path in paths:
        try:
            with open(path) as f:
                document = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Could not load proof credentials from %s: %s", path, e)
            errors.append(f"{path}: {e}")
            continue
        if not isinstance(document, dict):
            logger.warning("Proof credentials in %s are not a JSON object", path)
            errors.append(f"{path}: not a JSON object")
            continue
        logger.info("Loaded institution proof credentials from %s", path)
        return CredentialsLoaded(data=MappingProxyType(document), source=Path(path))

    reason = "; ".join(errors) if errors else "no credential paths configured"
    return CredentialsUnavailable(reason=reason)
