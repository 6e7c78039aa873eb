"""
Protected route table.

Routes are declared as ``{"GET /api/items/*": RouteConfig(...)}``. A key
without a verb applies to every method, and a single ``RouteConfig`` protects
every path. Patterns are compiled once and searched in declaration order;
the first match wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from .errors import InvalidRouteError


HTTP_VERBS = {"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"}


@dataclass(frozen=True)
class TokenAmount:
    """Price given directly in atomic units of a specific asset."""

    amount: str
    asset_address: str
    decimals: int = 6
    eip712: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TokenAmount":
        asset = data.get("asset") or {}
        return cls(
            amount=str(data["amount"]),
            asset_address=str(asset.get("address", "")),
            decimals=int(asset.get("decimals", 6)),
            eip712=dict(asset.get("eip712") or {}),
        )


Price = Union[str, int, float, TokenAmount]


@dataclass(frozen=True)
class DiscountTier:
    """Proofs required for a reduced amount (atomic units)."""

    requested_proofs: str
    amount_required: str

    def proof_list(self) -> list[str]:
        if not self.requested_proofs:
            return []
        return [p.strip() for p in self.requested_proofs.split(",")]


@dataclass
class RouteOptions:
    description: Optional[str] = None
    mime_type: Optional[str] = None
    max_timeout_seconds: Optional[int] = None
    input_schema: Optional[dict[str, Any]] = None
    output_schema: Optional[dict[str, Any]] = None
    resource: Optional[str] = None
    discoverable: Optional[bool] = None
    custom_paywall_html: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def discount_tiers(self) -> list[DiscountTier]:
        tiers = []
        for entry in self.extra.get("variableAmountRequired") or []:
            tiers.append(
                DiscountTier(
                    requested_proofs=str(entry.get("requestedProofs") or ""),
                    amount_required=str(entry.get("amountRequired", "")),
                )
            )
        return tiers

    @property
    def content_metadata(self) -> list[dict[str, Any]]:
        return list(self.extra.get("contentMetadata") or [])


@dataclass
class RouteConfig:
    price: Price
    network: str
    config: RouteOptions = field(default_factory=RouteOptions)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RouteConfig":
        if "price" not in data or "network" not in data:
            raise InvalidRouteError("Route config requires 'price' and 'network'")
        price = data["price"]
        if isinstance(price, Mapping):
            price = TokenAmount.from_dict(price)
        options = data.get("config") or {}
        return cls(
            price=price,
            network=str(data["network"]),
            config=RouteOptions(
                description=options.get("description"),
                mime_type=options.get("mimeType"),
                max_timeout_seconds=options.get("maxTimeoutSeconds"),
                input_schema=options.get("inputSchema"),
                output_schema=options.get("outputSchema"),
                resource=options.get("resource"),
                discoverable=options.get("discoverable"),
                custom_paywall_html=options.get("customPaywallHtml"),
                extra=dict(options.get("extra") or {}),
            ),
        )


@dataclass(frozen=True)
class RoutePattern:
    verb: str
    pattern: re.Pattern
    config: RouteConfig


RoutesInput = Union[RouteConfig, Mapping[str, Union[RouteConfig, Mapping[str, Any]]]]


def compile_routes(routes: RoutesInput) -> list[RoutePattern]:
    """Compile route declarations into ordered, matchable patterns."""
    if isinstance(routes, RouteConfig):
        return [RoutePattern(verb="*", pattern=_path_regex("/*"), config=routes)]
    if not isinstance(routes, Mapping):
        raise InvalidRouteError(f"Unsupported routes value: {type(routes).__name__}")

    patterns = []
    for key, value in routes.items():
        verb, path = _split_route_key(key)
        config = value if isinstance(value, RouteConfig) else RouteConfig.from_dict(value)
        patterns.append(RoutePattern(verb=verb, pattern=_path_regex(path), config=config))
    return patterns


def match_route(patterns: list[RoutePattern], method: str, path: str) -> Optional[RouteConfig]:
    """Return the first route matching ``method`` and ``path``, or None."""
    verb = method.upper()
    normalized = _normalize_path(path)
    for route in patterns:
        if route.verb != "*" and route.verb != verb:
            continue
        if route.pattern.match(normalized):
            return route.config
    return None


def _split_route_key(key: str) -> tuple[str, str]:
    parts = key.strip().split()
    if len(parts) == 1:
        verb, path = "*", parts[0]
    elif len(parts) == 2:
        verb, path = parts[0].upper(), parts[1]
        if verb not in HTTP_VERBS and verb != "*":
            raise InvalidRouteError(f"Unknown HTTP verb in route: {key}")
    else:
        raise InvalidRouteError(f"Invalid route key: {key!r}")
    if not path.startswith("/"):
        raise InvalidRouteError(f"Route path must start with '/': {key!r}")
    return verb, path


def _path_regex(path: str) -> re.Pattern:
    segments = []
    for segment in path.strip("/").split("/"):
        if segment == "*":
            segments.append(".*")
        elif segment.startswith("[") and segment.endswith("]"):
            segments.append("[^/]+")
        else:
            segments.append(re.escape(segment))
    body = "/".join(segments)
    # "/api/*" also matches "/api" itself
    body = body.replace("/.*", "(?:/.*)?")
    return re.compile(f"^/{body}$", re.IGNORECASE)


def _normalize_path(path: str) -> str:
    if len(path) > 1 and path.endswith("/"):
        return path.rstrip("/") or "/"
    return path or "/"
