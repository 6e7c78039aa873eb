"""
Supported networks and their default settlement assets.

Both tables come from the x402 SDK's legacy (protocol version 1) network
lists. A network is offered only when the SDK also knows a default asset
that the exact scheme can settle, so every supported network accepts
dollar prices.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from x402.mechanisms.evm import V1_NETWORKS as EVM_V1_NETWORKS
from x402.mechanisms.evm import get_default_asset as get_evm_default_asset
from x402.mechanisms.svm import V1_NETWORKS as SVM_V1_NETWORKS
from x402.mechanisms.svm import get_default_asset as get_svm_default_asset

from .errors import InvalidPriceError, UnsupportedNetworkError
from .money import USDC_DECIMALS, amount_to_atomic, parse_money
from .routes import Price, TokenAmount


class NetworkFamily(str, Enum):
    ACCOUNT = "evm"
    FEE_PAYER = "svm"


TESTNET_SUFFIXES = ("-sepolia", "-testnet", "-devnet", "-fuji", "-amoy")


@dataclass(frozen=True)
class Asset:
    address: str
    decimals: int = USDC_DECIMALS
    eip712: dict[str, Any] = field(default_factory=dict)


def _evm_asset(network: str) -> Asset:
    entry = get_evm_default_asset(network)
    return Asset(
        address=entry["asset"],
        decimals=entry["decimals"],
        eip712={"name": entry["name"], "version": entry["version"]},
    )


def _svm_asset(network: str) -> Asset:
    entry = get_svm_default_asset(network)
    return Asset(address=entry["asset"], decimals=entry["decimals"])


def _settleable(network: str, lookup: Callable[[str], Any]) -> bool:
    try:
        entry = lookup(network)
    except ValueError:
        return False
    # permit2-only tokens cannot be paid with transferWithAuthorization
    return "asset_transfer_method" not in entry


EVM_NETWORKS = tuple(n for n in EVM_V1_NETWORKS if _settleable(n, get_evm_default_asset))
SVM_NETWORKS = tuple(n for n in SVM_V1_NETWORKS if _settleable(n, get_svm_default_asset))


@dataclass(frozen=True)
class AtomicPrice:
    max_amount_required: str
    asset: Asset


def network_family(network: str) -> NetworkFamily:
    if network in EVM_NETWORKS:
        return NetworkFamily.ACCOUNT
    if network in SVM_NETWORKS:
        return NetworkFamily.FEE_PAYER
    raise UnsupportedNetworkError(network)


def is_testnet(network: str) -> bool:
    return network.endswith(TESTNET_SUFFIXES)


def default_asset(network: str) -> Asset:
    if network in EVM_NETWORKS:
        return _evm_asset(network)
    if network in SVM_NETWORKS:
        return _svm_asset(network)
    raise InvalidPriceError(f"Unable to find default asset on network '{network}'")


def process_price_to_atomic_amount(price: Price, network: str) -> AtomicPrice:
    """Resolve a route price into an atomic amount and the asset it is paid in."""
    if isinstance(price, TokenAmount):
        return AtomicPrice(
            max_amount_required=price.amount,
            asset=Asset(
                address=price.asset_address,
                decimals=price.decimals,
                eip712=dict(price.eip712),
            ),
        )

    amount = parse_money(price)
    asset = default_asset(network)
    return AtomicPrice(
        max_amount_required=str(amount_to_atomic(amount, asset.decimals)),
        asset=asset,
    )


def display_amount(price: Price) -> float:
    """Human-readable amount for the paywall page."""
    if isinstance(price, TokenAmount):
        return int(price.amount) / 10 ** price.decimals
    return float(parse_money(price))
