"""Tests for the supported network tables."""

import pytest

from zkx402.errors import InvalidPriceError, UnsupportedNetworkError
from zkx402.networks import (
    EVM_NETWORKS,
    SVM_NETWORKS,
    NetworkFamily,
    default_asset,
    is_testnet,
    network_family,
    process_price_to_atomic_amount,
)


@pytest.mark.parametrize("network", EVM_NETWORKS + SVM_NETWORKS)
def test_every_supported_network_accepts_dollar_prices(network):
    atomic = process_price_to_atomic_amount("$0.01", network)

    assert int(atomic.max_amount_required) > 0
    assert atomic.asset.address


def test_known_networks_are_offered():
    for network in ("base", "base-sepolia", "avalanche", "polygon", "sei", "sei-testnet"):
        assert network_family(network) is NetworkFamily.ACCOUNT
    for network in ("solana", "solana-devnet"):
        assert network_family(network) is NetworkFamily.FEE_PAYER


@pytest.mark.parametrize("network", ["peaq", "iotex", "megaeth", "dogecoin"])
def test_networks_without_settleable_asset_are_unsupported(network):
    with pytest.raises(UnsupportedNetworkError):
        network_family(network)
    with pytest.raises(InvalidPriceError):
        default_asset(network)


def test_evm_asset_carries_eip712_domain():
    asset = default_asset("base")

    assert asset.address == "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
    assert asset.decimals == 6
    assert asset.eip712 == {"name": "USD Coin", "version": "2"}


def test_svm_asset_has_no_eip712_domain():
    asset = default_asset("solana")

    assert asset.address == "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
    assert asset.eip712 == {}


@pytest.mark.parametrize(
    "network,expected",
    [("base-sepolia", True), ("solana-devnet", True), ("sei-testnet", True), ("base", False), ("solana", False)],
)
def test_is_testnet(network, expected):
    assert is_testnet(network) is expected
