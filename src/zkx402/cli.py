"""
zkx402 CLI: run and inspect the payment gate.

Commands:
    zkx402 serve            Run the demo API behind the payment gate
    zkx402 quote            Preview the price a set of proofs would pay
    zkx402 decode-payment   Decode an X-PAYMENT header value
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import replace
from typing import Optional

import click

from .config import GateSettings
from .errors import PaymentDecodeError, ZkX402Error
from .money import parse_money
from .payment import decode_payment
from .pricing import PriceResolver
from .routes import DiscountTier


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
)
@click.version_option(package_name="zkx402")
def main(log_level: str):
    """zkx402: x402 payments with proof-based discounts."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=3001, show_default=True)
@click.option("--pay-to", default=None, help="Receiving wallet (defaults to ZKX402_PAY_TO)")
@click.option("--network", default=None, help="Network for /motivate (defaults to ZKX402_NETWORK)")
@click.option("--facilitator-url", default=None, help="Facilitator base URL")
def serve(
    host: str,
    port: int,
    pay_to: Optional[str],
    network: Optional[str],
    facilitator_url: Optional[str],
):
    """Run the demo API behind the payment gate."""
    import uvicorn

    from .server import create_app

    settings = GateSettings.from_env()
    overrides = {
        key: value
        for key, value in {
            "pay_to": pay_to,
            "network": network,
            "facilitator_url": facilitator_url,
        }.items()
        if value
    }
    settings = replace(settings, **overrides)

    click.echo(f"💸 zkx402 demo on http://{host}:{port}")
    click.echo(f"   GET /motivate: {settings.price} on {settings.network} → {settings.pay_to}")
    uvicorn.run(create_app(settings), host=host, port=port)


@main.command()
@click.option("--price", default="$0.01", show_default=True, help="Base price")
@click.option(
    "--tier",
    "tiers",
    multiple=True,
    help='Discount tier as "PROOF[,PROOF...]=ATOMIC_AMOUNT"; repeat in priority order',
)
@click.option("--proof", "proofs", multiple=True, help="Proof the caller presents; repeatable")
@click.option("--last-tier-diagnostics", is_flag=True, help="Report the last tier tried on a miss")
def quote(price: str, tiers: tuple[str, ...], proofs: tuple[str, ...], last_tier_diagnostics: bool):
    """Preview the price a set of proofs would pay."""
    try:
        parsed = [_parse_tier(t) for t in tiers]
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--tier")

    settings = GateSettings.from_env()
    resolver = PriceResolver(
        settings.build_proof_verifier(),
        first_tier_diagnostics=not last_tier_diagnostics,
    )
    try:
        parse_money(price)
        resolution = asyncio.run(resolver.resolve(price, parsed, list(proofs)))
    except ZkX402Error as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    click.echo(f"Final price: {resolution.final_price}")
    metadata = resolution.metadata.to_dict() if resolution.metadata else None
    click.echo(json.dumps(metadata, indent=2))


@main.command("decode-payment")
@click.argument("header_value")
def decode_payment_cmd(header_value: str):
    """Decode an X-PAYMENT header value."""
    try:
        payment = decode_payment(header_value)
    except PaymentDecodeError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)
    click.echo(json.dumps(payment.model_dump(by_alias=True, exclude_none=True), indent=2))


def _parse_tier(value: str) -> DiscountTier:
    proofs, sep, amount = value.rpartition("=")
    if not sep or not proofs.strip() or not amount.strip().isdigit():
        raise ValueError(f"Invalid tier {value!r} (expected PROOFS=ATOMIC_AMOUNT)")
    return DiscountTier(requested_proofs=proofs.strip(), amount_required=amount.strip())


if __name__ == "__main__":
    main()
