"""Browser paywall page for unpaid requests."""

from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from x402.http.utils import htmlsafe_json_dumps
from x402.schemas.v1 import PaymentRequirementsV1

BROWSER_ACCEPT_MARKER = "text/html"
BROWSER_AGENT_MARKER = "Mozilla"


@dataclass
class PaywallConfig:
    app_name: Optional[str] = None
    app_logo: Optional[str] = None
    cdp_client_key: Optional[str] = None
    session_token_endpoint: Optional[str] = None


def is_web_browser(accept: str, user_agent: str) -> bool:
    return BROWSER_ACCEPT_MARKER in accept and BROWSER_AGENT_MARKER in user_agent


def render_paywall_html(
    *,
    amount: float,
    requirements: Sequence[PaymentRequirementsV1],
    current_url: str,
    testnet: bool,
    paywall: Optional[PaywallConfig] = None,
) -> str:
    paywall = paywall or PaywallConfig()
    state: dict[str, Any] = {
        "amount": amount,
        "paymentRequirements": [r.model_dump(by_alias=True, exclude_none=True) for r in requirements],
        "testnet": testnet,
        "currentUrl": current_url,
        "config": {
            "chainConfig": {},
            "cdpClientKey": paywall.cdp_client_key or "",
            "appName": paywall.app_name or "",
            "appLogo": paywall.app_logo or "",
            "sessionTokenEndpoint": paywall.session_token_endpoint or "",
        },
    }
    state_json = htmlsafe_json_dumps(state)

    title = html.escape(paywall.app_name or "Payment Required")
    logo = ""
    if paywall.app_logo:
        logo = f'<img class="logo" src="{html.escape(paywall.app_logo, quote=True)}" alt="">'
    description = html.escape(requirements[0].description if requirements else "")
    network = html.escape(requirements[0].network if requirements else "")
    tiers = _tier_rows(requirements)
    testnet_label = " (testnet)" if testnet else ""

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title}</title>
<style>
body {{ font-family: system-ui, sans-serif; max-width: 32rem; margin: 4rem auto; padding: 0 1rem; }}
.amount {{ font-size: 2rem; font-weight: 600; }}
.logo {{ max-height: 3rem; }}
table {{ border-collapse: collapse; margin-top: 1rem; }}
td {{ padding: 0.25rem 0.75rem 0.25rem 0; }}
</style>
</head>
<body>
{logo}
<h1>{title}</h1>
<p>{description}</p>
<p class="amount">${amount:.6g} USDC</p>
<p>Network: {network}{testnet_label}</p>
{tiers}
<div id="root"></div>
<script>window.x402 = {state_json};</script>
</body>
</html>
"""


def _tier_rows(requirements: Sequence[PaymentRequirementsV1]) -> str:
    if not requirements:
        return ""
    tiers = (requirements[0].extra or {}).get("variableAmountRequired") or []
    if not tiers:
        return ""
    rows = []
    for tier in tiers:
        proofs = html.escape(str(tier.get("requestedProofs", "")))
        amount = html.escape(str(tier.get("amountRequired", "")))
        rows.append(f"<tr><td>{proofs}</td><td>{amount}</td></tr>")
    return "<h2>Discounts</h2>\n<table>\n" + "\n".join(rows) + "\n</table>"
