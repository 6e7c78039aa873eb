"""End-to-end tests for the ASGI payment gate using an in-memory facilitator."""

import asyncio
import base64
import json
import logging
from types import SimpleNamespace

import pytest
from eth_account import Account
from eth_utils import to_checksum_address
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse
from fastapi.testclient import TestClient
from x402.schemas import SettleResponse, SupportedKind, VerifyResponse

from zkx402.buffering import AsgiResponseSink, BufferedResponseSink
from zkx402.credentials import CredentialsUnavailable
from zkx402.errors import FacilitatorError
from zkx402.middleware import (
    X_PAYMENT_RESPONSE_HEADER,
    PaymentGateMiddleware,
    PaymentPipeline,
    PipelineState,
    get_verification_metadata,
    parse_user_proofs,
)
from zkx402.payment import decode_settlement_header, payment_payer
from zkx402.paywall import PaywallConfig
from zkx402.proofs import ProofVerifier
from zkx402.routes import RouteConfig, RouteOptions

PAY_TO = Account.create().address
PAYER = Account.create().address
BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml",
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64)",
}


class FakeFacilitator:
    """Records calls and answers from preset results."""

    def __init__(self):
        self.verify_result = VerifyResponse(is_valid=True, payer=PAYER)
        self.settle_result = SettleResponse(success=True, transaction="0xtx", network="base-sepolia", payer=PAYER)
        self.verify_error = None
        self.settle_error = None
        self.kinds = [
            SupportedKind(x402_version=1, scheme="exact", network="solana-devnet", extra={"feePayer": "FeePayer111"})
        ]
        self.verified = []
        self.settled = []

    async def verify(self, payment, requirement):
        self.verified.append((payment, requirement))
        if self.verify_error:
            raise self.verify_error
        return self.verify_result

    async def settle(self, payment, requirement):
        self.settled.append((payment, requirement))
        if self.settle_error:
            raise self.settle_error
        return self.settle_result

    async def supported(self):
        return self.kinds


def _routes():
    tiers = {"variableAmountRequired": [{"requestedProofs": "A, B", "amountRequired": "5000"}]}
    return {
        "GET /motivate": RouteConfig(
            price="$0.01",
            network="base-sepolia",
            config=RouteOptions(description="motivational quote", extra=tiers),
        ),
        "GET /broken": RouteConfig(price="$0.01", network="base-sepolia"),
        "GET /explode": RouteConfig(price="$0.01", network="base-sepolia"),
        "GET /stream": RouteConfig(price="$0.01", network="base-sepolia"),
        "GET /custom": RouteConfig(
            price="$0.01",
            network="base-sepolia",
            config=RouteOptions(custom_paywall_html="<html>pay up</html>"),
        ),
        "GET /solana": RouteConfig(price="$0.02", network="solana-devnet"),
        "GET /doge": RouteConfig(price="$0.01", network="dogecoin"),
    }


def _app(facilitator):
    app = FastAPI()
    app.add_middleware(
        PaymentGateMiddleware,
        pay_to=PAY_TO,
        routes=_routes(),
        facilitator=facilitator,
        proof_verifier=ProofVerifier(credentials=CredentialsUnavailable("no proof file")),
        paywall=PaywallConfig(app_name="Quotes"),
    )

    @app.get("/free")
    def free():
        return {"free": True}

    @app.get("/motivate")
    def motivate(request: Request):
        metadata = get_verification_metadata(request)
        return {"quote": "keep going", "metadata": metadata.to_dict() if metadata else None}

    @app.get("/broken")
    def broken():
        raise HTTPException(status_code=404, detail="gone")

    @app.get("/explode")
    def explode():
        raise RuntimeError("handler blew up")

    @app.get("/stream")
    def stream():
        return StreamingResponse(iter([b"one ", b"two ", b"three"]), media_type="text/plain")

    @app.get("/solana")
    def solana():
        return {"ok": True}

    @app.get("/doge")
    def doge():
        return {"ok": True}

    return app


def _payment_header(network="base-sepolia", **payload_overrides):
    payload = {
        "signature": "0x" + "11" * 65,
        "authorization": {
            "from": PAYER,
            "to": PAY_TO,
            "value": "10000",
            "validAfter": "0",
            "validBefore": "9999999999",
            "nonce": "0x" + "22" * 32,
        },
    }
    payload.update(payload_overrides)
    data = {"x402Version": 1, "scheme": "exact", "network": network, "payload": payload}
    return base64.b64encode(json.dumps(data).encode()).decode()


@pytest.fixture
def facilitator():
    return FakeFacilitator()


@pytest.fixture
def client(facilitator):
    return TestClient(_app(facilitator))


class TestChallenge:
    def test_unprotected_route_passes_through(self, client, facilitator):
        response = client.get("/free")
        assert response.status_code == 200
        assert response.json() == {"free": True}
        assert facilitator.verified == []

    def test_unpaid_request_gets_json_challenge(self, client):
        response = client.get("/motivate")

        assert response.status_code == 402
        body = response.json()
        assert body["x402Version"] == 1
        assert body["error"] == "X-PAYMENT header is required"
        assert len(body["accepts"]) == 1
        accept = body["accepts"][0]
        assert accept["scheme"] == "exact"
        assert accept["network"] == "base-sepolia"
        assert accept["maxAmountRequired"] == "10000"
        assert accept["resource"] == "http://testserver/motivate"
        assert accept["payTo"] == to_checksum_address(PAY_TO)
        assert accept["extra"]["variableAmountRequired"] == [{"requestedProofs": "A, B", "amountRequired": "5000"}]
        assert accept["outputSchema"]["input"] == {"type": "http", "method": "GET", "discoverable": True}

    def test_qualifying_proofs_lower_the_challenge_amount(self, client):
        response = client.get("/motivate", headers={"X-User-Proofs": json.dumps(["a", "b"])})

        assert response.status_code == 402
        assert response.json()["accepts"][0]["maxAmountRequired"] == "5000"

    def test_partial_proofs_pay_full_price(self, client):
        response = client.get("/motivate", headers={"X-User-Proofs": json.dumps(["a"])})
        assert response.json()["accepts"][0]["maxAmountRequired"] == "10000"

    def test_malformed_proofs_header_is_ignored(self, client):
        response = client.get("/motivate", headers={"X-User-Proofs": "a,b"})
        assert response.json()["accepts"][0]["maxAmountRequired"] == "10000"

    def test_browser_gets_paywall_page(self, client):
        response = client.get("/motivate?ref=1", headers=BROWSER_HEADERS)

        assert response.status_code == 402
        assert response.headers["content-type"].startswith("text/html")
        assert "<title>Quotes</title>" in response.text
        assert "(testnet)" in response.text
        assert "window.x402 = " in response.text
        assert '"currentUrl": "/motivate?ref=1"' in response.text

    def test_browser_gets_custom_paywall(self, client):
        response = client.get("/custom", headers=BROWSER_HEADERS)
        assert response.status_code == 402
        assert response.text == "<html>pay up</html>"

    def test_fee_payer_network_challenge(self, client):
        accept = client.get("/solana").json()["accepts"][0]
        assert accept["network"] == "solana-devnet"
        assert accept["maxAmountRequired"] == "20000"
        assert accept["extra"] == {"feePayer": "FeePayer111"}

    def test_unsupported_network_is_server_error(self, facilitator):
        client = TestClient(_app(facilitator), raise_server_exceptions=False)
        assert client.get("/doge").status_code == 500


class TestPaymentRejection:
    def test_malformed_payment_header(self, client, facilitator):
        response = client.get("/motivate", headers={"X-PAYMENT": "%%%"})

        assert response.status_code == 402
        assert response.json()["error"] == "Invalid or malformed payment header"
        assert facilitator.verified == []

    def test_payment_for_other_network(self, client, facilitator):
        response = client.get("/motivate", headers={"X-PAYMENT": _payment_header(network="base")})

        assert response.status_code == 402
        assert response.json()["error"] == "Unable to find matching payment requirements"
        assert facilitator.verified == []

    def test_invalid_payment_reports_payer(self, client, facilitator):
        facilitator.verify_result = VerifyResponse(is_valid=False, invalid_reason="insufficient_funds", payer=PAYER)

        response = client.get("/motivate", headers={"X-PAYMENT": _payment_header()})

        assert response.status_code == 402
        body = response.json()
        assert body["error"] == "insufficient_funds"
        assert body["payer"] == PAYER
        assert facilitator.settled == []

    def test_verify_error_is_payment_required(self, client, facilitator):
        facilitator.verify_error = FacilitatorError("Facilitator verify failed (503): down", status_code=503)

        response = client.get("/motivate", headers={"X-PAYMENT": _payment_header()})

        assert response.status_code == 402
        assert "503" in response.json()["error"]
        assert facilitator.settled == []

    def test_unexpected_verify_exception_is_payment_required(self, client, facilitator, caplog):
        facilitator.verify_error = RuntimeError("connection pool exhausted")

        with caplog.at_level(logging.ERROR, logger="zkx402.middleware"):
            response = client.get("/motivate", headers={"X-PAYMENT": _payment_header()})

        assert response.status_code == 402
        assert response.json()["error"] == "Payment verification failed"
        assert facilitator.settled == []
        assert "Payment verification errored" in caplog.text
        assert "connection pool exhausted" in caplog.text


class TestPaidRequests:
    def test_successful_payment_returns_content_and_receipt(self, client, facilitator):
        response = client.get("/motivate", headers={"X-PAYMENT": _payment_header()})

        assert response.status_code == 200
        assert response.json()["quote"] == "keep going"
        receipt = decode_settlement_header(response.headers[X_PAYMENT_RESPONSE_HEADER])
        assert receipt == SettleResponse(success=True, transaction="0xtx", network="base-sepolia", payer=PAYER)
        assert len(facilitator.verified) == 1
        assert len(facilitator.settled) == 1
        payment, requirement = facilitator.settled[0]
        assert payment_payer(payment) == PAYER
        assert requirement.max_amount_required == "10000"

    def test_discounted_payment_settles_discounted_amount(self, client, facilitator):
        response = client.get(
            "/motivate",
            headers={"X-PAYMENT": _payment_header(), "X-User-Proofs": json.dumps(["A", "B"])},
        )

        assert response.status_code == 200
        metadata = response.json()["metadata"]
        assert metadata["qualified"] is True
        assert metadata["discountedPrice"] == "$0.005000"
        _, requirement = facilitator.settled[0]
        assert requirement.max_amount_required == "5000"

    def test_streamed_body_is_released_after_settlement(self, client, facilitator):
        response = client.get("/stream", headers={"X-PAYMENT": _payment_header()})

        assert response.status_code == 200
        assert response.text == "one two three"
        assert X_PAYMENT_RESPONSE_HEADER in response.headers

    def test_error_response_is_not_settled(self, client, facilitator):
        response = client.get("/broken", headers={"X-PAYMENT": _payment_header()})

        assert response.status_code == 404
        assert response.json() == {"detail": "gone"}
        assert X_PAYMENT_RESPONSE_HEADER not in response.headers
        assert facilitator.settled == []

    def test_handler_exception_propagates_without_settling(self, client, facilitator):
        with pytest.raises(RuntimeError, match="handler blew up"):
            client.get("/explode", headers={"X-PAYMENT": _payment_header()})
        assert facilitator.settled == []

    def test_settlement_failure_replaces_response(self, client, facilitator):
        facilitator.settle_result = SettleResponse(
            success=False,
            error_reason="invalid_transaction_state",
            transaction="",
            network="base-sepolia",
            payer=PAYER,
        )

        response = client.get("/motivate", headers={"X-PAYMENT": _payment_header()})

        assert response.status_code == 402
        body = response.json()
        assert body["error"] == "invalid_transaction_state"
        assert "quote" not in body
        receipt = decode_settlement_header(response.headers[X_PAYMENT_RESPONSE_HEADER])
        assert receipt.success is False
        assert receipt.error_reason == "invalid_transaction_state"

    def test_settlement_error_replaces_response(self, client, facilitator):
        facilitator.settle_error = FacilitatorError("Facilitator settle request failed: timeout")

        response = client.get("/motivate", headers={"X-PAYMENT": _payment_header()})

        assert response.status_code == 402
        assert response.json()["error"] == "Facilitator settle request failed: timeout"
        assert X_PAYMENT_RESPONSE_HEADER not in response.headers

    def test_unexpected_settle_exception_replaces_response(self, client, facilitator, caplog):
        facilitator.settle_error = ConnectionResetError("peer went away")

        with caplog.at_level(logging.ERROR, logger="zkx402.middleware"):
            response = client.get("/motivate", headers={"X-PAYMENT": _payment_header()})

        assert response.status_code == 402
        body = response.json()
        assert body["error"] == "Payment settlement failed"
        assert "quote" not in body
        assert X_PAYMENT_RESPONSE_HEADER not in response.headers
        assert "Settlement errored" in caplog.text


class TestPipeline:
    def _pipeline(self, gate=None, send=None):
        scope = {"type": "http", "method": "GET", "path": "/", "headers": [], "query_string": b""}

        async def receive():
            return {"type": "http.request", "body": b""}

        async def discard(message):
            pass

        return PaymentPipeline(gate, RouteConfig(price="$0.01", network="base"), scope, receive, send or discard)

    def test_legal_transitions(self):
        pipeline = self._pipeline()
        for state in (
            PipelineState.VERIFYING,
            PipelineState.EXECUTING,
            PipelineState.SETTLING,
            PipelineState.RESOLVED,
        ):
            pipeline.advance(state)
        assert pipeline.state is PipelineState.RESOLVED

    def test_cannot_skip_verification(self):
        pipeline = self._pipeline()
        with pytest.raises(RuntimeError, match="awaiting_payment -> executing"):
            pipeline.advance(PipelineState.EXECUTING)

    def test_resolved_is_terminal(self):
        pipeline = self._pipeline()
        pipeline.advance(PipelineState.RESOLVED)
        with pytest.raises(RuntimeError):
            pipeline.advance(PipelineState.VERIFYING)

    def test_settlement_error_after_headers_left_keeps_response(self, facilitator, caplog):
        facilitator.settle_error = RuntimeError("settle timed out")
        sent = []

        async def send(message):
            sent.append(message)

        pipeline = self._pipeline(gate=SimpleNamespace(facilitator=facilitator), send=send)
        for state in (PipelineState.VERIFYING, PipelineState.EXECUTING, PipelineState.SETTLING):
            pipeline.advance(state)

        async def scenario():
            sink = AsgiResponseSink(send)
            await sink.write_head(200, [(b"content-type", b"text/plain")])
            await sink.flush_headers()
            buffered = BufferedResponseSink(sink)
            await buffered.end(b"already paid for")
            with caplog.at_level(logging.ERROR, logger="zkx402.middleware"):
                await pipeline._settle(None, None, buffered)
            return buffered

        buffered = asyncio.run(scenario())

        assert buffered.released is True
        assert pipeline.state is PipelineState.RESOLVED
        assert [m.get("status") for m in sent if m["type"] == "http.response.start"] == [200]
        assert sent[-1] == {"type": "http.response.body", "body": b"already paid for", "more_body": False}
        assert "Settlement failed after the response was sent" in caplog.text
        assert "settle timed out" in caplog.text


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, []),
        ("", []),
        ('["a", "b"]', ["a", "b"]),
        ("not json", []),
        ('{"a": 1}', []),
        ('["a", 1]', []),
    ],
)
def test_parse_user_proofs(value, expected):
    assert parse_user_proofs(value) == expected
