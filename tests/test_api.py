"""
RiddleBridge - API Tests

Route tests through FastAPI's TestClient against an app wired with the
in-memory store, in-memory ledgers and static prices.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import jwt as pyjwt
import pytest
from fastapi.testclient import TestClient

from conftest import BANK_WALLETS, XRPL_USER
from riddlebridge.api import BridgeApp, create_app
from riddlebridge.chains import ChainManager, InMemoryChainAdapter
from riddlebridge.models import Chain, Token
from riddlebridge.security import create_access_token

OWNER = "user-1"


@pytest.fixture
def bridge_app(settings, store, chains, oracle) -> BridgeApp:
    return BridgeApp(settings, store=store, chains=chains, oracle=oracle)


@pytest.fixture
def client(settings, bridge_app):
    app = create_app(settings, bridge_app=bridge_app)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(settings) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(OWNER, settings)}"}


@pytest.fixture
def other_headers(settings) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token('mallory', settings)}"}


def step1(client, headers, **overrides):
    body = {
        "fromToken": "XRP",
        "toToken": "RDL",
        "amount": "10",
        "toAddress": XRPL_USER,
    }
    body.update(overrides)
    return client.post("/api/bridge/step1", json=body, headers=headers)


def deposit(adapters, step1_body) -> str:
    return adapters[Chain.XRPL].record_payment(
        step1_body["bankWalletAddress"],
        Decimal(step1_body["amount"]),
        Token.XRP,
        memo=step1_body["expectedMemo"],
    )


# =============================================================================
# Health and authentication
# =============================================================================


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_ready(self, client):
        response = client.get("/ready")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert "xrpl" in body["chains"]


class TestAuthentication:
    def test_missing_token(self, client):
        response = client.post("/api/bridge/quote", json={"fromToken": "XRP", "toToken": "RDL", "amount": "1"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"
        assert response.headers["www-authenticate"] == "Bearer"

    def test_expired_token(self, client, settings):
        token = pyjwt.encode(
            {"sub": OWNER, "exp": datetime.now(UTC) - timedelta(minutes=1)},
            settings.jwt_secret_key,
            algorithm="HS256",
        )
        response = client.get(
            "/api/bridge/transactions", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    def test_wrong_secret(self, client):
        token = pyjwt.encode(
            {"sub": OWNER, "exp": datetime.now(UTC) + timedelta(minutes=5)},
            "another-secret-key-that-is-long-enough-to-sign",
            algorithm="HS256",
        )
        response = client.get(
            "/api/bridge/transactions", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401


# =============================================================================
# Quote and Step1
# =============================================================================


class TestChains:
    def test_lists_chains_and_routes(self, client, auth_headers):
        response = client.get("/api/bridge/chains", headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["totalChains"] == 5
        xrpl = next(c for c in body["chains"] if c["chain"] == "xrpl")
        assert xrpl["bankWalletAddress"] == BANK_WALLETS[Chain.XRPL]
        assert {t["token"] for t in xrpl["tokens"]} == {"XRP", "RDL"}
        assert len(body["routes"]) == 19
        assert {
            "fromToken": "XRP",
            "toToken": "BTC",
            "fromChain": "xrpl",
            "toChain": "bitcoin",
        } in body["routes"]

    def test_routes_limited_to_configured_chains(self, settings, store, oracle, auth_headers):
        only = (Chain.XRPL, Chain.SOLANA)
        manager = ChainManager(
            adapters={chain: InMemoryChainAdapter(chain) for chain in only},
            bank_wallets={chain: BANK_WALLETS[chain] for chain in only},
        )
        bridge_app = BridgeApp(settings, store=store, chains=manager, oracle=oracle)

        with TestClient(create_app(settings, bridge_app=bridge_app)) as test_client:
            body = test_client.get("/api/bridge/chains", headers=auth_headers).json()

        assert body["totalChains"] == 2
        assert {(r["fromChain"], r["toChain"]) for r in body["routes"]} == {
            ("xrpl", "xrpl"),
            ("xrpl", "solana"),
            ("solana", "xrpl"),
            ("solana", "solana"),
        }

    def test_requires_auth(self, client):
        assert client.get("/api/bridge/chains").status_code == 401


class TestQuoteAndStep1:
    def test_quote(self, client, auth_headers):
        response = client.post(
            "/api/bridge/quote",
            json={"fromToken": "XRP", "toToken": "RDL", "amount": "10"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["bridgeFee"] == "0.1"
        assert body["exchangeRate"] == "100"
        assert body["estimatedOutput"] == "990"
        assert body["fromChain"] == "xrpl"

    def test_step1_smallest_amount(self, client, auth_headers):
        response = step1(client, auth_headers, amount="0.000001", fromAddress=XRPL_USER)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["status"] == "pending"
        assert body["bridgeFee"] == "0.00000001"
        assert body["estimatedOutput"] == "0.000099"
        assert body["transactionId"]
        assert len(body["expectedMemo"]) == 32

    def test_unknown_token(self, client, auth_headers):
        response = step1(client, auth_headers, toToken="DOGE")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_ROUTE"

    def test_wrong_chain_for_token(self, client, auth_headers):
        response = step1(client, auth_headers, fromChain="polygon")
        assert response.json()["error"]["code"] == "INVALID_ROUTE"

    def test_unknown_field_rejected(self, client, auth_headers):
        response = step1(client, auth_headers, referrer="x")

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "VALIDATION_ERROR"

    def test_invalid_address(self, client, auth_headers):
        response = step1(client, auth_headers, toAddress="rNotAnAddress")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_price_unavailable(self, client, auth_headers, oracle):
        oracle.set_price(Token.XRP, None)
        response = step1(client, auth_headers)

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "PRICE_UNAVAILABLE"


# =============================================================================
# Full flow
# =============================================================================


class TestBridgeFlow:
    def test_step1_verify_step3_receipt(self, client, auth_headers, adapters):
        created = step1(client, auth_headers).json()
        tx_hash = deposit(adapters, created)

        verify = client.post(
            "/api/bridge/verify-transaction",
            json={
                "transactionId": created["transactionId"],
                "txHash": tx_hash,
                "fromToken": "XRP",
                "toToken": "RDL",
            },
            headers=auth_headers,
        )
        assert verify.status_code == 200
        assert verify.json()["verified"] is True
        assert verify.json()["status"] == "verified"

        step3 = client.post(
            "/api/bridge/step3",
            json={
                "transactionId": created["transactionId"],
                "fromToken": "XRP",
                "toToken": "RDL",
                "destinationAddress": XRPL_USER,
                "step1Hash": tx_hash,
            },
            headers=auth_headers,
        )
        assert step3.status_code == 200
        payout = step3.json()
        assert payout["status"] == "completed"
        assert payout["amount"] == "990"
        assert payout["token"] == "RDL"
        assert payout["explorerUrl"].endswith(payout["txHash"])

        again = client.post(
            "/api/bridge/step3",
            json={"transactionId": created["transactionId"]},
            headers=auth_headers,
        )
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "ALREADY_DISTRIBUTED"

        receipt = client.get(
            f"/api/bridge/receipt/{created['transactionId']}", headers=auth_headers
        )
        assert receipt.status_code == 200
        assert receipt.headers["content-disposition"] == (
            f"attachment; filename=bridge-receipt-{created['transactionId']}.json"
        )
        assert receipt.json()["digest"].startswith("sha256:")
        assert receipt.json()["outbound_tx_hash"] == payout["txHash"]

        history = client.get("/api/bridge/transactions", headers=auth_headers).json()
        assert history["count"] == 1
        [view] = history["transactions"]
        assert view["status"] == "completed"
        assert view["amountOut"] == "990"
        assert view["outboundExplorerUrl"] == payout["explorerUrl"]

    def test_verify_mismatch(self, client, auth_headers, adapters):
        created = step1(client, auth_headers).json()
        tx_hash = deposit(adapters, {**created, "amount": "5"})

        response = client.post(
            "/api/bridge/verify-transaction",
            json={"transactionId": created["transactionId"], "txHash": tx_hash},
            headers=auth_headers,
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VERIFICATION_MISMATCH"

    def test_failed_distribution_then_restart(self, client, auth_headers, adapters):
        created = step1(client, auth_headers).json()
        tx_hash = deposit(adapters, created)
        client.post(
            "/api/bridge/verify-transaction",
            json={"transactionId": created["transactionId"], "txHash": tx_hash},
            headers=auth_headers,
        )
        adapters[Chain.XRPL].fail_next_broadcast()

        failed = client.post(
            "/api/bridge/step3",
            json={"transactionId": created["transactionId"]},
            headers=auth_headers,
        )
        assert failed.status_code == 502
        assert failed.json()["error"]["code"] == "DISTRIBUTION_FAILED"

        restarted = client.post(
            f"/api/bridge/restart/{created['transactionId']}", headers=auth_headers
        )
        assert restarted.status_code == 200
        assert restarted.json()["status"] == "completed"

        view = client.get(
            f"/api/bridge/transactions/{created['transactionId']}", headers=auth_headers
        ).json()["transaction"]
        assert view["restartCount"] == 1
        assert view["inboundExplorerUrl"].endswith(view["inboundTxHash"])

    def test_receipt_requires_terminal_status(self, client, auth_headers):
        created = step1(client, auth_headers).json()

        response = client.get(
            f"/api/bridge/receipt/{created['transactionId']}", headers=auth_headers
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_STATE"


class TestOwnership:
    def test_other_owner_gets_not_found(self, client, auth_headers, other_headers):
        created = step1(client, auth_headers).json()

        for response in (
            client.get(f"/api/bridge/transactions/{created['transactionId']}", headers=other_headers),
            client.post(f"/api/bridge/restart/{created['transactionId']}", headers=other_headers),
            client.get(f"/api/bridge/receipt/{created['transactionId']}", headers=other_headers),
        ):
            assert response.status_code == 404
            assert response.json()["error"]["code"] == "TRANSACTION_NOT_FOUND"

        assert client.get("/api/bridge/transactions", headers=other_headers).json()["count"] == 0

    def test_list_filters(self, client, auth_headers):
        step1(client, auth_headers)
        step1(client, auth_headers)

        pending = client.get(
            "/api/bridge/transactions",
            params={"status": "pending", "limit": 1},
            headers=auth_headers,
        ).json()
        assert pending["count"] == 1
        assert pending["limit"] == 1

        too_many = client.get(
            "/api/bridge/transactions", params={"limit": 500}, headers=auth_headers
        )
        assert too_many.status_code == 400
