"""
API Tests for the purchase, settlement and claim endpoints.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from credit_ledger.api import create_app
from credit_ledger.auth import create_access_token, decode_access_token
from credit_ledger.service import LedgerService
from credit_ledger.storage import (
    BUYER_ID,
    CONTENT_GUIDE_ID,
    CONTENT_PRESETS_ID,
    CREATOR_ID,
    CREATOR_PAYOUT_ADDRESS,
)


@pytest.fixture
def service():
    return LedgerService()


@pytest.fixture
def client(service):
    with TestClient(create_app(service)) as test_client:
        yield test_client


@pytest.fixture
def buyer_headers(service):
    token = create_access_token(BUYER_ID, settings=service.settings)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def creator_headers(service):
    token = create_access_token(CREATOR_ID, settings=service.settings)
    return {"Authorization": f"Bearer {token}"}


def _error(response, status_code):
    assert response.status_code == status_code
    body = response.json()
    assert body["success"] is False
    return body["message"]


class TestAuthentication:
    def test_health_is_public(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_missing_token(self, client):
        message = _error(client.get("/purchases/credit-balance"), 401)
        assert "No token" in message

    def test_garbage_token(self, client):
        response = client.get("/purchases/credit-balance", headers={"Authorization": "Bearer not-a-jwt"})
        _error(response, 401)

    def test_token_for_unknown_account(self, client, service):
        token = create_access_token(uuid4(), settings=service.settings)
        response = client.get("/purchases/credit-balance", headers={"Authorization": f"Bearer {token}"})
        assert "User not found" in _error(response, 401)

    def test_token_carries_identity_only(self, service):
        token = create_access_token(CREATOR_ID, settings=service.settings)

        payload = decode_access_token(token, service.settings)

        assert set(payload) == {"sub", "type", "iat", "exp"}
        assert payload["sub"] == str(CREATOR_ID)


class TestPurchaseEndpoints:
    def test_credit_balance_starts_at_allowance(self, client, buyer_headers):
        response = client.get("/purchases/credit-balance", headers=buyer_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert Decimal(str(body["data"]["creditBalance"])) == Decimal("100")
        assert body["data"]["userId"] == str(BUYER_ID)

    def test_purchase_returns_receipt(self, client, buyer_headers):
        response = client.post("/purchases", json={"contentId": str(CONTENT_GUIDE_ID)}, headers=buyer_headers)

        assert response.status_code == 201
        data = response.json()["data"]
        assert Decimal(str(data["remainingCredit"])) == Decimal("70")
        assert data["purchase"]["status"] == "completed"
        assert data["purchase"]["settled"] is False
        assert data["earning"]["status"] == "pending"
        assert data["earning"]["creatorId"] == str(CREATOR_ID)

    def test_duplicate_purchase_conflicts(self, client, buyer_headers):
        body = {"contentId": str(CONTENT_GUIDE_ID)}
        client.post("/purchases", json=body, headers=buyer_headers)

        message = _error(client.post("/purchases", json=body, headers=buyer_headers), 409)
        assert message == "Content already purchased"

    def test_missing_content_id_is_bad_request(self, client, buyer_headers):
        _error(client.post("/purchases", json={}, headers=buyer_headers), 400)

    def test_unknown_content_is_not_found(self, client, buyer_headers):
        response = client.post("/purchases", json={"contentId": str(uuid4())}, headers=buyer_headers)
        assert _error(response, 404) == "Content not found"

    def test_my_purchases(self, client, buyer_headers):
        client.post("/purchases", json={"contentId": str(CONTENT_GUIDE_ID)}, headers=buyer_headers)

        response = client.get("/purchases/my-purchases", headers=buyer_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["totalCount"] == 1
        assert data["purchases"][0]["contentId"] == str(CONTENT_GUIDE_ID)


class TestSettlementAndClaimEndpoints:
    def test_full_marketplace_cycle(self, client, buyer_headers, creator_headers):
        client.post("/purchases", json={"contentId": str(CONTENT_GUIDE_ID)}, headers=buyer_headers)

        settle = client.post("/purchases/settle-credit", json={"transactionHash": "0xabc"}, headers=buyer_headers)
        assert settle.status_code == 200
        settled = settle.json()["data"]
        assert Decimal(str(settled["totalAmount"])) == Decimal("30")
        assert settled["settledPurchases"] == 1
        assert Decimal(str(settled["newCreditBalance"])) == Decimal("100")

        earnings = client.get("/purchases/creator-earnings", headers=creator_headers).json()["data"]
        assert earnings["summary"]["pending"]["count"] == 1
        assert Decimal(str(earnings["summary"]["pending"]["amount"])) == Decimal("30")
        assert earnings["earnings"][0]["settlementReference"] == "0xabc"
        assert earnings["earnings"][0]["status"] == "pending"

        claim = client.post("/purchases/claim-earnings", json={"amount": 30}, headers=creator_headers)
        assert claim.status_code == 200
        claimed = claim.json()["data"]
        assert Decimal(str(claimed["claimedAmount"])) == Decimal("30")
        assert claimed["claimedEarnings"] == 1
        assert claimed["recipientWallet"] == CREATOR_PAYOUT_ADDRESS
        assert claimed["transactionHash"].startswith("0x")

        summary = client.get("/purchases/creator-earnings", headers=creator_headers).json()["data"]["summary"]
        assert summary["claimed"]["count"] == 1
        assert summary["pending"]["count"] == 0

    def test_replayed_settlement_is_rejected(self, client, buyer_headers):
        client.post("/purchases", json={"contentId": str(CONTENT_GUIDE_ID)}, headers=buyer_headers)
        client.post("/purchases/settle-credit", json={"transactionHash": "0xabc"}, headers=buyer_headers)

        response = client.post("/purchases/settle-credit", json={"transactionHash": "0xabc"}, headers=buyer_headers)

        assert _error(response, 400) == "No pending purchases to settle"

    @pytest.mark.parametrize("replay", ["0xabc", "0xABC"])
    def test_reused_reference_conflicts(self, client, buyer_headers, replay):
        client.post("/purchases", json={"contentId": str(CONTENT_GUIDE_ID)}, headers=buyer_headers)
        client.post("/purchases/settle-credit", json={"transactionHash": "0xabc"}, headers=buyer_headers)
        client.post("/purchases", json={"contentId": str(CONTENT_PRESETS_ID)}, headers=buyer_headers)

        response = client.post("/purchases/settle-credit", json={"transactionHash": replay}, headers=buyer_headers)

        assert _error(response, 409) == "Transaction hash already used for settlement"
        balance = client.get("/purchases/credit-balance", headers=buyer_headers).json()["data"]
        assert Decimal(str(balance["creditBalance"])) == Decimal("80")

    def test_settlement_without_ledger(self, client, creator_headers):
        response = client.post("/purchases/settle-credit", json={"transactionHash": "0xabc"}, headers=creator_headers)
        assert _error(response, 404) == "Credit not found"

    def test_malformed_reference(self, client, buyer_headers):
        client.post("/purchases", json={"contentId": str(CONTENT_GUIDE_ID)}, headers=buyer_headers)

        response = client.post("/purchases/settle-credit", json={"transactionHash": "hello"}, headers=buyer_headers)

        assert _error(response, 400) == "Valid transaction hash is required"

    @pytest.mark.parametrize("amount", [0, -5, "lots"])
    def test_claim_amount_validation(self, client, creator_headers, amount):
        response = client.post("/purchases/claim-earnings", json={"amount": amount}, headers=creator_headers)
        _error(response, 400)

    def test_claim_more_than_pending(self, client, buyer_headers, creator_headers):
        client.post("/purchases", json={"contentId": str(CONTENT_GUIDE_ID)}, headers=buyer_headers)

        response = client.post("/purchases/claim-earnings", json={"amount": 31}, headers=creator_headers)

        assert "Cannot claim more than available" in _error(response, 409)

    def test_claim_without_wallet(self, client, buyer_headers):
        response = client.post("/purchases/claim-earnings", json={"amount": 10}, headers=buyer_headers)
        assert "wallet address not found" in _error(response, 400)


class TestPurchaseManagementEndpoints:
    def _buy(self, client, headers, content_id=CONTENT_GUIDE_ID):
        response = client.post("/purchases", json={"contentId": str(content_id)}, headers=headers)
        return response.json()["data"]["purchase"]["id"]

    def test_get_purchase_by_id(self, client, buyer_headers):
        purchase_id = self._buy(client, buyer_headers)

        response = client.get(f"/purchases/{purchase_id}", headers=buyer_headers)

        assert response.status_code == 200
        assert response.json()["data"]["id"] == purchase_id

    def test_other_accounts_purchase_is_not_found(self, client, service, buyer_headers):
        purchase_id = self._buy(client, buyer_headers)
        stranger = service.accounts.add("stranger")
        token = create_access_token(stranger.id, settings=service.settings)

        response = client.get(f"/purchases/{purchase_id}", headers={"Authorization": f"Bearer {token}"})

        assert _error(response, 404) == "Purchase not found"

    def test_malformed_purchase_id_is_bad_request(self, client, buyer_headers):
        _error(client.get("/purchases/not-a-uuid", headers=buyer_headers), 400)

    def test_creator_refunds_purchase(self, client, buyer_headers, creator_headers):
        purchase_id = self._buy(client, buyer_headers)

        response = client.put(f"/purchases/{purchase_id}/status", json={"status": "refunded"}, headers=creator_headers)

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "refunded"
        balance = client.get("/purchases/credit-balance", headers=buyer_headers).json()["data"]
        assert Decimal(str(balance["creditBalance"])) == Decimal("100")
        summary = client.get("/purchases/creator-earnings", headers=creator_headers).json()["data"]["summary"]
        assert summary["reversed"]["count"] == 1

    def test_buyer_cannot_change_status(self, client, buyer_headers):
        purchase_id = self._buy(client, buyer_headers)

        response = client.put(f"/purchases/{purchase_id}/status", json={"status": "refunded"}, headers=buyer_headers)

        _error(response, 403)

    def test_illegal_transition_conflicts(self, client, buyer_headers, creator_headers):
        purchase_id = self._buy(client, buyer_headers)

        response = client.put(f"/purchases/{purchase_id}/status", json={"status": "failed"}, headers=creator_headers)

        assert "Cannot move purchase from completed to failed" == _error(response, 409)

    def test_unknown_status_is_bad_request(self, client, buyer_headers, creator_headers):
        purchase_id = self._buy(client, buyer_headers)

        response = client.put(f"/purchases/{purchase_id}/status", json={"status": "lost"}, headers=creator_headers)

        _error(response, 400)

    def test_stats(self, client, buyer_headers, creator_headers):
        self._buy(client, buyer_headers)
        self._buy(client, buyer_headers, CONTENT_PRESETS_ID)

        buyer = client.get("/purchases/stats", headers=buyer_headers)
        assert buyer.status_code == 200
        assert buyer.json()["data"]["purchases"]["total"] == 2
        assert Decimal(str(buyer.json()["data"]["purchases"]["totalSpent"])) == Decimal("50")

        sales = client.get("/purchases/stats", headers=creator_headers).json()["data"]["sales"]
        assert sales["total"] == 2
        assert Decimal(str(sales["totalAmount"])) == Decimal("50")

    def test_creator_sales(self, client, buyer_headers, creator_headers):
        self._buy(client, buyer_headers)

        response = client.get("/purchases/creator/sales", headers=creator_headers)

        assert response.status_code == 200
        assert response.json()["data"]["totalCount"] == 1
        assert _error(client.get("/purchases/creator/sales", headers=buyer_headers), 403) == "Creator access required"


class TestUnexpectedErrors:
    def test_unhandled_exception_uses_error_envelope(self, service, buyer_headers, monkeypatch):
        def broken_balance(owner_id):
            raise RuntimeError("storage offline")

        monkeypatch.setattr(service, "get_credit_balance", broken_balance)

        with TestClient(create_app(service), raise_server_exceptions=False) as client:
            response = client.get("/purchases/credit-balance", headers=buyer_headers)

        assert _error(response, 500) == "Internal server error"
