"""Settlement webhook: signature checks, PAID/FAILED transitions, donation transfer, enrichment."""

import hashlib
import hmac
import json
import time
from unittest.mock import MagicMock, patch

import pytest
import stripe

from factories import (
    fetch_one,
    insert_chapter,
    insert_claim,
    insert_listing,
    insert_member,
    insert_order,
    insert_product,
    insert_seller,
    insert_steward,
)
from marketplace.models.schemas import BusinessProfile
from marketplace.services.webhook_service import WebhookService

WEBHOOK_SECRET = "whsec_test_secret"
TRANSFER_PATCH = "marketplace.services.webhook_service.create_chapter_donation_transfer"
PROFILE_PATCH = "marketplace.services.webhook_service.get_account_business_profile"
BACK_ONLINE_PATCH = "marketplace.services.webhook_service.notify_seller_back_online"


def _sign(payload: str, secret: str = WEBHOOK_SECRET) -> str:
    ts = int(time.time())
    signature = hmac.new(
        secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256
    ).hexdigest()
    return f"t={ts},v1={signature}"


def _event(event_type: str, obj: dict) -> str:
    return json.dumps({
        "id": "evt_test",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    })


def _post(client, payload: str, signature=None):
    headers = {"Content-Type": "application/json"}
    headers["stripe-signature"] = signature if signature is not None else _sign(payload)
    return client.post("/webhooks/payment", content=payload, headers=headers)


def _order_session(session_id="cs_test_order", email=None):
    obj = {"id": session_id, "object": "checkout.session", "metadata": {"type": "product_order"}}
    if email:
        obj["customer_details"] = {"email": email}
    return obj


def _claim_session(session_id="cs_test_claim", donation=500, chapter_account="acct_chapter"):
    return {
        "id": session_id,
        "object": "checkout.session",
        "metadata": {
            "type": "steward_claim",
            "listing_id": "1",
            "chapter_account_id": chapter_account,
            "chapter_donation_cents": str(donation),
            "shipping_cents": "1000",
        },
    }


@pytest.fixture
def order():
    product_id = insert_product(insert_seller())
    return insert_order(product_id)


@pytest.fixture
def claim():
    chapter_id = insert_chapter()
    member_id = insert_member()
    steward_id = insert_steward(insert_member(email="steward@example.com"), chapter_id)
    listing_id = insert_listing(steward_id, chapter_id, status="CLAIMED", claimed_by=member_id)
    return insert_claim(listing_id, member_id)


class TestSignature:

    def test_missing_signature(self, client):
        resp = client.post("/webhooks/payment", content="{}")
        assert resp.status_code == 400
        assert resp.json()["code"] == "MISSING_SIGNATURE"

    def test_bad_signature(self, client, order):
        payload = _event("checkout.session.completed", _order_session())
        resp = _post(client, payload, signature=_sign(payload, secret="whsec_wrong"))
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_SIGNATURE"
        assert fetch_one("SELECT status FROM orders")["status"] == "PENDING"

    def test_garbage_signature(self, client):
        resp = _post(client, "{}", signature="not-a-signature")
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_SIGNATURE"

    @pytest.mark.parametrize("secret", [None, "", "   "])
    def test_unset_secret_rejects_empty_key_signature(self, client, order, monkeypatch, secret):
        if secret is None:
            monkeypatch.delenv("STRIPE_WEBHOOK_SECRET", raising=False)
        else:
            monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", secret)
        payload = _event("checkout.session.completed", _order_session())

        resp = _post(client, payload, signature=_sign(payload, secret=""))

        assert resp.status_code == 500
        assert resp.json()["code"] == "WEBHOOK_NOT_CONFIGURED"
        assert fetch_one("SELECT status FROM orders")["status"] == "PENDING"


class TestOrderCompleted:

    def test_marks_paid(self, client, order):
        resp = _post(client, _event("checkout.session.completed", _order_session()))
        assert resp.status_code == 200
        assert resp.json() == {"received": True}
        row = fetch_one("SELECT * FROM orders")
        assert row["status"] == "PAID"
        assert row["paid_at"] is not None

    def test_duplicate_delivery_is_noop(self, client, order):
        payload = _event("checkout.session.completed", _order_session())
        _post(client, payload)
        first_paid_at = fetch_one("SELECT paid_at FROM orders")["paid_at"]
        resp = _post(client, payload)
        assert resp.status_code == 200
        row = fetch_one("SELECT * FROM orders")
        assert row["status"] == "PAID"
        assert row["paid_at"] == first_paid_at

    def test_backfills_missing_buyer_email(self, client, order):
        _post(client, _event("checkout.session.completed",
                             _order_session(email="payer@example.com")))
        assert fetch_one("SELECT buyer_email FROM orders")["buyer_email"] == "payer@example.com"

    def test_keeps_existing_buyer_email(self, client):
        product_id = insert_product(insert_seller())
        insert_order(product_id, buyer_email="member@example.com")
        _post(client, _event("checkout.session.completed",
                             _order_session(email="other@example.com")))
        assert fetch_one("SELECT buyer_email FROM orders")["buyer_email"] == "member@example.com"

    def test_unknown_session_acknowledged(self, client):
        resp = _post(client, _event("checkout.session.completed", _order_session("cs_nope")))
        assert resp.status_code == 200


class TestSessionFailed:

    @pytest.mark.parametrize(
        "event_type",
        ["checkout.session.expired", "checkout.session.async_payment_failed"],
    )
    def test_pending_order_fails(self, client, order, event_type):
        _post(client, _event(event_type, _order_session()))
        assert fetch_one("SELECT status FROM orders")["status"] == "FAILED"

    def test_paid_order_never_regresses(self, client, order):
        _post(client, _event("checkout.session.completed", _order_session()))
        _post(client, _event("checkout.session.expired", _order_session()))
        assert fetch_one("SELECT status FROM orders")["status"] == "PAID"

    def test_failed_order_not_revived(self, client, order):
        _post(client, _event("checkout.session.expired", _order_session()))
        _post(client, _event("checkout.session.completed", _order_session()))
        assert fetch_one("SELECT status FROM orders")["status"] == "FAILED"

    def test_steward_claim_fails(self, client, claim):
        _post(client, _event("checkout.session.expired", _claim_session()))
        assert fetch_one("SELECT status FROM steward_claims")["status"] == "FAILED"


class TestStewardClaimCompleted:

    def test_marks_paid_and_transfers_donation(self, client, claim):
        transfer = MagicMock()
        transfer.id = "tr_123"
        with patch(TRANSFER_PATCH, return_value=transfer) as mock_transfer:
            resp = _post(client, _event("checkout.session.completed", _claim_session()))

        assert resp.status_code == 200
        mock_transfer.assert_called_once_with(500, "acct_chapter", "cs_test_claim", "1")
        row = fetch_one("SELECT * FROM steward_claims")
        assert row["status"] == "PAID"
        assert row["chapter_transfer_id"] == "tr_123"

    def test_replay_does_not_transfer_twice(self, client, claim):
        transfer = MagicMock()
        transfer.id = "tr_123"
        payload = _event("checkout.session.completed", _claim_session())
        with patch(TRANSFER_PATCH, return_value=transfer) as mock_transfer:
            _post(client, payload)
            _post(client, payload)
        assert mock_transfer.call_count == 1

    def test_transfer_failure_still_acknowledged(self, client, claim):
        with patch(TRANSFER_PATCH, side_effect=stripe.StripeError("insufficient funds")):
            resp = _post(client, _event("checkout.session.completed", _claim_session()))
        assert resp.status_code == 200
        row = fetch_one("SELECT * FROM steward_claims")
        assert row["status"] == "PAID"
        assert row["chapter_transfer_id"] is None

    def test_zero_donation_skips_transfer(self, client, claim):
        with patch(TRANSFER_PATCH) as mock_transfer:
            _post(client, _event("checkout.session.completed", _claim_session(donation=0)))
        mock_transfer.assert_not_called()

    def test_order_table_untouched(self, client, claim):
        product_id = insert_product(insert_seller())
        insert_order(product_id, session_id="cs_test_claim")
        with patch(TRANSFER_PATCH, return_value=MagicMock(id="tr_1")):
            _post(client, _event("checkout.session.completed", _claim_session()))
        assert fetch_one("SELECT status FROM orders")["status"] == "PENDING"


class TestStewardClaimSettlementGuard:
    """Only the listing's claimant can settle, and only once per listing."""

    @pytest.fixture
    def contested(self):
        chapter_id = insert_chapter()
        holder = insert_member(email="holder@example.com")
        loser = insert_member(email="loser@example.com")
        steward_id = insert_steward(insert_member(email="steward@example.com"), chapter_id)
        listing_id = insert_listing(steward_id, chapter_id, status="CLAIMED", claimed_by=holder)
        insert_claim(listing_id, holder, session_id="cs_holder")
        insert_claim(listing_id, loser, session_id="cs_loser")
        return listing_id

    def _statuses(self):
        statuses = {}
        for session_id in ("cs_holder", "cs_loser", "cs_holder_again"):
            row = fetch_one(
                "SELECT status FROM steward_claims WHERE stripe_session_id = ?", (session_id,)
            )
            if row:
                statuses[session_id] = row["status"]
        return statuses

    def test_non_claimant_payment_needs_refund(self, client, contested):
        with patch(TRANSFER_PATCH, return_value=MagicMock(id="tr_1")) as mock_transfer:
            _post(client, _event("checkout.session.completed", _claim_session("cs_loser")))
            _post(client, _event("checkout.session.completed", _claim_session("cs_holder")))

        assert self._statuses() == {"cs_holder": "PAID", "cs_loser": "REFUND_REQUIRED"}
        mock_transfer.assert_called_once()
        assert mock_transfer.call_args.args[2] == "cs_holder"

    def test_second_payment_by_claimant_needs_refund(self, client, contested):
        holder = fetch_one("SELECT id FROM fraternity_members WHERE email = 'holder@example.com'")
        insert_claim(contested, holder["id"], session_id="cs_holder_again")
        with patch(TRANSFER_PATCH, return_value=MagicMock(id="tr_1")) as mock_transfer:
            _post(client, _event("checkout.session.completed", _claim_session("cs_holder")))
            _post(client, _event("checkout.session.completed",
                                 _claim_session("cs_holder_again")))

        statuses = self._statuses()
        assert statuses["cs_holder"] == "PAID"
        assert statuses["cs_holder_again"] == "REFUND_REQUIRED"
        assert mock_transfer.call_count == 1

    def test_refund_marker_is_final(self, client, contested):
        payload = _event("checkout.session.completed", _claim_session("cs_loser"))
        with patch(TRANSFER_PATCH) as mock_transfer:
            _post(client, payload)
            _post(client, payload)
        assert self._statuses()["cs_loser"] == "REFUND_REQUIRED"
        mock_transfer.assert_not_called()


class TestAccountUpdated:

    def _account(self, charges_enabled=False):
        return {"id": "acct_seller", "object": "account", "charges_enabled": charges_enabled}

    def _profile(self):
        return BusinessProfile(
            business_name="Crest Goods LLC",
            business_email="hello@crest.example.com",
            website="https://crest.example.com",
            tax_id="12-3456789",
            account_type="company",
            address={"line1": "1 Main St", "city": "Durham", "state": "NC",
                     "postal_code": "27701", "country": "US"},
        )

    def test_fills_only_blank_fields(self, client):
        insert_seller(business_name="Existing Name", website="  ")
        with patch(PROFILE_PATCH, return_value=self._profile()), patch(BACK_ONLINE_PATCH):
            resp = _post(client, _event("account.updated", self._account()))

        assert resp.status_code == 200
        seller = fetch_one("SELECT * FROM sellers")
        assert seller["business_name"] == "Existing Name"
        assert seller["website"] == "https://crest.example.com"
        assert seller["business_email"] == "hello@crest.example.com"
        assert seller["tax_id"] == "12-3456789"
        assert seller["stripe_account_type"] == "company"
        assert seller["business_city"] == "Durham"
        assert seller["business_address_line2"] is None

    def test_returns_filled_columns(self):
        insert_seller(business_name="Existing Name")
        with patch(PROFILE_PATCH, return_value=self._profile()), patch(BACK_ONLINE_PATCH):
            filled = WebhookService().handle_account_updated(self._account())
        assert "business_name" not in filled
        assert "business_email" in filled

    def test_charges_enabled_notifies_waiting_buyers(self, client):
        seller_id = insert_seller()
        with patch(PROFILE_PATCH, return_value=BusinessProfile()), \
                patch(BACK_ONLINE_PATCH) as mock_online:
            _post(client, _event("account.updated", self._account(charges_enabled=True)))
        mock_online.assert_called_once_with(seller_id)

    def test_unknown_account_ignored(self, client):
        with patch(PROFILE_PATCH) as mock_profile:
            resp = _post(client, _event("account.updated", self._account()))
        assert resp.status_code == 200
        mock_profile.assert_not_called()

    def test_processor_error_is_swallowed(self, client):
        insert_seller()
        with patch(PROFILE_PATCH, side_effect=stripe.StripeError("rate limited")), \
                patch(BACK_ONLINE_PATCH):
            resp = _post(client, _event("account.updated", self._account()))
        assert resp.status_code == 200
        assert fetch_one("SELECT business_name FROM sellers")["business_name"] is None


class TestUnknownEvent:

    def test_ignored(self, client):
        resp = _post(client, _event("customer.created", {"id": "cus_1", "object": "customer"}))
        assert resp.status_code == 200
        assert resp.json() == {"received": True}
