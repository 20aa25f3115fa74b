"""
Tests for reading Stripe subscription and invoice payloads across API versions
"""
from datetime import datetime
from services.stripe_billing import (
    find_user,
    invoice_is_paid,
    invoice_plan,
    invoice_subscription_id,
    plan_for_price,
    subscription_period_end,
    subscription_plan,
)


def test_plan_for_price():
    assert plan_for_price("price_standard") == "standard"
    assert plan_for_price("price_unknown") is None
    assert plan_for_price(None) is None


def test_subscription_period_end_falls_back_to_items():
    subscription = {"items": {"data": [{"current_period_end": 1767225600}]}}
    assert subscription_period_end(subscription) == datetime(2026, 1, 1)


def test_subscription_plan_prefers_metadata_then_price():
    assert subscription_plan({"metadata": {"plan": "premium"}}) == "premium"
    by_price = {"metadata": {}, "items": {"data": [{"price": {"id": "price_basic"}}]}}
    assert subscription_plan(by_price) == "basic"


def test_invoice_subscription_from_parent_details():
    invoice = {
        "id": "in_1",
        "parent": {"subscription_details": {"subscription": "sub_9", "metadata": {"plan": "standard"}}},
        "lines": {"data": []},
    }
    assert invoice_subscription_id(invoice) == "sub_9"
    assert invoice_plan(invoice) == "standard"


def test_invoice_plan_from_line_pricing():
    invoice = {"lines": {"data": [{"pricing": {"price_details": {"price": "price_premium"}}}]}}
    assert invoice_plan(invoice) == "premium"


def test_invoice_is_paid():
    assert invoice_is_paid({"status": "paid"})
    assert invoice_is_paid({"status": "open", "paid": True})
    assert not invoice_is_paid({"status": "open"})
    assert not invoice_is_paid(None)


def test_find_user_by_metadata_or_customer(db, make_user):
    by_customer = make_user(stripe_customer_id="cus_1")
    by_metadata = make_user()

    assert find_user(db, "cus_1").id == by_customer.id
    assert find_user(db, "cus_1", {"userId": str(by_metadata.id)}).id == by_metadata.id
    assert find_user(db, "cus_missing") is None
