"""
Tests for the manual credit adjustment script
"""
import pytest
from models import CreditTransaction
from conftest import TestingSessionLocal
from scripts import adjust_credits as adjust_credits_script
from services.credit_ledger import InsufficientCredits


@pytest.fixture(autouse=True)
def script_sessions(monkeypatch):
    monkeypatch.setattr(adjust_credits_script, "SessionLocal", TestingSessionLocal)


def test_positive_amount_grants_through_ledger(db, test_user):
    balance = adjust_credits_script.adjust_credits(test_user.email, 40, "Support refund")
    assert balance == 140

    db.refresh(test_user)
    assert test_user.credits == 140
    entry = db.query(CreditTransaction).one()
    assert entry.amount == 40
    assert entry.source == "admin"
    assert entry.idempotency_key.startswith("admin:")
    assert entry.description == "Support refund"


def test_negative_amount_spends(db, test_user):
    balance = adjust_credits_script.adjust_credits(test_user.email.upper(), -30)
    assert balance == 70

    db.refresh(test_user)
    assert test_user.credits == 70
    entry = db.query(CreditTransaction).one()
    assert entry.amount == -30
    assert entry.balance_after == 70
    assert entry.description == "Manual credit adjustment"


def test_insufficient_balance_rolls_back(db, test_user):
    with pytest.raises(InsufficientCredits):
        adjust_credits_script.adjust_credits(test_user.email, -500)

    db.refresh(test_user)
    assert test_user.credits == 100
    assert db.query(CreditTransaction).count() == 0


def test_unknown_user_and_zero_amount(db, test_user):
    with pytest.raises(ValueError):
        adjust_credits_script.adjust_credits("nobody@example.com", 10)
    with pytest.raises(ValueError):
        adjust_credits_script.adjust_credits(test_user.email, 0)
