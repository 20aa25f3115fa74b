import os, sys
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import argparse
import uuid
from db import SessionLocal
from models import User
from services.credit_ledger import CreditLedger, InsufficientCredits, admin_key


def adjust_credits(email: str, amount: int, reason: str = None) -> int:
    """
    Add (positive amount) or remove (negative amount) credits for a user.
    Every adjustment is written to the credit ledger.

    Returns the user's new balance.
    """
    if amount == 0:
        raise ValueError("Amount must not be zero")

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email.lower()).first()
        if not user:
            raise ValueError(f"No user found with email {email}")

        print(f"User {user.id} ({user.email}) has {user.credits} credits")
        description = reason or "Manual credit adjustment"

        if amount > 0:
            result = CreditLedger.grant(
                db,
                user_id=user.id,
                amount=amount,
                idempotency_key=admin_key(uuid.uuid4().hex),
                source="admin",
                description=description,
            )
            balance = result.balance
        else:
            entry = CreditLedger.spend(
                db,
                user_id=user.id,
                amount=-amount,
                source="admin",
                description=description,
            )
            db.commit()
            balance = entry.balance_after

        print(f"✅ Adjusted by {amount}. New balance: {balance}")
        return balance
    except InsufficientCredits:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Adjust a user's credit balance")
    parser.add_argument("--email", required=True, help="Email of the user to adjust")
    parser.add_argument("--amount", type=int, required=True, help="Credits to add, negative to remove")
    parser.add_argument("--reason", required=False, help="Reason recorded in the credit ledger")

    args = parser.parse_args()
    try:
        adjust_credits(args.email, args.amount, args.reason)
    except (ValueError, InsufficientCredits) as e:
        print(f"❌ {e}")
        sys.exit(1)
