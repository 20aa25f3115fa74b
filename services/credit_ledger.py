"""
credit_ledger.py
Every change to a user's credit balance goes through here.

Grants are idempotent: the same payment can be reported by a webhook, by a
client verify call and by a receipt verification, and each resolves to one
canonical idempotency key. The unique constraint on
CreditTransaction.idempotency_key is the real guard; the pre-check only
avoids unnecessary work.
"""

from typing import NamedTuple, Optional, List
from fastapi import HTTPException
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from models import User, CreditTransaction
from config import get_logger

logger = get_logger(__name__)


class InsufficientCredits(Exception):
    def __init__(self, user_id: int, required: int, available: int):
        self.user_id = user_id
        self.required = required
        self.available = available
        super().__init__(f"User {user_id} has {available} credits, {required} required")


class GrantResult(NamedTuple):
    granted: bool
    balance: int
    transaction: Optional[CreditTransaction] = None


# Canonical idempotency keys
def stripe_invoice_key(invoice_id: str) -> str:
    return f"stripe_invoice:{invoice_id}"

def store_transaction_key(transaction_id: str) -> str:
    return f"store_txn:{transaction_id}"

def admin_key(token: str) -> str:
    return f"admin:{token}"


class CreditLedger:
    @staticmethod
    def current_balance(db: Session, user_id: int) -> int:
        balance = db.query(User.credits).filter(User.id == user_id).scalar()
        return balance or 0

    @staticmethod
    def transaction_already_processed(db: Session, idempotency_key: str) -> bool:
        existing = db.query(CreditTransaction.id).filter(
            CreditTransaction.idempotency_key == idempotency_key
        ).first()
        return existing is not None

    @staticmethod
    def grant(
        db: Session,
        *,
        user_id: int,
        amount: int,
        idempotency_key: Optional[str],
        source: str,
        reference: Optional[str] = None,
        description: Optional[str] = None,
    ) -> GrantResult:
        """
        Add credits and record the ledger row, then commit.

        Returns granted=False with the current balance when the key was
        already used. Pending changes on the session are committed too.
        """
        if amount <= 0:
            raise ValueError("Grant amount must be positive")

        if idempotency_key and CreditLedger.transaction_already_processed(db, idempotency_key):
            logger.info(f"Credit grant {idempotency_key} already processed for user {user_id}")
            return GrantResult(False, CreditLedger.current_balance(db, user_id))

        try:
            db.flush()
            updated = db.query(User).filter(User.id == user_id).update(
                {User.credits: User.credits + amount},
                synchronize_session="fetch"
            )
            if not updated:
                raise HTTPException(status_code=404, detail="User not found")

            balance = CreditLedger.current_balance(db, user_id)
            entry = CreditTransaction(
                user_id=user_id,
                amount=amount,
                balance_after=balance,
                source=source,
                idempotency_key=idempotency_key,
                reference=reference,
                description=description,
            )
            db.add(entry)
            # Unique constraint on idempotency_key fires here
            db.flush()
            db.commit()
        except IntegrityError:
            # Another channel granted the same payment concurrently
            db.rollback()
            balance = CreditLedger.current_balance(db, user_id)
            logger.info(
                f"Credit grant {idempotency_key} already processed (race detected). "
                f"User {user_id} balance: {balance}"
            )
            return GrantResult(False, balance)

        db.refresh(entry)
        logger.info(f"Granted {amount} credits to user {user_id} ({source}). Balance: {balance}")
        return GrantResult(True, balance, entry)

    @staticmethod
    def spend(
        db: Session,
        *,
        user_id: int,
        amount: int,
        source: str,
        idempotency_key: Optional[str] = None,
        reference: Optional[str] = None,
        description: Optional[str] = None,
    ) -> CreditTransaction:
        """
        Debit credits with a conditional update so the balance never goes negative.

        NOTE: Does NOT commit - the caller commits together with the action
        that is being paid for.
        """
        if amount <= 0:
            raise ValueError("Spend amount must be positive")

        db.flush()
        updated = db.query(User).filter(
            User.id == user_id,
            User.credits >= amount
        ).update(
            {User.credits: User.credits - amount},
            synchronize_session="fetch"
        )
        if not updated:
            raise InsufficientCredits(user_id, amount, CreditLedger.current_balance(db, user_id))

        entry = CreditTransaction(
            user_id=user_id,
            amount=-amount,
            balance_after=CreditLedger.current_balance(db, user_id),
            source=source,
            idempotency_key=idempotency_key,
            reference=reference,
            description=description,
        )
        db.add(entry)
        db.flush()
        return entry

    @staticmethod
    def history(db: Session, user_id: int, limit: int = 50) -> List[CreditTransaction]:
        return db.query(CreditTransaction).filter(
            CreditTransaction.user_id == user_id
        ).order_by(CreditTransaction.id.desc()).limit(limit).all()


def insufficient_credits_exception(exc: InsufficientCredits, message: str = "Insufficient credits") -> HTTPException:
    """HTTP 400 carrying the balance details for the client"""
    return HTTPException(
        status_code=400,
        detail={
            "message": message,
            "requiredCredits": exc.required,
            "currentCredits": exc.available,
        },
    )
