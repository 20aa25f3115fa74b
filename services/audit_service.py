"""
audit_service.py
Persist audit events for payment verification, webhooks and admin credit changes.
"""

from typing import Optional, Dict, Any
from fastapi import Request
from sqlalchemy.orm import Session
from models import AuditLog
from config import get_logger

logger = get_logger(__name__)


class AuditService:
    @staticmethod
    def log(
        db: Session,
        *,
        user_id: Optional[int],
        action: str,
        endpoint: str,
        method: str,
        status: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        device_fingerprint: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        audit = AuditLog(
            user_id=user_id,
            action=action,
            endpoint=endpoint,
            method=method,
            status=status,
            ip_address=ip_address,
            user_agent=user_agent,
            device_fingerprint=device_fingerprint,
            details=details or {},
        )
        db.add(audit)
        db.commit()

    @staticmethod
    def log_request(
        db: Session,
        request: Request,
        *,
        user_id: Optional[int],
        action: str,
        status: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Audit an HTTP request, pulling client info from the request itself"""
        try:
            AuditService.log(
                db,
                user_id=user_id,
                action=action,
                endpoint=request.url.path,
                method=request.method,
                status=status,
                ip_address=request.client.host if request.client else None,
                user_agent=request.headers.get("User-Agent"),
                device_fingerprint=request.headers.get("Device-Fingerprint"),
                details=details,
            )
        except Exception as e:
            # Audit failures never fail the request
            db.rollback()
            logger.error(f"Failed to write audit log for {action}: {str(e)}")
