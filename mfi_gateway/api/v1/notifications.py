"""GET /v1/notifications - borrower notification history"""

from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from mfi_gateway.api.dependencies import get_notification_repository
from mfi_gateway.api.v1.schemas import NotificationOut
from mfi_gateway.domain.models import NotificationStatus
from mfi_gateway.infrastructure.database.repositories import NotificationRepository

router = APIRouter()


@router.get("/notifications", response_model=List[NotificationOut])
def get_notification_history(
    client_id: Optional[str] = Query(None),
    loan_id: Optional[str] = Query(None),
    status: Optional[NotificationStatus] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    repository: NotificationRepository = Depends(get_notification_repository),
):
    """Reminders and escalations sent to borrowers, newest first"""
    return repository.history(
        client_id=client_id,
        loan_id=loan_id,
        status=status,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
    )
