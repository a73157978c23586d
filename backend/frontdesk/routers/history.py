"""
审计日志路由
"""
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from frontdesk.database import get_db
from frontdesk.models.ontology import HistoryAction
from frontdesk.models.schemas import HistoryEntryResponse
from frontdesk.services.history_service import HistoryService

router = APIRouter(prefix="/reservation-history", tags=["审计日志"])


@router.get("", response_model=List[HistoryEntryResponse])
def list_history(
    hotel_id: int,
    room_id: Optional[int] = None,
    reservation_id: Optional[int] = None,
    action: Optional[HistoryAction] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db)
):
    """查询审计记录（最新的在前）"""
    service = HistoryService(db)
    entries = service.query(
        hotel_id=hotel_id,
        room_id=room_id,
        reservation_id=reservation_id,
        start=start,
        end=end,
        action=action,
        limit=limit,
    )
    return service.describe(entries)
