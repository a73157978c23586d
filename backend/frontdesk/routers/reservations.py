"""
预订管理路由
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from frontdesk.database import get_db
from frontdesk.models.schemas import ReservationCreate, ReservationResponse, ReservationUpdate
from frontdesk.routers.errors import http_error
from frontdesk.services.reservation_service import ReservationService

router = APIRouter(prefix="/reservations", tags=["预订管理"])


@router.get("", response_model=List[ReservationResponse])
def list_reservations(
    hotel_id: int,
    status: Optional[str] = Query(None, description="active / inactive / 具体业务状态"),
    db: Session = Depends(get_db)
):
    """获取预订列表"""
    try:
        return ReservationService(db).get_reservations(hotel_id, status)
    except ValueError as e:
        raise http_error(e)


@router.post("", response_model=ReservationResponse, status_code=201)
def create_reservation(data: ReservationCreate, db: Session = Depends(get_db)):
    """由客人分组创建预订"""
    try:
        return ReservationService(db).create_reservation(data)
    except ValueError as e:
        raise http_error(e)


@router.get("/{reservation_id}", response_model=ReservationResponse)
def get_reservation(reservation_id: int, db: Session = Depends(get_db)):
    """获取预订详情（含状态历史）"""
    try:
        return ReservationService(db).get_reservation(reservation_id)
    except ValueError as e:
        raise http_error(e)


@router.patch("/{reservation_id}", response_model=ReservationResponse)
def update_reservation(reservation_id: int, data: ReservationUpdate, db: Session = Depends(get_db)):
    """编辑预订或设置业务状态（取消 / 未到店 / 终止）"""
    try:
        return ReservationService(db).update_reservation(reservation_id, data)
    except ValueError as e:
        raise http_error(e)


@router.delete("/{reservation_id}")
def delete_reservation(
    reservation_id: int,
    reason: str = Query("Deleted by user"),
    performed_by: Optional[str] = None,
    db: Session = Depends(get_db)
):
    """删除预订并释放成员客人"""
    try:
        ReservationService(db).delete_reservation(reservation_id, reason=reason, actor=performed_by)
        return {"message": "删除成功"}
    except ValueError as e:
        raise http_error(e)


@router.post("/{reservation_id}/recalculate", response_model=ReservationResponse)
def recalculate_reservation(
    reservation_id: int,
    performed_by: Optional[str] = None,
    db: Session = Depends(get_db)
):
    """按成员客人状态重算预订状态"""
    try:
        return ReservationService(db).recalculate(
            reservation_id, "Manual recalculation", actor=performed_by
        )
    except ValueError as e:
        raise http_error(e)
