"""
客人管理路由
客人的新增 / 修改 / 删除会联动房态与预订状态
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from frontdesk.database import get_db
from frontdesk.models.ontology import GuestStatus
from frontdesk.models.schemas import GuestActionRequest, GuestCreate, GuestResponse, GuestUpdate
from frontdesk.routers.errors import http_error
from frontdesk.services.guest_service import GuestService

router = APIRouter(prefix="/guests", tags=["客人管理"])


@router.get("", response_model=List[GuestResponse])
def list_guests(
    hotel_id: int,
    status: Optional[GuestStatus] = None,
    room_id: Optional[int] = None,
    db: Session = Depends(get_db)
):
    """获取客人列表"""
    return GuestService(db).get_guests(hotel_id, status=status, room_id=room_id)


@router.get("/{guest_id}", response_model=GuestResponse)
def get_guest(guest_id: int, db: Session = Depends(get_db)):
    """获取客人详情"""
    try:
        return GuestService(db).get_guest(guest_id)
    except ValueError as e:
        raise http_error(e)


@router.post("", response_model=GuestResponse, status_code=201)
def create_guest(data: GuestCreate, db: Session = Depends(get_db)):
    """创建客人"""
    try:
        return GuestService(db).create_guest(data)
    except ValueError as e:
        raise http_error(e)


@router.patch("/{guest_id}", response_model=GuestResponse)
def update_guest(guest_id: int, data: GuestUpdate, db: Session = Depends(get_db)):
    """更新客人（状态 / 房间 / keep_open 变化时同步房态）"""
    try:
        return GuestService(db).update_guest(guest_id, data)
    except ValueError as e:
        raise http_error(e)


@router.delete("/{guest_id}")
def delete_guest(
    guest_id: int,
    performed_by: Optional[str] = None,
    reason: str = Query("Triggered by guest removal"),
    db: Session = Depends(get_db)
):
    """删除客人"""
    try:
        GuestService(db).delete_guest(guest_id, actor=performed_by, reason=reason)
        return {"message": "删除成功"}
    except ValueError as e:
        raise http_error(e)


@router.post("/{guest_id}/check-in", response_model=GuestResponse)
def check_in(guest_id: int, data: GuestActionRequest, db: Session = Depends(get_db)):
    """办理入住"""
    try:
        return GuestService(db).check_in(
            guest_id, actor=data.performed_by, reason=data.reason or "Guest checked in"
        )
    except ValueError as e:
        raise http_error(e)


@router.post("/{guest_id}/check-out", response_model=GuestResponse)
def check_out(guest_id: int, data: GuestActionRequest, db: Session = Depends(get_db)):
    """办理退房"""
    try:
        return GuestService(db).check_out(
            guest_id, actor=data.performed_by, reason=data.reason or "Guest checked out"
        )
    except ValueError as e:
        raise http_error(e)
