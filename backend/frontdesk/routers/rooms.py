"""
房间管理路由
房间状态只读：维修 / 清洁 / 解除通过专门的动作接口设置
"""
from typing import List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from frontdesk.database import get_db
from frontdesk.models.ontology import RoomStatus
from frontdesk.models.schemas import (
    HistoryEntryResponse, RoomActionRequest, RoomResponse, RoomStatusSummary, RoomUpdate,
)
from frontdesk.routers.errors import http_error
from frontdesk.services.history_service import HistoryService
from frontdesk.services.room_service import RoomService

router = APIRouter(prefix="/rooms", tags=["房间管理"])


@router.get("", response_model=List[RoomResponse])
def list_rooms(
    hotel_id: int,
    floor: Optional[int] = None,
    status: Optional[RoomStatus] = None,
    db: Session = Depends(get_db)
):
    """获取房间列表"""
    return RoomService(db).get_rooms(hotel_id, floor, status)


@router.get("/status-summary", response_model=RoomStatusSummary)
def get_room_status_summary(hotel_id: int, db: Session = Depends(get_db)):
    """获取房态统计"""
    return RoomService(db).get_room_status_summary(hotel_id)


@router.get("/{room_id}", response_model=RoomResponse)
def get_room(room_id: int, db: Session = Depends(get_db)):
    """获取房间详情"""
    try:
        return RoomService(db).get_room(room_id)
    except ValueError as e:
        raise http_error(e)


@router.patch("/{room_id}", response_model=RoomResponse)
def update_room(room_id: int, data: RoomUpdate, db: Session = Depends(get_db)):
    """更新房间信息（不含状态）"""
    try:
        return RoomService(db).update_room(room_id, data)
    except ValueError as e:
        raise http_error(e)


@router.post("/{room_id}/maintenance", response_model=RoomResponse)
def request_maintenance(room_id: int, data: RoomActionRequest, db: Session = Depends(get_db)):
    """设置维修"""
    try:
        return RoomService(db).request_maintenance(
            room_id, actor=data.performed_by, reason=data.reason or "Maintenance requested"
        )
    except ValueError as e:
        raise http_error(e)


@router.post("/{room_id}/cleaning", response_model=RoomResponse)
def request_cleaning(room_id: int, data: RoomActionRequest, db: Session = Depends(get_db)):
    """设置清洁"""
    try:
        return RoomService(db).request_cleaning(
            room_id, actor=data.performed_by, reason=data.reason or "Cleaning requested"
        )
    except ValueError as e:
        raise http_error(e)


@router.post("/{room_id}/clear-override", response_model=RoomResponse)
def clear_override(room_id: int, data: RoomActionRequest, db: Session = Depends(get_db)):
    """解除维修 / 清洁"""
    try:
        return RoomService(db).clear_override(
            room_id, actor=data.performed_by, reason=data.reason or "Override cleared"
        )
    except ValueError as e:
        raise http_error(e)


@router.post("/{room_id}/terminate", response_model=RoomResponse)
def terminate_room(room_id: int, data: RoomActionRequest, db: Session = Depends(get_db)):
    """终止房间：删除房间内全部客人并复位为空闲"""
    try:
        return RoomService(db).terminate(
            room_id, actor=data.performed_by, reason=data.reason or "Room terminated"
        )
    except ValueError as e:
        raise http_error(e)


@router.get("/{room_id}/history", response_model=List[HistoryEntryResponse])
def get_room_history(room_id: int, db: Session = Depends(get_db)):
    """获取房间审计记录（最新的在前）"""
    try:
        RoomService(db).get_room(room_id)
    except ValueError as e:
        raise http_error(e)
    history = HistoryService(db)
    return history.describe(history.get_room_history(room_id))
