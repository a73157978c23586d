"""
房间服务 - 本体操作层
房间状态不可直接修改：
- 正常状态由协调引擎根据客人推导
- 维修 / 清洁由员工人工设置，期间暂停推导，直到 clear_override
"""
from typing import Callable, List, Optional
from datetime import datetime
import logging

from sqlalchemy.orm import Session

from frontdesk.config import settings
from frontdesk.exceptions import FrontDeskError, InvalidTransition, NotFound
from frontdesk.models.events import EventType, RoomStatusChangedData
from frontdesk.models.ontology import Guest, HistoryAction, Room, RoomStatus, RoomType
from frontdesk.models.schemas import RoomUpdate
from frontdesk.services.event_bus import Event, event_bus
from frontdesk.services.history_service import HistoryService
from frontdesk.services.locks import room_locks

logger = logging.getLogger(__name__)

# 人工状态允许的来源状态
MAINTENANCE_SOURCES = frozenset({
    RoomStatus.AVAILABLE, RoomStatus.CLEANING, RoomStatus.MAINTENANCE,
})
CLEANING_SOURCES = frozenset({
    RoomStatus.AVAILABLE, RoomStatus.RESERVED, RoomStatus.PARTIALLY_RESERVED,
    RoomStatus.OCCUPIED, RoomStatus.PARTIALLY_OCCUPIED,
    RoomStatus.MAINTENANCE, RoomStatus.CLEANING,
})

# 计入入住率的状态（至少一位客人在住）
_IN_HOUSE_STATUSES = frozenset({
    RoomStatus.OCCUPIED, RoomStatus.PARTIALLY_OCCUPIED, RoomStatus.PARTIALLY_DEOCCUPIED,
})

# 不允许显式置空的字段
_NON_NULLABLE = ("floor", "capacity")


class RoomService:
    """房间服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None):
        self.db = db
        # 支持依赖注入事件发布器，便于测试
        self._publish_event = event_publisher or event_bus.publish
        self.history = HistoryService(db)

    # ============== 查询 ==============

    def get_room(self, room_id: int) -> Room:
        """获取单个房间"""
        room = self.db.query(Room).filter(Room.id == room_id).first()
        if not room:
            raise NotFound("Room", room_id)
        return room

    def get_rooms(self, hotel_id: int, floor: Optional[int] = None,
                  status: Optional[RoomStatus] = None) -> List[Room]:
        """获取酒店房间列表（状态为已推导的存储值）"""
        query = self.db.query(Room).filter(Room.hotel_id == hotel_id)

        if floor is not None:
            query = query.filter(Room.floor == floor)
        if status is not None:
            query = query.filter(Room.status == status)

        return query.order_by(Room.floor, Room.number).all()

    def update_room(self, room_id: int, data: RoomUpdate) -> Room:
        """更新房间描述性字段"""
        room = self.get_room(room_id)
        update_data = data.model_dump(exclude_unset=True)
        for key in _NON_NULLABLE:
            if key in update_data and update_data[key] is None:
                raise FrontDeskError(f"{key} 不能为空")

        if update_data.get('room_type_id') is not None:
            room_type = self.db.query(RoomType).filter(
                RoomType.id == update_data['room_type_id']
            ).first()
            if not room_type or room_type.hotel_id != room.hotel_id:
                raise NotFound("RoomType", update_data['room_type_id'])

        for key, value in update_data.items():
            setattr(room, key, value)

        self.db.commit()
        self.db.refresh(room)
        return room

    def get_room_status_summary(self, hotel_id: int) -> dict:
        """获取房态统计"""
        rooms = self.get_rooms(hotel_id)
        by_status = {status.value: 0 for status in RoomStatus}
        for room in rooms:
            by_status[room.status.value] += 1

        in_house = sum(1 for room in rooms if room.status in _IN_HOUSE_STATUSES)
        return {
            'hotel_id': hotel_id,
            'total': len(rooms),
            'by_status': by_status,
            'keep_open': sum(1 for room in rooms if room.keep_open),
            'occupancy_rate': round(in_house / len(rooms), 4) if rooms else 0.0,
        }

    # ============== 人工状态 ==============

    def request_maintenance(self, room_id: int, actor: Optional[str] = None,
                            reason: str = "Maintenance requested") -> Room:
        """设置维修状态（仅允许从 空闲 / 清洁 / 维修 发起）"""
        return self._set_override(room_id, RoomStatus.MAINTENANCE, MAINTENANCE_SOURCES, actor, reason)

    def request_cleaning(self, room_id: int, actor: Optional[str] = None,
                         reason: str = "Cleaning requested") -> Room:
        """设置清洁状态"""
        return self._set_override(room_id, RoomStatus.CLEANING, CLEANING_SOURCES, actor, reason)

    def clear_override(self, room_id: int, actor: Optional[str] = None,
                       reason: str = "Override cleared") -> Room:
        """
        解除维修 / 清洁，房间回到 available

        之后的客人变更重新按客人状态推导
        """
        actor = actor or settings.DEFAULT_ACTOR
        with room_locks.hold(room_id):
            room = self.get_room(room_id)
            old_status = room.status
            if old_status == RoomStatus.AVAILABLE:
                return room
            if not room.is_overridden:
                raise InvalidTransition(
                    room_id, old_status.value, RoomStatus.AVAILABLE.value,
                    [s.value for s in (RoomStatus.MAINTENANCE, RoomStatus.CLEANING)],
                )

            now = datetime.now()
            if old_status == RoomStatus.CLEANING:
                room.last_cleaned = now
            room.status = RoomStatus.AVAILABLE
            self.history.append(
                hotel_id=room.hotel_id,
                room_id=room.id,
                action=HistoryAction.STATUS_CHANGE,
                previous_state={"room_status": old_status.value},
                new_state={"room_status": RoomStatus.AVAILABLE.value},
                performed_by=actor,
                notes=reason,
                timestamp=now,
            )
            self.db.commit()
            self.db.refresh(room)

        logger.info(f"Room {room.number}: {old_status.value} cleared to available by {actor}")
        self._publish_status_changed(room, old_status, actor, reason)
        return room

    def terminate(self, room_id: int, actor: Optional[str] = None,
                  reason: str = "Room terminated") -> Room:
        """
        终止房间：删除房间内全部客人，房间回到 available 且 keep_open=False

        1. 通过客人服务逐个删除（每位客人触发协调并记 guest_removed）
        2. 维修 / 清洁期间推导暂停，删除后仍需显式复位
        """
        from frontdesk.services.guest_service import GuestService

        actor = actor or settings.DEFAULT_ACTOR
        room = self.get_room(room_id)
        guest_ids = [
            g.id for g in self.db.query(Guest.id).filter(
                Guest.room_id == room.id, Guest.hotel_id == room.hotel_id
            ).order_by(Guest.id)
        ]

        guests = GuestService(self.db, event_publisher=self._publish_event)
        for guest_id in guest_ids:
            guests.delete_guest(guest_id, actor=actor, reason=reason)

        with room_locks.hold(room_id):
            room = self.db.query(Room).populate_existing().filter(Room.id == room_id).first()
            old_status = room.status
            old_keep_open = bool(room.keep_open)
            reset = (
                old_status != RoomStatus.AVAILABLE or old_keep_open or bool(room.assigned_guests)
            )
            if reset:
                room.status = RoomStatus.AVAILABLE
                room.keep_open = False
                room.assigned_guests = []
                self.history.append(
                    hotel_id=room.hotel_id,
                    room_id=room.id,
                    action=HistoryAction.STATUS_CHANGE,
                    previous_state={"room_status": old_status.value, "keep_open": old_keep_open},
                    new_state={"room_status": RoomStatus.AVAILABLE.value, "keep_open": False},
                    performed_by=actor,
                    notes=reason,
                )
                self.db.commit()
                self.db.refresh(room)

        logger.info(f"Room {room.number} terminated by {actor}: removed guests {guest_ids}")
        if reset:
            self._publish_status_changed(room, old_status, actor, reason, old_keep_open=old_keep_open)
        return room

    def _set_override(self, room_id: int, target: RoomStatus, allowed_sources,
                      actor: Optional[str], reason: str) -> Room:
        actor = actor or settings.DEFAULT_ACTOR
        with room_locks.hold(room_id):
            room = self.get_room(room_id)
            old_status = room.status
            if old_status not in allowed_sources:
                logger.warning(
                    f"Rejected {target.value} for room {room.number}: current status {old_status.value}"
                )
                raise InvalidTransition(
                    room_id, old_status.value, target.value, [s.value for s in allowed_sources]
                )
            if old_status == target:
                return room

            now = datetime.now()
            room.status = target
            if target == RoomStatus.MAINTENANCE:
                room.last_maintenance = now
            self.history.append(
                hotel_id=room.hotel_id,
                room_id=room.id,
                action=HistoryAction.STATUS_CHANGE,
                previous_state={"room_status": old_status.value},
                new_state={"room_status": target.value},
                performed_by=actor,
                notes=reason,
                timestamp=now,
            )
            self.db.commit()
            self.db.refresh(room)

        logger.info(f"Room {room.number}: {old_status.value} -> {target.value} by {actor}")
        self._publish_status_changed(room, old_status, actor, reason)
        return room

    def _publish_status_changed(self, room: Room, old_status: RoomStatus, actor: str, reason: str,
                                old_keep_open: Optional[bool] = None) -> None:
        self._publish_event(Event(
            event_type=EventType.ROOM_STATUS_CHANGED,
            timestamp=datetime.now(),
            data=RoomStatusChangedData(
                room_id=room.id,
                hotel_id=room.hotel_id,
                room_number=room.number,
                old_status=old_status.value,
                new_status=room.status.value,
                old_keep_open=bool(room.keep_open) if old_keep_open is None else old_keep_open,
                new_keep_open=bool(room.keep_open),
                performed_by=actor,
                reason=reason,
                is_override=True,
            ).to_dict(),
            source="room_service"
        ))
