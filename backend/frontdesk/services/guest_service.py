"""
客人服务 - 本体操作层
客人持有 room_id，是房间关系的唯一来源；
每次新增 / 修改（状态、房间、keep_open）/ 删除提交后都交给协调引擎联动
"""
from typing import Callable, List, Optional
from datetime import datetime
import logging

from sqlalchemy.orm import Session

from frontdesk.config import settings
from frontdesk.exceptions import FrontDeskError, NotFound
from frontdesk.models.events import EventType, GuestChangedData
from frontdesk.models.ontology import Guest, GuestStatus, HistoryAction, Room
from frontdesk.models.schemas import GuestCreate, GuestUpdate
from frontdesk.services.event_bus import Event, event_bus
from frontdesk.services.reconciliation import GuestSnapshot, ReconciliationEngine

logger = logging.getLogger(__name__)

# 触发房态协调的字段
RECONCILE_FIELDS = ("status", "room_id", "keep_open")

# 不允许显式置空的字段
_NON_NULLABLE = ("name", "status", "keep_open")


class GuestService:
    """客人服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 engine: ReconciliationEngine = None):
        self.db = db
        # 支持依赖注入事件发布器，便于测试
        self._publish_event = event_publisher or event_bus.publish
        self.engine = engine or ReconciliationEngine(db, event_publisher=self._publish_event)

    # ============== 查询 ==============

    def get_guest(self, guest_id: int) -> Guest:
        """获取单个客人"""
        guest = self.db.query(Guest).filter(Guest.id == guest_id).first()
        if not guest:
            raise NotFound("Guest", guest_id)
        return guest

    def get_guests(self, hotel_id: int, status: Optional[GuestStatus] = None,
                   room_id: Optional[int] = None) -> List[Guest]:
        """获取酒店客人列表"""
        query = self.db.query(Guest).filter(Guest.hotel_id == hotel_id)
        if status is not None:
            query = query.filter(Guest.status == status)
        if room_id is not None:
            query = query.filter(Guest.room_id == room_id)
        return query.order_by(Guest.id).all()

    def list_by_room(self, room_id: int) -> List[Guest]:
        """获取房间内的客人（含已退房但未解除分配的客人）"""
        return self.db.query(Guest).filter(Guest.room_id == room_id).order_by(Guest.id).all()

    # ============== 新增 / 修改 / 删除 ==============

    def create_guest(self, data: GuestCreate) -> Guest:
        """创建客人，指定房间时同步房态"""
        actor = data.performed_by or settings.DEFAULT_ACTOR
        reason = data.reason or "Triggered by guest assignment"
        if data.room_id is not None:
            self._get_room_in_hotel(data.room_id, data.hotel_id)

        fields = data.model_dump(exclude={"performed_by", "reason"})
        guest = Guest(**fields)
        self._stamp_status_time(guest, guest.status)
        self.db.add(guest)
        self.db.flush()
        if guest.room_id is not None:
            self._attach(guest.id, guest.room_id)
        self.db.commit()
        self.db.refresh(guest)
        logger.info(f"Guest {guest.id} ({guest.name}) created in room {guest.room_id}")

        self._publish_changed(EventType.GUEST_CREATED, guest.id, guest.hotel_id, guest.name,
                              None, GuestSnapshot.from_guest(guest), actor, reason)
        self.engine.reconcile_guest_change(guest.id, None, actor, reason)
        self.db.refresh(guest)
        return guest

    def update_guest(self, guest_id: int, data: GuestUpdate,
                     action: Optional[HistoryAction] = None) -> Guest:
        """
        更新客人信息

        状态、房间、keep_open 任一变化时触发房态协调
        """
        actor = data.performed_by or settings.DEFAULT_ACTOR
        reason = data.reason or "Triggered by guest status change"
        guest = self.get_guest(guest_id)
        previous = GuestSnapshot.from_guest(guest)

        update_data = data.model_dump(exclude_unset=True, exclude={"performed_by", "reason"})
        for key in _NON_NULLABLE:
            if key in update_data and update_data[key] is None:
                raise FrontDeskError(f"{key} 不能为空")

        start = update_data.get("reservation_start", guest.reservation_start)
        end = update_data.get("reservation_end", guest.reservation_end)
        if start and end and end < start:
            raise FrontDeskError("离店时间不能早于入住时间")

        new_room_id = update_data.get("room_id", guest.room_id)
        if new_room_id != guest.room_id:
            if new_room_id is not None:
                self._get_room_in_hotel(new_room_id, guest.hotel_id)
            if guest.room_id is not None:
                self._detach(guest.id, guest.room_id)
            if new_room_id is not None:
                self._attach(guest.id, new_room_id)

        for key, value in update_data.items():
            setattr(guest, key, value)
        if "status" in update_data and update_data["status"] != previous.status:
            self._stamp_status_time(guest, update_data["status"])

        self.db.commit()
        self.db.refresh(guest)
        current = GuestSnapshot.from_guest(guest)

        if any(getattr(previous, f) != getattr(current, f) for f in RECONCILE_FIELDS):
            self.engine.reconcile_guest_change(guest.id, previous, actor, reason, action=action)
            self.db.refresh(guest)

        self._publish_changed(EventType.GUEST_UPDATED, guest.id, guest.hotel_id, guest.name,
                              previous, current, actor, reason)
        return guest

    def delete_guest(self, guest_id: int, actor: Optional[str] = None,
                     reason: str = "Triggered by guest removal") -> None:
        """删除客人：先从房间集合中移除，再协调原房间"""
        actor = actor or settings.DEFAULT_ACTOR
        guest = self.get_guest(guest_id)
        previous = GuestSnapshot.from_guest(guest)

        rooms = self.db.query(Room).filter(Room._assigned_guests.like(f"%{guest_id}%")).all()
        for room in rooms:
            if guest_id in room.assigned_guests:
                room.assigned_guests = [gid for gid in room.assigned_guests if gid != guest_id]

        self.db.delete(guest)
        self.db.commit()
        logger.info(f"Guest {guest_id} ({previous.name}) deleted from room {previous.room_id}")

        self.engine.reconcile_guest_removal(previous, actor, reason)
        self._publish_changed(EventType.GUEST_DELETED, previous.id, previous.hotel_id, previous.name,
                              previous, None, actor, reason)

    # ============== 前台操作 ==============

    def check_in(self, guest_id: int, actor: Optional[str] = None,
                 reason: str = "Guest checked in") -> Guest:
        """办理入住（仅已预订且已分配房间的客人）"""
        guest = self.get_guest(guest_id)
        if guest.status != GuestStatus.BOOKED:
            raise FrontDeskError(f"客人当前状态为 {guest.status.value}，无法办理入住")
        if guest.room_id is None:
            raise FrontDeskError("客人未分配房间，无法办理入住")
        return self.update_guest(
            guest_id,
            GuestUpdate(status=GuestStatus.CHECKED_IN, performed_by=actor, reason=reason),
            action=HistoryAction.CHECK_IN,
        )

    def check_out(self, guest_id: int, actor: Optional[str] = None,
                  reason: str = "Guest checked out") -> Guest:
        """办理退房（仅在住客人），保留房间引用用于审计"""
        guest = self.get_guest(guest_id)
        if guest.status != GuestStatus.CHECKED_IN:
            raise FrontDeskError(f"客人当前状态为 {guest.status.value}，无法办理退房")
        return self.update_guest(
            guest_id,
            GuestUpdate(status=GuestStatus.CHECKED_OUT, performed_by=actor, reason=reason),
            action=HistoryAction.CHECK_OUT,
        )

    def assign_to_room(self, guest_id: int, room_id: int, actor: Optional[str] = None,
                       reason: str = "Guest assigned", **fields) -> Guest:
        """分配房间（预订创建时使用）"""
        return self.update_guest(
            guest_id, GuestUpdate(room_id=room_id, performed_by=actor, reason=reason, **fields)
        )

    def release_from_room(self, guest_id: int, actor: Optional[str] = None,
                          reason: str = "Guest released") -> Guest:
        """解除房间分配并清除 keep_open（预订删除时使用）"""
        return self.update_guest(
            guest_id, GuestUpdate(room_id=None, keep_open=False, performed_by=actor, reason=reason)
        )

    # ============== 内部工具 ==============

    def _get_room_in_hotel(self, room_id: int, hotel_id: int) -> Room:
        room = self.db.query(Room).filter(Room.id == room_id).first()
        if not room or room.hotel_id != hotel_id:
            raise NotFound("Room", room_id)
        return room

    def _attach(self, guest_id: int, room_id: int) -> None:
        room = self.db.query(Room).filter(Room.id == room_id).first()
        if room and guest_id not in room.assigned_guests:
            room.assigned_guests = room.assigned_guests + [guest_id]

    def _detach(self, guest_id: int, room_id: int) -> None:
        room = self.db.query(Room).filter(Room.id == room_id).first()
        if room and guest_id in room.assigned_guests:
            room.assigned_guests = [gid for gid in room.assigned_guests if gid != guest_id]

    @staticmethod
    def _stamp_status_time(guest: Guest, status: GuestStatus) -> None:
        now = datetime.now()
        if status == GuestStatus.CHECKED_IN and guest.check_in is None:
            guest.check_in = now
        elif status == GuestStatus.CHECKED_OUT:
            guest.check_out = now

    def _publish_changed(self, event_type: EventType, guest_id: int, hotel_id: int, name: str,
                         previous: Optional[GuestSnapshot], current: Optional[GuestSnapshot],
                         actor: str, reason: str) -> None:
        self._publish_event(Event(
            event_type=event_type,
            timestamp=datetime.now(),
            data=GuestChangedData(
                guest_id=guest_id,
                hotel_id=hotel_id,
                guest_name=name or "",
                old_room_id=previous.room_id if previous else None,
                new_room_id=current.room_id if current else None,
                old_status=previous.status.value if previous else None,
                new_status=current.status.value if current else None,
                performed_by=actor,
                reason=reason,
            ).to_dict(),
            source="guest_service"
        ))
