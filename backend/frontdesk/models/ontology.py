"""
本体对象定义 (Ontology Objects)
房间 / 客人 / 预订 / 审计记录
房间状态与预订状态均由客人状态推导，不允许直接写入
"""
import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List

from sqlalchemy import (
    Column, Integer, String, DateTime, Date,
    ForeignKey, Text, Enum as SQLEnum, Boolean, UniqueConstraint, event
)
from sqlalchemy.orm import relationship

from frontdesk.database import Base


# ============== 枚举定义 ==============

class GuestStatus(str, Enum):
    """客人状态枚举（封闭集合）"""
    BOOKED = "booked"              # 已预订
    CHECKED_IN = "checked-in"      # 已入住
    CHECKED_OUT = "checked-out"    # 已退房


class RoomStatus(str, Enum):
    """房间状态枚举"""
    AVAILABLE = "available"                        # 空闲
    RESERVED = "reserved"                          # 已预订
    PARTIALLY_RESERVED = "partially-reserved"      # 部分预订
    OCCUPIED = "occupied"                          # 入住中
    PARTIALLY_OCCUPIED = "partially-occupied"      # 部分入住
    CLEANING = "cleaning"                          # 清洁中（人工）
    MAINTENANCE = "maintenance"                    # 维修中（人工）
    DEOCCUPIED = "deoccupied"                      # 全部退房，待处理
    PARTIALLY_DEOCCUPIED = "partially-deoccupied"  # 部分退房


# 人工设置后暂停自动推导的状态
STICKY_ROOM_STATUSES = frozenset({RoomStatus.MAINTENANCE, RoomStatus.CLEANING})


class ReservationStatus(str, Enum):
    """预订推导状态"""
    ACTIVE = "active"          # 进行中
    COMPLETED = "completed"    # 已完成


class ReservationLifecycle(str, Enum):
    """预订业务状态，终态只能由员工操作设置"""
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"    # 已取消
    NO_SHOW = "no-show"        # 未到店
    TERMINATED = "terminated"  # 提前终止


STAFF_TERMINAL_LIFECYCLES = frozenset({
    ReservationLifecycle.CANCELLED,
    ReservationLifecycle.NO_SHOW,
    ReservationLifecycle.TERMINATED,
})


class HistoryAction(str, Enum):
    """审计记录动作类型"""
    STATUS_CHANGE = "status_change"
    GUEST_ASSIGNED = "guest_assigned"
    GUEST_REMOVED = "guest_removed"
    GUEST_STATUS_CHANGE = "guest_status_change"
    RESERVATION_CREATED = "reservation_created"
    RESERVATION_EDITED = "reservation_edited"
    RESERVATION_DELETED = "reservation_deleted"
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"
    CANCELLATION = "cancellation"
    NO_SHOW = "no_show"


def _load_json(raw, default):
    if not raw:
        return default
    return json.loads(raw)


# ============== 本体对象定义 ==============

class RoomType(Base):
    """
    房型对象
    由酒店配置流程创建，这里只读
    """
    __tablename__ = "room_types"

    id = Column(Integer, primary_key=True, index=True)
    hotel_id = Column(Integer, nullable=False, index=True)
    name = Column(String(50), nullable=False)              # 房型名称
    description = Column(Text)                             # 描述
    max_occupancy = Column(Integer, default=2)             # 最大入住人数
    created_at = Column(DateTime, default=datetime.now)

    # 链接：一个房型对应多个房间
    rooms = relationship("Room", back_populates="room_type")


class Room(Base):
    """
    房间对象 - 状态由已分配客人推导
    assigned_guests 是客人 room_id 的反向引用（JSON 列表），由客人服务维护
    """
    __tablename__ = "rooms"
    __table_args__ = (
        UniqueConstraint("hotel_id", "number", name="uq_room_hotel_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    hotel_id = Column(Integer, nullable=False, index=True)
    number = Column(String(10), nullable=False)                    # 房间号
    floor = Column(Integer, nullable=False)                        # 楼层
    room_type_id = Column(Integer, ForeignKey("room_types.id"), nullable=True)
    capacity = Column(Integer, default=1)                          # 容纳人数
    status = Column(SQLEnum(RoomStatus), default=RoomStatus.AVAILABLE, nullable=False)
    keep_open = Column(Boolean, default=False, nullable=False)     # 是否保持可售
    _assigned_guests = Column("assigned_guests", Text, default="[]")
    notes = Column(Text, default="")
    last_cleaned = Column(DateTime)
    last_maintenance = Column(DateTime)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # 链接
    room_type = relationship("RoomType", back_populates="rooms")

    @property
    def assigned_guests(self) -> List[int]:
        return _load_json(self._assigned_guests, [])

    @assigned_guests.setter
    def assigned_guests(self, guest_ids: List[int]) -> None:
        self._assigned_guests = json.dumps(list(guest_ids))

    @property
    def is_overridden(self) -> bool:
        """是否处于人工维修 / 清洁状态"""
        return self.status in STICKY_ROOM_STATUSES


class Guest(Base):
    """
    客人对象
    客人持有 room_id，是房间关系的唯一来源
    """
    __tablename__ = "guests"

    id = Column(Integer, primary_key=True, index=True)
    hotel_id = Column(Integer, nullable=False, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=True, index=True)
    name = Column(String(100), nullable=False)           # 姓名
    email = Column(String(100))                          # 邮箱
    phone = Column(String(20))                           # 手机号
    status = Column(SQLEnum(GuestStatus), default=GuestStatus.BOOKED, nullable=False)
    keep_open = Column(Boolean, default=False, nullable=False)
    reservation_start = Column(DateTime)                 # 预订开始
    reservation_end = Column(DateTime)                   # 预订结束
    check_in = Column(DateTime)                          # 实际入住时间
    check_out = Column(DateTime)                         # 实际退房时间
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    room = relationship("Room")


class Reservation(Base):
    """
    预订对象 - 由客人分组推导的投影
    status 只由客人状态推导；reservation_status 额外承载员工设置的终态
    """
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    hotel_id = Column(Integer, nullable=False, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=True, index=True)
    _guest_ids = Column("guest_ids", Text, default="[]")
    confirmation_number = Column(String(40), unique=True, nullable=False)
    check_in_date = Column(Date)                         # 入住日期
    check_out_date = Column(Date)                        # 离店日期
    status = Column(SQLEnum(ReservationStatus), default=ReservationStatus.ACTIVE, nullable=False)
    reservation_status = Column(
        SQLEnum(ReservationLifecycle), default=ReservationLifecycle.ACTIVE, nullable=False
    )
    last_status_change = Column(DateTime, default=datetime.now)
    notes = Column(Text, default="")
    special_requests = Column(Text, default="")
    cancelled_at = Column(DateTime)
    cancelled_by = Column(String(50))
    cancellation_reason = Column(Text)
    no_show_marked_at = Column(DateTime)
    terminated_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # 链接
    room = relationship("Room")
    status_history = relationship(
        "ReservationStatusHistory",
        back_populates="reservation",
        order_by="ReservationStatusHistory.id",
        cascade="all, delete-orphan",
    )

    @property
    def guest_ids(self) -> List[int]:
        return _load_json(self._guest_ids, [])

    @guest_ids.setter
    def guest_ids(self, guest_ids: List[int]) -> None:
        self._guest_ids = json.dumps(list(guest_ids))


class ReservationStatusHistory(Base):
    """预订状态历史（只追加）"""
    __tablename__ = "reservation_status_history"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    timestamp = Column(DateTime, default=datetime.now, nullable=False)
    performed_by = Column(String(50), nullable=False)
    reason = Column(Text)

    reservation = relationship("Reservation", back_populates="status_history")


class HistoryEntry(Base):
    """
    审计记录 - 每次状态迁移一条，写入后不可修改
    previous_state / new_state 只包含与本次动作相关的字段
    """
    __tablename__ = "room_history"

    id = Column(Integer, primary_key=True, index=True)
    hotel_id = Column(Integer, nullable=False, index=True)
    room_id = Column(Integer, nullable=True, index=True)
    reservation_id = Column(Integer, nullable=True, index=True)
    timestamp = Column(DateTime, default=datetime.now, nullable=False, index=True)
    action = Column(SQLEnum(HistoryAction), nullable=False, index=True)
    _previous_state = Column("previous_state", Text, default="{}")
    _new_state = Column("new_state", Text, default="{}")
    performed_by = Column(String(50), nullable=False)
    notes = Column(Text)

    @property
    def previous_state(self) -> Dict[str, Any]:
        return _load_json(self._previous_state, {})

    @previous_state.setter
    def previous_state(self, state: Dict[str, Any]) -> None:
        self._previous_state = json.dumps(state or {}, default=str, ensure_ascii=False)

    @property
    def new_state(self) -> Dict[str, Any]:
        return _load_json(self._new_state, {})

    @new_state.setter
    def new_state(self, state: Dict[str, Any]) -> None:
        self._new_state = json.dumps(state or {}, default=str, ensure_ascii=False)


# ============== 审计记录只追加 ==============

def _reject_mutation(mapper, connection, target):
    raise RuntimeError(
        f"{type(target).__name__} {target.id} 是只追加记录，不允许修改或删除"
    )


event.listen(HistoryEntry, "before_update", _reject_mutation)
event.listen(HistoryEntry, "before_delete", _reject_mutation)
# 预订状态历史随预订一起删除，但不允许改写
event.listen(ReservationStatusHistory, "before_update", _reject_mutation)
